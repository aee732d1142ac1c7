from flask import current_app, request
from flask_socketio import join_room, leave_room, emit
from typing import Dict, Set

from roundsync import socketio
from roundsync.services.rounds.broadcast import NAMESPACE, parse_topic

SUBSCRIBED = 'subscribed'
CLOSED = 'closed'
ERRORED = 'errored'

# sid -> topics joined by that socket
_sid_topics: Dict[str, Set[str]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def handle_connect():
    _sid_topics.setdefault(_get_sid(), set())
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    topics = _sid_topics.pop(_get_sid(), set())
    if topics:
        current_app.logger.info(f"[feed-disconnect] sid={_get_sid()} topics={sorted(topics)}")


def handle_subscribe(data):
    topic = (data or {}).get('topic')
    try:
        parse_topic(topic)
    except ValueError as exc:
        emit('subscription_status', {'topic': topic, 'status': ERRORED, 'error': str(exc)})
        return
    joined = _sid_topics.setdefault(_get_sid(), set())
    # Joining twice is harmless; the room membership is a set
    join_room(topic)
    joined.add(topic)
    emit('subscription_status', {'topic': topic, 'status': SUBSCRIBED})


def handle_unsubscribe(data):
    topic = (data or {}).get('topic')
    if not topic:
        emit('error', {'message': 'topic is required'})
        return
    leave_room(topic)
    _sid_topics.get(_get_sid(), set()).discard(topic)
    emit('subscription_status', {'topic': topic, 'status': CLOSED})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register change feed handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('subscribe', handle_subscribe, namespace=NAMESPACE)
    socketio.on_event('unsubscribe', handle_unsubscribe, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
