"""Change feed subscriptions for one screen process.

A ``Subscription`` is an owned handle: opening a topic that already has
one closes the old handle first, and nothing is delivered to a handle
after ``close()`` returns.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

import socketio

from .events import EventBus, SYNC_STATUS

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'


class SubscriptionStatus(str, Enum):
    PENDING = 'pending'
    SUBSCRIBED = 'subscribed'
    CLOSED = 'closed'
    ERRORED = 'errored'


StatusCallback = Callable[['Subscription', SubscriptionStatus], None]


class Subscription:
    def __init__(self, feed: 'ChangeFeed', topic: str, handler: Callable[[dict], None],
                 on_status: Optional[StatusCallback] = None):
        self.feed = feed
        self.topic = topic
        self.status = SubscriptionStatus.PENDING
        self._handler = handler
        self._on_status = on_status
        self._closed = False
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live(self) -> bool:
        return not self._closed and self.status == SubscriptionStatus.SUBSCRIBED

    def deliver(self, payload: dict) -> None:
        with self._lock:
            if self._closed:
                return
            self._handler(payload)

    def set_status(self, status: SubscriptionStatus) -> None:
        with self._lock:
            if self._closed or status == self.status:
                return
            previous, self.status = self.status, status
            logger.info("Subscription %s: %s -> %s", self.topic, previous.value, status.value)
            if self._on_status is not None:
                self._on_status(self, status)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.status = SubscriptionStatus.CLOSED
        self.feed._release(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ChangeFeed:
    """Registry of at most one active subscription per topic.

    Subclasses implement the wire calls ``_send_subscribe`` and
    ``_send_unsubscribe`` and feed incoming events to ``dispatch``,
    ``handle_status`` and ``handle_data_changed``.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.RLock()

    def open(self, topic: str, handler: Callable[[dict], None],
             on_status: Optional[StatusCallback] = None) -> Subscription:
        with self._lock:
            previous = self._subscriptions.get(topic)
        if previous is not None:
            previous.close()

        subscription = Subscription(self, topic, handler, on_status)
        with self._lock:
            self._subscriptions[topic] = subscription
        try:
            self._send_subscribe(topic)
        except Exception as exc:
            logger.warning("Could not subscribe to %s: %s", topic, exc)
            subscription.set_status(SubscriptionStatus.ERRORED)
        return subscription

    def active(self, topic: str) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(topic)

    @property
    def topics(self) -> List[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def _release(self, subscription: Subscription) -> None:
        with self._lock:
            if self._subscriptions.get(subscription.topic) is not subscription:
                return
            del self._subscriptions[subscription.topic]
        try:
            self._send_unsubscribe(subscription.topic)
        except Exception as exc:
            logger.warning("Could not unsubscribe from %s: %s", subscription.topic, exc)

    def close_all(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            subscription.close()

    # ---- incoming events ----

    def dispatch(self, payload: dict) -> None:
        subscription = self.active((payload or {}).get('topic'))
        if subscription is not None:
            subscription.deliver(payload)

    def handle_status(self, payload: dict) -> None:
        payload = payload or {}
        subscription = self.active(payload.get('topic'))
        if subscription is None:
            return
        try:
            status = SubscriptionStatus(payload.get('status'))
        except ValueError:
            status = SubscriptionStatus.ERRORED
        if status == SubscriptionStatus.ERRORED:
            logger.warning("Feed rejected %s: %s", subscription.topic, payload.get('error'))
        subscription.set_status(status)
        self._publish_status()

    def handle_data_changed(self, payload: dict) -> None:
        payload = payload or {}
        if self.bus is not None and payload.get('table'):
            self.bus.data_changed(payload['table'], payload.get('action', 'changed'))

    def connection_lost(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            subscription.set_status(SubscriptionStatus.ERRORED)
        self._publish_status()

    def connection_restored(self) -> None:
        for topic in self.topics:
            try:
                self._send_subscribe(topic)
            except Exception as exc:
                logger.warning("Could not resubscribe to %s: %s", topic, exc)

    def _publish_status(self) -> None:
        if self.bus is None:
            return
        with self._lock:
            statuses = {t: s.status.value for t, s in self._subscriptions.items()}
        self.bus.publish(SYNC_STATUS, statuses)

    # ---- wire ----

    def _send_subscribe(self, topic: str) -> None:
        raise NotImplementedError

    def _send_unsubscribe(self, topic: str) -> None:
        raise NotImplementedError


class SocketIOFeed(ChangeFeed):
    """Feed over a python-socketio client connected to the server's /ws namespace."""

    def __init__(self, url: str, bus: Optional[EventBus] = None,
                 client: Optional[socketio.Client] = None, namespace: str = NAMESPACE):
        super().__init__(bus)
        self.url = url
        self.namespace = namespace
        self.sio = client or socketio.Client(reconnection=True)
        self.sio.on('change', self.dispatch, namespace=namespace)
        self.sio.on('subscription_status', self.handle_status, namespace=namespace)
        self.sio.on('data_changed', self.handle_data_changed, namespace=namespace)
        self.sio.on('connect', self._on_connect, namespace=namespace)
        self.sio.on('disconnect', self._on_disconnect, namespace=namespace)

    def connect(self, wait_timeout: float = 5) -> None:
        self.sio.connect(self.url, namespaces=[self.namespace], wait_timeout=wait_timeout)

    def disconnect(self) -> None:
        self.close_all()
        if self.sio.connected:
            self.sio.disconnect()

    def _connected(self) -> bool:
        return self.sio.connected and self.namespace in (self.sio.namespaces or {})

    def _send_subscribe(self, topic: str) -> None:
        # Pending topics are sent from _on_connect
        if self._connected():
            self.sio.emit('subscribe', {'topic': topic}, namespace=self.namespace)

    def _send_unsubscribe(self, topic: str) -> None:
        if self._connected():
            self.sio.emit('unsubscribe', {'topic': topic}, namespace=self.namespace)

    def _on_connect(self):
        logger.info("Connected to change feed at %s", self.url)
        self.connection_restored()

    def _on_disconnect(self, *args):
        logger.warning("Change feed disconnected from %s", self.url)
        self.connection_lost()
