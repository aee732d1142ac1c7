"""Change feed publisher.

Each committed mutation is emitted as a ``change`` event to the Socket.IO
room of its table topic and to every filtered topic the row matches, e.g.
``production_item`` and ``production_item:team_id=3``.
"""
import time
from typing import Dict, List, Optional, Tuple

from roundsync import socketio

NAMESPACE = '/ws'
CHANGE_EVENT = 'change'
DATA_CHANGED_EVENT = 'data_changed'

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'

# table -> columns a client may filter its subscription on
TOPIC_FILTERS: Dict[str, Tuple[str, ...]] = {
    'round': (),
    'production_item': ('team_id', 'round_id'),
    'flavor_sequence_entry': ('round_id',),
}


def topic_name(table: str, column: Optional[str] = None, value=None) -> str:
    if column is None:
        return table
    return f"{table}:{column}={value}"


def parse_topic(topic: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split ``table[:column=value]``; raises ValueError for unknown topics."""
    if not topic or not isinstance(topic, str):
        raise ValueError('topic is required')
    table, _, row_filter = topic.partition(':')
    if table not in TOPIC_FILTERS:
        raise ValueError(f"Unknown table {table!r}")
    if not row_filter:
        return table, None, None
    column, sep, value = row_filter.partition('=')
    if not sep or not value or column not in TOPIC_FILTERS[table]:
        raise ValueError(f"Unsupported filter {row_filter!r} for {table}")
    return table, column, value


def topics_for(table: str, record: Optional[dict]) -> List[str]:
    if not record:
        return []
    topics = [table]
    for column in TOPIC_FILTERS.get(table, ()):
        if record.get(column) is not None:
            topics.append(topic_name(table, column, record[column]))
    return topics


def publish_change(table: str, kind: str, new: Optional[dict] = None, old: Optional[dict] = None) -> None:
    payload = {
        'table': table,
        'type': kind,
        'new': new,
        'old': old,
        'commit_timestamp': time.time(),
    }
    rooms = set(topics_for(table, new)) | set(topics_for(table, old))
    for room in sorted(rooms):
        socketio.emit(CHANGE_EVENT, dict(payload, topic=room), to=room, namespace=NAMESPACE)


def publish_data_changed(table: str, action: str) -> None:
    """Generic "refetch table X" signal, broadcast to every connected screen."""
    socketio.emit(
        DATA_CHANGED_EVENT,
        {'table': table, 'action': action, 'timestamp': time.time()},
        namespace=NAMESPACE,
    )
