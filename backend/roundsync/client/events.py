"""In-process publish/subscribe for one screen process.

Presentation code listens here for cross-cutting notifications
(``round-created``, ``item-evaluated``...). The generic
``DATA_CHANGED`` topic asks every cache of a table to refetch.
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

DATA_CHANGED = 'global-data-changed'

ROUND_CREATED = 'round-created'
ROUND_STARTED = 'round-started'
ROUND_PAUSED = 'round-paused'
ROUND_FINISHED = 'round-finished'
ROUND_TIME_CHANGED = 'round-time-changed'
ROUND_WARNING = 'round-warning'
ROUND_TIMEOUT = 'round-timeout'
ITEM_SUBMITTED = 'item-submitted'
ITEM_EVALUATED = 'item-evaluated'
ITEMS_AUTO_REJECTED = 'items-auto-rejected'
SYNC_STATUS = 'sync-status'

Handler = Callable[[Any], None]


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._lock = threading.RLock()

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that removes it."""
        with self._lock:
            self._handlers[topic].append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            handlers = list(self._handlers.get(topic, ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("Event handler failed for %s", topic)

    def data_changed(self, table: str, action: str) -> None:
        self.publish(DATA_CHANGED, {'table': table, 'action': action})
