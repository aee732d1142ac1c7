"""A locally cached table kept current by the change feed.

The cache is loaded over HTTP, then patched from ``change`` events.
Events are applied at most once (keyed on table, kind, id and version)
and never move a row backwards to an older version. Whenever the feed
cannot be trusted (malformed event, errored subscription, a broadcast
``data_changed``) the whole table is refetched.
"""
import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from roundsync.errors import NotFoundError, RoundSyncError, SyncError
from .changes import Change, ChangeKind, parse_change
from .events import DATA_CHANGED, EventBus
from .feed import ChangeFeed, Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


class LiveTable:
    def __init__(self, feed: ChangeFeed, topic: str, fetch: Callable[[], list],
                 table: Optional[str] = None, include: Optional[Callable] = None,
                 bus: Optional[EventBus] = None, order: Optional[Callable] = None,
                 on_update: Optional[Callable[[list], None]] = None,
                 confirm: Optional[Callable[[int], object]] = None, history: int = 512):
        self.feed = feed
        self.topic = topic
        self.table = table or topic.split(':', 1)[0]
        self.fetch = fetch
        self.include = include or (lambda record: True)
        self.bus = bus
        self.order = order or (lambda record: record.id)
        self.on_update = on_update
        self.confirm = confirm

        self.rows: Dict[int, object] = {}
        self._seen = set()
        self._history = deque()
        self._history_size = history
        self._lock = threading.RLock()
        self._subscription: Optional[Subscription] = None
        self._unsubscribe_bus = None
        self._sequence = 0
        self._inflight = 0
        self._touched: Dict[int, tuple] = {}
        self._needs_resync = False
        self.mounted = False

    @property
    def live(self) -> bool:
        return self._subscription is not None and self._subscription.live

    def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        # Subscribe before the first fetch so no change falls in between
        self._subscription = self.feed.open(self.topic, self._on_change, self._on_status)
        if self.bus is not None:
            self._unsubscribe_bus = self.bus.subscribe(DATA_CHANGED, self._on_data_changed)
        self.refresh()

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._unsubscribe_bus is not None:
            self._unsubscribe_bus()
            self._unsubscribe_bus = None

    def items(self) -> List:
        with self._lock:
            return sorted(self.rows.values(), key=self.order)

    def get(self, record_id: int):
        with self._lock:
            return self.rows.get(record_id)

    def refresh(self) -> bool:
        """Refetch the table and merge it with what the feed applied meanwhile.

        Rows touched by a change after the fetch started keep their newer
        state; everything else follows the fetched snapshot.
        """
        with self._lock:
            self._inflight += 1
            started = self._sequence
        try:
            try:
                records = self.fetch()
            except RoundSyncError as exc:
                logger.warning("Refetch of %s failed: %s", self.topic, exc)
                return False
            with self._lock:
                fetched = {r.id: r for r in records if r is not None}
                rows = {}
                for record_id in set(fetched) | set(self.rows):
                    record = fetched.get(record_id)
                    current = self.rows.get(record_id)
                    touched = self._touched.get(record_id)
                    if touched is not None and touched[0] > started and (
                            record is None or touched[1] >= record.updated_at):
                        keep = current
                    elif record is None:
                        keep = None
                    elif current is not None and current.updated_at > record.updated_at:
                        keep = current
                    else:
                        keep = record
                    if keep is not None and self.include(keep):
                        rows[record_id] = keep
                self.rows = rows
                self._needs_resync = False
        finally:
            with self._lock:
                self._inflight -= 1
                if not self._inflight:
                    self._touched.clear()
        self._notify()
        return True

    def upsert(self, record) -> None:
        """Merge a record this screen received directly from a write call."""
        with self._lock:
            if not self._merge(record.id, record):
                return
        self._notify()

    def apply(self, change: Change) -> bool:
        """Merge one change; returns False for duplicates and stale versions."""
        with self._lock:
            if change.key in self._seen:
                return False
            self._remember(change.key)
            if change.kind == ChangeKind.DELETED:
                current = self.rows.get(change.record_id)
                if current is not None and change.version < current.updated_at:
                    return False
                self.rows.pop(change.record_id, None)
                self._touch(change.record_id, change.version)
            elif not self._merge(change.record_id, change.new):
                return False
        self._notify()
        return True

    def _merge(self, record_id, record) -> bool:
        current = self.rows.get(record_id)
        if current is not None and record.updated_at < current.updated_at:
            return False
        if self.include(record):
            self.rows[record_id] = record
        else:
            self.rows.pop(record_id, None)
        self._touch(record_id, record.updated_at)
        return True

    def _touch(self, record_id, version) -> None:
        self._sequence += 1
        if self._inflight:
            self._touched[record_id] = (self._sequence, version)

    def _remember(self, key) -> None:
        self._seen.add(key)
        self._history.append(key)
        if len(self._history) > self._history_size:
            self._seen.discard(self._history.popleft())

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self.items())

    def _on_change(self, payload: dict) -> None:
        if not self.mounted:
            return
        try:
            change = parse_change(payload)
        except SyncError as exc:
            logger.warning("Dropping change on %s: %s", self.topic, exc)
            self.refresh()
            return
        if self.confirm is not None and change.kind != ChangeKind.DELETED:
            change = self._confirmed(change)
            if change is None:
                return
        self.apply(change)

    def _confirmed(self, change: Change) -> Optional[Change]:
        """Swap the event's row for a fresh read of the same record."""
        try:
            record = self.confirm(change.record_id)
        except NotFoundError:
            return replace(change, kind=ChangeKind.DELETED, new=None, old=change.new)
        except RoundSyncError as exc:
            logger.warning("Confirm read on %s failed: %s", self.topic, exc)
            self.refresh()
            return None
        return replace(change, new=record)

    def _on_status(self, subscription: Subscription, status: SubscriptionStatus) -> None:
        if status == SubscriptionStatus.ERRORED:
            self._needs_resync = True
        elif status == SubscriptionStatus.SUBSCRIBED and self._needs_resync and self.mounted:
            logger.info("Resyncing %s after feed recovery", self.topic)
            self.refresh()

    def _on_data_changed(self, payload) -> None:
        if self.mounted and (payload or {}).get('table') == self.table:
            self.refresh()
