"""Screen building blocks: each one owns its subscriptions and timers.

Components are mounted and unmounted as a unit by a screen. ``mount``
subscribes first and fetches second; ``unmount`` closes every handle it
opened, after which no callback of the component runs.
"""
import logging
import threading
import time
from typing import Callable, List, Optional

from roundsync.errors import (
    QuotaExceededError,
    RoundNotAcceptingError,
    RoundSyncError,
    ValidationError,
)
from roundsync.models import RoundStatus, Verdict
from roundsync.services.rounds.clock import grace_remaining, round_elapsed
from roundsync.services.rounds.flavors import FlavorCursor, flavor_cursor, rotation_interval
from . import events
from .changes import RoundSnapshot
from .feed import ChangeFeed, Subscription, SubscriptionStatus
from .live import LiveTable
from .store import HttpStore
from .timer import SynchronizedTimer, ThreadTicker

logger = logging.getLogger(__name__)

RoundListener = Callable[[Optional[RoundSnapshot], Optional[RoundSnapshot]], None]

_STATUS_EVENTS = {
    RoundStatus.ACTIVE: events.ROUND_STARTED,
    RoundStatus.PAUSED: events.ROUND_PAUSED,
    RoundStatus.FINISHED: events.ROUND_FINISHED,
}


class RoundMonitor:
    """Current round, its countdown and its flavor sequence."""

    def __init__(self, store: HttpStore, feed: ChangeFeed, bus: events.EventBus,
                 ticker=None, clock: Callable[[], float] = time.time,
                 warning_thresholds=(30, 10)):
        self.store = store
        self.feed = feed
        self.bus = bus
        self.clock = clock
        self.round: Optional[RoundSnapshot] = None
        self.sequence: Optional[LiveTable] = None
        self.timer = SynchronizedTimer(
            ticker=ticker or ThreadTicker(),
            warning_thresholds=warning_thresholds,
            on_warning=self._on_warning,
            on_timeout=self._on_timeout,
            clock=clock,
        )
        self._listeners: List[RoundListener] = []
        self._subscription: Optional[Subscription] = None
        self._unsubscribe_bus = None
        self._loaded = False
        self._lock = threading.RLock()
        self.mounted = False

    def add_listener(self, listener: RoundListener) -> None:
        self._listeners.append(listener)

    def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        self._subscription = self.feed.open('round', self._on_change, self._on_status)
        self._unsubscribe_bus = self.bus.subscribe(events.DATA_CHANGED, self._on_data_changed)
        self.refresh()

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        self.timer.cancel()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._unsubscribe_bus is not None:
            self._unsubscribe_bus()
            self._unsubscribe_bus = None
        if self.sequence is not None:
            self.sequence.unmount()
            self.sequence = None

    @property
    def remaining(self) -> Optional[int]:
        return self.timer.remaining

    def refresh(self) -> None:
        try:
            rnd = self.store.current_round()
        except RoundSyncError as exc:
            logger.warning("Could not load current round: %s", exc)
            return
        self.apply(rnd)

    def apply(self, rnd: Optional[RoundSnapshot]) -> None:
        """Adopt ``rnd`` as the current round, ignoring older versions of it."""
        with self._lock:
            if not self.mounted:
                return
            previous = self.round
            if (rnd is not None and previous is not None and rnd.id == previous.id
                    and rnd.updated_at < previous.updated_at):
                return
            self.round = rnd
            first_load, self._loaded = not self._loaded, True
            rearm = previous is None or rnd is None or previous.anchor != rnd.anchor

            if (previous.id if previous else None) != (rnd.id if rnd else None):
                self._follow_sequence(rnd)
            if not first_load:
                self._publish_transition(previous, rnd)

        for listener in list(self._listeners):
            listener(previous, rnd)
        # Armed last: an expired round times out synchronously and may
        # apply its finished version before this call returns
        if rearm and self.round is rnd:
            self.timer.arm(rnd)

    def _publish_transition(self, previous: Optional[RoundSnapshot], rnd: Optional[RoundSnapshot]) -> None:
        if rnd is None:
            return
        new_round = previous is None or previous.id != rnd.id
        if new_round:
            self.bus.publish(events.ROUND_CREATED, rnd)
        if new_round or previous.status != rnd.status:
            name = _STATUS_EVENTS.get(rnd.status)
            if name:
                self.bus.publish(name, rnd)
        elif previous.time_limit_seconds != rnd.time_limit_seconds:
            self.bus.publish(events.ROUND_TIME_CHANGED, rnd)

    def _follow_sequence(self, rnd: Optional[RoundSnapshot]) -> None:
        if self.sequence is not None:
            self.sequence.unmount()
            self.sequence = None
        if rnd is None:
            return
        round_id = rnd.id
        self.sequence = LiveTable(
            self.feed,
            f'flavor_sequence_entry:round_id={round_id}',
            fetch=lambda: self.store.sequence(round_id),
            bus=self.bus,
            order=lambda e: e.position,
        )
        self.sequence.mount()

    def cursor(self, now: Optional[float] = None) -> FlavorCursor:
        entries = self.sequence.items() if self.sequence is not None else []
        if self.round is None:
            return flavor_cursor([], 0, None)
        now = self.clock() if now is None else now
        return flavor_cursor(
            entries,
            round_elapsed(self.round, now),
            rotation_interval(self.round.time_limit_seconds, len(entries)),
        )

    def _on_change(self, payload: dict) -> None:
        # Any round change may also change which round is current
        self.refresh()

    def _on_status(self, subscription, status) -> None:
        if status == SubscriptionStatus.SUBSCRIBED and self._loaded:
            self.refresh()

    def _on_data_changed(self, payload) -> None:
        if (payload or {}).get('table') == 'round':
            self.refresh()

    def _on_warning(self, threshold: int) -> None:
        rnd = self.round
        self.bus.publish(events.ROUND_WARNING, {
            'round_id': rnd.id if rnd else None,
            'threshold': threshold,
        })

    def _on_timeout(self, rnd: RoundSnapshot) -> None:
        logger.info("Round %s timer reached zero", rnd.number)
        self.bus.publish(events.ROUND_TIMEOUT, rnd)


class TeamQueue:
    """One team's items for the current round."""

    def __init__(self, store: HttpStore, feed: ChangeFeed, bus: events.EventBus,
                 monitor: RoundMonitor, team_id: int):
        self.store = store
        self.bus = bus
        self.monitor = monitor
        self.team_id = team_id
        self.table = LiveTable(
            feed,
            f'production_item:team_id={team_id}',
            fetch=self._fetch,
            include=self._in_current_round,
            bus=bus,
            order=lambda i: (i.created_at, i.id),
        )
        monitor.add_listener(self._on_round)

    def _fetch(self):
        rnd = self.monitor.round
        if rnd is None:
            return []
        return self.store.team_items(self.team_id, rnd.id)

    def _in_current_round(self, item) -> bool:
        rnd = self.monitor.round
        return rnd is not None and item.round_id == rnd.id

    def _on_round(self, previous, rnd) -> None:
        if self.table.mounted and (previous.id if previous else None) != (rnd.id if rnd else None):
            self.table.refresh()

    def mount(self) -> None:
        self.table.mount()

    def unmount(self) -> None:
        self.table.unmount()

    def items(self):
        return self.table.items()

    @property
    def produced(self) -> int:
        return len(self.table.rows)

    @property
    def quota_left(self) -> int:
        rnd = self.monitor.round
        if rnd is None:
            return 0
        return max(0, rnd.item_quota - self.produced)

    def stats(self) -> dict:
        items = self.items()
        return {
            'produced': len(items),
            'pending': sum(1 for i in items if i.pending),
            'approved': sum(1 for i in items if i.result == Verdict.APPROVED),
            'rejected': sum(1 for i in items if i.result == Verdict.REJECTED),
            'quota_left': self.quota_left,
        }

    def can_submit(self) -> bool:
        rnd = self.monitor.round
        return (rnd is not None and rnd.status == RoundStatus.ACTIVE
                and (self.monitor.remaining or 0) > 0 and self.quota_left > 0)

    def submit(self, flavor_id: Optional[int] = None):
        """Send one item to evaluation. The server re-checks everything."""
        rnd = self.monitor.round
        if rnd is None or rnd.status != RoundStatus.ACTIVE or not (self.monitor.remaining or 0) > 0:
            raise RoundNotAcceptingError('No round is accepting items')
        if self.quota_left <= 0:
            raise QuotaExceededError(f"Team already sent {self.produced} of {rnd.item_quota} items this round")
        if flavor_id is None:
            current = self.monitor.cursor().current
            flavor_id = current.flavor_id if current is not None else None

        item = self.store.submit_item(self.team_id, rnd.id, flavor_id)
        self.table.upsert(item)
        logger.info("Team %s submitted item %s", self.team_id, item.id)
        self.bus.publish(events.ITEM_SUBMITTED, item)
        return item


class EvaluationQueue:
    """Pending items of the current round, oldest first across all teams."""

    def __init__(self, store: HttpStore, feed: ChangeFeed, bus: events.EventBus,
                 monitor: RoundMonitor, evaluator: str = 'evaluator'):
        self.store = store
        self.feed = feed
        self.bus = bus
        self.monitor = monitor
        self.evaluator = evaluator
        self.table: Optional[LiveTable] = None
        self.mounted = False
        monitor.add_listener(self._on_round)

    def _build(self, round_id: int) -> LiveTable:
        return LiveTable(
            self.feed,
            f'production_item:round_id={round_id}',
            fetch=lambda: self.store.pending_items(round_id),
            include=lambda i: i.pending,
            bus=self.bus,
            order=lambda i: (i.created_at, i.id),
        )

    def _follow(self, rnd: Optional[RoundSnapshot]) -> None:
        if self.table is not None:
            self.table.unmount()
            self.table = None
        if rnd is not None and self.mounted:
            self.table = self._build(rnd.id)
            self.table.mount()

    def _on_round(self, previous, rnd) -> None:
        if self.mounted and (previous.id if previous else None) != (rnd.id if rnd else None):
            self._follow(rnd)

    def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        self._follow(self.monitor.round)

    def unmount(self) -> None:
        self.mounted = False
        self._follow(None)

    def items(self):
        return self.table.items() if self.table is not None else []

    def next_item(self):
        pending = self.items()
        return pending[0] if pending else None

    def evaluate(self, item_id: int, verdict: str, reason: Optional[str] = None):
        if verdict == Verdict.REJECTED and not (reason or '').strip():
            raise ValidationError('A reason is required to reject an item')
        try:
            item = self.store.evaluate_item(item_id, verdict, reason=reason, evaluator=self.evaluator)
        except RoundSyncError:
            # Someone else may have decided this item first
            if self.table is not None:
                self.table.refresh()
            raise
        if self.table is not None:
            self.table.upsert(item)
        logger.info("Item %s evaluated as %s by %s", item.id, item.result, self.evaluator)
        self.bus.publish(events.ITEM_EVALUATED, item)
        return item


class EvaluationTimeoutWatcher:
    """Triggers the server's auto-rejection once the grace window closes.

    Every evaluator screen runs one; the server makes the rejection
    exactly-once, so losing the race is harmless.
    """

    def __init__(self, store: HttpStore, bus: events.EventBus, monitor: RoundMonitor,
                 grace_seconds: int = 60, ticker=None, clock: Callable[[], float] = time.time,
                 on_tick: Optional[Callable[[Optional[int]], None]] = None):
        self.store = store
        self.bus = bus
        self.monitor = monitor
        self.grace_seconds = grace_seconds
        self.ticker = ticker or ThreadTicker()
        self.clock = clock
        self.on_tick = on_tick
        self.remaining: Optional[int] = None
        self.processed = set()
        self._handle = None
        self._watching: Optional[RoundSnapshot] = None
        self._rejecting = False
        self._lock = threading.RLock()
        self.mounted = False
        monitor.add_listener(self._on_round)

    def mount(self) -> None:
        self.mounted = True
        self._watch(self.monitor.round)

    def unmount(self) -> None:
        self.mounted = False
        self._stop()

    def _on_round(self, previous, rnd) -> None:
        if self.mounted:
            self._watch(rnd)

    def _stop(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
            self._watching = None
        if handle is not None:
            handle.cancel()

    def _watch(self, rnd: Optional[RoundSnapshot]) -> None:
        if (rnd is None or rnd.status != RoundStatus.FINISHED
                or rnd.finished_at is None or rnd.id in self.processed):
            self._stop()
            self.remaining = None
            return
        with self._lock:
            if (self._watching is not None and self._watching.id == rnd.id
                    and self._watching.finished_at == rnd.finished_at):
                return
        self._stop()
        with self._lock:
            self._watching = rnd
        if not self.check():
            with self._lock:
                if self._watching is rnd and self._handle is None:
                    self._handle = self.ticker.every(1.0, self.check)

    def check(self) -> bool:
        """Re-evaluate the grace countdown; returns True once the round is handled.

        A failed call, or one the server answers with the window still
        open, leaves the round watched so the next tick asks again.
        """
        with self._lock:
            rnd = self._watching
            if rnd is None:
                return True
            if self._rejecting:
                return False
            self.remaining = grace_remaining(rnd.finished_at, self.grace_seconds, self.clock())
            if self.on_tick is not None:
                self.on_tick(self.remaining)
            if self.remaining > 0:
                return False
            self._rejecting = True
        try:
            done = self._reject(rnd)
        finally:
            with self._lock:
                self._rejecting = False
        if not done:
            return False
        with self._lock:
            self.processed.add(rnd.id)
            handle = None
            if self._watching is rnd:
                handle, self._handle = self._handle, None
                self._watching = None
        if handle is not None:
            handle.cancel()
        return True

    def _reject(self, rnd: RoundSnapshot) -> bool:
        try:
            result = self.store.auto_reject(rnd.id)
        except RoundSyncError as exc:
            logger.warning("Auto-reject for round %s failed, retrying: %s", rnd.id, exc)
            return False
        rejected = result.get('rejected', 0)
        logger.info("Auto-reject for round %s rejected %s items", rnd.id, rejected)
        if rejected:
            self.bus.publish(events.ITEMS_AUTO_REJECTED, {'round_id': rnd.id, 'rejected': rejected})
            self.bus.data_changed('production_item', 'auto_reject')
        if result.get('open'):
            logger.info("Grace window for round %s still open on the server", rnd.id)
            return False
        return True


class ControlPanel:
    """Round lifecycle controls; finishes the round when its timer runs out."""

    def __init__(self, store: HttpStore, bus: events.EventBus, monitor: RoundMonitor,
                 auto_finish: bool = True):
        self.store = store
        self.bus = bus
        self.monitor = monitor
        self.auto_finish = auto_finish
        self._unsubscribe_bus = None

    def mount(self) -> None:
        if self._unsubscribe_bus is None:
            self._unsubscribe_bus = self.bus.subscribe(events.ROUND_TIMEOUT, self._on_timeout)

    def unmount(self) -> None:
        if self._unsubscribe_bus is not None:
            self._unsubscribe_bus()
            self._unsubscribe_bus = None

    def _round_id(self, round_id: Optional[int]) -> int:
        if round_id is not None:
            return round_id
        if self.monitor.round is None:
            raise ValidationError('No current round')
        return self.monitor.round.id

    def _adopt(self, rnd: RoundSnapshot) -> RoundSnapshot:
        self.monitor.apply(rnd)
        return rnd

    def create_round(self, number=None, time_limit_seconds=None, planned_items=None, item_quota=None):
        rnd = self.store.create_round(number, time_limit_seconds, planned_items, item_quota)
        logger.info("Created round %s", rnd.number)
        return self._adopt(rnd)

    def start(self, round_id: Optional[int] = None):
        return self._adopt(self.store.start_round(self._round_id(round_id)))

    def resume(self, round_id: Optional[int] = None):
        return self.start(round_id)

    def pause(self, round_id: Optional[int] = None):
        return self._adopt(self.store.pause_round(self._round_id(round_id)))

    def finish(self, round_id: Optional[int] = None):
        return self._adopt(self.store.finish_round(self._round_id(round_id)))

    def extend(self, delta_minutes: int, round_id: Optional[int] = None):
        return self._adopt(self.store.extend_round(self._round_id(round_id), delta_minutes))

    def reset(self) -> int:
        deleted = self.store.reset()
        self.monitor.refresh()
        return deleted

    def _on_timeout(self, rnd: RoundSnapshot) -> None:
        if not self.auto_finish:
            return
        try:
            self.finish(rnd.id)
        except RoundSyncError as exc:
            logger.warning("Finish on timeout failed for round %s: %s", rnd.id, exc)
