"""Per-screen countdown for the current round.

Each consumer runs its own independent loop; there is no shared
scheduler across screens. Every round mutation re-arms the timer from
scratch, and cancellation is synchronous: once ``cancel()`` returns no
callback of the old loop runs.
"""
import logging
import threading
import time
from enum import Enum
from typing import Callable, Iterable, Optional, Set, Tuple

from roundsync.models import RoundStatus
from roundsync.services.rounds.clock import remaining_seconds, round_remaining
from .changes import RoundSnapshot

logger = logging.getLogger(__name__)


class TimerState(str, Enum):
    IDLE = 'idle'
    COUNTING = 'counting'
    EXPIRED = 'expired'


class TickHandle:
    def cancel(self) -> None:
        raise NotImplementedError


class _ThreadTick(TickHandle):
    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name='round-timer', daemon=True)
        self._thread.start()

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Timer tick failed")

    def cancel(self) -> None:
        self._stop.set()


class ThreadTicker:
    """Runs ``callback`` every ``interval`` seconds on a daemon thread."""

    def every(self, interval: float, callback: Callable[[], None]) -> TickHandle:
        return _ThreadTick(interval, callback)


class SynchronizedTimer:
    def __init__(self, ticker=None, warning_thresholds: Iterable[int] = (30, 10),
                 on_tick: Optional[Callable[[int], None]] = None,
                 on_warning: Optional[Callable[[int], None]] = None,
                 on_timeout: Optional[Callable[[RoundSnapshot], None]] = None,
                 clock: Callable[[], float] = time.time, interval: float = 1.0):
        self.ticker = ticker or ThreadTicker()
        self.warning_thresholds = sorted(set(warning_thresholds), reverse=True)
        self.on_tick = on_tick
        self.on_warning = on_warning
        self.on_timeout = on_timeout
        self.clock = clock
        self.interval = interval

        self.state = TimerState.IDLE
        self.remaining: Optional[int] = None
        self.round: Optional[RoundSnapshot] = None
        self._handle: Optional[TickHandle] = None
        self._generation = 0
        self._lock = threading.RLock()
        self._last_remaining: Optional[int] = None
        self._warned: Set[int] = set()
        self._timed_out: Set[Tuple] = set()

    def arm(self, rnd: Optional[RoundSnapshot]) -> None:
        """Tear down any running loop and start again from ``rnd``."""
        with self._lock:
            self.cancel()
            if rnd is None or self.round is None or rnd.id != self.round.id:
                self._warned = set()
                self._timed_out = set()
                self._last_remaining = None
            self.round = rnd
            if rnd is None:
                self.state = TimerState.IDLE
                self.remaining = None
                return

            if rnd.status == RoundStatus.ACTIVE and rnd.started_at is not None:
                self.state = TimerState.COUNTING
                self._evaluate()
                if self.state == TimerState.COUNTING:
                    generation = self._generation
                    self._handle = self.ticker.every(self.interval, lambda: self._tick(generation))
                return

            self.remaining = round_remaining(rnd, self.clock())
            self._last_remaining = None
            self.state = TimerState.EXPIRED if rnd.status == RoundStatus.FINISHED else TimerState.IDLE
            if self.on_tick is not None:
                self.on_tick(self.remaining)

    def tick(self) -> None:
        self._tick(self._generation)

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state != TimerState.COUNTING:
                return
            self._evaluate()

    def _evaluate(self) -> None:
        rnd = self.round
        remaining = remaining_seconds(rnd.started_at, rnd.time_limit_seconds, self.clock())
        previous, self._last_remaining = self._last_remaining, remaining
        self.remaining = remaining
        if self.on_tick is not None:
            self.on_tick(remaining)

        if remaining > 0:
            for threshold in self.warning_thresholds:
                if threshold in self._warned or remaining > threshold:
                    continue
                self._warned.add(threshold)
                # Mounted after the threshold had already passed: stay quiet
                if previous is not None and previous > threshold and self.on_warning is not None:
                    self.on_warning(threshold)
            return

        self.state = TimerState.EXPIRED
        self._stop_loop()
        anchor = (rnd.id, rnd.started_at, rnd.time_limit_seconds)
        if anchor not in self._timed_out:
            self._timed_out.add(anchor)
            if self.on_timeout is not None:
                self.on_timeout(rnd)

    def _stop_loop(self) -> None:
        self._generation += 1
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def cancel(self) -> None:
        with self._lock:
            self._stop_loop()
            if self.state == TimerState.COUNTING:
                self.state = TimerState.IDLE
