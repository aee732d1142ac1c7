from conftest import FakeClock, ManualTicker
from roundsync.client.changes import RoundSnapshot
from roundsync.client.timer import SynchronizedTimer, ThreadTicker, TimerState


def _round(**kwargs):
    data = dict(id=1, number=1, status='active', time_limit_seconds=35,
                started_at=1000.0, updated_at=1000.0)
    data.update(kwargs)
    return RoundSnapshot(**data)


class Recorder:
    def __init__(self):
        self.ticks, self.warnings, self.timeouts = [], [], []

    def timer(self, ticker, clock, thresholds=(30, 10)):
        return SynchronizedTimer(
            ticker=ticker,
            warning_thresholds=thresholds,
            on_tick=self.ticks.append,
            on_warning=self.warnings.append,
            on_timeout=self.timeouts.append,
            clock=clock,
        )


def _run(timer, ticker, clock, seconds):
    for _ in range(seconds):
        clock.advance(1)
        ticker.tick()


def test_counts_down_from_server_anchor():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    assert timer.state == TimerState.COUNTING
    assert timer.remaining == 35
    _run(timer, ticker, clock, 3)
    assert rec.ticks == [35, 34, 33, 32]


def test_warning_fires_once_per_threshold():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    _run(timer, ticker, clock, 10)
    assert rec.warnings == [30]

    # Re-arming the same round does not repeat a warning
    timer.arm(_round(updated_at=1001.0, time_limit_seconds=36))
    _run(timer, ticker, clock, 20)
    assert rec.warnings == [30, 10]


def test_timeout_fires_once_and_stops_ticking():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    rnd = _round()
    timer.arm(rnd)
    _run(timer, ticker, clock, 40)
    assert rec.timeouts == [rnd]
    assert timer.state == TimerState.EXPIRED
    assert timer.remaining == 0
    assert ticker.active == []
    assert rec.ticks[-1] == 0
    assert rec.ticks.count(0) == 1


def test_mounting_late_skips_passed_warnings():
    clock, ticker, rec = FakeClock(1020.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    assert timer.remaining == 15
    _run(timer, ticker, clock, 6)
    assert rec.warnings == [10]


def test_expired_on_arm_times_out_immediately():
    clock, ticker, rec = FakeClock(2000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    assert len(rec.timeouts) == 1
    assert ticker.handles == []


def test_nothing_fires_after_cancel():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    handle = ticker.handles[0]
    timer.cancel()
    assert handle.cancelled
    ticks = list(rec.ticks)

    clock.advance(100)
    handle.callback()
    timer.tick()
    assert rec.ticks == ticks
    assert rec.timeouts == []
    assert timer.state == TimerState.IDLE


def test_rearm_replaces_previous_loop():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round())
    timer.arm(_round(time_limit_seconds=95, updated_at=1001.0))
    assert len(ticker.active) == 1
    assert timer.remaining == 95


def test_paused_round_is_frozen():
    clock, ticker, rec = FakeClock(1050.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round(status='paused', paused_at=1010.0, time_limit_seconds=60))
    assert timer.state == TimerState.IDLE
    assert timer.remaining == 50
    assert ticker.handles == []


def test_awaiting_and_finished_rounds():
    clock, ticker, rec = FakeClock(1000.0), ManualTicker(), Recorder()
    timer = rec.timer(ticker, clock)
    timer.arm(_round(status='awaiting', started_at=None))
    assert timer.remaining == 35
    timer.arm(_round(status='finished', finished_at=1010.0))
    assert timer.state == TimerState.EXPIRED
    assert timer.remaining == 0
    assert rec.timeouts == []
    timer.arm(None)
    assert timer.remaining is None


def test_thread_ticker_runs_and_cancels():
    import threading
    fired = threading.Event()
    handle = ThreadTicker().every(0.01, fired.set)
    assert fired.wait(2)
    handle.cancel()
