from types import SimpleNamespace

from roundsync.services.rounds.clock import (
    elapsed_seconds,
    grace_remaining,
    remaining_seconds,
    round_elapsed,
    round_remaining,
)


def _round(**kwargs):
    data = dict(status='active', time_limit_seconds=60, started_at=1000.0,
                paused_at=None, finished_at=None)
    data.update(kwargs)
    return SimpleNamespace(**data)


def test_remaining_rounds_up_partial_seconds():
    assert remaining_seconds(1000.0, 60, 1000.0) == 60
    assert remaining_seconds(1000.0, 60, 1000.4) == 60
    assert remaining_seconds(1000.0, 60, 1001.0) == 59
    assert remaining_seconds(1000.0, 60, 1059.2) == 1


def test_remaining_is_floored_at_zero():
    assert remaining_seconds(1000.0, 60, 1060.0) == 0
    assert remaining_seconds(1000.0, 60, 1999.0) == 0


def test_remaining_ignores_sub_millisecond_noise():
    # 60.0004s left rounds to 60000ms, not up to 61s
    assert remaining_seconds(1000.0, 60, 999.9996) == 60


def test_elapsed_frozen_at_pause():
    assert elapsed_seconds(1000.0, now=1030.0) == 30.0
    assert elapsed_seconds(1000.0, now=1090.0, frozen_at=1020.0) == 20.0
    assert elapsed_seconds(None, now=1090.0) == 0.0


def test_round_remaining_by_status():
    assert round_remaining(_round(status='awaiting', started_at=None), 5000.0) == 60
    assert round_remaining(_round(), 1010.0) == 50
    assert round_remaining(_round(status='paused', paused_at=1020.0), 5000.0) == 40
    assert round_remaining(_round(status='finished', finished_at=1030.0), 1030.0) == 0


def test_round_elapsed_stops_when_finished():
    rnd = _round(status='finished', finished_at=1045.0)
    assert round_elapsed(rnd, 9999.0) == 45.0


def test_grace_remaining():
    assert grace_remaining(None, 60, 1000.0) is None
    assert grace_remaining(1000.0, 60, 1000.0) == 60
    assert grace_remaining(1000.0, 60, 1061.0) == 0
