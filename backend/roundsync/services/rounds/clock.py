"""Remaining-time arithmetic anchored on server-recorded timestamps.

Only two timestamps are ever diffed (a server anchor and the local
"now"), so local clock drift between screens cancels out apart from
transmission delay. Nothing here is cached: callers re-evaluate on every
tick.
"""
import math
import time
from typing import Optional

from roundsync.models import RoundStatus


def remaining_seconds(anchor: float, limit_seconds: float, now: Optional[float] = None) -> int:
    """Whole seconds left until ``anchor + limit_seconds``, never negative."""
    if now is None:
        now = time.time()
    remaining_ms = round((anchor + limit_seconds - now) * 1000)
    if remaining_ms <= 0:
        return 0
    return math.ceil(remaining_ms / 1000)


def elapsed_seconds(started_at: Optional[float], now: Optional[float] = None,
                    frozen_at: Optional[float] = None) -> float:
    if started_at is None:
        return 0.0
    if frozen_at is not None:
        end = frozen_at
    elif now is not None:
        end = now
    else:
        end = time.time()
    return max(0.0, end - started_at)


def round_elapsed(rnd, now: Optional[float] = None) -> float:
    """Elapsed play time of a round model or snapshot, pauses excluded."""
    if rnd.status == RoundStatus.PAUSED:
        return elapsed_seconds(rnd.started_at, now, frozen_at=rnd.paused_at)
    if rnd.status == RoundStatus.FINISHED:
        return elapsed_seconds(rnd.started_at, now, frozen_at=rnd.finished_at)
    return elapsed_seconds(rnd.started_at, now)


def round_remaining(rnd, now: Optional[float] = None) -> int:
    if rnd.status == RoundStatus.AWAITING or rnd.started_at is None:
        return int(rnd.time_limit_seconds) if rnd.status != RoundStatus.FINISHED else 0
    if rnd.status == RoundStatus.FINISHED:
        return 0
    if rnd.status == RoundStatus.PAUSED:
        return remaining_seconds(rnd.started_at, rnd.time_limit_seconds, rnd.paused_at)
    return remaining_seconds(rnd.started_at, rnd.time_limit_seconds, now)


def grace_remaining(finished_at: Optional[float], grace_seconds: float,
                    now: Optional[float] = None) -> Optional[int]:
    """Seconds left in the evaluation grace window; None until the round finishes."""
    if finished_at is None:
        return None
    return remaining_seconds(finished_at, grace_seconds, now)
