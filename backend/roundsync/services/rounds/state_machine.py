"""Round lifecycle: awaiting -> active <-> paused -> finished.

Every transition is a compare-and-set UPDATE guarded by the status and
``updated_at`` the caller read, so two control screens issuing commands
at once converge instead of clobbering each other. ``finish`` is a no-op
on a finished round; concurrent timeouts from several screens are
expected.
"""
import math
import time
from typing import Callable, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from roundsync import db
from roundsync.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from roundsync.models import FlavorSequenceEntry, ProductionItem, Round, RoundStatus
from .broadcast import DELETE, INSERT, UPDATE, publish_change, publish_data_changed
from .clock import elapsed_seconds
from .flavors import create_sequence

MAX_CAS_ATTEMPTS = 3


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def get_round(round_id: int) -> Round:
    rnd = db.session.get(Round, round_id)
    if rnd is None:
        raise NotFoundError(f"Round {round_id} not found")
    return rnd


def current_round() -> Optional[Round]:
    """The open round if there is one, else the latest finished round."""
    rnd = (Round.query
           .filter(Round.status.in_(RoundStatus.OPEN))
           .order_by(Round.number.desc())
           .first())
    if rnd is None:
        rnd = Round.query.order_by(Round.number.desc()).first()
    return rnd


def list_rounds(status: Optional[str] = None) -> List[Round]:
    query = Round.query
    if status:
        query = query.filter(Round.status == status)
    return query.order_by(Round.number.desc()).all()


def next_round_number() -> int:
    latest = db.session.query(db.func.max(Round.number)).scalar()
    return int(latest or 0) + 1


def _open_round() -> Optional[Round]:
    return Round.query.filter(Round.status.in_(RoundStatus.OPEN)).first()


def create_round(number: Optional[int] = None, time_limit_seconds: Optional[int] = None,
                 planned_items: Optional[int] = None, item_quota: Optional[int] = None,
                 now: Optional[float] = None) -> Round:
    cfg = current_app.config
    time_limit_seconds = int(time_limit_seconds or cfg.get('DEFAULT_TIME_LIMIT_SEC', 300))
    planned_items = int(planned_items or cfg.get('DEFAULT_PLANNED_ITEMS', 10))
    item_quota = int(item_quota or planned_items)
    if time_limit_seconds <= 0:
        raise ValidationError('time_limit_seconds must be positive')
    if planned_items <= 0 or item_quota <= 0:
        raise ValidationError('planned_items and item_quota must be positive')

    open_round = _open_round()
    if open_round is not None:
        raise ConflictError(f"Round {open_round.number} is still {open_round.status}")

    expected = next_round_number()
    if number is None:
        number = expected
    elif int(number) < expected:
        raise ConflictError(f"Round number must be at least {expected}")

    now = _now(now)
    rnd = Round(
        number=int(number),
        status=RoundStatus.AWAITING,
        open_slot=True,
        time_limit_seconds=time_limit_seconds,
        planned_items=planned_items,
        item_quota=item_quota,
        created_at=now,
        updated_at=now,
    )
    db.session.add(rnd)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Round number {number} already exists or another round is open")

    current_app.logger.info(
        f"[round-create] round={rnd.id} number={rnd.number} limit={time_limit_seconds}s items={planned_items}"
    )
    publish_change('round', INSERT, rnd.to_dict())
    create_sequence(rnd, planned_items)
    return rnd


def _apply(round_id: int, action: str, plan: Callable[[Round, float], Optional[dict]],
           now: Optional[float] = None) -> Tuple[Round, bool]:
    """Run ``plan`` against a fresh read and write its values with compare-and-set.

    ``plan`` returns the column values to write, ``None`` for a no-op, or
    raises InvalidTransitionError. Lost races are retried against the new
    state. Returns ``(round, changed)``.
    """
    now = _now(now)
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        db.session.expire_all()
        rnd = get_round(round_id)
        values = plan(rnd, now)
        if values is None:
            return rnd, False
        old = rnd.to_dict()
        # updated_at doubles as the row version seen by the change feed
        values['updated_at'] = max(time.time(), rnd.updated_at + 1e-6)
        count = (Round.query
                 .filter(Round.id == rnd.id,
                         Round.status == rnd.status,
                         Round.updated_at == rnd.updated_at)
                 .update(values, synchronize_session=False))
        db.session.commit()
        if count == 1:
            rnd = get_round(round_id)
            current_app.logger.info(
                f"[round-{action}] round={rnd.id} status={old['status']}->{rnd.status} "
                f"started_at={rnd.started_at} limit={rnd.time_limit_seconds}s"
            )
            publish_change('round', UPDATE, rnd.to_dict(), old)
            return rnd, True
        current_app.logger.info(f"[round-cas-retry] round={round_id} action={action} attempt={attempt}")
    raise ConflictError(f"Round {round_id} changed concurrently; retry {action}")


def start_round(round_id: int, now: Optional[float] = None) -> Round:
    """awaiting -> active (sets started_at once) or paused -> active (shifts started_at)."""
    def plan(rnd, at):
        if rnd.status == RoundStatus.AWAITING:
            values = {'status': RoundStatus.ACTIVE}
            if rnd.started_at is None:
                values['started_at'] = at
            return values
        if rnd.status == RoundStatus.PAUSED:
            paused_for = max(0.0, at - rnd.paused_at) if rnd.paused_at is not None else 0.0
            return {
                'status': RoundStatus.ACTIVE,
                'started_at': rnd.started_at + paused_for,
                'paused_at': None,
                'paused_total': (rnd.paused_total or 0.0) + paused_for,
            }
        raise InvalidTransitionError('start', rnd.status)

    rnd, _ = _apply(round_id, 'start', plan, now)
    # Screens may have created the round before any flavor existed
    create_sequence(rnd)
    return rnd


def pause_round(round_id: int, now: Optional[float] = None) -> Round:
    def plan(rnd, at):
        if rnd.status != RoundStatus.ACTIVE:
            raise InvalidTransitionError('pause', rnd.status)
        return {'status': RoundStatus.PAUSED, 'paused_at': at}

    rnd, _ = _apply(round_id, 'pause', plan, now)
    return rnd


def finish_round(round_id: int, now: Optional[float] = None) -> Tuple[Round, bool]:
    """Finish from any open status. Returns ``(round, changed)``; finishing twice is a no-op."""
    def plan(rnd, at):
        if rnd.status == RoundStatus.FINISHED:
            return None
        values = {'status': RoundStatus.FINISHED, 'finished_at': at, 'open_slot': None}
        if rnd.status == RoundStatus.PAUSED and rnd.paused_at is not None:
            paused_for = max(0.0, at - rnd.paused_at)
            values.update({
                'started_at': rnd.started_at + paused_for,
                'paused_at': None,
                'paused_total': (rnd.paused_total or 0.0) + paused_for,
            })
        return values

    return _apply(round_id, 'finish', plan, now)


def extend_round(round_id: int, delta_minutes: float, now: Optional[float] = None) -> Round:
    """Add (or remove) minutes while active, never below elapsed time + 1s."""
    try:
        delta_minutes = float(delta_minutes)
    except (TypeError, ValueError):
        raise ValidationError('delta_minutes must be a number')

    def plan(rnd, at):
        if rnd.status != RoundStatus.ACTIVE:
            raise InvalidTransitionError('extend', rnd.status)
        requested = rnd.time_limit_seconds + int(round(delta_minutes * 60))
        floor = math.ceil(elapsed_seconds(rnd.started_at, at) + 1)
        new_limit = max(requested, floor, 1)
        if new_limit == rnd.time_limit_seconds:
            return None
        return {'time_limit_seconds': new_limit}

    rnd, _ = _apply(round_id, 'extend', plan, now)
    return rnd


def reset_all() -> int:
    """Delete every round with its sequence and items. Returns rounds deleted."""
    rounds = Round.query.all()
    snapshots = [r.to_dict() for r in rounds]
    ProductionItem.query.delete(synchronize_session=False)
    FlavorSequenceEntry.query.delete(synchronize_session=False)
    Round.query.delete(synchronize_session=False)
    db.session.commit()

    current_app.logger.info(f"[reset] rounds={len(snapshots)}")
    for snapshot in snapshots:
        publish_change('round', DELETE, old=snapshot)
    publish_data_changed('production_item', 'reset')
    publish_data_changed('flavor_sequence_entry', 'reset')
    return len(snapshots)
