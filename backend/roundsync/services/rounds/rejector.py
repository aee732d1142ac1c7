"""Auto-rejection of items left unevaluated after the grace window.

Any number of screens (and the server sweeper) may call
``reject_expired_items`` for the same round. The single conditional
UPDATE on ``status=ready AND result IS NULL`` makes the first caller
reject everything pending and every later caller match zero rows.
"""
import time
from typing import Optional, Set

from roundsync import db, socketio
from roundsync.models import ItemStatus, ProductionItem, Round, RoundStatus, Verdict
from .broadcast import UPDATE, publish_change, publish_data_changed
from .clock import grace_remaining

AUTO_REJECT_REASON = 'Evaluation time expired - automatic rejection'
SYSTEM_EVALUATOR = 'system-timeout'

_scheduled_rounds: Set[int] = set()


def _grace_seconds(app) -> int:
    return int(app.config.get('EVALUATION_GRACE_SEC', 60))


def evaluation_window(rnd: Round, grace_seconds: int, now: Optional[float] = None) -> dict:
    remaining = grace_remaining(rnd.finished_at, grace_seconds, now) if rnd.status == RoundStatus.FINISHED else None
    return {
        'round_id': rnd.id,
        'grace_seconds': grace_seconds,
        'finished_at': rnd.finished_at,
        'remaining_seconds': remaining,
        'open': remaining is not None and remaining > 0,
    }


def reject_expired_items(app, round_id: int, grace_seconds: Optional[int] = None,
                         now: Optional[float] = None) -> int:
    """Reject every pending item of a finished round once its grace window is over.

    Returns the number of items this call rejected; 0 when the window is
    still open or another caller already did the work.
    """
    grace_seconds = _grace_seconds(app) if grace_seconds is None else grace_seconds
    now = time.time() if now is None else now
    rnd = db.session.get(Round, round_id)
    if rnd is None or rnd.status != RoundStatus.FINISHED:
        return 0
    remaining = grace_remaining(rnd.finished_at, grace_seconds, now)
    if remaining is None or remaining > 0:
        app.logger.info(f"[auto-reject-early] round={round_id} remaining={remaining}s")
        return 0

    pending = ProductionItem.query.filter(
        ProductionItem.round_id == round_id,
        ProductionItem.status == ItemStatus.READY,
        ProductionItem.result.is_(None),
    )
    candidate_ids = [row.id for row in pending.with_entities(ProductionItem.id).all()]
    if not candidate_ids:
        return 0

    stamp = time.time()
    count = pending.update({
        'status': ItemStatus.EVALUATED,
        'result': Verdict.REJECTED,
        'rejection_reason': AUTO_REJECT_REASON,
        'evaluated_by': SYSTEM_EVALUATOR,
        'evaluated_at': now,
        'updated_at': stamp,
    }, synchronize_session=False)
    db.session.commit()

    app.logger.info(f"[auto-reject] round={round_id} rejected={count}")
    if count:
        rejected = ProductionItem.query.filter(
            ProductionItem.id.in_(candidate_ids),
            ProductionItem.evaluated_by == SYSTEM_EVALUATOR,
            ProductionItem.updated_at == stamp,
        ).all()
        for item in rejected:
            new = item.to_dict()
            old = dict(new, status=ItemStatus.READY, result=None, rejection_reason=None,
                       evaluated_by=None, evaluated_at=None)
            publish_change('production_item', UPDATE, new, old)
        publish_data_changed('production_item', 'auto_reject')
    return count


def auto_reject_round(app, round_id: int, now: Optional[float] = None) -> dict:
    """Run the rejector and report the grace window as seen at the same instant.

    Callers keep retrying while ``open`` is true; ``rejected`` is 0 for
    every caller but the one that did the work.
    """
    now = time.time() if now is None else now
    rejected = reject_expired_items(app, round_id, now=now)
    rnd = db.session.get(Round, round_id)
    return dict(evaluation_window(rnd, _grace_seconds(app), now), rejected=rejected)


def schedule_auto_reject(app, round_id: int) -> None:
    """Sleep until the round's grace window closes, then reject pending items.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS
    - At most one pending sweep per round in this process
    - Failures are logged and dropped; the next trigger retries safely
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if not app.config.get('ENABLE_AUTO_REJECT_SCHEDULER', True):
        return

    with app.app_context():
        rnd = db.session.get(Round, round_id)
        if rnd is None or rnd.status != RoundStatus.FINISHED or rnd.finished_at is None:
            return
        if round_id in _scheduled_rounds:
            app.logger.info(f"[sweep-skip] round={round_id} already scheduled")
            return
        _scheduled_rounds.add(round_id)
        delay = max(0.0, rnd.finished_at + _grace_seconds(app) - time.time())
        app.logger.info(f"[sweep-set] round={round_id} delay={delay:.1f}s")

    def _worker(rid: int, wait: float):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        if hb > 0:
            slept = 0.0
            while slept < wait:
                step = min(hb, wait - slept)
                socketio.sleep(step)
                slept += step
                app.logger.info(f"[sweep-heartbeat] round={rid} remaining={max(0.0, wait - slept):.0f}s")
        elif wait > 0:
            socketio.sleep(wait)
        with app.app_context():
            _scheduled_rounds.discard(rid)
            try:
                reject_expired_items(app, rid)
            except Exception as exc:
                db.session.rollback()
                app.logger.warning(f"[sweep-failed] round={rid} error={exc}")

    if app.config.get('TESTING'):
        _worker(round_id, delay)
    else:
        socketio.start_background_task(_worker, round_id, delay)
