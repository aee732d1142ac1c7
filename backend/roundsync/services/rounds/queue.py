"""Production queue and evaluation funnel.

Items are created ``ready``; an evaluator (or the auto-rejector) moves
them to ``evaluated`` exactly once. Quota policy: every item a team
created in the round counts, whatever its later outcome.
"""
import time
from typing import List, Optional

from flask import current_app

from roundsync import db
from roundsync.errors import (
    AlreadyEvaluatedError,
    NotFoundError,
    QuotaExceededError,
    RoundNotAcceptingError,
    ValidationError,
)
from roundsync.models import Flavor, ItemStatus, ProductionItem, Round, RoundStatus, Team, Verdict
from .broadcast import INSERT, UPDATE, publish_change
from .clock import round_remaining

DEFAULT_EVALUATOR = 'evaluator'


def get_item(item_id: int) -> ProductionItem:
    item = db.session.get(ProductionItem, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found")
    return item


def submit_item(team_id: int, round_id: int, flavor_id: Optional[int] = None,
                now: Optional[float] = None) -> ProductionItem:
    now = time.time() if now is None else now
    if db.session.get(Team, team_id) is None:
        raise NotFoundError(f"Team {team_id} not found")
    if flavor_id is not None and db.session.get(Flavor, flavor_id) is None:
        raise ValidationError(f"Flavor {flavor_id} not found")

    # Row lock serializes quota checks for the round where the backend supports it
    rnd = Round.query.filter(Round.id == round_id).with_for_update().first()
    if rnd is None:
        db.session.rollback()
        raise NotFoundError(f"Round {round_id} not found")
    if rnd.status != RoundStatus.ACTIVE or round_remaining(rnd, now) <= 0:
        db.session.rollback()
        raise RoundNotAcceptingError(f"Round {rnd.number} is not accepting items")

    created = ProductionItem.query.filter_by(team_id=team_id, round_id=round_id).count()
    if created >= rnd.item_quota:
        db.session.rollback()
        raise QuotaExceededError(f"Team already sent {created} of {rnd.item_quota} items this round")

    item = ProductionItem(
        team_id=team_id,
        round_id=round_id,
        flavor_id=flavor_id,
        status=ItemStatus.READY,
        created_at=now,
        updated_at=now,
    )
    db.session.add(item)
    db.session.commit()

    current_app.logger.info(
        f"[item-submit] item={item.id} team={team_id} round={round_id} count={created + 1}/{rnd.item_quota}"
    )
    publish_change('production_item', INSERT, item.to_dict())
    return item


def evaluate_item(item_id: int, verdict: str, reason: Optional[str] = None,
                  evaluator: Optional[str] = None, now: Optional[float] = None) -> ProductionItem:
    if verdict not in Verdict.ALL:
        raise ValidationError(f"verdict must be one of {', '.join(Verdict.ALL)}")
    reason = (reason or '').strip() or None
    if verdict == Verdict.REJECTED and not reason:
        raise ValidationError('A reason is required to reject an item')

    now = time.time() if now is None else now
    item = get_item(item_id)
    old = item.to_dict()
    count = (ProductionItem.query
             .filter(ProductionItem.id == item_id, ProductionItem.result.is_(None))
             .update({
                 'status': ItemStatus.EVALUATED,
                 'result': verdict,
                 'rejection_reason': reason if verdict == Verdict.REJECTED else None,
                 'evaluated_by': evaluator or DEFAULT_EVALUATOR,
                 'evaluated_at': now,
                 'updated_at': max(time.time(), item.updated_at + 1e-6),
             }, synchronize_session=False))
    db.session.commit()
    if count == 0:
        raise AlreadyEvaluatedError(item_id)

    db.session.expire(item)
    current_app.logger.info(f"[item-evaluate] item={item_id} result={verdict} by={item.evaluated_by}")
    publish_change('production_item', UPDATE, item.to_dict(), old)
    return item


def pending_items(round_id: Optional[int] = None) -> List[ProductionItem]:
    """Items waiting for an evaluator, oldest first across all teams."""
    query = ProductionItem.query.filter(
        ProductionItem.status == ItemStatus.READY,
        ProductionItem.result.is_(None),
    )
    if round_id is not None:
        query = query.filter(ProductionItem.round_id == round_id)
    return query.order_by(ProductionItem.created_at.asc(), ProductionItem.id.asc()).all()


def team_items(team_id: int, round_id: Optional[int] = None) -> List[ProductionItem]:
    query = ProductionItem.query.filter(ProductionItem.team_id == team_id)
    if round_id is not None:
        query = query.filter(ProductionItem.round_id == round_id)
    return query.order_by(ProductionItem.created_at.asc(), ProductionItem.id.asc()).all()


def round_summary(round_id: int) -> dict:
    """Per-team and total counts for the production statistics panel."""
    rnd = db.session.get(Round, round_id)
    if rnd is None:
        raise NotFoundError(f"Round {round_id} not found")
    zero = {'total': 0, 'ready': 0, 'approved': 0, 'rejected': 0}
    totals = dict(zero)
    teams = {t.id: dict(zero, team_id=t.id, team_name=t.name) for t in Team.query.order_by(Team.id).all()}
    for item in rnd.items:
        row = teams.setdefault(item.team_id, dict(zero, team_id=item.team_id, team_name=None))
        keys = ['total']
        if item.status == ItemStatus.READY and item.result is None:
            keys.append('ready')
        elif item.result in Verdict.ALL:
            keys.append(item.result)
        for key in keys:
            row[key] += 1
            totals[key] += 1
    return {
        'round_id': rnd.id,
        'number': rnd.number,
        'item_quota': rnd.item_quota,
        'totals': totals,
        'teams': list(teams.values()),
    }
