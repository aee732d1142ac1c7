import time

import pytest

from roundsync.errors import (
    AlreadyEvaluatedError,
    NotFoundError,
    QuotaExceededError,
    RoundNotAcceptingError,
    ValidationError,
)
from roundsync.models import ItemStatus, Verdict
from roundsync.services.rounds import queue, state_machine


def _active_round(quota=2, limit=300):
    rnd = state_machine.create_round(time_limit_seconds=limit, planned_items=3, item_quota=quota)
    return state_machine.start_round(rnd.id)


def test_submit_creates_ready_item(flask_app, catalog):
    rnd = _active_round()
    team = catalog['teams'][0]
    item = queue.submit_item(team, rnd.id, catalog['flavors'][0])
    assert item.status == ItemStatus.READY
    assert item.result is None
    assert item.team_id == team


def test_quota_allows_limit_and_rejects_one_more(flask_app, catalog):
    rnd = _active_round(quota=2)
    red, blue = catalog['teams']
    queue.submit_item(red, rnd.id)
    queue.submit_item(red, rnd.id)
    with pytest.raises(QuotaExceededError):
        queue.submit_item(red, rnd.id)
    # Quota is per team
    queue.submit_item(blue, rnd.id)


def test_evaluated_items_still_count_toward_quota(flask_app, catalog):
    rnd = _active_round(quota=1)
    red = catalog['teams'][0]
    item = queue.submit_item(red, rnd.id)
    queue.evaluate_item(item.id, Verdict.REJECTED, reason='burnt')
    with pytest.raises(QuotaExceededError):
        queue.submit_item(red, rnd.id)


def test_round_not_accepting(flask_app, catalog):
    red = catalog['teams'][0]
    rnd = state_machine.create_round()
    with pytest.raises(RoundNotAcceptingError):
        queue.submit_item(red, rnd.id)

    state_machine.start_round(rnd.id)
    state_machine.pause_round(rnd.id)
    with pytest.raises(RoundNotAcceptingError):
        queue.submit_item(red, rnd.id)

    state_machine.start_round(rnd.id)
    state_machine.finish_round(rnd.id)
    with pytest.raises(RoundNotAcceptingError):
        queue.submit_item(red, rnd.id)


def test_round_not_accepting_once_time_is_up(flask_app, catalog):
    rnd = _active_round(limit=60)
    with pytest.raises(RoundNotAcceptingError):
        queue.submit_item(catalog['teams'][0], rnd.id, now=time.time() + 61)


def test_unknown_team_and_round(flask_app, catalog):
    rnd = _active_round()
    with pytest.raises(NotFoundError):
        queue.submit_item(999, rnd.id)
    with pytest.raises(NotFoundError):
        queue.submit_item(catalog['teams'][0], 999)


def test_evaluate_approve_and_reject(flask_app, catalog):
    rnd = _active_round()
    red = catalog['teams'][0]
    first = queue.submit_item(red, rnd.id)
    second = queue.submit_item(red, rnd.id)

    approved = queue.evaluate_item(first.id, Verdict.APPROVED, reason='ignored', evaluator='ana')
    assert approved.status == ItemStatus.EVALUATED
    assert approved.result == Verdict.APPROVED
    assert approved.rejection_reason is None
    assert approved.evaluated_by == 'ana'

    rejected = queue.evaluate_item(second.id, Verdict.REJECTED, reason='  raw dough ')
    assert rejected.result == Verdict.REJECTED
    assert rejected.rejection_reason == 'raw dough'


def test_reject_requires_reason(flask_app, catalog):
    rnd = _active_round()
    item = queue.submit_item(catalog['teams'][0], rnd.id)
    with pytest.raises(ValidationError):
        queue.evaluate_item(item.id, Verdict.REJECTED, reason='   ')
    with pytest.raises(ValidationError):
        queue.evaluate_item(item.id, 'maybe')
    assert queue.get_item(item.id).result is None


def test_evaluate_twice_fails(flask_app, catalog):
    rnd = _active_round()
    item = queue.submit_item(catalog['teams'][0], rnd.id)
    queue.evaluate_item(item.id, Verdict.APPROVED)
    with pytest.raises(AlreadyEvaluatedError):
        queue.evaluate_item(item.id, Verdict.REJECTED, reason='late')
    assert queue.get_item(item.id).result == Verdict.APPROVED


def test_pending_is_fifo_across_teams(flask_app, catalog):
    rnd = _active_round(quota=3)
    red, blue = catalog['teams']
    now = time.time()
    a = queue.submit_item(red, rnd.id, now=now)
    b = queue.submit_item(blue, rnd.id, now=now + 1)
    c = queue.submit_item(red, rnd.id, now=now + 2)
    queue.evaluate_item(b.id, Verdict.APPROVED)
    assert [i.id for i in queue.pending_items(rnd.id)] == [a.id, c.id]


def test_round_summary(flask_app, catalog):
    rnd = _active_round(quota=3)
    red, blue = catalog['teams']
    a = queue.submit_item(red, rnd.id)
    b = queue.submit_item(red, rnd.id)
    queue.submit_item(blue, rnd.id)
    queue.evaluate_item(a.id, Verdict.APPROVED)
    queue.evaluate_item(b.id, Verdict.REJECTED, reason='cold')

    summary = queue.round_summary(rnd.id)
    assert summary['totals'] == {'total': 3, 'ready': 1, 'approved': 1, 'rejected': 1}
    by_team = {row['team_id']: row for row in summary['teams']}
    assert by_team[red]['total'] == 2
    assert by_team[blue]['ready'] == 1
