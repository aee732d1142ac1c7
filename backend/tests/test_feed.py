import pytest

from conftest import LoopbackFeed
from roundsync.client.changes import ChangeKind, ItemSnapshot, parse_change
from roundsync.client.events import SYNC_STATUS, EventBus
from roundsync.client.feed import SubscriptionStatus
from roundsync.errors import SyncError

ITEM = {'id': 7, 'team_id': 1, 'round_id': 3, 'status': 'ready', 'result': None,
        'created_at': 10.0, 'updated_at': 10.0, 'unknown_column': 'ignored'}


def test_parse_change_builds_typed_snapshots():
    change = parse_change({'table': 'production_item', 'type': 'INSERT', 'new': ITEM,
                           'old': None, 'commit_timestamp': 11.0, 'topic': 'production_item'})
    assert change.kind == ChangeKind.INSERTED
    assert isinstance(change.new, ItemSnapshot)
    assert change.new.pending
    assert change.key == ('production_item', ChangeKind.INSERTED, 7, 10.0)


def test_parse_delete_uses_old_record():
    change = parse_change({'table': 'round', 'type': 'DELETE', 'new': None,
                           'old': {'id': 2, 'updated_at': 5.0}})
    assert change.record_id == 2
    assert change.version == 5.0


@pytest.mark.parametrize('payload', [
    None,
    {'table': 'players', 'type': 'INSERT', 'new': {'id': 1}},
    {'table': 'round', 'type': 'UPSERT', 'new': {'id': 1}},
    {'table': 'round', 'type': 'UPDATE', 'new': None},
    {'table': 'round', 'type': 'DELETE', 'new': None, 'old': None},
    {'table': 'round', 'type': 'INSERT', 'new': {'number': 1}},
])
def test_malformed_changes_raise_sync_error(payload):
    with pytest.raises(SyncError):
        parse_change(payload)


def test_one_subscription_per_topic():
    feed = LoopbackFeed()
    first, second = [], []
    old = feed.open('round', first.append)
    new = feed.open('round', second.append)

    assert old.closed
    assert old.status == SubscriptionStatus.CLOSED
    assert feed.active('round') is new
    feed.push('round', 'INSERT', new={'id': 1, 'updated_at': 1.0})
    assert first == []
    assert len(second) == 1


def test_close_is_idempotent_and_stops_delivery():
    feed = LoopbackFeed()
    got = []
    with feed.open('round', got.append) as subscription:
        assert subscription.live
    subscription.close()
    feed.push('round', 'INSERT', new={'id': 1, 'updated_at': 1.0})
    assert got == []
    assert feed.topics == []
    assert feed.sent.count(('unsubscribe', 'round')) == 1


def test_closing_a_replaced_handle_keeps_the_new_one():
    feed = LoopbackFeed()
    old = feed.open('round', lambda p: None)
    new = feed.open('round', lambda p: None)
    old.close()
    assert feed.active('round') is new


def test_filtered_topics_only_get_matching_rows():
    feed = LoopbackFeed()
    red, blue = [], []
    feed.open('production_item:team_id=1', red.append)
    feed.open('production_item:team_id=2', blue.append)
    feed.push('production_item', 'INSERT', new=ITEM)
    assert len(red) == 1
    assert blue == []


def test_errored_status_and_reconnect():
    bus = EventBus()
    statuses = []
    bus.subscribe(SYNC_STATUS, statuses.append)
    feed = LoopbackFeed(bus)
    seen = []
    subscription = feed.open('round', lambda p: None, on_status=lambda s, st: seen.append(st))

    feed.connection_lost()
    assert subscription.status == SubscriptionStatus.ERRORED
    assert statuses[-1] == {'round': 'errored'}

    feed.connection_restored()
    assert subscription.status == SubscriptionStatus.SUBSCRIBED
    assert seen == [SubscriptionStatus.SUBSCRIBED, SubscriptionStatus.ERRORED, SubscriptionStatus.SUBSCRIBED]


def test_server_rejection_marks_errored():
    feed = LoopbackFeed(auto_ack=False)
    subscription = feed.open('round:status=active', lambda p: None)
    assert subscription.status == SubscriptionStatus.PENDING
    feed.handle_status({'topic': 'round:status=active', 'status': 'errored', 'error': 'Unsupported filter'})
    assert subscription.status == SubscriptionStatus.ERRORED
    assert not subscription.live


def test_data_changed_is_forwarded_to_bus():
    bus = EventBus()
    got = []
    bus.subscribe('global-data-changed', got.append)
    LoopbackFeed(bus).handle_data_changed({'table': 'production_item', 'action': 'auto_reject'})
    assert got == [{'table': 'production_item', 'action': 'auto_reject'}]


def test_close_all():
    feed = LoopbackFeed()
    a = feed.open('round', lambda p: None)
    b = feed.open('production_item', lambda p: None)
    feed.close_all()
    assert a.closed and b.closed
    assert feed.topics == []
