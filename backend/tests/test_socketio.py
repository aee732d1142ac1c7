from roundsync.services.rounds import queue, state_machine

NS = '/ws'


def _events(sio_client, name):
    return [pkt['args'][0] for pkt in sio_client.get_received(NS) if pkt['name'] == name]


def _subscribe(sio_client, topic):
    sio_client.emit('subscribe', {'topic': topic}, namespace=NS)


def test_socket_connect(sio_client):
    if not sio_client.is_connected(NS):
        sio_client.connect(namespace=NS)
    assert sio_client.is_connected(NS)
    received = sio_client.get_received(NS)
    assert any(pkt['name'] == 'connected' for pkt in received)


def test_subscribe_acknowledged(sio_client):
    sio_client.get_received(NS)
    _subscribe(sio_client, 'round')
    statuses = _events(sio_client, 'subscription_status')
    assert statuses == [{'topic': 'round', 'status': 'subscribed'}]


def test_invalid_topic_is_errored(sio_client):
    sio_client.get_received(NS)
    _subscribe(sio_client, 'players')
    _subscribe(sio_client, 'production_item:flavor_id=1')
    statuses = _events(sio_client, 'subscription_status')
    assert [s['status'] for s in statuses] == ['errored', 'errored']
    assert all(s.get('error') for s in statuses)


def test_unsubscribe_closes(sio_client, flask_app, catalog):
    _subscribe(sio_client, 'round')
    sio_client.emit('unsubscribe', {'topic': 'round'}, namespace=NS)
    statuses = _events(sio_client, 'subscription_status')
    assert statuses[-1] == {'topic': 'round', 'status': 'closed'}

    state_machine.create_round()
    assert _events(sio_client, 'change') == []


def test_round_changes_are_published(sio_client, flask_app, catalog):
    _subscribe(sio_client, 'round')
    sio_client.get_received(NS)

    rnd = state_machine.create_round()
    state_machine.start_round(rnd.id)
    changes = _events(sio_client, 'change')
    assert [(c['type'], c['new']['status']) for c in changes] == [
        ('INSERT', 'awaiting'),
        ('UPDATE', 'active'),
    ]
    update = changes[1]
    assert update['topic'] == 'round'
    assert update['old']['status'] == 'awaiting'
    assert update['new']['updated_at'] > update['old']['updated_at']


def test_filtered_item_topic(sio_client, flask_app, catalog):
    red, blue = catalog['teams']
    rnd = state_machine.create_round()
    state_machine.start_round(rnd.id)
    _subscribe(sio_client, f'production_item:team_id={red}')
    sio_client.get_received(NS)

    queue.submit_item(blue, rnd.id)
    mine = queue.submit_item(red, rnd.id)
    changes = _events(sio_client, 'change')
    assert len(changes) == 1
    assert changes[0]['new']['id'] == mine.id
    assert changes[0]['topic'] == f'production_item:team_id={red}'


def test_sequence_inserts_are_published(sio_client, flask_app, catalog):
    _subscribe(sio_client, 'flavor_sequence_entry')
    sio_client.get_received(NS)
    state_machine.create_round(planned_items=2)
    changes = _events(sio_client, 'change')
    assert [c['new']['position'] for c in changes] == [0, 1]


def test_reset_broadcasts_data_changed(sio_client, flask_app, catalog):
    state_machine.create_round()
    sio_client.get_received(NS)
    state_machine.reset_all()
    tables = [e['table'] for e in _events(sio_client, 'data_changed')]
    assert tables == ['production_item', 'flavor_sequence_entry']


def test_ping(sio_client):
    sio_client.get_received(NS)
    sio_client.emit('ping', {'n': 1}, namespace=NS)
    assert _events(sio_client, 'pong') == [{'n': 1}]
