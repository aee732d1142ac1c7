import os
import sys
import time
import pytest

# Ensure the backend root (containing the `roundsync` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from roundsync import create_app, db, socketio
from roundsync.client.events import EventBus
from roundsync.client.feed import ChangeFeed
from roundsync.client.store import HttpStore
from roundsync.services.rounds import rejector
from roundsync.services.rounds.broadcast import NAMESPACE, topics_for


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_TIME_LIMIT_SEC = 300
    DEFAULT_PLANNED_ITEMS = 4
    EVALUATION_GRACE_SEC = 60
    WARNING_THRESHOLDS_SEC = '30,10'
    FLAVOR_POLICY = 'round_robin'
    ENABLE_AUTO_REJECT_SCHEDULER = True
    CONTROLLER_DEBOUNCE_MS = 0
    TIMER_HEARTBEAT_SEC = 0
    CORS_ORIGINS = 'http://localhost:5173'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import roundsync.models  # noqa: F401
        db.create_all()
        rejector._scheduled_rounds.clear()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def catalog(flask_app):
    """Two teams and three flavors."""
    from roundsync.models import Flavor, Team
    teams = [Team(name='Red'), Team(name='Blue')]
    flavors = [Flavor(name='Mozzarella'), Flavor(name='Pepperoni'), Flavor(name='Chicken')]
    db.session.add_all(teams + flavors)
    db.session.commit()
    return {
        'teams': [t.id for t in teams],
        'flavors': [f.id for f in flavors],
    }


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace=NAMESPACE
    )
    yield test_client
    try:
        test_client.disconnect(namespace=NAMESPACE)
    except Exception:
        pass


# ---- client-layer tooling ----

class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualHandle:
    def __init__(self, callback):
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualTicker:
    """Ticker driven by the test: ``tick()`` runs every live callback once."""

    def __init__(self):
        self.handles = []

    def every(self, interval, callback):
        handle = ManualHandle(callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self):
        return [h for h in self.handles if not h.cancelled]

    def tick(self):
        for handle in list(self.handles):
            if not handle.cancelled:
                handle.callback()


class LoopbackFeed(ChangeFeed):
    """In-memory feed; tests push server events into it directly."""

    def __init__(self, bus=None, auto_ack=True):
        super().__init__(bus)
        self.auto_ack = auto_ack
        self.sent = []

    def _send_subscribe(self, topic):
        self.sent.append(('subscribe', topic))
        if self.auto_ack:
            self.handle_status({'topic': topic, 'status': 'subscribed'})

    def _send_unsubscribe(self, topic):
        self.sent.append(('unsubscribe', topic))

    def push(self, table, kind, new=None, old=None):
        payload = {'table': table, 'type': kind, 'new': new, 'old': old,
                   'commit_timestamp': time.time()}
        for topic in sorted(set(topics_for(table, new)) | set(topics_for(table, old))):
            self.dispatch(dict(payload, topic=topic))


class SocketIOTestFeed(ChangeFeed):
    """Feed backed by a Flask-SocketIO test client; ``pump()`` delivers what arrived."""

    def __init__(self, sio_client, bus=None):
        super().__init__(bus)
        self.sio = sio_client

    def _send_subscribe(self, topic):
        self.sio.emit('subscribe', {'topic': topic}, namespace=NAMESPACE)

    def _send_unsubscribe(self, topic):
        self.sio.emit('unsubscribe', {'topic': topic}, namespace=NAMESPACE)

    def pump(self):
        for packet in self.sio.get_received(NAMESPACE):
            payload = packet['args'][0] if packet['args'] else {}
            if packet['name'] == 'change':
                self.dispatch(payload)
            elif packet['name'] == 'subscription_status':
                self.handle_status(payload)
            elif packet['name'] == 'data_changed':
                self.handle_data_changed(payload)


class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self._payload = response.get_json(silent=True)

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload


class FlaskSession:
    """Routes HttpStore requests into the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, json=None, params=None, timeout=None):
        self.calls.append((method, url))
        response = self.test_client.open(url, method=method, json=json, query_string=params)
        return FlaskResponse(response)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def ticker():
    return ManualTicker()


@pytest.fixture()
def bus():
    return EventBus()


@pytest.fixture()
def store(client):
    return HttpStore(session=FlaskSession(client))


@pytest.fixture()
def feed_factory(flask_app):
    """One Socket.IO connection per screen, like separate browser tabs."""
    feeds = []

    def make(bus=None):
        sio = socketio.test_client(flask_app, flask_test_client=flask_app.test_client(), namespace=NAMESPACE)
        feed = SocketIOTestFeed(sio, bus or EventBus())
        feeds.append(feed)
        return feed

    yield make
    for feed in feeds:
        feed.close_all()
        try:
            feed.sio.disconnect(namespace=NAMESPACE)
        except Exception:
            pass


def pump(*feeds):
    """Deliver queued server events until every feed is drained."""
    for _ in range(5):
        for feed in feeds:
            feed.pump()
