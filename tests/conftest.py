import os
import sys
import pytest

# Ensure the project root (containing the `wordgames` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from wordgames import create_app, db, get_coordinator, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:3000']
    DEFAULT_GAME_TYPE = 'WORD_MATCH'
    DEFAULT_MAX_PLAYERS = 2
    MIN_PLAYERS = 2
    # Go straight to word setting once the lobby is full
    WORD_MATCH_COUNTDOWN_SEC = 0
    WORD_BOMB_TURN_SEC = 15
    WRITE_BEHIND_INTERVAL_SEC = 0
    WRITE_BEHIND_BATCH_SIZE = 10
    WRITE_BEHIND_MAX_RETRIES = 3
    WRITE_BEHIND_MAX_PENDING = 1000
    IDLE_SWEEP_INTERVAL_SEC = 3600
    SESSION_IDLE_TIMEOUT_SEC = 24 * 60 * 60


class ManualScheduler:
    """Records armed timers; tests fire them explicitly."""

    def __init__(self):
        self.app = None
        self.on_fire = None
        self.timers = {}
        self.cancelled = []

    def bind(self, app, on_fire):
        self.app = app
        self.on_fire = on_fire

    def schedule(self, session_id, kind, seconds, token):
        self.timers[session_id] = (kind, token, seconds)

    def cancel(self, session_id):
        if self.timers.pop(session_id, None) is not None:
            self.cancelled.append(session_id)

    def pending(self, session_id):
        return self.timers.get(session_id)

    def fire(self, session_id):
        kind, token, _ = self.timers.pop(session_id)
        return self.on_fire(session_id, kind, token)


class RecordingTransport:
    """Stands in for the Socket.IO transport and remembers everything sent."""

    def __init__(self):
        self.sent = []
        self.rooms = {}

    def emit(self, event, data, to=None):
        self.sent.append((event, data, to))

    def enter_room(self, connection_id, room):
        self.rooms.setdefault(room, set()).add(connection_id)

    def leave_room(self, connection_id, room):
        self.rooms.get(room, set()).discard(connection_id)

    def events(self, name, to=None):
        return [data for event, data, target in self.sent if event == name and (to is None or target == to)]

    def clear(self):
        self.sent = []


class FakeClock:

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def flask_app(scheduler):
    application = create_app(TestConfig, scheduler=scheduler)
    with application.app_context():
        # Ensure models are imported so tables are created
        import wordgames.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def coordinator(flask_app, transport):
    coord = get_coordinator(flask_app)
    coord.transport = transport
    return coord


@pytest.fixture()
def clock():
    return FakeClock()
