import os
import sys
import pytest

# Ensure the backend root (containing the `refpanel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from refpanel import create_app, socketio, get_registry
from refpanel.services.rooms import RoomState, RoomRegistry, TaskHandle


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = '*'
    LOG_LEVEL = 'DEBUG'
    SOCKETIO_NAMESPACE = '/ws'
    DEFAULT_TIMER_MS = 60000
    AUTO_CLEAR_MS = 10000
    TICK_INTERVAL_MS = 200


class _FakeTask(TaskHandle):
    def __init__(self, name, due_ms, period_ms, callback):
        super().__init__(name)
        self.due_ms = due_ms
        self.period_ms = period_ms
        self.callback = callback


class FakeScheduler:
    """Manual clock: tasks only run when the test advances time."""

    def __init__(self):
        self.clock_ms = 0.0
        self.tasks = []

    def now_ms(self):
        return self.clock_ms

    def call_later(self, delay_sec, callback, name='later'):
        task = _FakeTask(name, self.clock_ms + delay_sec * 1000.0, None, callback)
        self.tasks.append(task)
        return task

    def call_every(self, period_sec, callback, name='every'):
        task = _FakeTask(name, self.clock_ms + period_sec * 1000.0, period_sec * 1000.0, callback)
        self.tasks.append(task)
        return task

    def active(self, name=None):
        return [t for t in self.tasks if not t.cancelled and (name is None or t.name == name)]

    def skew(self, ms):
        """Move the clock without running anything, like a late scheduler."""
        self.clock_ms += ms

    def advance(self, ms):
        target = self.clock_ms + ms
        while True:
            due = [t for t in self.active() if t.due_ms <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.due_ms)
            self.clock_ms = max(self.clock_ms, task.due_ms)
            if task.period_ms is None:
                task.cancelled = True
            else:
                task.due_ms = self.clock_ms + task.period_ms
            task.callback()
        self.clock_ms = target


@pytest.fixture()
def scheduler():
    return FakeScheduler()


@pytest.fixture()
def room_state(scheduler):
    return RoomState(scheduler)


@pytest.fixture()
def snapshots(room_state):
    received = []
    room_state.on_snapshot(received.append)
    received.clear()
    return received


@pytest.fixture()
def broadcasts():
    return []


@pytest.fixture()
def registry(scheduler, broadcasts):
    return RoomRegistry(lambda room_id, snapshot: broadcasts.append((room_id, snapshot)), scheduler=scheduler)


@pytest.fixture()
def flask_app(scheduler):
    application = create_app(TestConfig, scheduler=scheduler)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def rooms(flask_app):
    return get_registry(flask_app)


@pytest.fixture()
def sio_factory(flask_app):
    """Open any number of Socket.IO test clients on /ws; all closed on teardown."""
    opened = []

    def _open():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        opened.append(test_client)
        return test_client

    yield _open
    for test_client in opened:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
