import pytest
from fastapi.testclient import TestClient

from botguard.config import Settings
from botguard.server.app import create_app
from botguard.server.blacklist import BlacklistStore
from botguard.server.collaborators import InMemoryAccountStore


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Holds timers until the test fires them."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self):
        for handle in self.active:
            handle.cancelled = True
            handle.callback()


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RecordingTransport:
    def __init__(self):
        self.sent = []

    def send(self, endpoint, batch):
        self.sent.append((endpoint, batch))


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, data):
        self.events.append((event, data))


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        blacklist_path=str(tmp_path / "data" / "blacklist.json"),
        session_secret="test-secret",
        admin_token="letmein",
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def store(settings):
    return BlacklistStore(settings.blacklist_path)


@pytest.fixture
def accounts():
    return InMemoryAccountStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(settings, store, accounts, notifier):
    return create_app(settings, store=store, accounts=accounts, notifier=notifier)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def admin_client(app):
    c = TestClient(app)
    c.headers.update({"User-Agent": "admin-browser", "X-Forwarded-For": "10.0.0.1"})
    resp = c.post("/admin/login", json={"token": "letmein"})
    assert resp.status_code == 200
    return c
