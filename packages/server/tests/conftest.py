"""
Shared fixtures for todo API tests.

Settings are read once at import time, so the environment is pointed at a
throwaway SQLite database and storage directory before the app is imported.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="todo-api-tests-")
os.environ.setdefault("TODO_DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/todos.db")
os.environ.setdefault("TODO_STORAGE_DIR", os.path.join(_TMP_DIR, "storage"))
os.environ.setdefault("TODO_SECRET_KEY", "test-secret-key-for-todo-api-tests")
os.environ.setdefault("TODO_PUBLIC_BASE_URL", "http://test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from todo_api.core import redis as redis_module  # noqa: E402
from todo_api.core.database import drop_db, engine, init_db  # noqa: E402
from todo_api.main import app  # noqa: E402


class FakePubSub:
    def __init__(self, messages=None):
        self.messages = list(messages or [])
        self.subscribed: set[str] = set()
        self.closed = False

    async def subscribe(self, *channels):
        self.subscribed.update(channels)

    async def unsubscribe(self, *channels):
        self.subscribed.difference_update(channels)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if self.messages:
            return self.messages.pop(0)
        return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """In-memory stand-in for the few Redis commands the API issues."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.pubsubs: list[FakePubSub] = []
        self.pending_messages: list[dict] = []

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def exists(self, key):
        return int(key in self.store)

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    def pubsub(self):
        ps = FakePubSub(self.pending_messages)
        self.pubsubs.append(ps)
        return ps

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "_redis_pool", fake)
    return fake


@pytest.fixture
async def db():
    await drop_db()
    await init_db()
    yield
    await engine.dispose()


@pytest.fixture
async def client(db, fake_redis):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def register_user(client):
    """Register an account and return Bearer headers for it."""

    async def _register(email: str = "alice@todo-app.io", password: str = "correct-horse-battery"):
        response = await client.post("/auth/register", json={"email": email, "password": password})
        assert response.status_code == 201, response.text
        body = response.json()
        return {"Authorization": f"Bearer {body['access_token']}"}

    return _register
