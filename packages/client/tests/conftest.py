"""
Shared fixtures for sync client tests.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from todo_shared.schemas import DeleteResult, Priority, TodoRead
from todo_sync.change_feed import FeedEvent
from todo_sync.session import Session, SessionContext
from todo_sync.sync import TodoSync

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeGateway:
    """
    In-memory gateway with the same four procedures as TodoGateway.

    ``failures`` maps a procedure name to the exception its next call raises.
    ``fetch_gate`` (an asyncio.Event) holds get_todos until it is set.
    """

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        self.rows: list[TodoRead] = []
        self.calls: list[str] = []
        self.patches: list[dict] = []
        self.failures: dict[str, Exception] = {}
        self.fetch_gate: asyncio.Event | None = None
        self._clock = 0

    def seed(self, task: str, **fields) -> TodoRead:
        self._clock += 1
        row = TodoRead(
            id=uuid.uuid4(),
            task=task,
            description=fields.get("description"),
            priority=fields.get("priority", Priority.MEDIUM),
            is_completed=fields.get("is_completed", False),
            image_url=fields.get("image_url"),
            created_at=BASE_TIME + timedelta(seconds=self._clock),
            user_id=self.user_id,
        )
        self.rows.append(row)
        return row

    def _check(self, name: str) -> None:
        self.calls.append(name)
        exc = self.failures.pop(name, None)
        if exc is not None:
            raise exc

    async def get_todos(self) -> list[TodoRead]:
        self._check("get_todos")
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        return sorted(self.rows, key=lambda r: r.created_at, reverse=True)

    async def add_todo(self, todo_in) -> list[TodoRead]:
        self._check("add_todo")
        return [self.seed(**todo_in.model_dump())]

    async def update_todo(self, todo_id, patch) -> list[TodoRead]:
        self._check("update_todo")
        changes = patch.model_dump(exclude_unset=True)
        self.patches.append(changes)
        for i, row in enumerate(self.rows):
            if str(row.id) == str(todo_id):
                self.rows[i] = row.model_copy(update=changes)
                return [self.rows[i]]
        return []

    async def delete_todo(self, todo_id) -> DeleteResult:
        self._check("delete_todo")
        self.rows = [r for r in self.rows if str(r.id) != str(todo_id)]
        return DeleteResult()


class ManualFeed:
    """Change feed double; tests push events with ``emit``."""

    def __init__(self):
        self._handlers = []
        self._connect_handlers = []
        self.running = False
        self.connected = False
        self.stopped = False

    def on_event(self, handler) -> None:
        self._handlers.append(handler)

    def on_connect(self, handler) -> None:
        self._connect_handlers.append(handler)

    async def start(self) -> None:
        self.running = True
        self.connected = True

    async def stop(self) -> None:
        self.running = False
        self.connected = False
        self.stopped = True

    async def emit(self, event_type: str = "postgres_changes", **data) -> None:
        event = FeedEvent(event_type=event_type, data={"event_type": "UPDATE", **data})
        for handler in self._handlers:
            await handler(event)

    async def reconnect(self) -> None:
        self.connected = True
        for handler in self._connect_handlers:
            await handler()


async def settle(sync: TodoSync) -> None:
    """Wait for every refresh the sync has scheduled so far."""
    while sync._refresh_tasks:
        await asyncio.gather(*list(sync._refresh_tasks), return_exceptions=True)


@pytest.fixture
def session() -> Session:
    return Session(access_token="token-abc", user_id=str(uuid.uuid4()), email="alice@todo-app.io")


@pytest.fixture
def session_context(session) -> SessionContext:
    return SessionContext(session)


@pytest.fixture
def gateway(session) -> FakeGateway:
    return FakeGateway(uuid.UUID(session.user_id))


@pytest.fixture
def feeds() -> list[ManualFeed]:
    return []


@pytest.fixture
def make_sync(gateway, session_context, feeds):
    def _make(coalesce_window: float = 0.0) -> TodoSync:
        def feed_factory():
            feed = ManualFeed()
            feeds.append(feed)
            return feed

        return TodoSync(
            gateway,
            session_context,
            feed_factory=feed_factory,
            coalesce_window=coalesce_window,
        )

    return _make


@pytest.fixture
async def sync(make_sync):
    s = make_sync()
    yield s
    await s.close()


@pytest.fixture
def wait_settled():
    return settle
