"""
Client synchronization contract for the signed-in user's todos.

Rules:
- One cached snapshot, unloaded (None) until the first successful fetch and
  dropped when the session ends.
- Mutations never patch the snapshot. A successful create/update refetches the
  whole collection; a delete refetches once it settles, success or failure.
- Every change-feed event is a dirty signal that schedules exactly one refetch
  (or, with a coalesce window, one refetch per window).
- Each successful feed (re)connection is a dirty signal too.
- A failed fetch keeps the previous snapshot. Nothing is retried.
- After close(), late fetch results are dropped without touching the cache.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from typing import Any, Callable, Coroutine, Mapping, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from todo_shared.schemas import DeleteResult, TodoCreate, TodoRead, TodoUpdate

from .change_feed import ChangeFeed, FeedEvent
from .errors import AuthenticationError, DraftValidationError, TodoSyncError
from .gateway import TodoGateway
from .metrics import MetricsCollector
from .session import SessionContext

log = structlog.get_logger()

Snapshot = tuple[TodoRead, ...]
ChangeCallback = Callable[[Snapshot], Any]
FeedFactory = Callable[[], ChangeFeed]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate(model: type[ModelT], value: ModelT | Mapping[str, Any]) -> ModelT:
    """Validate locally so that rejected input never reaches the gateway."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise DraftValidationError(messages) from exc


class ChangeSubscription:
    """Handle for an open change-feed subscription. Close it when the view goes away."""

    def __init__(self, sync: TodoSync, feed: ChangeFeed):
        self._sync = sync
        self._feed = feed
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def close(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._feed.stop()
        self._sync._release(self)


class TodoSync:
    """
    Owns the local todo snapshot for one session.

    The presentation layer reads ``todos`` and the derived views; every write
    goes through ``create``, ``update`` or ``delete``.
    """

    def __init__(
        self,
        gateway: TodoGateway,
        session_context: SessionContext,
        feed_factory: Optional[FeedFactory] = None,
        coalesce_window: float = 0.0,
        metrics: MetricsCollector | None = None,
    ):
        self._gateway = gateway
        self._session_context = session_context
        self._feed_factory = feed_factory
        self._coalesce_window = coalesce_window
        self._metrics = metrics or MetricsCollector()

        self._todos: Snapshot | None = None
        self._closed = False
        self._subscription: ChangeSubscription | None = None
        self._on_change: ChangeCallback | None = None
        self._refresh_tasks: set[asyncio.Task] = set()
        self._pending_refresh: asyncio.Task | None = None
        self._unregister_session = session_context.on_end(self._on_session_end)

    # --- Snapshot ---

    @property
    def todos(self) -> Snapshot:
        return self._todos or ()

    @property
    def loaded(self) -> bool:
        return self._todos is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscription(self) -> ChangeSubscription | None:
        return self._subscription

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    async def fetch_all(self) -> Snapshot:
        """Reload the full collection. On failure the previous snapshot stays in place."""
        self._metrics.inc("fetches_total")
        try:
            todos = await self._gateway.get_todos()
        except TodoSyncError as exc:
            self._metrics.inc("fetch_failures_total")
            log.warning("todo_sync.fetch_failed", error=str(exc), kept=len(self.todos))
            raise

        snapshot = tuple(todos)
        if self._closed:
            log.debug("todo_sync.fetch_ignored", reason="closed")
            return snapshot

        self._todos = snapshot
        self._metrics.set_gauge("todos_cached", len(snapshot))
        self._metrics.set_gauge("last_fetch_timestamp_seconds", time.time())
        return snapshot

    # --- Mutations ---

    async def create(self, draft: TodoCreate | Mapping[str, Any]) -> list[TodoRead]:
        """
        Insert a record, then refetch.

        Raises DraftValidationError before any network call when the task is
        empty. A FetchError raised here means the insert landed but the
        snapshot could not be refreshed.
        """
        todo_in = _validate(TodoCreate, draft)
        self._ensure_open()

        self._metrics.inc("mutations_total")
        try:
            inserted = await self._gateway.add_todo(todo_in)
        except TodoSyncError:
            self._metrics.inc("mutation_failures_total")
            raise

        await self.fetch_all()
        return inserted

    async def update(
        self,
        todo_id: uuid.UUID | str,
        patch: TodoUpdate | Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> list[TodoRead]:
        """Send only the supplied fields, then refetch. The snapshot is untouched on failure."""
        todo_patch = _validate(TodoUpdate, patch if patch is not None else fields)
        if not todo_patch.model_fields_set:
            raise DraftValidationError("Nothing to update")
        self._ensure_open()

        self._metrics.inc("mutations_total")
        try:
            updated = await self._gateway.update_todo(todo_id, todo_patch)
        except TodoSyncError:
            self._metrics.inc("mutation_failures_total")
            raise

        await self.fetch_all()
        return updated

    async def toggle(self, todo: TodoRead) -> list[TodoRead]:
        return await self.update(todo.id, is_completed=not todo.is_completed)

    async def delete(self, todo_id: uuid.UUID | str) -> DeleteResult:
        """
        Delete, then refetch whatever the outcome.

        The server reports success even when no owned row matched, so success
        does not imply a row was removed.
        """
        self._ensure_open()

        self._metrics.inc("mutations_total")
        try:
            result = await self._gateway.delete_todo(todo_id)
        except TodoSyncError:
            self._metrics.inc("mutation_failures_total")
            await self._refresh_after_failed_delete()
            raise

        await self.fetch_all()
        return result

    async def _refresh_after_failed_delete(self) -> None:
        try:
            await self.fetch_all()
        except TodoSyncError as exc:
            # the delete error is the one the caller sees
            log.warning("todo_sync.refresh_after_delete_failed", error=str(exc))

    # --- Change feed ---

    async def subscribe_to_changes(
        self, on_change: Optional[ChangeCallback] = None
    ) -> ChangeSubscription:
        """
        Open the change feed. Every event triggers a refetch; ``on_change``
        receives each snapshot produced that way.
        """
        self._ensure_open()
        self._session_context.require()
        if self._feed_factory is None:
            raise TodoSyncError("No change feed configured")

        self._on_change = on_change
        if self._subscription is not None and self._subscription.active:
            return self._subscription

        feed = self._feed_factory()
        feed.on_event(self._handle_feed_event)
        feed.on_connect(self._handle_feed_connected)
        await feed.start()
        self._subscription = ChangeSubscription(self, feed)
        log.info("todo_sync.subscribed", coalesce_window=self._coalesce_window)
        return self._subscription

    async def _handle_feed_event(self, event: FeedEvent) -> None:
        self._metrics.inc("change_events_total")
        log.debug("todo_sync.change_event", event_type=event.event_type)
        self.mark_dirty()

    async def _handle_feed_connected(self) -> None:
        # changes published while the stream was down are not replayed
        self._metrics.inc("feed_connects_total")
        self.mark_dirty()

    def mark_dirty(self) -> None:
        """Signal that the server-side collection changed."""
        if self._closed:
            return
        if self._coalesce_window <= 0:
            self._spawn(self._refresh_from_feed())
            return
        if self._pending_refresh is None or self._pending_refresh.done():
            self._pending_refresh = self._spawn(self._debounced_refresh())

    async def _debounced_refresh(self) -> None:
        await asyncio.sleep(self._coalesce_window)
        # signals arriving from here on schedule a fresh refetch
        self._pending_refresh = None
        await self._refresh_from_feed()

    async def _refresh_from_feed(self) -> None:
        try:
            snapshot = await self.fetch_all()
        except AuthenticationError as exc:
            log.warning("todo_sync.feed_refresh_unauthorized", error=str(exc))
            await self._session_context.end(reason="unauthorized")
            return
        except TodoSyncError as exc:
            log.warning("todo_sync.feed_refresh_failed", error=str(exc))
            return

        if self._closed or self._on_change is None:
            return
        result = self._on_change(snapshot)
        if inspect.isawaitable(result):
            await result

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    def _release(self, subscription: ChangeSubscription) -> None:
        if self._subscription is subscription:
            self._subscription = None
            self._on_change = None

    # --- Lifecycle ---

    def _ensure_open(self) -> None:
        if self._closed:
            raise TodoSyncError("Sync is closed")

    async def _on_session_end(self) -> None:
        self._todos = None
        self._metrics.set_gauge("todos_cached", 0)
        await self.close()

    async def close(self) -> None:
        """Unsubscribe and cancel pending refetches. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._unregister_session()

        if self._subscription is not None:
            await self._subscription.close()

        current = asyncio.current_task()
        pending = [t for t in self._refresh_tasks if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        log.info("todo_sync.closed")

    async def __aenter__(self) -> TodoSync:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
