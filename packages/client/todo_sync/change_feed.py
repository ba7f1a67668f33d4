"""
SSE listener for the todo API's change feed.

Maintains one persistent connection per session with:
- Automatic reconnection with exponential backoff, reset only once a
  connection delivers at least one line
- Connect handlers, run after every successful connection; Pub/Sub does not
  replay what was published while the stream was down
- Heartbeat timeout detection
- Session end on 401 or a ``session.revoked`` event (no reconnect)
- Graceful shutdown support
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

import httpx
import structlog

from .session import SessionContext

log = structlog.get_logger()

STREAM_PATH = "/api/v1/events/stream"
REVOKED_EVENT = "session.revoked"

# Reconnection parameters
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 60.0
RECONNECT_MULTIPLIER = 2.0


@dataclass
class FeedEvent:
    """A parsed SSE event."""
    event_type: str
    data: dict[str, Any]


EventHandler = Callable[[FeedEvent], Coroutine[Any, Any, None]]
ConnectHandler = Callable[[], Coroutine[Any, Any, None]]


class SessionEnded(Exception):
    """The server no longer accepts this session's stream."""


class ChangeFeed:
    """
    Persistent SSE connection to the todos change feed.

    Handles reconnection, heartbeat monitoring, and event dispatch. Events are
    dispatched as-is; consumers decide what a change means.
    """

    def __init__(
        self,
        base_url: str,
        session_context: SessionContext,
        heartbeat_timeout: float = 90.0,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._session_context = session_context
        self._heartbeat_timeout = heartbeat_timeout
        self._verify_tls = verify_tls
        self._transport = transport

        self._handlers: list[EventHandler] = []
        self._connect_handlers: list[ConnectHandler] = []
        self._running = False
        self._connected = False
        self._last_event_at: float | None = None
        self._reconnect_count = 0
        self._lines_received = 0
        self._task: asyncio.Task | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_event_at(self) -> float | None:
        return self._last_event_at

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    def on_event(self, handler: EventHandler) -> None:
        """Register an event handler."""
        self._handlers.append(handler)

    def on_connect(self, handler: ConnectHandler) -> None:
        """Register a handler run each time the stream (re)connects."""
        self._connect_handlers.append(handler)

    async def start(self) -> None:
        """Start the listener loop."""
        self._running = True
        self._task = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        """Gracefully stop the listener and release the connection."""
        self._running = False
        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connected = False
        log.info("change_feed.stopped")

    async def _listen_loop(self) -> None:
        backoff = RECONNECT_BASE_SECONDS

        while self._running:
            self._lines_received = 0
            try:
                await self._connect_and_stream()
            except asyncio.CancelledError:
                raise
            except SessionEnded as exc:
                self._running = False
                self._connected = False
                log.info("change_feed.session_ended", reason=str(exc))
                await self._session_context.end(reason=str(exc))
                return
            except Exception as exc:
                self._connected = False
                log.warning("change_feed.connection_lost", error=str(exc), backoff=backoff)

            if self._lines_received:
                backoff = RECONNECT_BASE_SECONDS

            if not self._running:
                break

            self._reconnect_count += 1
            log.info("change_feed.reconnecting", backoff=backoff, attempt=self._reconnect_count)
            await self._wait_before_reconnect(backoff)
            backoff = min(backoff * RECONNECT_MULTIPLIER, RECONNECT_MAX_SECONDS)

    async def _wait_before_reconnect(self, backoff: float) -> None:
        await asyncio.sleep(backoff)

    async def _connect_and_stream(self) -> None:
        session = self._session_context.current
        if session is None:
            raise SessionEnded("no_session")

        headers = {**session.auth_headers, "Accept": "text/event-stream"}
        url = f"{self._base_url}{STREAM_PATH}"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(None),
            verify=self._verify_tls,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code == 401:
                    raise SessionEnded("unauthorized")
                response.raise_for_status()
                self._connected = True
                self._last_event_at = time.time()
                log.info("change_feed.connected", url=url)
                await self._run_connect_handlers()

                current_event_type: str | None = None
                current_data_lines: list[str] = []
                lines = response.aiter_lines()

                while self._running:
                    try:
                        line = await asyncio.wait_for(
                            anext(lines), timeout=self._heartbeat_timeout
                        )
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError:
                        raise ConnectionError("heartbeat timeout") from None

                    line = line.rstrip("\n")
                    self._last_event_at = time.time()
                    self._lines_received += 1

                    if line.startswith("event:"):
                        current_event_type = line[6:].strip()
                    elif line.startswith("data:"):
                        current_data_lines.append(line[5:].strip())
                    elif line.startswith(":") or line.startswith("id:"):
                        # Comment / keepalive
                        pass
                    elif line == "":
                        # End of event: dispatch
                        if current_event_type == REVOKED_EVENT:
                            raise SessionEnded("revoked")
                        if current_data_lines:
                            await self._dispatch_event(current_event_type, current_data_lines)
                        current_event_type = None
                        current_data_lines = []

                self._connected = False

    async def _dispatch_event(self, event_type: str | None, data_lines: list[str]) -> None:
        data_str = "\n".join(data_lines)
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            log.warning("change_feed.parse_error", data=data_str[:200])
            return

        event = FeedEvent(
            event_type=event_type or "message",
            data=data if isinstance(data, dict) else {"value": data},
        )

        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                log.exception("change_feed.handler_error", event_type=event.event_type)

    async def _run_connect_handlers(self) -> None:
        for handler in self._connect_handlers:
            try:
                await handler()
            except Exception:
                log.exception("change_feed.connect_handler_error")
