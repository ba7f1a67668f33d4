"""
Tests for the SSE change-feed listener.
"""

from __future__ import annotations

import json

import httpx
import pytest

from todo_sync.change_feed import ChangeFeed, SessionEnded
from todo_sync.session import SessionContext

CHANGE = json.dumps({"schema_name": "public", "table": "todos", "event_type": "INSERT"})


def _sse(*events: tuple[str, str]) -> str:
    chunks = [": ping\n\n"]
    for name, data in events:
        chunks.append(f"event: {name}\ndata: {data}\n\n")
    return "".join(chunks)


def _feed(session_context: SessionContext, handler) -> ChangeFeed:
    return ChangeFeed(
        "http://api.test/",
        session_context,
        heartbeat_timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestChangeFeedStream:
    @pytest.mark.asyncio
    async def test_dispatches_events(self, session_context):
        seen_requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_requests.append(request)
            body = _sse(("postgres_changes", CHANGE), ("postgres_changes", CHANGE))
            return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

        feed = _feed(session_context, handler)
        events = []

        async def on_event(event):
            events.append(event)

        feed.on_event(on_event)
        feed._running = True
        await feed._connect_and_stream()

        assert [e.event_type for e in events] == ["postgres_changes", "postgres_changes"]
        assert events[0].data["event_type"] == "INSERT"
        request = seen_requests[0]
        assert request.url.path == "/api/v1/events/stream"
        assert request.headers["Authorization"] == "Bearer token-abc"
        assert request.headers["Accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_bad_payload_is_skipped(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("postgres_changes", "not-json"), ("postgres_changes", CHANGE)))

        feed = _feed(session_context, handler)
        events = []

        async def on_event(event):
            events.append(event)

        feed.on_event(on_event)
        feed._running = True
        await feed._connect_and_stream()
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_dispatch(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("postgres_changes", CHANGE), ("postgres_changes", CHANGE)))

        feed = _feed(session_context, handler)
        calls = []

        async def broken(event):
            calls.append(event)
            raise RuntimeError("boom")

        feed.on_event(broken)
        feed._running = True
        await feed._connect_and_stream()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_revoked_event_raises_session_ended(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("session.revoked", '{"reason": "signed_out"}')))

        feed = _feed(session_context, handler)
        feed._running = True
        with pytest.raises(SessionEnded, match="revoked"):
            await feed._connect_and_stream()


class TestChangeFeedLifecycle:
    @pytest.mark.asyncio
    async def test_unauthorized_ends_session(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Session has been revoked"})

        ended = []

        async def on_end():
            ended.append(True)

        session_context.on_end(on_end)
        feed = _feed(session_context, handler)
        await feed.start()
        await feed._task

        assert not feed.running
        assert not session_context.active
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_revoked_event_ends_session(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("session.revoked", '{"reason": "signed_out"}')))

        feed = _feed(session_context, handler)
        await feed.start()
        await feed._task

        assert not session_context.active
        assert feed.reconnect_count == 0

    @pytest.mark.asyncio
    async def test_no_session_never_connects(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="")

        feed = _feed(SessionContext(), handler)
        await feed.start()
        await feed._task
        assert requests == []
        assert not feed.running

    @pytest.mark.asyncio
    async def test_stop_cancels_listener(self, session_context, monkeypatch):
        monkeypatch.setattr("todo_sync.change_feed.RECONNECT_BASE_SECONDS", 30.0)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="down")

        feed = _feed(session_context, handler)
        await feed.start()
        await feed.stop()

        assert not feed.running
        assert not feed.connected
        assert session_context.active


class TestReconnectBehaviour:
    @staticmethod
    def _record_backoffs(monkeypatch, feed: ChangeFeed, limit: int) -> list[float]:
        backoffs: list[float] = []

        async def record(delay):
            backoffs.append(delay)
            if len(backoffs) >= limit:
                feed._running = False

        monkeypatch.setattr(feed, "_wait_before_reconnect", record)
        return backoffs

    @pytest.mark.asyncio
    async def test_connect_handlers_run_on_every_connection(self, session_context, monkeypatch):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 2:
                return httpx.Response(503, text="down")
            return httpx.Response(200, text=_sse())

        feed = _feed(session_context, handler)
        connects = []

        async def on_connect():
            connects.append(len(attempts))

        feed.on_connect(on_connect)
        self._record_backoffs(monkeypatch, feed, limit=3)
        feed._running = True
        await feed._listen_loop()

        assert len(attempts) == 3
        assert connects == [1, 3]

    @pytest.mark.asyncio
    async def test_empty_streams_keep_backing_off(self, session_context, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="")

        feed = _feed(session_context, handler)
        backoffs = self._record_backoffs(monkeypatch, feed, limit=4)
        feed._running = True
        await feed._listen_loop()

        assert backoffs == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_backoff_resets_once_stream_delivers(self, session_context, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("postgres_changes", CHANGE)))

        feed = _feed(session_context, handler)
        backoffs = self._record_backoffs(monkeypatch, feed, limit=3)
        feed._running = True
        await feed._listen_loop()

        assert backoffs == [1.0, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_connect_handler_errors_are_contained(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_sse(("postgres_changes", CHANGE)))

        feed = _feed(session_context, handler)
        events = []

        async def broken():
            raise RuntimeError("boom")

        async def on_event(event):
            events.append(event)

        feed.on_connect(broken)
        feed.on_event(on_event)
        feed._running = True
        await feed._connect_and_stream()
        assert len(events) == 1
