"""
Tests for the HTTP gateway client against a mocked transport.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import httpx
import pytest

from todo_shared.schemas import TodoCreate, TodoUpdate
from todo_sync.config import ServerConfig
from todo_sync.errors import AuthenticationError, FetchError, MutationError
from todo_sync.gateway import TodoGateway, create_http_client, error_detail
from todo_sync.session import SessionContext


def _row(user_id: str, **fields) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "task": "Write docs",
        "description": None,
        "priority": "medium",
        "is_completed": False,
        "image_url": None,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "user_id": user_id,
        **fields,
    }


@pytest.fixture
def requests_seen():
    return []


def _gateway(handler, session_context: SessionContext) -> TodoGateway:
    http = create_http_client(ServerConfig(url="http://api.test"), transport=httpx.MockTransport(handler))
    return TodoGateway(http, session_context)


class TestTodoGateway:
    @pytest.mark.asyncio
    async def test_get_todos_sends_bearer(self, session, session_context, requests_seen):
        def handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return httpx.Response(200, json=[_row(session.user_id)])

        todos = await _gateway(handler, session_context).get_todos()

        assert len(todos) == 1
        [request] = requests_seen
        assert request.method == "GET"
        assert request.url.path == "/api/v1/todos"
        assert request.headers["Authorization"] == "Bearer token-abc"

    @pytest.mark.asyncio
    async def test_add_todo_posts_draft(self, session, session_context, requests_seen):
        def handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return httpx.Response(201, json=[_row(session.user_id, task="New")])

        inserted = await _gateway(handler, session_context).add_todo(TodoCreate(task="New"))

        assert inserted[0].task == "New"
        body = json.loads(requests_seen[0].content)
        assert body == {"task": "New", "priority": "medium"}

    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self, session, session_context, requests_seen):
        todo_id = uuid.uuid4()

        def handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return httpx.Response(200, json=[])

        result = await _gateway(handler, session_context).update_todo(
            todo_id, TodoUpdate(description=None)
        )

        assert result == []
        request = requests_seen[0]
        assert request.method == "PATCH"
        assert request.url.path == f"/api/v1/todos/{todo_id}"
        assert json.loads(request.content) == {"description": None}

    @pytest.mark.asyncio
    async def test_delete(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            return httpx.Response(200, json={"success": True})

        result = await _gateway(handler, session_context).delete_todo(uuid.uuid4())
        assert result.success is True

    @pytest.mark.asyncio
    async def test_unauthorized(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Unauthorized"})

        with pytest.raises(AuthenticationError, match="Unauthorized") as exc_info:
            await _gateway(handler, session_context).delete_todo(uuid.uuid4())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_store_error_on_fetch(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"detail": "database unavailable"})

        with pytest.raises(FetchError, match="database unavailable") as exc_info:
            await _gateway(handler, session_context).get_todos()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_validation_error_on_mutation(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422, json={"detail": [{"loc": ["body", "task"], "msg": "Field required"}]}
            )

        with pytest.raises(MutationError, match="Field required"):
            await _gateway(handler, session_context).add_todo(TodoCreate(task="x"))

    @pytest.mark.asyncio
    async def test_network_error(self, session_context):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(MutationError, match="Network error"):
            await _gateway(handler, session_context).delete_todo(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_no_session_no_request(self, requests_seen):
        def handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            return httpx.Response(200, json=[])

        with pytest.raises(AuthenticationError, match="Not signed in"):
            await _gateway(handler, SessionContext()).get_todos()
        assert requests_seen == []


class TestErrorDetail:
    def test_plain_text_body(self):
        assert error_detail(httpx.Response(502, text="Bad Gateway")) == "Bad Gateway"

    def test_empty_body(self):
        assert error_detail(httpx.Response(500)) == "HTTP 500"

    def test_string_detail(self):
        assert error_detail(httpx.Response(409, json={"detail": "exists"})) == "exists"
