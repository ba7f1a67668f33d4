"""
Mutation gateway client: the four record procedures over HTTP.

Handles:
- Attaching the current session's token to every call
- Mapping 401 to AuthenticationError and other failures to FetchError or
  MutationError carrying the server's ``detail`` message
- No retries: every failure is reported once, to the caller
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx
import structlog

from todo_shared.schemas import DeleteResult, TodoCreate, TodoRead, TodoUpdate

from .config import ServerConfig
from .errors import AuthenticationError, FetchError, MutationError, TodoSyncError
from .session import SessionContext

log = structlog.get_logger()

TODOS_PATH = "/api/v1/todos"


def create_http_client(
    server: ServerConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=server.url.rstrip("/"),
        timeout=httpx.Timeout(server.request_timeout_seconds),
        verify=server.verify_tls,
        transport=transport,
    )


def error_detail(response: httpx.Response) -> str:
    """Human-readable message from a FastAPI error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list) and detail:
        # validation errors: [{"loc": [...], "msg": "..."}]
        return "; ".join(str(d.get("msg", d)) for d in detail)
    return str(detail or f"HTTP {response.status_code}")


class TodoGateway:
    """getTodos / addTodo / updateTodo / deleteTodo against the todo API."""

    def __init__(self, http: httpx.AsyncClient, session_context: SessionContext):
        self._http = http
        self._session_context = session_context

    async def get_todos(self) -> list[TodoRead]:
        response = await self._request("GET", TODOS_PATH, error_cls=FetchError)
        return [TodoRead.model_validate(row) for row in response.json()]

    async def add_todo(self, todo_in: TodoCreate) -> list[TodoRead]:
        response = await self._request(
            "POST",
            TODOS_PATH,
            error_cls=MutationError,
            json=todo_in.model_dump(mode="json", exclude_none=True),
        )
        return [TodoRead.model_validate(row) for row in response.json()]

    async def update_todo(self, todo_id: uuid.UUID | str, patch: TodoUpdate) -> list[TodoRead]:
        response = await self._request(
            "PATCH",
            f"{TODOS_PATH}/{todo_id}",
            error_cls=MutationError,
            json=patch.model_dump(mode="json", exclude_unset=True),
        )
        return [TodoRead.model_validate(row) for row in response.json()]

    async def delete_todo(self, todo_id: uuid.UUID | str) -> DeleteResult:
        response = await self._request(
            "DELETE", f"{TODOS_PATH}/{todo_id}", error_cls=MutationError
        )
        return DeleteResult.model_validate(response.json())

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls: type[TodoSyncError],
        **kwargs: Any,
    ) -> httpx.Response:
        session = self._session_context.require()
        try:
            response = await self._http.request(
                method, path, headers=session.auth_headers, **kwargs
            )
        except httpx.HTTPError as exc:
            log.warning("gateway.request_failed", method=method, path=path, error=str(exc))
            raise error_cls(f"Network error: {exc}") from exc

        if response.status_code == 401:
            raise AuthenticationError(error_detail(response), status_code=401)
        if response.is_error:
            log.warning(
                "gateway.error_response",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise error_cls(error_detail(response), status_code=response.status_code)
        return response
