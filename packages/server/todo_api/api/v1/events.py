"""
Change feed endpoint.

- GET /stream: authenticated SSE stream of every change to the todos table
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from todo_api.core.auth import AuthenticatedUser, require_user
from todo_api.core.events import HEARTBEAT_INTERVAL, change_stream

router = APIRouter()


@router.get("/stream")
async def stream_changes(
    request: Request,
    auth: AuthenticatedUser = Depends(require_user),
):
    """
    Stream change notifications via SSE.

    Events are named ``postgres_changes`` and carry a ChangeEvent payload that
    clients should only treat as "something changed". The stream ends with a
    ``session.revoked`` event once the session is signed out. Idle connections
    receive ping comments every 30 seconds.
    """
    return EventSourceResponse(
        change_stream(request, jti=auth.jti),
        ping=HEARTBEAT_INTERVAL,
    )
