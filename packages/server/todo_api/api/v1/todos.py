"""
Todo endpoints: the mutation gateway.

- getTodos    GET    /todos
- addTodo     POST   /todos
- updateTodo  PATCH  /todos/{todo_id}
- deleteTodo  DELETE /todos/{todo_id}

Every procedure requires a session. Change-feed events are published after
commit, and only when a row was actually affected.
"""

from __future__ import annotations

import uuid
from typing import List

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from todo_api.core.auth import AuthenticatedUser, require_user
from todo_api.core.database import get_session
from todo_api.core.events import broadcast_change
from todo_api.services.todos import (
    create_todo,
    delete_todo,
    list_todos,
    to_read,
    to_read_list,
    update_todo,
)
from todo_shared.schemas import ChangeType, DeleteResult, TodoCreate, TodoRead, TodoUpdate

log = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=List[TodoRead])
async def get_todos_endpoint(
    auth: AuthenticatedUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """The caller's records, ordered by created_at descending."""
    todos = await list_todos(session, auth.user_id)
    return to_read_list(todos)


@router.post("", response_model=List[TodoRead], status_code=201)
async def add_todo_endpoint(
    todo_in: TodoCreate,
    auth: AuthenticatedUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Insert a record owned by the caller. Returns the inserted row(s)."""
    todo = await create_todo(session, todo_in, auth.user_id)
    await session.commit()
    inserted = [to_read(todo)]

    await broadcast_change(ChangeType.INSERT, todo.id)
    log.info("todos.created", todo_id=str(todo.id), user_id=str(auth.user_id))
    return inserted


@router.patch("/{todo_id}", response_model=List[TodoRead])
async def update_todo_endpoint(
    todo_id: uuid.UUID,
    todo_in: TodoUpdate,
    auth: AuthenticatedUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Partial update. An id the caller does not own yields an empty list."""
    todos = await update_todo(session, todo_id, todo_in, auth.user_id)
    await session.commit()
    updated = to_read_list(todos)

    if updated and todo_in.model_fields_set:
        await broadcast_change(ChangeType.UPDATE, todo_id)
    return updated


@router.delete("/{todo_id}", response_model=DeleteResult)
async def delete_todo_endpoint(
    todo_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_user),
    session: AsyncSession = Depends(get_session),
):
    """Delete scoped to id AND owner; zero affected rows is still a success."""
    deleted = await delete_todo(session, todo_id, auth.user_id)
    await session.commit()

    if deleted:
        await broadcast_change(ChangeType.DELETE, todo_id)
    else:
        log.info("todos.delete_no_rows", todo_id=str(todo_id), user_id=str(auth.user_id))
    return DeleteResult()
