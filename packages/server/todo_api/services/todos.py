"""
Todo service layer: the record store's owner-scoped CRUD.

Every statement filters on the caller's ``user_id``; a record owned by someone
else is indistinguishable from a missing one and is never touched.
"""

from __future__ import annotations

import uuid
from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from todo_api.models.todo import Todo
from todo_shared.schemas import TodoCreate, TodoRead, TodoUpdate


def to_read(todo: Todo) -> TodoRead:
    return TodoRead.model_validate(todo, from_attributes=True)


def to_read_list(todos: Sequence[Todo]) -> list[TodoRead]:
    return [to_read(t) for t in todos]


async def list_todos(session: AsyncSession, user_id: uuid.UUID) -> list[Todo]:
    """All of the caller's records, newest first."""
    result = await session.execute(
        select(Todo)
        .where(Todo.user_id == user_id)
        .order_by(Todo.created_at.desc())
    )
    return list(result.scalars().all())


async def create_todo(
    session: AsyncSession,
    todo_in: TodoCreate,
    user_id: uuid.UUID,
) -> Todo:
    todo = Todo(
        user_id=user_id,
        task=todo_in.task,
        description=todo_in.description,
        priority=todo_in.priority.value,
        image_url=todo_in.image_url,
    )
    session.add(todo)
    await session.flush()
    return todo


async def update_todo(
    session: AsyncSession,
    todo_id: uuid.UUID,
    todo_in: TodoUpdate,
    user_id: uuid.UUID,
) -> list[Todo]:
    """Apply only the supplied fields. Returns the affected rows (empty if not owned)."""
    todo = await session.get(Todo, todo_id)
    if not todo or todo.user_id != user_id:
        return []

    data = todo_in.model_dump(exclude_unset=True, mode="json")
    for key, value in data.items():
        setattr(todo, key, value)

    session.add(todo)
    await session.flush()
    return [todo]


async def delete_todo(
    session: AsyncSession,
    todo_id: uuid.UUID,
    user_id: uuid.UUID,
) -> int:
    """Delete scoped to both id and owner. Returns the number of rows removed."""
    result = await session.execute(
        delete(Todo).where(Todo.id == todo_id, Todo.user_id == user_id)
    )
    await session.flush()
    return result.rowcount
