"""Todo record schemas shared by the gateway and the sync client."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import UUID4, BaseModel, field_validator

from .common import ChangeType, Priority


def _clean_task(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Task title cannot be empty")
    return value


# ---------------------------------------------------------------------------
# Todo CRUD
# ---------------------------------------------------------------------------

class TodoCreate(BaseModel):
    """Request body for addTodo. ``user_id`` is never accepted from the client."""
    task: str
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    image_url: Optional[str] = None

    @field_validator("task")
    @classmethod
    def task_not_blank(cls, value: str) -> str:
        return _clean_task(value)


class TodoUpdate(BaseModel):
    """Partial update. Only explicitly supplied fields are sent and applied."""
    task: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    is_completed: Optional[bool] = None
    image_url: Optional[str] = None

    @field_validator("task")
    @classmethod
    def task_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("Task title cannot be cleared")
        return _clean_task(value)

    @field_validator("priority", "is_completed")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class TodoRead(BaseModel):
    id: UUID4
    task: str
    description: Optional[str] = None
    priority: Priority
    is_completed: bool
    image_url: Optional[str] = None
    created_at: datetime
    user_id: UUID4

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite drops the offset; stored timestamps are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DeleteResult(BaseModel):
    success: Literal[True] = True


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------

class ChangeEvent(BaseModel):
    """
    Payload published on the change feed for every committed row change.

    Consumers treat it as a wake-up signal only; the fields are informational.
    """
    schema_name: str = "public"
    table: str = "todos"
    event_type: ChangeType
    record_id: Optional[str] = None
    committed_at: datetime
