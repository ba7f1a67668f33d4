"""Todo model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class Todo(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "todos"

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    task: str = Field(nullable=False)
    description: Optional[str] = None
    priority: str = Field(nullable=False, default="medium")  # low | medium | high
    is_completed: bool = Field(nullable=False, default=False)
    image_url: Optional[str] = None
