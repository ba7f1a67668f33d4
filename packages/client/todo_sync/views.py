"""
Derived views over a todo snapshot: filtering and counts.

Pure functions; the input sequence is never mutated and order is preserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from todo_shared.schemas import Priority, StatusFilter, TodoRead
from todo_shared.schemas.common import PRIORITY_FILTER_ALL


def matches_status(todo: TodoRead, status: StatusFilter | str) -> bool:
    status = StatusFilter(status)
    if status is StatusFilter.ACTIVE:
        return not todo.is_completed
    if status is StatusFilter.COMPLETED:
        return todo.is_completed
    return True


def matches_priority(todo: TodoRead, priority: Priority | str) -> bool:
    if priority == PRIORITY_FILTER_ALL:
        return True
    return todo.priority == Priority(priority)


def filter_todos(
    todos: Iterable[TodoRead],
    status: StatusFilter | str = StatusFilter.ALL,
    priority: Priority | str = PRIORITY_FILTER_ALL,
) -> list[TodoRead]:
    """Records matching both filters, in snapshot order."""
    return [
        todo for todo in todos
        if matches_status(todo, status) and matches_priority(todo, priority)
    ]


def has_active_filters(
    status: StatusFilter | str = StatusFilter.ALL,
    priority: Priority | str = PRIORITY_FILTER_ALL,
) -> bool:
    return StatusFilter(status) is not StatusFilter.ALL or priority != PRIORITY_FILTER_ALL


@dataclass(frozen=True)
class TodoCounts:
    total: int = 0
    active: int = 0
    completed: int = 0
    high_priority_active: int = 0

    @property
    def completion_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.completed / self.total * 100)


def count_todos(todos: Sequence[TodoRead]) -> TodoCounts:
    completed = sum(1 for t in todos if t.is_completed)
    high_active = sum(
        1 for t in todos if not t.is_completed and t.priority is Priority.HIGH
    )
    return TodoCounts(
        total=len(todos),
        active=len(todos) - completed,
        completed=completed,
        high_priority_active=high_active,
    )
