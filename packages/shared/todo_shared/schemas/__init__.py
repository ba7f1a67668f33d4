from .common import ChangeType, Priority, StatusFilter  # noqa: F401
from .todos import ChangeEvent, DeleteResult, TodoCreate, TodoRead, TodoUpdate  # noqa: F401
