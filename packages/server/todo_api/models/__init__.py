# SQLModel definitions: imported here to ensure metadata is populated.
from .base import CreatedAtMixin, UUIDMixin  # noqa: F401
from .user import User  # noqa: F401
from .todo import Todo  # noqa: F401
