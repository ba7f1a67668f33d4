"""Exceptions raised by the sync client. ``str(exc)`` is the user-facing message."""

from __future__ import annotations


class TodoSyncError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TodoSyncError):
    """No session, or the server rejected it. Re-authenticate; do not retry."""


class DraftValidationError(TodoSyncError):
    """Input rejected locally; nothing was sent."""


class FetchError(TodoSyncError):
    """Loading the collection failed. The previous snapshot is kept."""


class MutationError(TodoSyncError):
    """An insert, update or delete failed at the gateway."""


class UploadError(TodoSyncError):
    """An attachment upload failed; no URL was produced."""
