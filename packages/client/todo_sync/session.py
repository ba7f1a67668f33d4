"""
Explicit session context.

The sync contract, gateway and change feed all read the current session from
one ``SessionContext`` instead of ambient state, and are told when it ends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Coroutine

import structlog

from .errors import AuthenticationError

log = structlog.get_logger()

SessionEndListener = Callable[[], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Session:
    access_token: str
    user_id: str
    email: str

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class SessionContext:
    """Holds the current session and notifies listeners when it ends."""

    def __init__(self, session: Session | None = None) -> None:
        self._session = session
        self._listeners: list[SessionEndListener] = []

    @property
    def current(self) -> Session | None:
        return self._session

    @property
    def active(self) -> bool:
        return self._session is not None

    def require(self) -> Session:
        if self._session is None:
            raise AuthenticationError("Not signed in", status_code=401)
        return self._session

    def start(self, session: Session) -> None:
        self._session = session
        log.info("session.started", user_id=session.user_id)

    def on_end(self, listener: SessionEndListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    async def end(self, reason: str = "signed_out") -> None:
        if self._session is None:
            return
        user_id = self._session.user_id
        self._session = None
        log.info("session.ended", user_id=user_id, reason=reason)

        for listener in list(self._listeners):
            try:
                await listener()
            except Exception:
                log.exception("session.listener_error", reason=reason)
