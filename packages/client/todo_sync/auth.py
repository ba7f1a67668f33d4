"""
Authentication client: password sign-in, email links, code exchange, sign-out.

Successful sign-ins start the shared SessionContext; sign-out ends it, which
stops every component bound to the session.
"""

from __future__ import annotations

import httpx
import structlog

from .errors import AuthenticationError, TodoSyncError
from .gateway import error_detail
from .session import Session, SessionContext

log = structlog.get_logger()

SESSION_COOKIE = "todo_session"


class AuthClient:
    def __init__(self, http: httpx.AsyncClient, session_context: SessionContext):
        self._http = http
        self._session_context = session_context

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._post("/auth/login", json={"email": email, "password": password})
        return self._start(response.json())

    async def register(self, email: str, password: str) -> Session:
        response = await self._post("/auth/register", json={"email": email, "password": password})
        return self._start(response.json())

    async def send_email_link(self, email: str, next_path: str = "/todos") -> None:
        await self._post("/auth/magic-link", json={"email": email, "next": next_path})
        log.info("auth.email_link_requested", email=email)

    async def exchange_code(self, code: str) -> Session:
        """Trade an email-link code for a session (the callback's redirect is not followed)."""
        try:
            response = await self._http.get(
                "/auth/callback", params={"code": code}, follow_redirects=False
            )
        except httpx.HTTPError as exc:
            raise TodoSyncError(f"Network error: {exc}") from exc

        token = response.cookies.get(SESSION_COOKIE)
        location = response.headers.get("location", "")
        if not response.is_redirect or not token or location.startswith("/?error"):
            raise AuthenticationError("Could not authenticate user", status_code=401)

        session = await self.get_session(token)
        if session is None:
            raise AuthenticationError("Could not authenticate user", status_code=401)
        self._session_context.start(session)
        return session

    async def get_session(self, access_token: str | None = None) -> Session | None:
        """Ask the server who the token belongs to. None when it is not a valid session."""
        if access_token is None:
            current = self._session_context.current
            if current is None:
                return None
            access_token = current.access_token

        try:
            response = await self._http.get(
                "/auth/session", headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as exc:
            raise TodoSyncError(f"Network error: {exc}") from exc

        if response.status_code == 401:
            return None
        if response.is_error:
            raise TodoSyncError(error_detail(response), status_code=response.status_code)
        body = response.json()
        return Session(access_token=access_token, user_id=body["user_id"], email=body["email"])

    async def sign_out(self) -> None:
        session = self._session_context.current
        if session is not None:
            try:
                await self._http.post("/auth/logout", headers=session.auth_headers)
            except httpx.HTTPError as exc:
                log.warning("auth.logout_request_failed", error=str(exc))
        await self._session_context.end(reason="signed_out")

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.post(path, **kwargs)
        except httpx.HTTPError as exc:
            raise TodoSyncError(f"Network error: {exc}") from exc
        if response.status_code == 401:
            raise AuthenticationError(error_detail(response), status_code=401)
        if response.is_error:
            raise TodoSyncError(error_detail(response), status_code=response.status_code)
        return response

    def _start(self, body: dict) -> Session:
        session = Session(
            access_token=body["access_token"],
            user_id=body["user_id"],
            email=body["email"],
        )
        self._session_context.start(session)
        return session
