"""
Authentication endpoints.

- Email/Password registration & sign-in
- Passwordless email-link sign-in with a code-exchange callback
- Session lookup and logout
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

import jwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from todo_api.core.auth import (
    CSRF_COOKIE,
    PURPOSE_EMAIL_LINK,
    SESSION_COOKIE,
    AuthenticatedUser,
    create_email_link_code,
    create_session_token,
    decode_jwt,
    generate_csrf_token,
    hash_password,
    is_jwt_revoked,
    require_user,
    revoke_jwt,
    verify_password,
)
from todo_api.core.config import get_settings
from todo_api.core.database import get_session
from todo_api.models.user import User

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

DEFAULT_NEXT = "/todos"
CALLBACK_ERROR_URL = "/?" + urlencode({"error": "Could not authenticate user"})

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(key=CSRF_COOKIE, value=csrf, **{**COOKIE_KWARGS, "httponly": False})


def _safe_next(next_path: Optional[str]) -> str:
    """Only same-site relative paths are accepted as redirect targets."""
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return DEFAULT_NEXT
    return next_path


def deliver_email_link(email: str, link: str) -> None:
    """Hand a sign-in link to the mail transport. Only logged for now."""
    log.info("auth.email_link_issued", email=email, link=link if settings.debug else None)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CredentialsRequest(BaseModel):
    email: EmailStr
    password: str


class EmailLinkRequest(BaseModel):
    email: EmailStr
    next: Optional[str] = None


class AuthResponse(BaseModel):
    user_id: str
    email: str
    access_token: str
    message: str


class SessionResponse(BaseModel):
    user_id: str
    email: str


# ---------------------------------------------------------------------------
# Email/Password
# ---------------------------------------------------------------------------

def _issue_session(response: Response, user: User) -> str:
    token, _jti = create_session_token(user)
    _set_session_cookies(response, token, generate_csrf_token())
    return token


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: CredentialsRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register with email/password and start a session."""
    result = await session.execute(select(User).where(User.email == body.email))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email already registered")

    if len(body.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")

    user = User(email=body.email, password_hash=hash_password(body.password))
    session.add(user)
    await session.commit()

    token = _issue_session(response, user)
    log.info("user.registered", user_id=str(user.id), email=body.email)
    return AuthResponse(
        user_id=str(user.id),
        email=user.email,
        access_token=token,
        message="Registration successful",
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: CredentialsRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    result = await session.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not verify_password(body.password, user.password_hash):
        log.warning("auth.login_failure", email=body.email, reason="bad_password")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = _issue_session(response, user)
    log.info("auth.login_success", user_id=str(user.id), email=body.email)
    return AuthResponse(
        user_id=str(user.id),
        email=user.email,
        access_token=token,
        message="Login successful",
    )


# ---------------------------------------------------------------------------
# Email link + code exchange
# ---------------------------------------------------------------------------

@router.post("/magic-link", status_code=202)
async def send_email_link(body: EmailLinkRequest):
    """Issue a single-use sign-in link. Unknown emails get an account on exchange."""
    code = create_email_link_code(body.email)
    query = urlencode({"code": code, "next": _safe_next(body.next)})
    link = f"{settings.public_base_url.rstrip('/')}/auth/callback?{query}"
    deliver_email_link(body.email, link)
    return {"message": "Check your email for the sign-in link"}


@router.get("/callback")
async def exchange_code(
    code: Optional[str] = None,
    next_path: Optional[str] = Query(None, alias="next"),
    session: AsyncSession = Depends(get_session),
):
    """
    Exchange a sign-in code for a session.

    Redirects to ``next`` (default /todos) with session cookies on success,
    and to the landing page with an error message otherwise.
    """
    if not code:
        return RedirectResponse(CALLBACK_ERROR_URL, status_code=303)

    try:
        payload = decode_jwt(code, purpose=PURPOSE_EMAIL_LINK)
    except jwt.PyJWTError as exc:
        log.warning("auth.code_exchange_failed", reason=str(exc))
        return RedirectResponse(CALLBACK_ERROR_URL, status_code=303)

    jti = payload.get("jti")
    if not jti or await is_jwt_revoked(jti):
        log.warning("auth.code_exchange_failed", reason="code_reused")
        return RedirectResponse(CALLBACK_ERROR_URL, status_code=303)
    await revoke_jwt(jti, ttl_seconds=settings.email_link_expire_minutes * 60)

    email = payload["sub"]
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user:
        user = User(email=email)
        session.add(user)
        await session.commit()
        log.info("user.registered", user_id=str(user.id), email=email, via="email_link")

    response = RedirectResponse(_safe_next(next_path), status_code=303)
    _issue_session(response, user)
    log.info("auth.login_success", user_id=str(user.id), email=email, via="email_link")
    return response


# ---------------------------------------------------------------------------
# Session Management
# ---------------------------------------------------------------------------

@router.get("/session", response_model=SessionResponse)
async def current_session(auth: AuthenticatedUser = Depends(require_user)):
    """Report the identity behind the current session."""
    return SessionResponse(user_id=str(auth.user_id), email=auth.email)


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Invalidate the current session."""
    authorization = request.headers.get("Authorization", "")
    token = authorization[7:].strip() if authorization.startswith("Bearer ") else None
    token = token or request.cookies.get(SESSION_COOKIE)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError:
            payload = {}  # already invalid, just clear cookies
        jti = payload.get("jti")
        if jti:
            await revoke_jwt(jti)

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return {"message": "Logged out"}
