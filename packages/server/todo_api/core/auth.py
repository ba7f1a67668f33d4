"""
Authentication for the todo API.

Supports:
- Email/Password sign-in with bcrypt hashes
- Passwordless email-link codes (short-lived, single-use JWTs)
- JWT sessions carried by cookie or Bearer header, with Redis revocation list
- The ``require_user`` dependency every record procedure hangs off
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from todo_api.core.config import get_settings
from todo_api.core.database import get_session
from todo_api.core.redis import is_revoked, mark_revoked
from todo_api.models.user import User

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "todo_session"
CSRF_COOKIE = "todo_csrf"

PURPOSE_SESSION = "session"
PURPOSE_EMAIL_LINK = "email_link"

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    subject: str,
    *,
    purpose: str = PURPOSE_SESSION,
    expires_delta: timedelta | None = None,
    claims: dict | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        **(claims or {}),
        "sub": subject,
        "purpose": purpose,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str, purpose: str = PURPOSE_SESSION) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure or purpose mismatch."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("purpose") != purpose:
        raise jwt.InvalidTokenError(f"Expected a {purpose} token")
    return payload


def create_session_token(user: User) -> tuple[str, str]:
    return create_jwt(str(user.id), claims={"email": user.email})


def create_email_link_code(email: str) -> str:
    token, _jti = create_jwt(
        email,
        purpose=PURPOSE_EMAIL_LINK,
        expires_delta=timedelta(minutes=settings.email_link_expire_minutes),
    )
    return token


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int | None = None) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    await mark_revoked(jti, ttl_seconds or settings.jwt_expire_minutes * 60)


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    return await is_revoked(jti)


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Authentication dependency
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for the caller's identity and session id."""

    def __init__(self, user: User, jti: str | None = None):
        self.user = user
        self.user_id = user.id
        self.email = user.email
        self.jti = jti


def _extract_token(request: Request, authorization: Optional[str]) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


async def _authenticate_jwt(token: str, session: AsyncSession) -> AuthenticatedUser:
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise HTTPException(status_code=401, detail="Session has been revoked")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return AuthenticatedUser(user=user, jti=jti)


async def require_user(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Resolve the caller from a Bearer token or the session cookie, else 401."""
    token = _extract_token(request, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    auth_user = await _authenticate_jwt(token, session)
    request.state.auth = auth_user
    return auth_user
