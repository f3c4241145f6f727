"""
FastAPI dependencies — settings, database session and auth guards.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Cookie, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.core.config import Settings
from cinebook.core.exceptions import (AuthError, ForbiddenError, RateLimitError,
                                      server_error_boundary)
from cinebook.core.security import decode_access_token
from cinebook.crud import users as users_crud
from cinebook.models.user import User

TOKEN_COOKIE = "token"
LOGGED_OUT_TOKEN = "none"

# auto_error=False so a missing header falls through to our own 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# ── Settings & database session ─────────────────────────────────────
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Rate limiting ───────────────────────────────────────────────────
def rate_limit_login(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Count one login attempt against the caller's IP on this app's limiter."""
    limiter: Limiter = request.app.state.limiter
    if not limiter.enabled:
        return
    limit = parse(settings.LOGIN_RATE_LIMIT)
    if not limiter.limiter.hit(limit, "login", get_remote_address(request)):
        raise RateLimitError(f"Rate limit exceeded: {settings.LOGIN_RATE_LIMIT}")


# ── Auth dependencies ───────────────────────────────────────────────
def _token_from_cookie(value: str | None) -> str | None:
    if not value or value == LOGGED_OUT_TOKEN:
        return None
    if value.startswith("Bearer "):
        return value.split(" ", 1)[1]
    return value


async def get_current_user(
    request: Request,
    header_token: Optional[str] = Depends(oauth2_scheme),
    cookie_token: Optional[str] = Cookie(default=None, alias=TOKEN_COOKIE),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Decode JWT from Cookie OR Header, look up user, attach it to the request.

    The cookie wins when both are sent.  The token proves identity only:
    role and every other field come from the database on each request.
    """
    token = _token_from_cookie(cookie_token) or header_token
    if not token:
        raise AuthError()

    payload = decode_access_token(token, settings)
    if payload is None:
        raise AuthError()

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthError() from None

    with server_error_boundary("authentication"):
        user = await users_crud.get_user(db, user_id)
    if user is None:
        raise AuthError()

    request.state.user = user
    return user


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """Only allow admin role to proceed."""
    if current_user.role != "admin":
        raise ForbiddenError(
            f"User role {current_user.role} is not authorized to access this route"
        )
    return current_user


async def require_admin_or_self(
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> User:
    """Allow admins, or the user acting on their own record."""
    if current_user.role != "admin" and current_user.id != user_id:
        raise ForbiddenError("Not authorized to modify this user")
    return current_user
