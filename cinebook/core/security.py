"""
JWT token creation / verification and password hashing (bcrypt).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JOSEError, jwt
from passlib.context import CryptContext

from cinebook.core.config import Settings
from cinebook.core.exceptions import TokenSigningError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ── Passwords ───────────────────────────────────────────────────────
def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


def dummy_verify() -> None:
    """Burn one hash round so a missing user costs as much as a wrong password."""
    pwd_context.dummy_verify()


# ── JWT tokens ──────────────────────────────────────────────────────
def create_access_token(
    subject: str | Any,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    if not settings.SECRET_KEY:
        raise TokenSigningError()

    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(days=settings.JWT_EXPIRE_DAYS))
    try:
        return jwt.encode(
            {"sub": str(subject), "iat": issued_at, "exp": expire},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
    except JOSEError as exc:
        raise TokenSigningError() from exc


def decode_access_token(token: str, settings: Settings) -> dict | None:
    """Return payload dict if the token is valid and unexpired, else ``None``."""
    if not settings.SECRET_KEY:
        return None
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JOSEError:
        return None
