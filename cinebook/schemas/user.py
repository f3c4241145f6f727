"""Pydantic schemas for User registration, login and CRUD."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, field_validator

_VALID_ROLES = {"user", "admin"}
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MIN_PASSWORD_LENGTH = 6


def _check_username(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Please add a username")
    if len(v) > 50:
        raise ValueError("Username must not exceed 50 characters")
    return v


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if not _EMAIL_RE.match(v):
        raise ValueError("Please add a valid email")
    return v


def _check_password(v: str) -> str:
    if len(v) < _MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters")
    return v


def _check_role(v: str) -> str:
    if v not in _VALID_ROLES:
        raise ValueError(f"Role must be one of: {', '.join(sorted(_VALID_ROLES))}")
    return v


class UserCreate(BaseModel):
    username: str
    email: str
    password: str
    role: str = "user"

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return _check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("role")
    @classmethod
    def _role(cls, v: str) -> str:
        return _check_role(v)


class LoginRequest(BaseModel):
    # Optional so a missing field yields the single login-specific message.
    username: str | None = None
    password: str | None = None


class UserUpdate(BaseModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None
    role: str | None = None

    @field_validator("username")
    @classmethod
    def _username(cls, v: str | None) -> str | None:
        return None if v is None else _check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str | None) -> str | None:
        return None if v is None else _check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str | None) -> str | None:
        return None if v is None else _check_password(v)

    @field_validator("role")
    @classmethod
    def _role(cls, v: str | None) -> str | None:
        return None if v is None else _check_role(v)


class UserPublic(BaseModel):
    id: int
    username: str
    email: str
    role: str

    model_config = {"from_attributes": True}


class UserRead(UserPublic):
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    user: UserPublic


class UserResponse(BaseModel):
    success: bool = True
    data: UserRead
