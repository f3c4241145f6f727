"""
Credential store — user lookups, creation, update and deletion.

Unique-constraint violations raised by the database (e.g. two concurrent
registrations that both passed the pre-check) come back as
``ConflictError("<Field> already exists")``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.core.exceptions import ConflictError, NotFoundError
from cinebook.core.security import (dummy_verify, get_password_hash,
                                    verify_password)
from cinebook.models.user import User, UserTicket

logger = logging.getLogger(__name__)

# Checked in this order; email wins when both collide.
_UNIQUE_FIELDS = ("email", "username")


async def find_by_username_or_email(
    db: AsyncSession, username: str, email: str
) -> User | None:
    """Return a user holding *email* or *username*, preferring the email match."""
    result = await db.execute(
        select(User).where(or_(User.email == email, User.username == username))
    )
    matches = list(result.scalars().all())
    for user in matches:
        if user.email == email:
            return user
    return matches[0] if matches else None


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username.strip()))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.id))
    return list(result.scalars().all())


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Return the user if *password* matches, else ``None``.

    A missing user still pays for one hash verification so response time
    does not reveal whether the username exists.
    """
    user = await get_user_by_username(db, username)
    if user is None:
        dummy_verify()
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def _duplicate_field(
    db: AsyncSession, fields: dict[str, Any], exclude_id: int | None = None
) -> str | None:
    for field in _UNIQUE_FIELDS:
        value = fields.get(field)
        if value is None:
            continue
        query = select(User.id).where(getattr(User, field) == value)
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            return field
    return None


async def _conflict_from_integrity_error(
    db: AsyncSession,
    exc: IntegrityError,
    fields: dict[str, Any],
    exclude_id: int | None = None,
) -> ConflictError:
    await db.rollback()
    field = await _duplicate_field(db, fields, exclude_id)
    if field is None:
        # Fall back to the driver message, e.g. "UNIQUE constraint failed: users.email".
        text = str(exc.orig).lower()
        field = next((f for f in _UNIQUE_FIELDS if f in text), None)
    logger.info("Unique constraint violation on %s", field or "unknown field")
    if field is None:
        return ConflictError()
    return ConflictError(f"{field.capitalize()} already exists")


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    role: str = "user",
) -> User:
    user = User(
        username=username,
        email=email,
        hashed_password=get_password_hash(password),
        role=role,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        raise await _conflict_from_integrity_error(
            db, exc, {"username": username, "email": email}
        ) from exc
    await db.refresh(user)
    return user


async def update_user(db: AsyncSession, user_id: int, fields: dict[str, Any]) -> User:
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError(f"User not found with id of {user_id}")

    password = fields.pop("password", None)
    if password is not None:
        user.hashed_password = get_password_hash(password)
    for field, value in fields.items():
        setattr(user, field, value)

    try:
        await db.commit()
    except IntegrityError as exc:
        raise await _conflict_from_integrity_error(db, exc, fields, user_id) from exc
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user_id: int) -> User:
    """Delete a user and the user's own ticket list.

    Showtimes and other records are not touched.
    """
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError(f"User not found with id of {user_id}")

    await db.execute(sa_delete(UserTicket).where(UserTicket.user_id == user_id))
    await db.delete(user)
    await db.commit()
    return user
