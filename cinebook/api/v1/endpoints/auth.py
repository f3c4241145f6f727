"""
Auth endpoints — register, login, logout, profile, tickets & user management.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.api.v1.deps import (LOGGED_OUT_TOKEN, TOKEN_COOKIE,
                                  get_current_user, get_db, get_settings,
                                  rate_limit_login, require_admin,
                                  require_admin_or_self)
from cinebook.core.config import Settings
from cinebook.core.exceptions import (AuthError, ConflictError,
                                      ForbiddenError, ValidationError,
                                      server_error_boundary)
from cinebook.core.security import create_access_token
from cinebook.crud import tickets as tickets_crud
from cinebook.crud import users as users_crud
from cinebook.models.user import User
from cinebook.schemas.common import MessageResponse
from cinebook.schemas.ticket import TicketsResponse, UserListResponse
from cinebook.schemas.user import (AuthResponse, LoginRequest, UserCreate,
                                   UserPublic, UserRead, UserResponse,
                                   UserUpdate)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


# ── Session binding ─────────────────────────────────────────────────
def send_token_response(user: User, status_code: int, settings: Settings) -> JSONResponse:
    """Issue a token, set it as an HttpOnly cookie and echo it in the body."""
    token = create_access_token(user.id, settings)

    body = AuthResponse(token=token, user=UserPublic.model_validate(user))
    response = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        expires=datetime.now(timezone.utc) + timedelta(days=settings.JWT_COOKIE_EXPIRE_DAYS),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Create an account and log it in."""
    with server_error_boundary("registration"):
        existing = await users_crud.find_by_username_or_email(db, body.username, body.email)
        if existing is not None:
            if existing.email == body.email:
                raise ConflictError("User with this email already exists")
            raise ConflictError("Username already taken")

        user = await users_crud.create_user(
            db,
            username=body.username,
            email=body.email,
            password=body.password,
            role=body.role,
        )

    logger.info("Registered user %s (id %d, role %s)", user.username, user.id, user.role)
    return send_token_response(user, 201, settings)


@router.post(
    "/login", response_model=AuthResponse, dependencies=[Depends(rate_limit_login)]
)
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Authenticate with username/password. Sets the session cookie."""
    if not body.username or not body.password:
        raise ValidationError("Please provide a username and password")

    with server_error_boundary("login"):
        user = await users_crud.authenticate(db, body.username, body.password)

    if user is None:
        logger.info("Failed login attempt from %s", get_remote_address(request))
        raise AuthError("Invalid credentials")

    return send_token_response(user, 200, settings)


@router.get("/logout", response_model=MessageResponse)
async def logout(settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Overwrite the session cookie with one that expires almost immediately."""
    body = MessageResponse(message="User logged out successfully")
    response = JSONResponse(status_code=200, content=body.model_dump())
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=LOGGED_OUT_TOKEN,
        expires=datetime.now(timezone.utc) + timedelta(seconds=settings.LOGOUT_COOKIE_SECONDS),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.get("/me", response_model=UserResponse)
async def read_current_user(
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Return profile of the currently authenticated user."""
    return UserResponse(data=UserRead.model_validate(current_user))


@router.get("/tickets", response_model=TicketsResponse)
async def read_current_user_tickets(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TicketsResponse:
    with server_error_boundary("retrieving tickets"):
        data = await tickets_crud.aggregate_tickets(db, current_user.id)
    return TicketsResponse(data=data)


# ── User management ─────────────────────────────────────────────────
@router.get("/users", response_model=UserListResponse)
async def list_users(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> UserListResponse:
    """All users with their expanded tickets (admin only)."""
    with server_error_boundary("retrieving users"):
        users = await tickets_crud.aggregate_all_users(db)
    return UserListResponse(count=len(users), data=users)


@router.delete("/user/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> MessageResponse:
    with server_error_boundary("deleting user"):
        user = await users_crud.delete_user(db, user_id)
    logger.info("User %d (%s) deleted by %s", user_id, user.username, admin.username)
    return MessageResponse(message="User deleted successfully")


@router.put("/user/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_self),
) -> UserResponse:
    """Partial update. Only admins may change a role."""
    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if "role" in fields and current_user.role != "admin":
        raise ForbiddenError("Only an admin can change a user role")

    with server_error_boundary("updating user"):
        user = await users_crud.update_user(db, user_id, fields)
    logger.info("User %d updated by %s: %s", user_id, current_user.username, sorted(fields))
    return UserResponse(data=UserRead.model_validate(user))
