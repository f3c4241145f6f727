"""Tests for registration, login, session cookies and the identity guard."""

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.exc import OperationalError

from cinebook.core.security import create_access_token
from cinebook.crud import users as users_crud
from cinebook.db.base import Base
from cinebook.main import create_app
from tests.conftest import TEST_SECRET, bearer, login, register


def _cookie_header(resp) -> str:
    cookies = [c for c in resp.headers.get_list("set-cookie") if c.startswith("token=")]
    assert cookies, "response must set the token cookie"
    return cookies[-1]


def _cookie_expiry(header: str) -> datetime:
    for part in header.split(";"):
        key, _, value = part.strip().partition("=")
        if key.lower() == "expires":
            return parsedate_to_datetime(value)
    raise AssertionError(f"no expires attribute in {header!r}")


# ── Registration ────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_register_returns_token_for_new_user(async_client: AsyncClient):
    resp = await register(async_client, "alice", "Alice@Example.com")
    assert resp.status_code == 201
    data = resp.json()
    assert data["success"] is True
    assert data["user"]["username"] == "alice"
    assert data["user"]["email"] == "alice@example.com"
    assert data["user"]["role"] == "user"
    assert "password" not in data["user"]
    assert "hashed_password" not in data["user"]

    payload = jwt.decode(data["token"], TEST_SECRET, algorithms=["HS256"])
    assert payload["sub"] == str(data["user"]["id"])


@pytest.mark.asyncio
async def test_register_sets_httponly_cookie(async_client: AsyncClient):
    resp = await async_client.post(
        "/auth/register",
        json={"username": "carol", "email": "carol@example.com", "password": "secret123"},
    )
    header = _cookie_header(resp)
    assert "HttpOnly" in header
    assert "Secure" not in header
    assert resp.cookies.get("token") == resp.json()["token"]

    remaining = _cookie_expiry(header) - datetime.now(timezone.utc)
    assert timedelta(days=29) < remaining <= timedelta(days=30)


@pytest.mark.asyncio
async def test_register_duplicate_email_rejected(async_client: AsyncClient):
    await register(async_client, "alice", "alice@example.com")
    resp = await register(async_client, "alice2", "alice@example.com")
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert "email" in body["message"].lower()


@pytest.mark.asyncio
async def test_register_duplicate_username_rejected(async_client: AsyncClient):
    await register(async_client, "alice", "alice@example.com")
    resp = await register(async_client, "alice", "other@example.com")
    assert resp.status_code == 400
    assert "username" in resp.json()["message"].lower()


@pytest.mark.asyncio
async def test_register_email_reported_when_both_collide(async_client: AsyncClient):
    await register(async_client, "alice", "alice@example.com")
    await register(async_client, "bob", "bob@example.com")
    # username matches bob, email matches alice
    resp = await register(async_client, "bob", "alice@example.com")
    assert resp.status_code == 400
    assert "email" in resp.json()["message"].lower()


@pytest.mark.asyncio
async def test_register_validation_errors_are_aggregated(async_client: AsyncClient):
    resp = await async_client.post(
        "/auth/register",
        json={"username": "dave", "email": "not-an-email", "password": "123"},
    )
    assert resp.status_code == 400
    message = resp.json()["message"]
    assert "Please add a valid email" in message
    assert "Password must be at least 6 characters" in message
    assert ", " in message


@pytest.mark.asyncio
async def test_register_missing_fields(async_client: AsyncClient):
    resp = await async_client.post("/auth/register", json={"password": "secret123"})
    assert resp.status_code == 400
    message = resp.json()["message"]
    assert "Please add a username" in message
    assert "Please add an email" in message


@pytest.mark.asyncio
async def test_register_rejects_unknown_role(async_client: AsyncClient):
    resp = await register(async_client, "eve", "eve@example.com", role="superuser")
    assert resp.status_code == 400
    assert "Role must be one of" in resp.json()["message"]


@pytest.mark.asyncio
async def test_concurrent_registration_single_winner(async_client: AsyncClient):
    """Two simultaneous sign-ups for one username: one 201, one 400, never a 500."""

    async def attempt(email: str):
        return await async_client.post(
            "/auth/register",
            json={"username": "racer", "email": email, "password": "secret123"},
        )

    first, second = await asyncio.gather(
        attempt("racer1@example.com"), attempt("racer2@example.com")
    )
    assert sorted([first.status_code, second.status_code]) == [201, 400]
    loser = first if first.status_code == 400 else second
    assert "username" in loser.json()["message"].lower()


@pytest.mark.asyncio
async def test_store_level_conflict_message(db_session):
    """A duplicate that slips past the pre-check surfaces as '<Field> already exists'."""
    from cinebook.core.exceptions import ConflictError

    await users_crud.create_user(
        db_session, username="frank", email="frank@example.com", password="secret123"
    )
    with pytest.raises(ConflictError) as exc_info:
        await users_crud.create_user(
            db_session, username="frank", email="frank2@example.com", password="secret123"
        )
    assert exc_info.value.message == "Username already exists"


# ── Login ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_register_login_round_trip(async_client: AsyncClient):
    reg = await register(async_client, "alice", "alice@example.com")
    resp = await login(async_client, "alice")
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["id"] == reg.json()["user"]["id"]
    assert "hashed_password" not in data["user"]

    payload = jwt.decode(data["token"], TEST_SECRET, algorithms=["HS256"])
    assert int(payload["sub"]) == data["user"]["id"]


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(async_client: AsyncClient):
    await register(async_client, "alice", "alice@example.com")
    wrong_password = await login(async_client, "alice", "not-the-password")
    unknown_user = await login(async_client, "nobody", "not-the-password")

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()
    assert wrong_password.json()["message"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_requires_username_and_password(async_client: AsyncClient):
    resp = await async_client.post("/auth/login", json={"username": "alice"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Please provide a username and password"


@pytest.mark.asyncio
async def test_login_store_failure_is_server_error(async_client: AsyncClient, monkeypatch):
    async def broken(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database unavailable"))

    monkeypatch.setattr(users_crud, "authenticate", broken)
    resp = await login(async_client, "alice")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Server error during login"}


# ── Token lifetime & signing ────────────────────────────────────────
@pytest.mark.asyncio
async def test_token_expiry_window(settings):
    token = create_access_token(42, settings)
    payload = jwt.decode(token, TEST_SECRET, algorithms=["HS256"])
    assert payload["exp"] - payload["iat"] == settings.JWT_EXPIRE_DAYS * 24 * 60 * 60


@pytest.mark.asyncio
async def test_signing_failure_is_internal_error(settings):
    broken = create_app(settings.model_copy(update={"SECRET_KEY": ""}))
    async with broken.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        transport = ASGITransport(app=broken)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await register(client, "alice", "alice@example.com")
        assert resp.status_code == 500
        assert resp.json()["message"] == "Error generating authentication token"
    finally:
        await broken.state.engine.dispose()


@pytest.mark.asyncio
async def test_secure_cookie_in_production(settings):
    prod = create_app(settings.model_copy(update={"ENVIRONMENT": "production"}))
    async with prod.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        transport = ASGITransport(app=prod)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/auth/register",
                json={"username": "alice", "email": "alice@example.com", "password": "secret123"},
            )
        assert resp.status_code == 201
        assert "Secure" in _cookie_header(resp)
    finally:
        await prod.state.engine.dispose()


# ── Identity guard ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_me_with_bearer_header(async_client: AsyncClient, user_token: str):
    resp = await async_client.get("/auth/me", headers=bearer(user_token))
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["data"]["username"] == "alice"
    assert "hashed_password" not in data["data"]


@pytest.mark.asyncio
async def test_me_with_cookie(async_client: AsyncClient, user_token: str):
    async_client.cookies.set("token", user_token)
    resp = await async_client.get("/auth/me")
    assert resp.status_code == 200
    assert resp.json()["data"]["username"] == "alice"


@pytest.mark.asyncio
async def test_me_without_token(async_client: AsyncClient):
    resp = await async_client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_cookie_takes_precedence_over_header(async_client: AsyncClient, user_token: str):
    bob = await register(async_client, "bob", "bob@example.com")
    async_client.cookies.set("token", bob.json()["token"])
    resp = await async_client.get("/auth/me", headers=bearer(user_token))
    assert resp.json()["data"]["username"] == "bob"


@pytest.mark.asyncio
async def test_logged_out_cookie_falls_back_to_header(async_client: AsyncClient, user_token: str):
    async_client.cookies.set("token", "none")
    resp = await async_client.get("/auth/me", headers=bearer(user_token))
    assert resp.status_code == 200
    assert resp.json()["data"]["username"] == "alice"


@pytest.mark.asyncio
async def test_expired_token_rejected(async_client: AsyncClient, user_token: str, settings):
    user_id = jwt.get_unverified_claims(user_token)["sub"]
    expired = create_access_token(user_id, settings, expires_delta=timedelta(seconds=-30))
    resp = await async_client.get("/auth/me", headers=bearer(expired))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_foreign_signature_rejected(async_client: AsyncClient, user_token: str):
    claims = jwt.get_unverified_claims(user_token)
    forged = jwt.encode(claims, "some-other-secret", algorithm="HS256")
    resp = await async_client.get("/auth/me", headers=bearer(forged))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_malformed_subject_rejected(async_client: AsyncClient, settings):
    token = create_access_token("not-a-number", settings)
    resp = await async_client.get("/auth/me", headers=bearer(token))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_for_missing_user_rejected(async_client: AsyncClient, settings):
    token = create_access_token(9999, settings)
    resp = await async_client.get("/auth/me", headers=bearer(token))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Not authorized to access this route"


# ── Logout ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_logout_without_session(async_client: AsyncClient):
    resp = await async_client.get("/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "User logged out successfully"}

    header = _cookie_header(resp)
    assert header.startswith("token=none")
    assert "HttpOnly" in header
    remaining = _cookie_expiry(header) - datetime.now(timezone.utc)
    assert remaining <= timedelta(seconds=11)


@pytest.mark.asyncio
async def test_logout_with_session(async_client: AsyncClient, user_token: str):
    async_client.cookies.set("token", user_token)
    resp = await async_client.get("/auth/logout")
    assert resp.status_code == 200
    assert resp.cookies.get("token") == "none"
