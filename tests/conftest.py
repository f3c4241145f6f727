"""
Shared test fixtures for the CineBook test suite.

Every test gets its own app instance backed by a fresh SQLite file
(aiosqlite) so tests never share users, cookies or rate-limit state.
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from cinebook.core.config import Settings
from cinebook.crud import users as users_crud
from cinebook.db.base import Base
from cinebook.main import create_app

TEST_SECRET = "test-secret-key-for-cinebook"
ALLOWED_ORIGIN = "http://localhost:3000"
DEFAULT_PASSWORD = "secret123"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cinebook.db'}",
        SECRET_KEY=TEST_SECRET,
        RATE_LIMIT_ENABLED=False,
        CORS_ORIGINS=[ALLOWED_ORIGIN],
    )


@pytest.fixture
async def app(settings: Settings):
    """Create all tables before usage and drop after."""
    application = create_app(settings)
    engine = application.state.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield application

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(app):
    """Return a raw database session for direct queries in tests."""
    async with app.state.session_factory() as session:
        yield session


# ── Helpers ─────────────────────────────────────────────────────────
async def register(client: AsyncClient, username: str, email: str, **extra):
    """POST /auth/register and drop the cookie so later calls choose their own token."""
    payload = {"username": username, "email": email, "password": DEFAULT_PASSWORD, **extra}
    resp = await client.post("/auth/register", json=payload)
    client.cookies.clear()
    return resp


async def login(client: AsyncClient, username: str, password: str = DEFAULT_PASSWORD):
    resp = await client.post("/auth/login", json={"username": username, "password": password})
    client.cookies.clear()
    return resp


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_token(app, async_client: AsyncClient) -> str:
    """Seed an admin straight into the store and log in as them."""
    async with app.state.session_factory() as session:
        await users_crud.create_user(
            session,
            username="boss",
            email="boss@cinebook.test",
            password=DEFAULT_PASSWORD,
            role="admin",
        )
    resp = await login(async_client, "boss")
    assert resp.status_code == 200
    return resp.json()["token"]


@pytest.fixture
async def user_token(async_client: AsyncClient) -> str:
    resp = await register(async_client, "alice", "alice@example.com")
    assert resp.status_code == 201
    return resp.json()["token"]
