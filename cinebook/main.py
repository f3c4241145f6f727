"""
CineBook — Application entry point.

``create_app`` is the **only** place the app is assembled.  Configuration
is passed in once and kept on ``app.state``; nothing below reads the
environment at request time.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from cinebook.api.v1.api import api_router
from cinebook.core.config import DEFAULT_SECRET_KEY, Settings
from cinebook.core.config import settings as default_settings
from cinebook.core.exceptions import register_exception_handlers
from cinebook.core.middleware import (OriginGuardMiddleware,
                                      RequestLoggingMiddleware,
                                      SecurityHeadersMiddleware)
from cinebook.crud import users as users_crud
from cinebook.db.base import Base
from cinebook.db.session import build_engine, build_session_factory

# Ensure all models are imported so metadata.create_all can see them
from cinebook.models.cinema import Cinema, Movie, Showtime, Theater  # noqa: F401
from cinebook.models.user import User, UserTicket  # noqa: F401

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


async def seed_first_admin(app: FastAPI) -> None:
    """Create the configured admin account on first run."""
    settings: Settings = app.state.settings
    if not (settings.FIRST_ADMIN_USERNAME and settings.FIRST_ADMIN_PASSWORD):
        return

    async with app.state.session_factory() as session:
        existing = await users_crud.find_by_username_or_email(
            session, settings.FIRST_ADMIN_USERNAME, settings.FIRST_ADMIN_EMAIL
        )
        if existing is None:
            await users_crud.create_user(
                session,
                username=settings.FIRST_ADMIN_USERNAME,
                email=settings.FIRST_ADMIN_EMAIL,
                password=settings.FIRST_ADMIN_PASSWORD,
                role="admin",
            )
            logger.info(
                "Default admin created: %s (password: <redacted>)",
                settings.FIRST_ADMIN_USERNAME,
            )


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = app.state.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    await seed_first_admin(app)

    settings: Settings = app.state.settings
    logger.info("%s v%s started (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)
    logger.info("Allowed origins: %s", ", ".join(settings.CORS_ORIGINS))
    yield
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    if settings.SECRET_KEY == DEFAULT_SECRET_KEY:
        logger.warning(
            "You are running with the default INSECURE secret key! "
            "Set SECRET_KEY in your environment or .env file."
        )

    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Movie ticket booking API",
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    engine = build_engine(settings.DATABASE_URL)
    application.state.settings = settings
    application.state.engine = engine
    application.state.session_factory = build_session_factory(engine)

    # Login throttling; in-memory counters belong to this app only
    application.state.limiter = Limiter(
        key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED
    )

    # CORS — credentialed requests only from the allow-list
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Cookie"],
        expose_headers=["Set-Cookie"],
    )
    application.add_middleware(OriginGuardMiddleware, allowed_origins=settings.CORS_ORIGINS)
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application, development=settings.is_development)

    application.include_router(api_router, prefix=settings.API_PREFIX)

    return application


configure_logging(default_settings)
app = create_app()
