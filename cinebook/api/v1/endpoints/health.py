"""Liveness endpoint — unauthenticated process and database status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.api.v1.deps import get_db, get_settings
from cinebook.core.config import Settings
from cinebook.schemas.common import HealthResponse

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """Public health check — always 200 while the process is up."""
    database = False
    try:
        await db.execute(select(1))
        database = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)

    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=settings.ENVIRONMENT,
        database=database,
    )
