"""Health check endpoint - no authentication required."""

from __future__ import annotations

import logging
import shutil
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from audiovista import __version__
from audiovista.api.schemas.responses import ApiResponse
from audiovista.config.database import db_manager
from audiovista.config.settings import settings

logger = logging.getLogger(__name__)


class HealthChecks(BaseModel):
    """Individual health check results."""

    model_config = ConfigDict(strict=True)

    database_latency_ms: Optional[int] = None
    audio_cache_dir_exists: bool = False
    extraction_tool_available: bool = False


class HealthStatus(BaseModel):
    """Application health status."""

    model_config = ConfigDict(strict=True)

    status: str  # "healthy", "degraded", "unhealthy"
    version: str
    database: str  # "connected", "disconnected"
    timestamp: datetime
    checks: Optional[HealthChecks] = None


class HealthResponse(ApiResponse[HealthStatus]):
    """Response for health check endpoint."""

    pass


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint - no authentication required.

    Returns application health status including:
    - Database connectivity
    - Audio cache directory presence
    - Extraction tool availability (degraded without it: only cached files play)
    - Application version
    """
    db_status = "disconnected"
    db_latency_ms: Optional[int] = None
    try:
        start = time.monotonic()
        async for session in db_manager.get_session():
            await session.execute(text("SELECT 1"))
            break
        db_latency_ms = int((time.monotonic() - start) * 1000)
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check database query failed: %s", e)

    cache_dir_exists = settings.resolved_audio_cache_dir.is_dir()
    tool_available = shutil.which(settings.ytdlp_path) is not None

    if db_status == "disconnected" or (db_latency_ms and db_latency_ms > 5000):
        status = "unhealthy"
    elif not tool_available:
        status = "degraded"
    else:
        status = "healthy"

    health_data = HealthStatus(
        status=status,
        version=__version__,
        database=db_status,
        timestamp=datetime.now(timezone.utc),
        checks=HealthChecks(
            database_latency_ms=db_latency_ms,
            audio_cache_dir_exists=cache_dir_exists,
            extraction_tool_available=tool_available,
        ),
    )

    return HealthResponse(data=health_data)
