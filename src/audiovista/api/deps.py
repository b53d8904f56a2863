"""FastAPI dependencies for API endpoints."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from audiovista.config.database import db_manager
from audiovista.config.settings import settings
from audiovista.container import container
from audiovista.exceptions import APIError, AuthenticationError
from audiovista.services.audio_download import AudioDownloadService
from audiovista.services.audio_stream import AudioStreamService
from audiovista.services.disk_quota import DiskQuotaManager


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for database session.

    Yields an async SQLAlchemy session that auto-commits on success
    and rolls back on exception.

    Yields
    ------
    AsyncSession
        An async SQLAlchemy session for database operations.
    """
    async for session in db_manager.get_session():
        yield session


def get_download_service() -> AudioDownloadService:
    """Download orchestrator singleton."""
    return container.audio_download_service


def get_stream_service() -> AudioStreamService:
    """Streaming responder singleton."""
    return container.audio_stream_service


def get_quota_manager() -> DiskQuotaManager:
    """Disk quota manager singleton."""
    return container.disk_quota_manager


async def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
) -> None:
    """
    Dependency guarding scheduled maintenance endpoints.

    Expects ``Authorization: Bearer <CRON_SECRET>``.

    Raises
    ------
    APIError
        500 when no secret is configured (the endpoint is never open).
    AuthenticationError
        401 when the header is missing or does not match.
    """
    secret = settings.cron_secret
    if not secret:
        raise APIError("Cleanup secret is not configured")

    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(
        authorization.encode(), expected.encode()
    ):
        raise AuthenticationError("Invalid or missing cleanup credentials")
