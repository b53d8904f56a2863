"""Audio cache and streaming endpoints.

- GET    /audio/usage                 Disk usage snapshot
- POST   /audio/cleanup               Scheduled eviction (bearer CRON_SECRET)
- GET    /audio/{video_id}/stream     Audio bytes: local file, cached or fresh URL
- GET    /audio/{video_id}/file       Audio bytes from the local cache only
- GET    /audio/{video_id}/url        Playable remote URL as JSON
- GET    /audio/{video_id}/status     Download status (read-only)
- POST   /audio/{video_id}/download   Start a background download (202)
- DELETE /audio/{video_id}            Remove a cached file

The byte-serving endpoints answer errors with short plain-text bodies; the
JSON endpoints use RFC 7807 Problem Details.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import PlainTextResponse, Response

from audiovista.api.deps import (
    get_db,
    get_download_service,
    get_quota_manager,
    get_stream_service,
    require_cron_secret,
)
from audiovista.api.routers.responses import (
    AUDIO_STREAM_RESPONSES,
    DOWNLOAD_ERRORS,
    NOT_FOUND_RESPONSE,
    RESOLVE_ERRORS,
    STANDARD_ERRORS,
    UNAUTHORIZED_RESPONSE,
)
from audiovista.api.schemas.audio import AudioUrlResponse, CleanupResponse
from audiovista.exceptions import NotFoundError
from audiovista.models.audio import DiskUsage, DownloadStatusResult
from audiovista.models.youtube_types import is_valid_video_id
from audiovista.services.audio_download import AudioDownloadService
from audiovista.services.audio_stream import AudioStreamService
from audiovista.services.disk_quota import DiskQuotaManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["audio"])

# Not pattern-constrained: malformed ids get a plain-text 400 from the
# byte-serving endpoints and ``none`` from the status endpoint.
_VIDEO_ID_PATH = Path(..., description="YouTube video ID (exactly 11 characters)")


# ---------------------------------------------------------------------------
# Cache-wide endpoints
# ---------------------------------------------------------------------------


@router.get("/audio/usage", response_model=DiskUsage, responses=STANDARD_ERRORS)
async def get_audio_usage(
    db: AsyncSession = Depends(get_db),
    quota_manager: DiskQuotaManager = Depends(get_quota_manager),
) -> DiskUsage:
    """Aggregate size of ready audio files against the configured maximum."""
    return await quota_manager.usage(db)


@router.post(
    "/audio/cleanup",
    response_model=CleanupResponse,
    responses={**UNAUTHORIZED_RESPONSE, **STANDARD_ERRORS},
    dependencies=[Depends(require_cron_secret)],
)
async def cleanup_audio_cache(
    db: AsyncSession = Depends(get_db),
    quota_manager: DiskQuotaManager = Depends(get_quota_manager),
) -> CleanupResponse:
    """
    Evict audio files not played within the retention horizon.

    Meant to be called by an external scheduler with
    ``Authorization: Bearer <CRON_SECRET>``.

    Parameters
    ----------
    db : AsyncSession
        Database session.
    quota_manager : DiskQuotaManager
        Performs the eviction.

    Returns
    -------
    CleanupResponse
        Files evicted, megabytes freed and the usage afterwards.
    """
    result = await quota_manager.evict_stale(db)
    await db.commit()
    usage = await quota_manager.usage(db)

    logger.info(
        "Scheduled cleanup removed %d files, usage now %.1f%%",
        result.deleted_count,
        usage.usage_percent,
    )
    return CleanupResponse(
        deleted_files=result.deleted_count,
        freed_mb=round(result.freed_bytes / (1024 * 1024), 2),
        error_records_purged=result.error_records_purged,
        expired_urls_purged=result.expired_urls_purged,
        usage=usage,
    )


# ---------------------------------------------------------------------------
# Byte-serving endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/audio/{video_id}/stream",
    responses=AUDIO_STREAM_RESPONSES,
    response_class=Response,
)
async def stream_audio(
    video_id: str = _VIDEO_ID_PATH,
    range_header: Optional[str] = Header(default=None, alias="Range"),
    db: AsyncSession = Depends(get_db),
    stream_service: AudioStreamService = Depends(get_stream_service),
) -> Response:
    """
    Stream audio for a video.

    Serves the local file when cached (with byte-range support), otherwise
    proxies the remote media URL with the ``Range`` header passed through.

    Parameters
    ----------
    video_id : str
        YouTube video ID.
    range_header : Optional[str]
        Client ``Range`` header.

    Returns
    -------
    Response
        Audio bytes (200/206) or a plain-text error.
    """
    return await stream_service.stream(db, video_id, range_header)


@router.get(
    "/audio/{video_id}/file",
    responses={
        **AUDIO_STREAM_RESPONSES,
        404: {"content": {"text/plain": {}}, "description": "Not cached"},
    },
    response_class=Response,
)
async def get_audio_file(
    video_id: str = _VIDEO_ID_PATH,
    range_header: Optional[str] = Header(default=None, alias="Range"),
    db: AsyncSession = Depends(get_db),
    stream_service: AudioStreamService = Depends(get_stream_service),
) -> Response:
    """Serve the locally cached file only; 404 when it is not cached."""
    return await stream_service.serve_local_only(db, video_id, range_header)


# ---------------------------------------------------------------------------
# JSON endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/audio/{video_id}/url",
    response_model=AudioUrlResponse,
    responses=RESOLVE_ERRORS,
)
async def get_audio_url(
    video_id: str = _VIDEO_ID_PATH,
    db: AsyncSession = Depends(get_db),
    stream_service: AudioStreamService = Depends(get_stream_service),
) -> AudioUrlResponse | Response:
    """
    Return a playable remote URL (cached or freshly resolved).

    Extraction failures map to 504 (timeout), 503 (tool missing) and
    500 (anything else) through the exception handlers.
    """
    if not is_valid_video_id(video_id):
        return PlainTextResponse("Invalid video ID", status_code=400)

    url = await stream_service.resolve_url(db, video_id)
    return AudioUrlResponse(url=url)


@router.get("/audio/{video_id}/status", response_model=DownloadStatusResult)
async def get_audio_status(
    video_id: str = _VIDEO_ID_PATH,
    db: AsyncSession = Depends(get_db),
    download_service: AudioDownloadService = Depends(get_download_service),
) -> DownloadStatusResult:
    """Download status; ``none`` for unknown or malformed ids."""
    return await download_service.get_status(db, video_id)


@router.post(
    "/audio/{video_id}/download",
    response_model=DownloadStatusResult,
    status_code=status.HTTP_202_ACCEPTED,
    responses=DOWNLOAD_ERRORS,
)
async def trigger_audio_download(
    video_id: str = _VIDEO_ID_PATH,
    db: AsyncSession = Depends(get_db),
    download_service: AudioDownloadService = Depends(get_download_service),
) -> DownloadStatusResult:
    """
    Start a background download and return immediately.

    Returns ``downloading`` while a download runs (whether started by this
    call or an earlier one) and ``ready`` when the file is already cached.
    Refused with 507 when the cache is at or above its admission threshold.
    """
    return await download_service.trigger(db, video_id)


@router.delete(
    "/audio/{video_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={**NOT_FOUND_RESPONSE, **DOWNLOAD_ERRORS},
)
async def delete_audio(
    video_id: str = _VIDEO_ID_PATH,
    db: AsyncSession = Depends(get_db),
    download_service: AudioDownloadService = Depends(get_download_service),
) -> Response:
    """Remove a cached file and its record."""
    if not await download_service.remove(db, video_id):
        raise NotFoundError(resource_type="AudioFile", identifier=video_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
