"""
Streaming responder for cached and remote audio.

Serves audio bytes to HTTP clients from the best available source:

1. a ready local file, with single byte-range support;
2. a cached, unexpired remote URL, proxied with the client's ``Range``
   header forwarded unchanged;
3. a freshly resolved remote URL, proxied exactly once.

A 403 or 410 from the upstream host means the signed URL has expired: the
cached row is invalidated and the request falls through to a fresh
resolution. Errors are returned as short plain-text bodies.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Optional, Tuple

import anyio
import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.exceptions import ExtractionError, UpstreamExpiredError
from audiovista.models.audio import AudioFileInfo
from audiovista.models.enums import StreamSource
from audiovista.models.youtube_types import is_valid_video_id
from audiovista.repositories.audio_url_cache_repository import (
    AudioUrlCacheRepository,
)
from audiovista.services.audio_download import (
    AudioDownloadService,
    require_valid_video_id,
)
from audiovista.services.disk_quota import DiskQuotaManager
from audiovista.services.interfaces import ExtractionClientInterface

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response headers
# ---------------------------------------------------------------------------
_LOCAL_MEDIA_TYPE = "audio/mpeg"
_UPSTREAM_DEFAULT_MEDIA_TYPE = "audio/mp4"
_CACHE_CONTROL_LOCAL = "public, max-age=31536000"  # 1 year
_CACHE_CONTROL_PROXY = "public, max-age=3600"  # 1 hour
_MIRRORED_UPSTREAM_HEADERS = ("content-length", "content-range", "accept-ranges")

# ---------------------------------------------------------------------------
# Upstream statuses that mean the resolved URL is no longer valid
# ---------------------------------------------------------------------------
_EXPIRED_STATUSES = frozenset({403, 410})

_FILE_CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Byte ranges
# ---------------------------------------------------------------------------


class UnsatisfiableRangeError(ValueError):
    """A well-formed range that selects no byte of the resource."""


def parse_byte_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single ``bytes=`` range against a resource of *size* bytes.

    Supports ``bytes=start-end``, ``bytes=start-`` (to end of file) and the
    suffix form ``bytes=-N`` (last N bytes). An ``end`` past the last byte is
    clamped to ``size - 1``.

    Parameters
    ----------
    header : Optional[str]
        Raw ``Range`` header value.
    size : int
        Resource size in bytes.

    Returns
    -------
    Optional[Tuple[int, int]]
        Inclusive ``(start, end)``, or None when the header is absent or
        malformed (multi-range requests included); the caller then serves
        the full resource.

    Raises
    ------
    UnsatisfiableRangeError
        If ``start >= size`` or ``start > end``.

    Examples
    --------
    >>> parse_byte_range("bytes=100-199", 1000)
    (100, 199)
    >>> parse_byte_range("bytes=-100", 1000)
    (900, 999)
    >>> parse_byte_range("bytes=900-5000", 1000)
    (900, 999)
    """
    if not header:
        return None

    match = _RANGE_RE.match(header)
    if match is None:
        return None

    start_text, end_text = match.groups()
    if not start_text and not end_text:
        return None

    if not start_text:
        suffix_length = int(end_text)
        if suffix_length == 0 or size == 0:
            raise UnsatisfiableRangeError(header)
        return max(0, size - suffix_length), size - 1

    start = int(start_text)
    end = int(end_text) if end_text else size - 1
    if start >= size or start > end:
        raise UnsatisfiableRangeError(header)
    return start, min(end, size - 1)


async def iter_file_range(
    path: Path, start: int, length: int, chunk_size: int = _FILE_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """
    Yield *length* bytes of *path* from offset *start* in chunks.

    Reads run in a worker thread. The file handle is closed when the body is
    exhausted and also when the client disconnects or the task is cancelled.
    """
    handle = await anyio.to_thread.run_sync(path.open, "rb")
    try:
        await anyio.to_thread.run_sync(handle.seek, start)
        remaining = length
        while remaining > 0:
            chunk = await anyio.to_thread.run_sync(
                handle.read, min(chunk_size, remaining)
            )
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        handle.close()


def _plain_error(message: str, status_code: int) -> Response:
    return PlainTextResponse(message, status_code=status_code)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  Service                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝


class AudioStreamService:
    """
    Serve audio for a video from disk or by proxying the remote URL.

    Parameters
    ----------
    config : AudioCacheConfig
        Cache configuration (timeouts, TTL, user agent).
    extraction_client : ExtractionClientInterface
        Client used to resolve fresh remote URLs.
    download_service : AudioDownloadService
        Provides the ready local file lookup.
    quota_manager : DiskQuotaManager | None
        Records plays of local files.
    url_repository : AudioUrlCacheRepository | None
        Resolved URL store.
    http_client : httpx.AsyncClient | None
        Client for upstream requests (default: created on first use).
    session_factory : async_sessionmaker[AsyncSession] | None
        Factory for the sessions used by play updates.
    """

    def __init__(
        self,
        config: AudioCacheConfig,
        extraction_client: ExtractionClientInterface,
        download_service: AudioDownloadService,
        quota_manager: DiskQuotaManager | None = None,
        url_repository: AudioUrlCacheRepository | None = None,
        http_client: httpx.AsyncClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.config = config
        self.extraction_client = extraction_client
        self.download_service = download_service
        self.quota_manager = quota_manager or download_service.quota_manager
        self.url_repository = url_repository or AudioUrlCacheRepository()
        self._http_client = http_client
        self._session_factory = session_factory
        self._touch_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # HTTP client lifecycle
    # ------------------------------------------------------------------

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                # Only the handshake is bounded; audio bodies may stream for long
                timeout=httpx.Timeout(None, connect=self.config.upstream_connect_timeout),
                follow_redirects=True,
                headers={"User-Agent": self.config.upstream_user_agent},
            )
        return self._http_client

    async def aclose(self) -> None:
        """Wait for pending play updates and close the upstream HTTP client."""
        await self.wait_for_touches()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from audiovista.config.database import db_manager

            self._session_factory = db_manager.get_session_factory()
        return self._session_factory

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def stream(
        self,
        session: AsyncSession,
        video_id: str,
        range_header: Optional[str] = None,
    ) -> Response:
        """
        Serve audio for a video from the best available source.

        Parameters
        ----------
        session : AsyncSession
            Database session.
        video_id : str
            Video identifier.
        range_header : Optional[str]
            Client ``Range`` header, if any.

        Returns
        -------
        Response
            200/206 audio, or a plain-text error (400, 416, 500, 502, or the
            upstream status for other upstream failures).
        """
        if not is_valid_video_id(video_id):
            return _plain_error("Invalid video ID", 400)

        local = await self.download_service.get_local_file(session, video_id)
        if local is not None:
            response = self._serve_local(local, range_header)
            if response is not None:
                return response

        cached_url = await self.url_repository.get_valid_url(session, video_id)
        if cached_url:
            try:
                return await self._proxy(
                    cached_url, range_header, video_id, StreamSource.CACHED_URL
                )
            except UpstreamExpiredError as e:
                logger.info(
                    "Cached URL for %s rejected with %d, resolving a fresh one",
                    video_id,
                    e.status_code,
                )
                await self.url_repository.invalidate(session, video_id)
                await session.commit()
            except httpx.HTTPError as e:
                logger.warning("Upstream request for %s failed: %s", video_id, e)
                return _plain_error("Upstream request failed", 502)

        try:
            fresh_url = await self._resolve_fresh(session, video_id)
        except ExtractionError as e:
            logger.error("Failed to resolve audio URL for %s: %s", video_id, e)
            fresh_url = None
        if not fresh_url:
            return _plain_error("Failed to get audio URL", 500)

        try:
            return await self._proxy(
                fresh_url, range_header, video_id, StreamSource.FRESH_URL
            )
        except UpstreamExpiredError as e:
            logger.error(
                "Fresh URL for %s also rejected with %d", video_id, e.status_code
            )
            await self.url_repository.invalidate(session, video_id)
            await session.commit()
            return _plain_error(
                f"Fresh URL also failed: upstream returned {e.status_code}", 502
            )
        except httpx.HTTPError as e:
            logger.warning("Upstream request for %s failed: %s", video_id, e)
            return _plain_error("Upstream request failed", 502)

    async def serve_local_only(
        self,
        session: AsyncSession,
        video_id: str,
        range_header: Optional[str] = None,
    ) -> Response:
        """Serve the local file only; 404 when it is not cached."""
        if not is_valid_video_id(video_id):
            return _plain_error("Invalid video ID", 400)

        local = await self.download_service.get_local_file(session, video_id)
        response = self._serve_local(local, range_header) if local else None
        if response is None:
            return _plain_error("Audio file not found", 404)
        return response

    async def resolve_url(self, session: AsyncSession, video_id: str) -> str:
        """
        Return a playable remote URL, cached or freshly resolved.

        Raises
        ------
        ValidationError
            If the id is malformed.
        ExtractionError
            If resolution fails, times out (``timed_out``) or yields nothing.
        ExtractionToolMissingError
            If the extraction tool is not installed.
        """
        require_valid_video_id(video_id)

        cached_url = await self.url_repository.get_valid_url(session, video_id)
        if cached_url:
            return cached_url

        fresh_url = await self._resolve_fresh(session, video_id)
        if not fresh_url:
            raise ExtractionError(message="No audio URL returned")
        return fresh_url

    # ------------------------------------------------------------------
    # Local files
    # ------------------------------------------------------------------

    def _serve_local(
        self, local: AudioFileInfo, range_header: Optional[str]
    ) -> Optional[Response]:
        """Build the disk response, or None when the file vanished meanwhile."""
        path = self.config.cache_dir / local.file_path
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            logger.warning(
                "Cached file for %s disappeared before serving", local.video_id
            )
            return None

        try:
            byte_range = parse_byte_range(range_header, size)
        except UnsatisfiableRangeError:
            return Response(
                status_code=416,
                headers={"Content-Range": f"bytes */{size}"},
            )

        headers = {
            "Accept-Ranges": "bytes",
            "Cache-Control": _CACHE_CONTROL_LOCAL,
        }
        if byte_range is None:
            start, end = 0, size - 1
            status_code = 200
        else:
            start, end = byte_range
            status_code = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"

        length = max(0, end - start + 1)
        headers["Content-Length"] = str(length)

        # Counts as a play even when the client aborts mid-body
        self._schedule_touch(local.video_id)
        return StreamingResponse(
            iter_file_range(path, start, length),
            status_code=status_code,
            media_type=_LOCAL_MEDIA_TYPE,
            headers=headers,
        )

    def _schedule_touch(self, video_id: str) -> None:
        task = asyncio.create_task(
            self._touch(video_id), name=f"audio-touch-{video_id}"
        )
        self._touch_tasks.add(task)
        task.add_done_callback(self._touch_tasks.discard)

    async def _touch(self, video_id: str) -> None:
        try:
            session_factory = self._get_session_factory()
            async with session_factory() as session:
                await self.quota_manager.touch(session, video_id)
        except Exception:
            logger.warning("Failed to record play for %s", video_id, exc_info=True)

    async def wait_for_touches(self) -> None:
        """Wait until every scheduled play update has settled."""
        if self._touch_tasks:
            await asyncio.gather(*self._touch_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Remote URLs
    # ------------------------------------------------------------------

    async def _resolve_fresh(
        self, session: AsyncSession, video_id: str
    ) -> Optional[str]:
        url = await self.extraction_client.resolve_url(
            video_id, timeout=self.config.resolve_timeout
        )
        if not url:
            return None
        await self.url_repository.put(session, video_id, url, self.config.url_ttl)
        await session.commit()
        return url

    async def _proxy(
        self,
        url: str,
        range_header: Optional[str],
        video_id: str,
        source: StreamSource,
    ) -> Response:
        """
        Open the upstream response and relay it.

        Raises
        ------
        UpstreamExpiredError
            If the upstream host answers 403 or 410.
        httpx.HTTPError
            If the upstream cannot be reached.
        """
        client = self._get_http_client()
        request_headers = {}
        if range_header:
            request_headers["Range"] = range_header

        request = client.build_request("GET", url, headers=request_headers)
        try:
            upstream = await asyncio.wait_for(
                client.send(request, stream=True),
                timeout=self.config.upstream_connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise httpx.ReadTimeout(
                "Upstream did not answer in time", request=request
            ) from e

        status_code = upstream.status_code
        if status_code in _EXPIRED_STATUSES:
            await upstream.aclose()
            raise UpstreamExpiredError(status_code)
        if not 200 <= status_code < 300:
            await upstream.aclose()
            logger.warning(
                "Upstream returned %d for %s (%s)", status_code, video_id, source.value
            )
            return _plain_error(f"Upstream error: {status_code}", status_code)

        headers = {
            name: upstream.headers[name]
            for name in _MIRRORED_UPSTREAM_HEADERS
            if name in upstream.headers
        }
        headers["Access-Control-Allow-Origin"] = "*"
        headers["Cache-Control"] = _CACHE_CONTROL_PROXY
        media_type = upstream.headers.get("content-type", _UPSTREAM_DEFAULT_MEDIA_TYPE)

        logger.debug("Proxying %s from %s (%d)", video_id, source.value, status_code)
        return StreamingResponse(
            self._relay(upstream),
            status_code=status_code,
            media_type=media_type,
            headers=headers,
        )

    @staticmethod
    async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()
