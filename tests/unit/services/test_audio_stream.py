"""
Unit tests for AudioStreamService and byte-range handling.

Upstream media hosts are simulated with ``httpx.MockTransport``; local files
live under tmp_path and their records in a file-backed SQLite database.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response, StreamingResponse

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.exceptions import ExtractionError, ValidationError
from audiovista.repositories.audio_file_repository import AudioFileRepository
from audiovista.repositories.audio_url_cache_repository import (
    AudioUrlCacheRepository,
)
from audiovista.services.audio_download import AudioDownloadService
from audiovista.services.audio_stream import (
    AudioStreamService,
    UnsatisfiableRangeError,
    iter_file_range,
    parse_byte_range,
)
from tests.factories.extraction_client_fake import FakeExtractionClient
from tests.factories.audio_file_factory import AudioFileDBFactory

VIDEO_ID = "dQw4w9WgXcQ"
CACHED_URL = "https://media.example.com/cached?sig=old"
FRESH_URL = "https://media.example.com/fresh?sig=new"
AUDIO_BYTES = bytes(range(256)) * 4  # 1024 bytes
UPSTREAM_BYTES = b"upstream-audio-bytes" * 10


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


class Upstream:
    """Programmable upstream host recording every request it receives."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, response in self.responses.items():
            if str(request.url).startswith(prefix):
                return response
        return httpx.Response(
            200,
            content=UPSTREAM_BYTES,
            headers={"content-type": "audio/webm", "accept-ranges": "bytes"},
        )


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def extraction_client() -> FakeExtractionClient:
    return FakeExtractionClient(url=FRESH_URL)


@pytest.fixture
async def stream_service(
    audio_config: AudioCacheConfig,
    extraction_client: FakeExtractionClient,
    upstream: Upstream,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AudioStreamService, None]:
    """Stream service whose HTTP client talks to the mock upstream."""
    download_service = AudioDownloadService(
        audio_config, extraction_client, session_factory=session_factory
    )
    service = AudioStreamService(
        audio_config,
        extraction_client,
        download_service,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)),
        session_factory=session_factory,
    )
    try:
        yield service
    finally:
        await service.aclose()


async def _add_local_file(
    session: AsyncSession,
    config: AudioCacheConfig,
    last_played_at: datetime | None = None,
) -> None:
    config.cache_dir.mkdir(parents=True, exist_ok=True)
    (config.cache_dir / f"{VIDEO_ID}.mp3").write_bytes(AUDIO_BYTES)
    session.add(
        AudioFileDBFactory(
            video_id=VIDEO_ID,
            file_size=len(AUDIO_BYTES),
            last_played_at=last_played_at or datetime.now(timezone.utc),
        )
    )
    await session.commit()


async def _body(response: Response) -> bytes:
    if isinstance(response, StreamingResponse):
        chunks = [chunk async for chunk in response.body_iterator]
        return b"".join(
            chunk if isinstance(chunk, bytes) else chunk.encode() for chunk in chunks
        )
    return bytes(response.body)


async def _cache_url(session: AsyncSession, url: str, expired: bool = False) -> None:
    created = datetime.now(timezone.utc)
    if expired:
        created -= timedelta(hours=6)
    await AudioUrlCacheRepository().put(
        session, VIDEO_ID, url, timedelta(hours=5), now=created
    )
    await session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Byte ranges
# ═══════════════════════════════════════════════════════════════════════════


class TestParseByteRange:
    """Tests for parse_byte_range."""

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("bytes=0-99", (0, 99)),
            ("bytes=100-199", (100, 199)),
            ("bytes=100-", (100, 999)),
            ("bytes=-100", (900, 999)),
            ("bytes=-5000", (0, 999)),
            ("bytes=900-5000", (900, 999)),
            ("bytes=999-999", (999, 999)),
            (" bytes = 10 - 20 ", (10, 20)),
        ],
    )
    def test_satisfiable_ranges(self, header: str, expected: tuple[int, int]) -> None:
        assert parse_byte_range(header, 1000) == expected

    @pytest.mark.parametrize(
        "header", [None, "", "bytes=", "bytes=-", "items=0-10", "bytes=abc", "bytes=0-1,5-6"]
    )
    def test_malformed_means_full_resource(self, header: str | None) -> None:
        assert parse_byte_range(header, 1000) is None

    @pytest.mark.parametrize("header", ["bytes=1000-", "bytes=5000-6000", "bytes=500-100", "bytes=-0"])
    def test_unsatisfiable(self, header: str) -> None:
        with pytest.raises(UnsatisfiableRangeError):
            parse_byte_range(header, 1000)

    def test_empty_resource(self) -> None:
        with pytest.raises(UnsatisfiableRangeError):
            parse_byte_range("bytes=-10", 0)


class TestIterFileRange:
    """Tests for the chunked file reader."""

    async def test_reads_requested_window(self, tmp_path) -> None:
        path = tmp_path / "a.mp3"
        path.write_bytes(AUDIO_BYTES)

        chunks = [c async for c in iter_file_range(path, 10, 300, chunk_size=64)]

        assert b"".join(chunks) == AUDIO_BYTES[10:310]
        assert max(len(c) for c in chunks) == 64


# ═══════════════════════════════════════════════════════════════════════════
# Local files
# ═══════════════════════════════════════════════════════════════════════════


class TestServeLocal:
    """Tests for serving cached files."""

    async def test_full_file(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        await _add_local_file(db_session, audio_config)

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["cache-control"] == "public, max-age=31536000"
        assert response.headers["content-length"] == str(len(AUDIO_BYTES))
        assert await _body(response) == AUDIO_BYTES

    async def test_byte_range(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        """bytes=100-199 returns exactly those 100 bytes with 206."""
        await _add_local_file(db_session, audio_config)

        response = await stream_service.stream(db_session, VIDEO_ID, "bytes=100-199")

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 100-199/{len(AUDIO_BYTES)}"
        assert response.headers["content-length"] == "100"
        assert await _body(response) == AUDIO_BYTES[100:200]

    async def test_unsatisfiable_range(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        await _add_local_file(db_session, audio_config)

        response = await stream_service.stream(db_session, VIDEO_ID, "bytes=5000-")

        assert response.status_code == 416
        assert response.headers["content-range"] == f"bytes */{len(AUDIO_BYTES)}"

    async def test_malformed_range_serves_full_file(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        await _add_local_file(db_session, audio_config)

        response = await stream_service.stream(db_session, VIDEO_ID, "bytes=0-1,4-5")

        assert response.status_code == 200
        assert await _body(response) == AUDIO_BYTES

    async def test_local_file_never_touches_upstream(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        await _add_local_file(db_session, audio_config)

        await stream_service.stream(db_session, VIDEO_ID)

        assert upstream.requests == []
        assert extraction_client.resolve_calls == []

    async def test_play_is_recorded(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        """Serving a file moves last_played_at forward."""
        await _add_local_file(
            db_session,
            audio_config,
            last_played_at=datetime.now(timezone.utc) - timedelta(days=20),
        )

        response = await stream_service.stream(db_session, VIDEO_ID)
        await _body(response)
        await stream_service.wait_for_touches()

        stale = await AudioFileRepository().find_stale_ready(
            db_session, datetime.now(timezone.utc) - timedelta(days=1)
        )
        assert stale == []

    @pytest.mark.parametrize("spec_version", ["2.3", "2.4"])
    async def test_play_is_recorded_when_client_disconnects(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
        spec_version: str,
    ) -> None:
        """A client that aborts after the first chunk still counts as a play."""
        await _add_local_file(
            db_session,
            audio_config,
            last_played_at=datetime.now(timezone.utc) - timedelta(days=20),
        )
        response = await stream_service.stream(db_session, VIDEO_ID, "bytes=0-")
        sent: List[dict] = []

        async def receive() -> dict:
            await asyncio.Event().wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            if message["type"] == "http.response.body" and message.get("body"):
                raise OSError("connection reset by peer")
            sent.append(message)

        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": spec_version},
            "method": "GET",
            "path": f"/api/v1/audio/{VIDEO_ID}/stream",
            "headers": [],
        }
        with contextlib.suppress(Exception):
            await response(scope, receive, send)
        await stream_service.wait_for_touches()

        assert sent[0]["type"] == "http.response.start"
        assert sent[0]["status"] == 206
        stale = await AudioFileRepository().find_stale_ready(
            db_session, datetime.now(timezone.utc) - timedelta(days=1)
        )
        assert stale == []

    async def test_unsatisfiable_range_is_not_a_play(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
    ) -> None:
        await _add_local_file(
            db_session,
            audio_config,
            last_played_at=datetime.now(timezone.utc) - timedelta(days=20),
        )

        await stream_service.stream(db_session, VIDEO_ID, "bytes=5000-")
        await stream_service.wait_for_touches()

        stale = await AudioFileRepository().find_stale_ready(
            db_session, datetime.now(timezone.utc) - timedelta(days=1)
        )
        assert [r.video_id for r in stale] == [VIDEO_ID]

    async def test_file_vanishing_before_serve_falls_back_to_upstream(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        upstream: Upstream,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A file removed between lookup and read is proxied instead of failing."""
        await _add_local_file(db_session, audio_config)
        lookup = stream_service.download_service.get_local_file

        async def lookup_then_evict(session: AsyncSession, video_id: str):
            info = await lookup(session, video_id)
            (audio_config.cache_dir / f"{video_id}.mp3").unlink()
            return info

        monkeypatch.setattr(
            stream_service.download_service, "get_local_file", lookup_then_evict
        )

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 200
        assert await _body(response) == UPSTREAM_BYTES
        assert len(upstream.requests) == 1

    async def test_file_vanishing_before_serve_local_only(
        self,
        stream_service: AudioStreamService,
        audio_config: AudioCacheConfig,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await _add_local_file(db_session, audio_config)
        lookup = stream_service.download_service.get_local_file

        async def lookup_then_evict(session: AsyncSession, video_id: str):
            info = await lookup(session, video_id)
            (audio_config.cache_dir / f"{video_id}.mp3").unlink()
            return info

        monkeypatch.setattr(
            stream_service.download_service, "get_local_file", lookup_then_evict
        )

        response = await stream_service.serve_local_only(db_session, VIDEO_ID)

        assert response.status_code == 404
        assert await _body(response) == b"Audio file not found"

    async def test_invalid_id(
        self, stream_service: AudioStreamService, db_session: AsyncSession
    ) -> None:
        response = await stream_service.stream(db_session, "../../../etc")

        assert response.status_code == 400
        assert await _body(response) == b"Invalid video ID"

    async def test_serve_local_only_not_cached(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        db_session: AsyncSession,
    ) -> None:
        response = await stream_service.serve_local_only(db_session, VIDEO_ID)

        assert response.status_code == 404
        assert await _body(response) == b"Audio file not found"
        assert upstream.requests == []


# ═══════════════════════════════════════════════════════════════════════════
# Proxied streams
# ═══════════════════════════════════════════════════════════════════════════


class TestProxy:
    """Tests for proxying remote URLs."""

    async def test_cached_url_is_used_with_range_forwarded(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        await _cache_url(db_session, CACHED_URL)
        upstream.responses[CACHED_URL] = httpx.Response(
            206,
            content=UPSTREAM_BYTES[:50],
            headers={
                "content-type": "audio/mp4",
                "content-range": f"bytes 0-49/{len(UPSTREAM_BYTES)}",
                "accept-ranges": "bytes",
            },
        )

        response = await stream_service.stream(db_session, VIDEO_ID, "bytes=0-49")

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 0-49/{len(UPSTREAM_BYTES)}"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert await _body(response) == UPSTREAM_BYTES[:50]
        assert upstream.requests[0].headers["range"] == "bytes=0-49"
        assert extraction_client.resolve_calls == []

    async def test_expired_url_is_not_used(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        await _cache_url(db_session, CACHED_URL, expired=True)

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 200
        assert await _body(response) == UPSTREAM_BYTES
        assert [str(r.url) for r in upstream.requests] == [FRESH_URL]
        assert extraction_client.resolve_calls == [VIDEO_ID]

    async def test_fresh_url_is_cached(
        self,
        stream_service: AudioStreamService,
        db_session: AsyncSession,
    ) -> None:
        response = await stream_service.stream(db_session, VIDEO_ID)
        await _body(response)

        assert await AudioUrlCacheRepository().get_valid_url(db_session, VIDEO_ID) == (
            FRESH_URL
        )

    async def test_expired_upstream_resolves_once(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        """A 403 on the cached URL triggers exactly one fresh resolution."""
        await _cache_url(db_session, CACHED_URL)
        upstream.responses[CACHED_URL] = httpx.Response(403)

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 200
        assert await _body(response) == UPSTREAM_BYTES
        assert extraction_client.resolve_calls == [VIDEO_ID]
        assert [str(r.url) for r in upstream.requests] == [CACHED_URL, FRESH_URL]
        assert await AudioUrlCacheRepository().get_valid_url(db_session, VIDEO_ID) == (
            FRESH_URL
        )

    async def test_fresh_url_also_rejected(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        """Two rejections end in 502 without a second resolution."""
        await _cache_url(db_session, CACHED_URL)
        upstream.responses[CACHED_URL] = httpx.Response(410)
        upstream.responses[FRESH_URL] = httpx.Response(403)

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 502
        assert await _body(response) == b"Fresh URL also failed: upstream returned 403"
        assert extraction_client.resolve_calls == [VIDEO_ID]
        assert await AudioUrlCacheRepository().get_valid_url(db_session, VIDEO_ID) is None

    async def test_other_upstream_status_is_returned(
        self,
        stream_service: AudioStreamService,
        upstream: Upstream,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        """Non-expiry upstream failures are passed through, not retried."""
        await _cache_url(db_session, CACHED_URL)
        upstream.responses[CACHED_URL] = httpx.Response(404)

        response = await stream_service.stream(db_session, VIDEO_ID)

        assert response.status_code == 404
        assert await _body(response) == b"Upstream error: 404"
        assert extraction_client.resolve_calls == []

    async def test_unreachable_upstream(
        self,
        audio_config: AudioCacheConfig,
        extraction_client: FakeExtractionClient,
        session_factory: async_sessionmaker[AsyncSession],
        db_session: AsyncSession,
    ) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        service = AudioStreamService(
            audio_config,
            extraction_client,
            AudioDownloadService(
                audio_config, extraction_client, session_factory=session_factory
            ),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
            session_factory=session_factory,
        )

        response = await service.stream(db_session, VIDEO_ID)

        assert response.status_code == 502
        assert await _body(response) == b"Upstream request failed"
        await service.aclose()

    @pytest.mark.parametrize(
        "client",
        [
            FakeExtractionClient(url=None),
            FakeExtractionClient(error=ExtractionError("yt-dlp exited with code 1")),
        ],
    )
    async def test_resolution_failure(
        self,
        audio_config: AudioCacheConfig,
        session_factory: async_sessionmaker[AsyncSession],
        upstream: Upstream,
        db_session: AsyncSession,
        client: FakeExtractionClient,
    ) -> None:
        service = AudioStreamService(
            audio_config,
            client,
            AudioDownloadService(audio_config, client, session_factory=session_factory),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)),
            session_factory=session_factory,
        )

        response = await service.stream(db_session, VIDEO_ID)

        assert response.status_code == 500
        assert await _body(response) == b"Failed to get audio URL"
        assert upstream.requests == []


# ═══════════════════════════════════════════════════════════════════════════
# URL resolution
# ═══════════════════════════════════════════════════════════════════════════


class TestResolveUrl:
    """Tests for resolve_url."""

    async def test_cached_url_first(
        self,
        stream_service: AudioStreamService,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        await _cache_url(db_session, CACHED_URL)

        assert await stream_service.resolve_url(db_session, VIDEO_ID) == CACHED_URL
        assert extraction_client.resolve_calls == []

    async def test_fresh_resolution(
        self,
        stream_service: AudioStreamService,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        assert await stream_service.resolve_url(db_session, VIDEO_ID) == FRESH_URL
        assert await stream_service.resolve_url(db_session, VIDEO_ID) == FRESH_URL
        assert extraction_client.resolve_calls == [VIDEO_ID]

    async def test_empty_result(
        self,
        stream_service: AudioStreamService,
        extraction_client: FakeExtractionClient,
        db_session: AsyncSession,
    ) -> None:
        extraction_client.url = None

        with pytest.raises(ExtractionError):
            await stream_service.resolve_url(db_session, VIDEO_ID)

    async def test_invalid_id(
        self, stream_service: AudioStreamService, db_session: AsyncSession
    ) -> None:
        with pytest.raises(ValidationError):
            await stream_service.resolve_url(db_session, "nope")
