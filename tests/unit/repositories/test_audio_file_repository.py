"""
Tests for AudioFileRepository against a real SQLite database.

The download claim and the eviction queries are single conditional SQL
statements, so they are exercised against an actual engine rather than a
mocked session. Only driver failures use a mock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from audiovista.db.models import AudioFile as AudioFileDB
from audiovista.exceptions import RepositoryError
from audiovista.models.enums import AudioStatus
from audiovista.repositories.audio_file_repository import (
    MAX_ERROR_MESSAGE_LENGTH,
    AudioFileRepository,
)
from tests.factories.audio_file_factory import AudioFileDBFactory

pytestmark = pytest.mark.asyncio

VIDEO_ID = "dQw4w9WgXcQ"
STALE_AFTER = timedelta(minutes=6)


def _naive(value: datetime) -> datetime:
    """SQLite hands datetimes back without tzinfo; compare in naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def repository() -> AudioFileRepository:
    """Create repository instance for testing."""
    return AudioFileRepository()


async def _add(session: AsyncSession, **kwargs: object) -> AudioFileDB:
    record = AudioFileDBFactory(**kwargs)
    session.add(record)
    await session.commit()
    return record


# ═══════════════════════════════════════════════════════════════════════════
# Download claim
# ═══════════════════════════════════════════════════════════════════════════


class TestClaimForDownload:
    """Tests for the atomic downloading claim."""

    async def test_claim_inserts_downloading_record(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Claiming an unknown video inserts a downloading record."""
        now = datetime.now(timezone.utc)

        claimed = await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER, now=now
        )
        await db_session.commit()

        assert claimed is True
        record = await repository.get_by_video_id(db_session, VIDEO_ID)
        assert record is not None
        assert record.status == AudioStatus.DOWNLOADING.value
        assert record.file_path == f"{VIDEO_ID}.mp3"
        assert record.file_size == 0
        assert _naive(record.download_started_at) == _naive(now)

    async def test_second_claim_is_refused(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """A live downloading claim cannot be taken a second time."""
        assert await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
        )
        await db_session.commit()

        claimed_again = await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
        )

        assert claimed_again is False

    async def test_stale_claim_is_reclaimed(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """A downloading record older than the stale window can be claimed."""
        now = datetime.now(timezone.utc)
        await _add(
            db_session,
            video_id=VIDEO_ID,
            status=AudioStatus.DOWNLOADING.value,
            file_size=0,
            download_started_at=now - timedelta(minutes=30),
        )

        claimed = await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER, now=now
        )
        await db_session.commit()

        assert claimed is True
        record = await repository.get_by_video_id(db_session, VIDEO_ID)
        assert _naive(record.download_started_at) == _naive(now)

    @pytest.mark.parametrize("status", [AudioStatus.READY, AudioStatus.ERROR])
    async def test_claim_takes_over_settled_record(
        self,
        repository: AudioFileRepository,
        db_session: AsyncSession,
        status: AudioStatus,
    ) -> None:
        """Ready and error records move back to downloading."""
        await _add(
            db_session,
            video_id=VIDEO_ID,
            status=status.value,
            error_message="old failure" if status is AudioStatus.ERROR else None,
        )

        claimed = await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
        )
        await db_session.commit()

        assert claimed is True
        record = await repository.get_by_video_id(db_session, VIDEO_ID)
        assert record.status == AudioStatus.DOWNLOADING.value
        assert record.error_message is None


# ═══════════════════════════════════════════════════════════════════════════
# Status transitions
# ═══════════════════════════════════════════════════════════════════════════


class TestStatusTransitions:
    """Tests for mark_ready, mark_error and touch."""

    async def test_mark_ready_sets_size_and_timestamps(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Completing a download stamps downloaded_at and last_played_at."""
        await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
        )
        now = datetime.now(timezone.utc) + timedelta(seconds=5)

        updated = await repository.mark_ready(db_session, VIDEO_ID, 1000, now=now)
        await db_session.commit()

        assert updated is True
        record = await repository.get_by_video_id(db_session, VIDEO_ID)
        assert record.status == AudioStatus.READY.value
        assert record.file_size == 1000
        assert _naive(record.downloaded_at) == _naive(now)
        assert _naive(record.last_played_at) == _naive(now)

    async def test_mark_ready_requires_downloading(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """An error record cannot jump straight to ready."""
        await _add(db_session, video_id=VIDEO_ID, status=AudioStatus.ERROR.value)

        assert await repository.mark_ready(db_session, VIDEO_ID, 1000) is False

    async def test_mark_error_truncates_message(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Error messages are stored with a bounded length."""
        await repository.claim_for_download(
            db_session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
        )

        updated = await repository.mark_error(db_session, VIDEO_ID, "x" * 5000)
        await db_session.commit()

        assert updated is True
        status, message = await repository.get_status(db_session, VIDEO_ID)
        assert status is AudioStatus.ERROR
        assert message is not None
        assert len(message) == MAX_ERROR_MESSAGE_LENGTH

    async def test_touch_only_updates_ready_records(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Plays of files that are not ready are not recorded."""
        old = datetime.now(timezone.utc) - timedelta(days=3)
        await _add(db_session, video_id=VIDEO_ID, last_played_at=old)
        await _add(
            db_session,
            video_id="aaaaaaaaaaa",
            status=AudioStatus.DOWNLOADING.value,
            last_played_at=old,
        )
        now = datetime.now(timezone.utc)

        assert await repository.touch(db_session, VIDEO_ID, now=now) is True
        assert await repository.touch(db_session, "aaaaaaaaaaa", now=now) is False
        await db_session.commit()

        record = await repository.get_by_video_id(db_session, VIDEO_ID)
        assert _naive(record.last_played_at) == _naive(now)

    async def test_get_status_unknown_video(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """No record means no status."""
        assert await repository.get_status(db_session, VIDEO_ID) is None


# ═══════════════════════════════════════════════════════════════════════════
# Database failures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def failing_session() -> MagicMock:
    """A session whose statements fail the way a locked SQLite file does."""
    session = MagicMock(spec=AsyncSession)
    session.get_bind.return_value.dialect.name = "sqlite"
    session.execute = AsyncMock(
        side_effect=OperationalError(
            "UPDATE audio_files", {}, Exception("database is locked")
        )
    )
    return session


class TestDatabaseFailures:
    """Driver errors surface as RepositoryError with the failing operation."""

    @pytest.mark.parametrize(
        ("operation", "call"),
        [
            (
                "claim",
                lambda repo, session: repo.claim_for_download(
                    session, VIDEO_ID, f"{VIDEO_ID}.mp3", STALE_AFTER
                ),
            ),
            ("mark_ready", lambda repo, session: repo.mark_ready(session, VIDEO_ID, 1000)),
            ("mark_error", lambda repo, session: repo.mark_error(session, VIDEO_ID, "boom")),
        ],
    )
    async def test_sqlalchemy_error_is_wrapped(
        self,
        repository: AudioFileRepository,
        failing_session: MagicMock,
        operation: str,
        call: Any,
    ) -> None:
        with pytest.raises(RepositoryError) as exc_info:
            await call(repository, failing_session)

        assert exc_info.value.operation == operation
        assert exc_info.value.entity_type == "AudioFile"
        assert isinstance(exc_info.value.original_error, OperationalError)
        assert VIDEO_ID in exc_info.value.message


# ═══════════════════════════════════════════════════════════════════════════
# Usage and eviction queries
# ═══════════════════════════════════════════════════════════════════════════


class TestUsageAndEviction:
    """Tests for usage aggregation and eviction queries."""

    async def test_usage_counts_ready_records_only(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Downloading and error records do not count against the quota."""
        await _add(db_session, file_size=1000)
        await _add(db_session, file_size=2500)
        await _add(db_session, file_size=0, status=AudioStatus.DOWNLOADING.value)
        await _add(db_session, file_size=0, status=AudioStatus.ERROR.value)

        assert await repository.get_usage(db_session) == (2, 3500)

    async def test_usage_empty_cache(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """An empty cache reports zero files and zero bytes."""
        assert await repository.get_usage(db_session) == (0, 0)

    async def test_find_stale_ready_is_strictly_before_cutoff(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Only ready records played before the cutoff are stale."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=30)
        await _add(
            db_session, video_id="old00000001", last_played_at=cutoff - timedelta(seconds=1)
        )
        await _add(
            db_session, video_id="new00000001", last_played_at=cutoff + timedelta(seconds=1)
        )
        await _add(
            db_session,
            video_id="err00000001",
            status=AudioStatus.ERROR.value,
            last_played_at=cutoff - timedelta(days=5),
        )

        stale = await repository.find_stale_ready(db_session, cutoff)

        assert [record.video_id for record in stale] == ["old00000001"]

    async def test_delete_stale_ready_keeps_replayed_records(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """A record played after it was selected survives the delete."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=30)
        await _add(
            db_session, video_id="old00000001", last_played_at=cutoff - timedelta(days=1)
        )
        await _add(
            db_session, video_id="old00000002", last_played_at=cutoff - timedelta(days=1)
        )
        await repository.touch(db_session, "old00000002")

        deleted = await repository.delete_stale_ready(
            db_session, ["old00000001", "old00000002"], cutoff
        )
        await db_session.commit()

        assert deleted == 1
        assert await repository.get_by_video_id(db_session, "old00000001") is None
        assert await repository.get_by_video_id(db_session, "old00000002") is not None

    async def test_delete_stale_ready_with_no_ids(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Nothing selected means nothing deleted."""
        cutoff = datetime.now(timezone.utc)
        assert await repository.delete_stale_ready(db_session, [], cutoff) == 0

    async def test_delete_stale_errors_uses_attempt_time(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Error records are purged by when their last attempt started."""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=7)
        await _add(
            db_session,
            video_id="err00000001",
            status=AudioStatus.ERROR.value,
            download_started_at=now - timedelta(days=8),
        )
        await _add(
            db_session,
            video_id="err00000002",
            status=AudioStatus.ERROR.value,
            download_started_at=now - timedelta(days=1),
            downloaded_at=now - timedelta(days=60),
        )
        await _add(
            db_session,
            video_id="rdy00000001",
            download_started_at=now - timedelta(days=60),
        )

        purged = await repository.delete_stale_errors(db_session, cutoff)
        await db_session.commit()

        assert purged == 1
        assert await repository.get_by_video_id(db_session, "err00000001") is None
        assert await repository.get_by_video_id(db_session, "err00000002") is not None
        assert await repository.get_by_video_id(db_session, "rdy00000001") is not None

    async def test_delete_by_video_id(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Deleting reports whether a row was removed."""
        await _add(db_session, video_id=VIDEO_ID)

        assert await repository.delete_by_video_id(db_session, VIDEO_ID) is True
        assert await repository.delete_by_video_id(db_session, VIDEO_ID) is False

    async def test_get_by_status_orders_by_recent_play(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Listing filters by status and puts the most recent play first."""
        now = datetime.now(timezone.utc)
        await _add(db_session, video_id="rdy00000001", last_played_at=now - timedelta(days=2))
        await _add(db_session, video_id="rdy00000002", last_played_at=now)
        await _add(
            db_session,
            video_id="err00000001",
            status=AudioStatus.ERROR.value,
            last_played_at=now,
        )

        ready = await repository.get_by_status(db_session, AudioStatus.READY)
        everything = await repository.get_by_status(db_session, limit=2)

        assert [r.video_id for r in ready] == ["rdy00000002", "rdy00000001"]
        assert len(everything) == 2

    async def test_base_get_multi_and_delete(
        self, repository: AudioFileRepository, db_session: AsyncSession
    ) -> None:
        """Generic base operations work on the video id primary key."""
        await _add(db_session, video_id="rdy00000001")
        await _add(db_session, video_id="rdy00000002")

        page = await repository.get_multi(db_session, skip=0, limit=10)
        deleted = await repository.delete(db_session, id="rdy00000001")

        assert {r.video_id for r in page} == {"rdy00000001", "rdy00000002"}
        assert deleted is not None
        assert await repository.get(db_session, "rdy00000001") is None
        assert await repository.exists(db_session, "rdy00000002") is True
