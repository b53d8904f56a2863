"""
Audio file repository.

Provides data access for cached audio file records: the atomic download
claim that backs single-flight downloads, status transitions, recency
updates, usage aggregation and the queries used by eviction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import AudioFile as AudioFileDB
from ..exceptions import RepositoryError
from ..models.enums import AudioStatus
from .base import BaseSQLAlchemyRepository

MAX_ERROR_MESSAGE_LENGTH = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AudioFileRepository(BaseSQLAlchemyRepository[AudioFileDB]):
    """Repository for cached audio file records keyed by video id."""

    def __init__(self) -> None:
        """Initialize repository with AudioFile model."""
        super().__init__(AudioFileDB)

    async def get_by_video_id(
        self, session: AsyncSession, video_id: str
    ) -> Optional[AudioFileDB]:
        """
        Get an audio file record, bypassing any stale identity-map copy.

        Parameters
        ----------
        session : AsyncSession
            Database session
        video_id : str
            Video identifier

        Returns
        -------
        Optional[AudioFileDB]
            The record if present, otherwise None
        """
        return await session.get(AudioFileDB, video_id, populate_existing=True)

    async def get_status(
        self, session: AsyncSession, video_id: str
    ) -> Optional[Tuple[AudioStatus, Optional[str]]]:
        """
        Get only the status and error message for a video.

        Returns
        -------
        Optional[Tuple[AudioStatus, Optional[str]]]
            ``(status, error_message)`` or None when no record exists
        """
        result = await session.execute(
            select(AudioFileDB.status, AudioFileDB.error_message).where(
                AudioFileDB.video_id == video_id
            )
        )
        row = result.first()
        if row is None:
            return None
        return AudioStatus(row[0]), row[1]

    async def claim_for_download(
        self,
        session: AsyncSession,
        video_id: str,
        file_path: str,
        stale_after: Any,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically mark a video as ``downloading`` unless another download holds it.

        The claim is a single conditional write, so two concurrent callers can
        never both win:

        - no record: ``INSERT ... ON CONFLICT DO NOTHING`` (primary key backed)
        - record present: ``UPDATE ... WHERE status != 'downloading'``, also
          reclaiming a ``downloading`` record whose claim is older than
          *stale_after* (left behind by a crashed process)

        Parameters
        ----------
        session : AsyncSession
            Database session
        video_id : str
            Video identifier
        file_path : str
            Path of the audio file relative to the cache root
        stale_after : timedelta
            Age after which a ``downloading`` claim is considered abandoned
        now : Optional[datetime]
            Claim time (defaults to the current UTC time)

        Returns
        -------
        bool
            True if this caller now holds the claim
        """
        now = now or _utcnow()

        try:
            if await self._insert_if_absent(session, video_id, file_path, now):
                return True

            stale_cutoff = now - stale_after
            result = await session.execute(
                update(AudioFileDB)
                .where(
                    AudioFileDB.video_id == video_id,
                    or_(
                        AudioFileDB.status != AudioStatus.DOWNLOADING.value,
                        AudioFileDB.download_started_at.is_(None),
                        AudioFileDB.download_started_at < stale_cutoff,
                    ),
                )
                .values(
                    status=AudioStatus.DOWNLOADING.value,
                    file_path=file_path,
                    error_message=None,
                    download_started_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            raise RepositoryError(
                f"Failed to claim download for {video_id}",
                operation="claim",
                entity_type="AudioFile",
                original_error=e,
            ) from e

    async def _insert_if_absent(
        self,
        session: AsyncSession,
        video_id: str,
        file_path: str,
        now: datetime,
    ) -> bool:
        """Insert a ``downloading`` record; False if one already exists."""
        values = {
            "video_id": video_id,
            "file_path": file_path,
            "file_size": 0,
            "status": AudioStatus.DOWNLOADING.value,
            "error_message": None,
            "download_started_at": now,
            "downloaded_at": now,
            "last_played_at": now,
            "created_at": now,
            "updated_at": now,
        }
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert

            stmt = pg_insert(AudioFileDB).values(**values).on_conflict_do_nothing(
                index_elements=[AudioFileDB.video_id]
            )
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as sqlite_insert

            stmt = sqlite_insert(AudioFileDB).values(
                **values
            ).on_conflict_do_nothing(index_elements=[AudioFileDB.video_id])
        else:
            exists = await session.execute(
                select(AudioFileDB.video_id).where(AudioFileDB.video_id == video_id)
            )
            if exists.first() is not None:
                return False
            try:
                await session.execute(insert(AudioFileDB).values(**values))
            except IntegrityError:
                await session.rollback()
                return False
            return True

        result = await session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def mark_ready(
        self,
        session: AsyncSession,
        video_id: str,
        file_size: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Complete a download: ``downloading -> ready``.

        Sets the file size and stamps both ``downloaded_at`` and
        ``last_played_at`` with *now*.

        Returns
        -------
        bool
            True if a ``downloading`` record was updated
        """
        now = now or _utcnow()
        try:
            result = await session.execute(
                update(AudioFileDB)
                .where(
                    AudioFileDB.video_id == video_id,
                    AudioFileDB.status == AudioStatus.DOWNLOADING.value,
                )
                .values(
                    status=AudioStatus.READY.value,
                    file_size=file_size,
                    error_message=None,
                    downloaded_at=now,
                    last_played_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(
                f"Failed to mark {video_id} ready",
                operation="mark_ready",
                entity_type="AudioFile",
                original_error=e,
            ) from e
        return (result.rowcount or 0) > 0

    async def mark_error(
        self,
        session: AsyncSession,
        video_id: str,
        message: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Fail a download: ``downloading -> error`` with a message.

        Returns
        -------
        bool
            True if a ``downloading`` record was updated
        """
        now = now or _utcnow()
        try:
            result = await session.execute(
                update(AudioFileDB)
                .where(
                    AudioFileDB.video_id == video_id,
                    AudioFileDB.status == AudioStatus.DOWNLOADING.value,
                )
                .values(
                    status=AudioStatus.ERROR.value,
                    file_size=0,
                    error_message=message[:MAX_ERROR_MESSAGE_LENGTH],
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(
                f"Failed to mark {video_id} as failed",
                operation="mark_error",
                entity_type="AudioFile",
                original_error=e,
            ) from e
        return (result.rowcount or 0) > 0

    async def touch(
        self,
        session: AsyncSession,
        video_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Set ``last_played_at`` on a ready record. Returns True if updated."""
        now = now or _utcnow()
        result = await session.execute(
            update(AudioFileDB)
            .where(
                AudioFileDB.video_id == video_id,
                AudioFileDB.status == AudioStatus.READY.value,
            )
            .values(last_played_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.flush()
        return (result.rowcount or 0) > 0

    async def get_usage(self, session: AsyncSession) -> Tuple[int, int]:
        """
        Aggregate count and total bytes over ready records.

        Returns
        -------
        Tuple[int, int]
            ``(total_files, total_size_bytes)``
        """
        result = await session.execute(
            select(
                func.count(AudioFileDB.video_id),
                func.coalesce(func.sum(AudioFileDB.file_size), 0),
            ).where(AudioFileDB.status == AudioStatus.READY.value)
        )
        count, total = result.one()
        return int(count or 0), int(total or 0)

    async def find_stale_ready(
        self, session: AsyncSession, cutoff: datetime
    ) -> List[AudioFileDB]:
        """Ready records whose ``last_played_at`` is strictly before *cutoff*."""
        result = await session.execute(
            select(AudioFileDB).where(
                and_(
                    AudioFileDB.status == AudioStatus.READY.value,
                    AudioFileDB.last_played_at < cutoff,
                )
            )
        )
        return list(result.scalars().all())

    async def delete_stale_ready(
        self,
        session: AsyncSession,
        video_ids: Sequence[str],
        cutoff: datetime,
    ) -> int:
        """
        Delete the given ready records if they are still older than *cutoff*.

        A record played again since it was selected keeps its row.
        """
        if not video_ids:
            return 0
        result = await session.execute(
            delete(AudioFileDB)
            .where(
                AudioFileDB.video_id.in_(list(video_ids)),
                AudioFileDB.status == AudioStatus.READY.value,
                AudioFileDB.last_played_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        await session.flush()
        return result.rowcount or 0

    async def delete_stale_errors(
        self, session: AsyncSession, cutoff: datetime
    ) -> int:
        """Delete error records whose last attempt started before *cutoff*."""
        attempted_at = func.coalesce(
            AudioFileDB.download_started_at, AudioFileDB.downloaded_at
        )
        result = await session.execute(
            delete(AudioFileDB)
            .where(
                AudioFileDB.status == AudioStatus.ERROR.value,
                attempted_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        await session.flush()
        return result.rowcount or 0

    async def delete_by_video_id(self, session: AsyncSession, video_id: str) -> bool:
        """Delete the record for a video. Returns True if a row was removed."""
        result = await session.execute(
            delete(AudioFileDB)
            .where(AudioFileDB.video_id == video_id)
            .execution_options(synchronize_session=False)
        )
        await session.flush()
        return (result.rowcount or 0) > 0

    async def get_by_status(
        self,
        session: AsyncSession,
        status: Optional[AudioStatus] = None,
        *,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AudioFileDB]:
        """
        List records, most recently played first, optionally filtered by status.

        Parameters
        ----------
        session : AsyncSession
            Database session
        status : Optional[AudioStatus]
            Only return records in this status
        skip : int
            Number of records to skip
        limit : int
            Maximum number of records to return

        Returns
        -------
        List[AudioFileDB]
            Matching records
        """
        query = select(AudioFileDB)
        if status is not None:
            query = query.where(AudioFileDB.status == status.value)
        query = (
            query.order_by(AudioFileDB.last_played_at.desc()).offset(skip).limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())
