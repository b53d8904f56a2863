"""
Resolved audio URL cache repository.

Persists the playable remote URL resolved for a video together with its
expiry. Expiry is evaluated in SQL so an expired row is indistinguishable
from a missing one.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import AudioUrlCache as AudioUrlCacheDB
from .base import BaseSQLAlchemyRepository


class AudioUrlCacheRepository(BaseSQLAlchemyRepository[AudioUrlCacheDB]):
    """Repository for resolved remote audio URLs keyed by video id."""

    def __init__(self) -> None:
        """Initialize repository with AudioUrlCache model."""
        super().__init__(AudioUrlCacheDB)

    async def get_valid_url(
        self,
        session: AsyncSession,
        video_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Get the cached URL for a video if it has not expired.

        Parameters
        ----------
        session : AsyncSession
            Database session
        video_id : str
            Video identifier
        now : Optional[datetime]
            Reference time (defaults to the current UTC time)

        Returns
        -------
        Optional[str]
            The cached URL when ``expires_at > now``, otherwise None
        """
        now = now or datetime.now(timezone.utc)
        result = await session.execute(
            select(AudioUrlCacheDB.audio_url).where(
                AudioUrlCacheDB.video_id == video_id,
                AudioUrlCacheDB.expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def put(
        self,
        session: AsyncSession,
        video_id: str,
        url: str,
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> AudioUrlCacheDB:
        """
        Insert or replace the cached URL for a video.

        Any prior URL and expiry are overwritten unconditionally.

        Parameters
        ----------
        session : AsyncSession
            Database session
        video_id : str
            Video identifier
        url : str
            Resolved remote URL
        ttl : timedelta
            Lifetime of the URL from ``now``
        now : Optional[datetime]
            Creation time (defaults to the current UTC time)

        Returns
        -------
        AudioUrlCacheDB
            The stored row
        """
        now = now or datetime.now(timezone.utc)
        expires_at = now + ttl

        db_obj = await self.get(session, video_id)
        if db_obj is None:
            db_obj = AudioUrlCacheDB(
                video_id=video_id,
                audio_url=url,
                expires_at=expires_at,
                created_at=now,
            )
            session.add(db_obj)
        else:
            db_obj.audio_url = url
            db_obj.expires_at = expires_at
            db_obj.created_at = now

        await session.flush()
        return db_obj

    async def invalidate(self, session: AsyncSession, video_id: str) -> bool:
        """
        Drop the cached URL for a video after the upstream host rejected it.

        Returns
        -------
        bool
            True if a row was deleted
        """
        result = await session.execute(
            delete(AudioUrlCacheDB).where(AudioUrlCacheDB.video_id == video_id)
        )
        await session.flush()
        return (result.rowcount or 0) > 0

    async def purge_expired(
        self, session: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """Delete every expired row and return how many were removed."""
        now = now or datetime.now(timezone.utc)
        result = await session.execute(
            delete(AudioUrlCacheDB).where(AudioUrlCacheDB.expires_at <= now)
        )
        await session.flush()
        return result.rowcount or 0
