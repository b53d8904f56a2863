"""
Disk quota manager for the audio cache.

Reports aggregate usage of ready audio files, gates new downloads on an
admission threshold, and evicts files that have not been played within the
retention horizon. Eviction is time based only and runs on an external
schedule (cleanup endpoint or CLI); nothing here evicts to make room.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.exceptions import QuotaExceededError
from audiovista.models.audio import CleanupResult, DiskUsage
from audiovista.repositories.audio_file_repository import AudioFileRepository
from audiovista.repositories.audio_url_cache_repository import (
    AudioUrlCacheRepository,
)

logger = logging.getLogger(__name__)

_BYTES_PER_GB = 1024 * 1024 * 1024


def delete_cached_file(path: Path) -> bool:
    """
    Delete a cached audio file, tolerating its absence.

    Parameters
    ----------
    path : Path
        Absolute path of the file.

    Returns
    -------
    bool
        True if a file was removed, False if it did not exist or could not
        be removed (the failure is logged).
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Failed to delete audio file %s: %s", path, e)
        return False
    return True


class DiskQuotaManager:
    """
    Usage accounting, admission control and eviction for cached audio.

    Parameters
    ----------
    config : AudioCacheConfig
        Cache configuration (root directory, maximum size, horizons).
    file_repository : AudioFileRepository | None
        File record store (default: a new repository).
    url_repository : AudioUrlCacheRepository | None
        Resolved URL store, purged of expired rows during eviction.
    """

    def __init__(
        self,
        config: AudioCacheConfig,
        file_repository: AudioFileRepository | None = None,
        url_repository: AudioUrlCacheRepository | None = None,
    ) -> None:
        self.config = config
        self.file_repository = file_repository or AudioFileRepository()
        self.url_repository = url_repository or AudioUrlCacheRepository()

    async def usage(self, session: AsyncSession) -> DiskUsage:
        """
        Compute the current usage snapshot over ready records.

        Parameters
        ----------
        session : AsyncSession
            Database session.

        Returns
        -------
        DiskUsage
            Count, bytes, gigabytes (2 decimals) and percent of the maximum.
        """
        total_files, total_bytes = await self.file_repository.get_usage(session)
        return DiskUsage(
            total_files=total_files,
            total_size_bytes=total_bytes,
            total_size_gb=round(total_bytes / _BYTES_PER_GB, 2),
            max_size_gb=self.config.max_cache_gb,
            usage_percent=total_bytes / self.config.max_cache_bytes * 100,
        )

    async def ensure_admission(self, session: AsyncSession) -> DiskUsage:
        """
        Refuse a new download when usage is at or above the threshold.

        Returns
        -------
        DiskUsage
            The snapshot the decision was made on.

        Raises
        ------
        QuotaExceededError
            If ``usage_percent >= admission_threshold_percent``.
        """
        snapshot = await self.usage(session)
        threshold = self.config.admission_threshold_percent
        if snapshot.usage_percent >= threshold:
            logger.warning(
                "Audio cache at %.1f%% (threshold %.0f%%), refusing new downloads",
                snapshot.usage_percent,
                threshold,
            )
            raise QuotaExceededError(
                usage_percent=snapshot.usage_percent,
                threshold_percent=threshold,
            )
        return snapshot

    async def can_admit(self, session: AsyncSession) -> bool:
        """Whether a new download may start (usage strictly below threshold)."""
        try:
            await self.ensure_admission(session)
        except QuotaExceededError:
            return False
        return True

    async def evict_stale(
        self, session: AsyncSession, now: datetime | None = None
    ) -> CleanupResult:
        """
        Evict ready files not played within the retention horizon.

        A ready record is evicted when ``last_played_at`` is strictly before
        ``now - ready_retention``. The physical file is removed first (a
        missing file is ignored), then the record. Error records older than
        ``error_retention`` and expired URL rows are purged in the same pass.

        Parameters
        ----------
        session : AsyncSession
            Database session; the caller commits.
        now : datetime | None
            Reference time (default: current UTC time).

        Returns
        -------
        CleanupResult
            Number of evicted files, bytes freed and purge counts.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.config.ready_retention

        stale = await self.file_repository.find_stale_ready(session, cutoff)
        freed_bytes = 0
        for record in stale:
            delete_cached_file(self.config.cache_dir / record.file_path)
            freed_bytes += record.file_size or 0

        deleted = await self.file_repository.delete_stale_ready(
            session, [record.video_id for record in stale], cutoff
        )
        errors_purged = await self.file_repository.delete_stale_errors(
            session, now - self.config.error_retention
        )
        urls_purged = await self.url_repository.purge_expired(session, now)

        if deleted or errors_purged or urls_purged:
            logger.info(
                "Audio cache cleanup: %d files evicted (%.1f MB), "
                "%d error records and %d expired URLs purged",
                deleted,
                freed_bytes / (1024 * 1024),
                errors_purged,
                urls_purged,
            )

        return CleanupResult(
            deleted_count=deleted,
            freed_bytes=freed_bytes,
            error_records_purged=errors_purged,
            expired_urls_purged=urls_purged,
        )

    async def touch(
        self,
        session: AsyncSession,
        video_id: str,
        now: datetime | None = None,
    ) -> None:
        """
        Record a play of a ready file and commit.

        Never raises: recency tracking must not affect the response being
        served, so failures are logged and dropped.
        """
        try:
            await self.file_repository.touch(session, video_id, now)
            await session.commit()
        except Exception as e:
            logger.warning("Failed to update last_played_at for %s: %s", video_id, e)
            await session.rollback()
