"""
Audio download orchestrator.

Turns a video id into a ready local MP3 file exactly once at a time. The
``downloading`` claim on the file record is the single-flight guard: it is
written atomically and committed before the extraction tool starts, so any
concurrent request sees the in-flight download and backs off instead of
starting a second one.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.exceptions import (
    DownloadInProgressError,
    ExtractionError,
    ValidationError,
)
from audiovista.models.audio import AudioFileInfo, DownloadStatusResult
from audiovista.models.enums import AudioStatus, DownloadState
from audiovista.models.youtube_types import is_valid_video_id
from audiovista.repositories.audio_file_repository import AudioFileRepository
from audiovista.services.disk_quota import DiskQuotaManager, delete_cached_file
from audiovista.services.interfaces import ExtractionClientInterface

logger = logging.getLogger(__name__)

AUDIO_FILE_SUFFIX = ".mp3"


def require_valid_video_id(video_id: str) -> str:
    """
    Reject malformed ids before they reach a path or a subprocess argument.

    Raises
    ------
    ValidationError
        If *video_id* is not 11 characters of ``[A-Za-z0-9_-]``.
    """
    if not is_valid_video_id(video_id):
        raise ValidationError(
            message="Invalid video ID",
            field_name="video_id",
            invalid_value=video_id,
        )
    return video_id


class AudioDownloadService:
    """
    Orchestrates downloads into the local audio cache.

    Parameters
    ----------
    config : AudioCacheConfig
        Cache configuration.
    extraction_client : ExtractionClientInterface
        Client that performs the actual download and transcode.
    quota_manager : DiskQuotaManager | None
        Admission control for background downloads.
    file_repository : AudioFileRepository | None
        File record store.
    session_factory : async_sessionmaker[AsyncSession] | None
        Factory for the sessions used by background downloads (default: the
        application database manager's factory).
    """

    def __init__(
        self,
        config: AudioCacheConfig,
        extraction_client: ExtractionClientInterface,
        quota_manager: DiskQuotaManager | None = None,
        file_repository: AudioFileRepository | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.config = config
        self.extraction_client = extraction_client
        self.file_repository = file_repository or AudioFileRepository()
        self.quota_manager = quota_manager or DiskQuotaManager(
            config, file_repository=self.file_repository
        )
        self._session_factory = session_factory
        self._background_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def file_path(self, video_id: str) -> Path:
        """Absolute path of the cached file: ``<cache_dir>/<video_id>.mp3``."""
        require_valid_video_id(video_id)
        return self.config.cache_dir / f"{video_id}{AUDIO_FILE_SUFFIX}"

    @staticmethod
    def relative_file_path(video_id: str) -> str:
        """Stored form of the file path, relative to the cache root."""
        return f"{video_id}{AUDIO_FILE_SUFFIX}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_local_file(
        self, session: AsyncSession, video_id: str
    ) -> AudioFileInfo | None:
        """
        Return the ready local file for a video, if it is really on disk.

        A ready record whose file has disappeared out of band is deleted so
        the next request downloads again.

        Parameters
        ----------
        session : AsyncSession
            Database session.
        video_id : str
            Video identifier (malformed ids simply return None).

        Returns
        -------
        AudioFileInfo | None
            The file record, or None if there is no servable local file.
        """
        if not is_valid_video_id(video_id):
            return None

        record = await self.file_repository.get_by_video_id(session, video_id)
        if record is None or not AudioStatus(record.status).is_servable:
            return None

        path = self.config.cache_dir / record.file_path
        if not path.is_file():
            logger.warning(
                "Audio file for %s missing from disk, dropping stale record", video_id
            )
            await self.file_repository.delete_by_video_id(session, video_id)
            await session.commit()
            return None

        return AudioFileInfo.model_validate(record)

    async def get_status(
        self, session: AsyncSession, video_id: str
    ) -> DownloadStatusResult:
        """Read-only status lookup; unknown or malformed ids report ``none``."""
        if not is_valid_video_id(video_id):
            return DownloadStatusResult(status=DownloadState.NONE)

        row = await self.file_repository.get_status(session, video_id)
        if row is None:
            return DownloadStatusResult(status=DownloadState.NONE)

        status, error_message = row
        return DownloadStatusResult(
            status=DownloadState.from_status(status),
            error_message=error_message if status is AudioStatus.ERROR else None,
        )

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def download(self, session: AsyncSession, video_id: str) -> AudioFileInfo:
        """
        Download a video's audio into the cache and wait for the result.

        Parameters
        ----------
        session : AsyncSession
            Database session; committed at each state change.
        video_id : str
            Video identifier.

        Returns
        -------
        AudioFileInfo
            The ready record (existing or freshly downloaded).

        Raises
        ------
        ValidationError
            If the id is malformed.
        DownloadInProgressError
            If another download for the same id holds the claim.
        ExtractionError
            If the extraction tool fails, times out or writes nothing.
        """
        require_valid_video_id(video_id)

        existing = await self.get_local_file(session, video_id)
        if existing is not None:
            return existing

        if not await self._claim(session, video_id):
            raise DownloadInProgressError(video_id)

        return await self._run_download(session, video_id)

    async def trigger(
        self, session: AsyncSession, video_id: str
    ) -> DownloadStatusResult:
        """
        Start a background download and return immediately.

        Returns ``ready`` when the file is already cached and ``downloading``
        both when this call started the download and when another download
        was already running.

        Raises
        ------
        ValidationError
            If the id is malformed.
        QuotaExceededError
            If the cache is at or above the admission threshold.
        """
        require_valid_video_id(video_id)

        if await self.get_local_file(session, video_id) is not None:
            return DownloadStatusResult(status=DownloadState.READY)

        current = await self.file_repository.get_status(session, video_id)
        if current is None or current[0] is not AudioStatus.DOWNLOADING:
            await self.quota_manager.ensure_admission(session)

        if not await self._claim(session, video_id):
            return DownloadStatusResult(status=DownloadState.DOWNLOADING)

        self._schedule(video_id)
        return DownloadStatusResult(status=DownloadState.DOWNLOADING)

    async def remove(self, session: AsyncSession, video_id: str) -> bool:
        """
        Remove a cached file and its record.

        Returns
        -------
        bool
            True if a record existed and was removed.

        Raises
        ------
        ValidationError
            If the id is malformed.
        DownloadInProgressError
            If the file is still being downloaded.
        """
        require_valid_video_id(video_id)

        record = await self.file_repository.get_by_video_id(session, video_id)
        if record is None:
            return False
        if AudioStatus(record.status) is AudioStatus.DOWNLOADING:
            raise DownloadInProgressError(
                video_id, message="Cannot remove a file while it is downloading"
            )

        delete_cached_file(self.config.cache_dir / record.file_path)
        removed = await self.file_repository.delete_by_video_id(session, video_id)
        await session.commit()
        logger.info("Removed cached audio for %s", video_id)
        return removed

    async def _claim(self, session: AsyncSession, video_id: str) -> bool:
        """Take the ``downloading`` claim and commit it so others see it."""
        record = await self.file_repository.get_by_video_id(session, video_id)
        if record is not None:
            status = AudioStatus(record.status)
            # A live claim is only taken over once it is stale (checked in SQL)
            if status is not AudioStatus.DOWNLOADING and not status.can_transition_to(
                AudioStatus.DOWNLOADING
            ):
                return False

        self.config.cache_dir.mkdir(parents=True, exist_ok=True)
        claimed = await self.file_repository.claim_for_download(
            session,
            video_id,
            self.relative_file_path(video_id),
            self.config.stale_claim_after,
        )
        await session.commit()
        if claimed:
            logger.info("Claimed download for %s", video_id)
        else:
            logger.info("Download for %s already in progress", video_id)
        return claimed

    async def _run_download(
        self, session: AsyncSession, video_id: str
    ) -> AudioFileInfo:
        """Run the extraction for a claimed record and settle its status."""
        path = self.file_path(video_id)
        try:
            await self.extraction_client.download_to_file(
                video_id, path, timeout=self.config.download_timeout
            )
            file_size = path.stat().st_size if path.is_file() else 0
            if file_size <= 0:
                raise ExtractionError(message="Downloaded file is empty")
            await self.file_repository.mark_ready(
                session, video_id, file_size, now=datetime.now(timezone.utc)
            )
            await session.commit()
        except ExtractionError as e:
            await self._fail(session, video_id, path, e.message)
            raise
        except asyncio.CancelledError:
            await self._fail(session, video_id, path, "Download cancelled")
            raise
        except OSError as e:
            await self._fail(session, video_id, path, str(e))
            raise
        except Exception as e:
            await session.rollback()
            await self._fail(session, video_id, path, f"Unexpected error: {e}")
            raise

        logger.info(
            "Downloaded audio for %s (%.1f MB)", video_id, file_size / (1024 * 1024)
        )

        record = await self.file_repository.get_by_video_id(session, video_id)
        return AudioFileInfo.model_validate(record)

    async def _fail(
        self, session: AsyncSession, video_id: str, path: Path, message: str
    ) -> None:
        logger.error("Download failed for %s: %s", video_id, message)
        delete_cached_file(path)
        await self.file_repository.mark_error(session, video_id, message)
        await session.commit()

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from audiovista.config.database import db_manager

            self._session_factory = db_manager.get_session_factory()
        return self._session_factory

    def _schedule(self, video_id: str) -> None:
        task = asyncio.create_task(
            self._download_in_background(video_id),
            name=f"audio-download-{video_id}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _download_in_background(self, video_id: str) -> None:
        session_factory = self._get_session_factory()
        async with session_factory() as session:
            try:
                await self._run_download(session, video_id)
            except ExtractionError as e:
                logger.warning("Background download for %s failed: %s", video_id, e)
            except Exception:
                logger.exception("Background download for %s crashed", video_id)

    @property
    def active_downloads(self) -> int:
        """Number of background downloads currently running."""
        return len(self._background_tasks)

    async def wait_for_background_tasks(self) -> None:
        """Wait until every scheduled background download has settled."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running background downloads (their records become ``error``)."""
        for task in list(self._background_tasks):
            task.cancel()
        await self.wait_for_background_tasks()
