"""
Dependency Injection Container for audiovista.

Centralizes construction of the audio cache components:

- Repository factories return a new instance each call (transient)
- Services are singletons cached via ``@cached_property`` (lazy)
- ``reset()`` clears the singletons so tests can swap in fakes

Usage
-----
    >>> from audiovista.container import container
    >>> stream_service = container.audio_stream_service  # Cached
    >>> file_repo = container.create_audio_file_repository()  # New each call
"""

from __future__ import annotations

from functools import cached_property

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.config.settings import settings
from audiovista.repositories import AudioFileRepository, AudioUrlCacheRepository
from audiovista.services.audio_download import AudioDownloadService
from audiovista.services.audio_stream import AudioStreamService
from audiovista.services.disk_quota import DiskQuotaManager
from audiovista.services.interfaces import ExtractionClientInterface
from audiovista.services.ytdlp_client import YtDlpClient


class Container:
    """
    Dependency injection container for audiovista.

    Examples
    --------
    >>> container = Container()
    >>> container.audio_download_service is container.audio_download_service
    True
    >>> container.create_audio_file_repository() is container.create_audio_file_repository()
    False
    """

    # -------------------------------------------------------------------------
    # Repository Factory Methods (Transient - new instance per call)
    # -------------------------------------------------------------------------

    def create_audio_file_repository(self) -> AudioFileRepository:
        """Create a new AudioFileRepository instance."""
        return AudioFileRepository()

    def create_audio_url_cache_repository(self) -> AudioUrlCacheRepository:
        """Create a new AudioUrlCacheRepository instance."""
        return AudioUrlCacheRepository()

    # -------------------------------------------------------------------------
    # Singletons (cached on first access)
    # -------------------------------------------------------------------------

    @cached_property
    def audio_cache_config(self) -> AudioCacheConfig:
        """
        Audio cache configuration derived from application settings.

        Returns
        -------
        AudioCacheConfig
            Frozen configuration shared by every audio component.
        """
        return AudioCacheConfig.from_settings(settings)

    @cached_property
    def extraction_client(self) -> ExtractionClientInterface:
        """yt-dlp client configured from settings."""
        return YtDlpClient(
            binary_path=settings.ytdlp_path,
            cookies_path=settings.ytdlp_cookies_path,
        )

    @cached_property
    def disk_quota_manager(self) -> DiskQuotaManager:
        """Usage, admission and eviction for the audio cache."""
        return DiskQuotaManager(
            self.audio_cache_config,
            file_repository=self.create_audio_file_repository(),
            url_repository=self.create_audio_url_cache_repository(),
        )

    @cached_property
    def audio_download_service(self) -> AudioDownloadService:
        """
        Download orchestrator.

        Cached so background downloads are tracked in one task set for the
        whole process.
        """
        return AudioDownloadService(
            self.audio_cache_config,
            self.extraction_client,
            quota_manager=self.disk_quota_manager,
            file_repository=self.create_audio_file_repository(),
        )

    @cached_property
    def audio_stream_service(self) -> AudioStreamService:
        """Streaming responder, holding the shared upstream HTTP client."""
        return AudioStreamService(
            self.audio_cache_config,
            self.extraction_client,
            self.audio_download_service,
            quota_manager=self.disk_quota_manager,
            url_repository=self.create_audio_url_cache_repository(),
        )

    async def shutdown(self) -> None:
        """Cancel background downloads and close the upstream HTTP client."""
        if "audio_download_service" in self.__dict__:
            await self.audio_download_service.shutdown()
        if "audio_stream_service" in self.__dict__:
            await self.audio_stream_service.aclose()

    def reset(self) -> None:
        """
        Reset the container by clearing all cached singleton instances.

        Primarily for tests, which inject fakes and then restore the
        container to a clean state.
        """
        properties_to_clear = [
            "audio_cache_config",
            "extraction_client",
            "disk_quota_manager",
            "audio_download_service",
            "audio_stream_service",
        ]
        for prop in properties_to_clear:
            self.__dict__.pop(prop, None)


# Global container instance
container = Container()
