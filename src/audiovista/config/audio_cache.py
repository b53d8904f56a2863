"""
Audio cache configuration passed explicitly to the core services.

The services never read the environment themselves; the API layer and the
CLI build an :class:`AudioCacheConfig` from :class:`Settings` once and hand
it to every component at construction time.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from audiovista.config.settings import Settings

_BYTES_PER_GB = 1024 * 1024 * 1024


class AudioCacheConfig(BaseModel):
    """Configuration for the audio cache and streaming engine.

    Attributes
    ----------
    cache_dir : Path
        Root directory holding one ``<video_id>.mp3`` per cached track.
    max_cache_bytes : int
        Maximum aggregate size of ready files.
    admission_threshold_percent : float
        Usage level (percent of ``max_cache_bytes``) at or above which new
        downloads are refused.
    ready_retention : timedelta
        Ready files not played within this horizon are evicted.
    error_retention : timedelta
        Error records older than this horizon are purged.
    url_ttl : timedelta
        Lifetime of a resolved remote URL.
    download_timeout : float
        Wall-clock bound in seconds for one download+transcode.
    resolve_timeout : float
        Wall-clock bound in seconds for one URL resolution.
    upstream_connect_timeout : float
        Bound in seconds on the upstream handshake (until headers arrive).
    upstream_user_agent : str
        User-Agent sent to the upstream media host.
    """

    model_config = ConfigDict(frozen=True)

    cache_dir: Path
    max_cache_bytes: int = Field(default=50 * _BYTES_PER_GB, gt=0)
    admission_threshold_percent: float = Field(default=90.0, gt=0, le=100)
    ready_retention: timedelta = timedelta(days=30)
    error_retention: timedelta = timedelta(days=7)
    url_ttl: timedelta = timedelta(hours=5)
    download_timeout: float = 300.0
    resolve_timeout: float = 30.0
    upstream_connect_timeout: float = 10.0
    upstream_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    )
    stale_claim_grace: Optional[timedelta] = None

    @property
    def max_cache_gb(self) -> float:
        """Configured maximum in gigabytes."""
        return self.max_cache_bytes / _BYTES_PER_GB

    @property
    def stale_claim_after(self) -> timedelta:
        """Age after which a ``downloading`` claim is considered abandoned.

        Defaults to the download timeout plus one minute: a live download
        can never hold its claim longer than that.
        """
        if self.stale_claim_grace is not None:
            return self.stale_claim_grace
        return timedelta(seconds=self.download_timeout + 60)

    @classmethod
    def from_settings(cls, settings: Settings) -> AudioCacheConfig:
        """Build the cache configuration from application settings."""
        return cls(
            cache_dir=settings.resolved_audio_cache_dir,
            max_cache_bytes=int(settings.max_audio_cache_gb * _BYTES_PER_GB),
            admission_threshold_percent=settings.audio_admission_threshold_percent,
            ready_retention=timedelta(days=settings.audio_ready_retention_days),
            error_retention=timedelta(days=settings.audio_error_retention_days),
            url_ttl=timedelta(seconds=settings.audio_url_ttl_seconds),
            download_timeout=settings.audio_download_timeout_seconds,
            resolve_timeout=settings.audio_resolve_timeout_seconds,
            upstream_connect_timeout=settings.upstream_connect_timeout_seconds,
            upstream_user_agent=settings.upstream_user_agent,
        )
