"""
Audio cache models.

Defines Pydantic models describing cached audio files, download status,
disk usage snapshots and cleanup results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import AudioStatus, DownloadState
from .youtube_types import VideoId


class AudioFileInfo(BaseModel):
    """A cached audio file record as seen by callers."""

    video_id: VideoId
    file_path: str = Field(..., description="Path relative to the cache root")
    file_size: int = Field(default=0, ge=0, description="Size in bytes")
    status: AudioStatus
    downloaded_at: Optional[datetime] = None
    last_played_at: Optional[datetime] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DownloadStatusResult(BaseModel):
    """Download status for one video, ``none`` when no record exists."""

    status: DownloadState
    error_message: Optional[str] = None


class DiskUsage(BaseModel):
    """Aggregate usage of ready audio files against the configured maximum."""

    total_files: int = Field(..., ge=0)
    total_size_bytes: int = Field(..., ge=0)
    total_size_gb: float
    max_size_gb: float
    usage_percent: float = Field(..., description="Percent of the maximum in use")


class CleanupResult(BaseModel):
    """Outcome of one eviction pass."""

    deleted_count: int = Field(default=0, ge=0)
    freed_bytes: int = Field(default=0, ge=0)
    error_records_purged: int = Field(default=0, ge=0)
    expired_urls_purged: int = Field(default=0, ge=0)
