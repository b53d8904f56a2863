"""
Data models module for audiovista.

Defines Pydantic models and enums for cached audio files, download state
and disk usage.
"""

from __future__ import annotations

from .audio import AudioFileInfo, CleanupResult, DiskUsage, DownloadStatusResult
from .enums import AudioStatus, DownloadState, StreamSource
from .youtube_types import VideoId, is_valid_video_id, validate_video_id

__all__ = [
    "AudioFileInfo",
    "AudioStatus",
    "CleanupResult",
    "DiskUsage",
    "DownloadState",
    "DownloadStatusResult",
    "StreamSource",
    "VideoId",
    "is_valid_video_id",
    "validate_video_id",
]
