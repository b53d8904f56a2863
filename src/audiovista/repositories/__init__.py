"""
Repository layer for data access patterns.

This module provides repository interfaces and implementations following
the Repository pattern for clean separation of cache logic and persistence.
"""

from .audio_file_repository import AudioFileRepository
from .audio_url_cache_repository import AudioUrlCacheRepository
from .base import BaseRepository, BaseSQLAlchemyRepository

__all__ = [
    "BaseRepository",
    "BaseSQLAlchemyRepository",
    "AudioFileRepository",
    "AudioUrlCacheRepository",
]
