"""
Database models for audiovista.

This module contains the SQLAlchemy models for the audio cache: one row per
cached audio file and one row per resolved remote media URL.
"""

from __future__ import annotations

import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class AudioFile(Base):
    """Locally cached audio track for a video, keyed by video id."""

    __tablename__ = "audio_files"

    # Primary key (also the single-flight guard: one record per video)
    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)

    # File location relative to the cache root, always "<video_id>.mp3"
    file_path: Mapped[str] = mapped_column(String(32), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # AudioStatus enum value
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    download_started_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    downloaded_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_played_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_audio_files_status_last_played", "status", "last_played_at"),
    )


class AudioUrlCache(Base):
    """Resolved remote media URL for a video with its expiry."""

    __tablename__ = "audio_url_cache"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("idx_audio_url_cache_expires_at", "expires_at"),)
