"""Audio cache API schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from audiovista.models.audio import DiskUsage


class AudioUrlResponse(BaseModel):
    """Playable remote URL for clients that fetch the media themselves."""

    model_config = ConfigDict(strict=True)

    url: str


class CleanupResponse(BaseModel):
    """Outcome of a scheduled cleanup run plus usage afterwards."""

    deleted_files: int = Field(..., ge=0, description="Ready files evicted")
    freed_mb: float = Field(..., ge=0, description="Space released in MB")
    error_records_purged: int = Field(default=0, ge=0)
    expired_urls_purged: int = Field(default=0, ge=0)
    usage: DiskUsage
