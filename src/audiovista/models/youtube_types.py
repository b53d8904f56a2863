"""
Custom validated types for media identifiers.

Provides a strongly-typed wrapper for YouTube video IDs that enforces
format and length constraints at the type level. The same pattern guards
every filesystem path and subprocess argument built from an id.
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BeforeValidator, Field

VIDEO_ID_PATTERN = r"^[A-Za-z0-9_-]{11}$"
"""Exactly 11 characters from the YouTube id alphabet."""

_VIDEO_ID_RE = re.compile(VIDEO_ID_PATTERN)


def is_valid_video_id(v: object) -> bool:
    """Return True when *v* is a well-formed 11-character video ID."""
    return isinstance(v, str) and _VIDEO_ID_RE.match(v) is not None


def validate_video_id(v: str) -> str:
    """Validate YouTube Video ID format."""
    if not isinstance(v, str):
        raise TypeError("VideoId must be a string")

    # Check length
    if len(v) != 11:
        raise ValueError(
            f"VideoId must be exactly 11 characters long, got {len(v)}: {v}"
        )

    # Check valid characters (alphanumeric, hyphens, underscores)
    if not _VIDEO_ID_RE.match(v):
        raise ValueError(f"VideoId contains invalid characters: {v}")

    return v


VideoId = Annotated[
    str,
    BeforeValidator(validate_video_id),
    Field(description="YouTube video ID (exactly 11 characters)"),
]
