"""
Enums for audiovista models.

Defines enumeration types used across the application for consistent
type safety and validation.
"""

from __future__ import annotations

from enum import Enum


class AudioStatus(str, Enum):
    """Lifecycle status of a cached audio file record.

    Legal transitions::

        pending     -> downloading
        downloading -> ready | error
        ready       -> downloading   (stale file or re-download after eviction)
        error       -> downloading   (explicit retry)

    No status is terminal.
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    READY = "ready"
    ERROR = "error"

    def can_transition_to(self, target: AudioStatus) -> bool:
        """Return whether moving from this status to *target* is legal."""
        return target in _AUDIO_STATUS_TRANSITIONS[self]

    @property
    def is_servable(self) -> bool:
        """Whether a record in this status may be served from disk."""
        return self is AudioStatus.READY


_AUDIO_STATUS_TRANSITIONS: dict[AudioStatus, frozenset[AudioStatus]] = {
    AudioStatus.PENDING: frozenset({AudioStatus.DOWNLOADING}),
    AudioStatus.DOWNLOADING: frozenset({AudioStatus.READY, AudioStatus.ERROR}),
    AudioStatus.READY: frozenset({AudioStatus.DOWNLOADING}),
    AudioStatus.ERROR: frozenset({AudioStatus.DOWNLOADING}),
}


class DownloadState(str, Enum):
    """Download state as reported to clients.

    Mirrors :class:`AudioStatus` plus ``none`` for ids without a record.
    """

    NONE = "none"
    PENDING = "pending"
    DOWNLOADING = "downloading"
    READY = "ready"
    ERROR = "error"

    @classmethod
    def from_status(cls, status: AudioStatus | None) -> DownloadState:
        """Map a stored record status (or its absence) to a client state."""
        if status is None:
            return cls.NONE
        return cls(status.value)


class StreamSource(str, Enum):
    """Where the bytes of a stream response came from."""

    LOCAL = "local"
    CACHED_URL = "cached_url"
    FRESH_URL = "fresh_url"
