"""
Abstract Base Class for media extraction clients.

This interface defines the contract for turning a video id into either a
playable remote URL or a local audio file, enabling:
- The yt-dlp command line tool in production
- Fakes in tests (no subprocess)
- Clear API boundaries for type checking
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class ExtractionClientInterface(ABC):
    """
    Abstract interface for media extraction.

    Implementations must bound every call by the given wall-clock timeout
    and must not leave a child process running after a call returns.

    Examples
    --------
    >>> class FakeExtractionClient(ExtractionClientInterface):
    ...     async def resolve_url(self, video_id, timeout):
    ...         return f"https://media.example/{video_id}"
    ...     async def download_to_file(self, video_id, dest, timeout):
    ...         dest.write_bytes(b"a" * 1000)
    """

    @abstractmethod
    async def resolve_url(self, video_id: str, timeout: float) -> Optional[str]:
        """
        Resolve a short-lived playable URL for the video's best audio stream.

        Parameters
        ----------
        video_id : str
            Validated 11-character video id.
        timeout : float
            Wall-clock bound in seconds.

        Returns
        -------
        Optional[str]
            The URL, or None when the tool produced no output.

        Raises
        ------
        ExtractionError
            On nonzero exit or timeout (``timed_out`` set).
        ExtractionToolMissingError
            When the tool binary cannot be executed.
        """
        pass

    @abstractmethod
    async def download_to_file(
        self, video_id: str, dest: Path, timeout: float
    ) -> None:
        """
        Download the video's audio track and write it to *dest* as MP3.

        Parameters
        ----------
        video_id : str
            Validated 11-character video id.
        dest : Path
            Output file path.
        timeout : float
            Wall-clock bound in seconds for download plus transcode.

        Raises
        ------
        ExtractionError
            On nonzero exit or timeout (``timed_out`` set).
        ExtractionToolMissingError
            When the tool binary cannot be executed.
        """
        pass
