"""
yt-dlp extraction client.

Runs the ``yt-dlp`` command line tool as a child process (never through a
shell) to resolve playable audio URLs and to download audio tracks as MP3.
Every invocation is bounded by a wall-clock timeout; a process still running
when the bound is hit is killed and reaped before the error is raised.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..exceptions import ExtractionError, ExtractionToolMissingError
from .interfaces import ExtractionClientInterface

logger = logging.getLogger(__name__)

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"

# Format preference for directly playable URLs: m4a first, then any audio,
# then itag 93 (combined stream some videos only offer), then anything.
RESOLVE_FORMAT = "bestaudio[ext=m4a]/bestaudio/93/best"
DOWNLOAD_FORMAT = "bestaudio"
DOWNLOAD_AUDIO_FORMAT = "mp3"

_STDERR_TAIL_CHARS = 2000


class YtDlpClient(ExtractionClientInterface):
    """
    Extraction client backed by the yt-dlp binary.

    Parameters
    ----------
    binary_path : str
        Executable name or path (default: ``"yt-dlp"``).
    cookies_path : Optional[Path]
        Cookie file passed with ``--cookies`` when it exists.
    """

    def __init__(
        self,
        binary_path: str = "yt-dlp",
        cookies_path: Optional[Path] = None,
    ) -> None:
        self.binary_path = binary_path
        self.cookies_path = cookies_path

    def _base_args(self) -> List[str]:
        args = [self.binary_path, "--no-playlist", "--no-warnings"]
        if self.cookies_path is not None:
            if self.cookies_path.is_file():
                args.extend(["--cookies", str(self.cookies_path)])
            else:
                logger.warning(
                    "Cookie file %s not found, continuing without cookies",
                    self.cookies_path,
                )
        return args

    def build_resolve_args(self, video_id: str) -> List[str]:
        """Arguments for printing the best audio URL of a video."""
        return self._base_args() + [
            "-f",
            RESOLVE_FORMAT,
            "--get-url",
            WATCH_URL_TEMPLATE.format(video_id=video_id),
        ]

    def build_download_args(self, video_id: str, dest: Path) -> List[str]:
        """Arguments for downloading a video's audio track to *dest* as MP3."""
        # yt-dlp swaps the extension after transcoding; the template keeps
        # the final file at exactly ``dest``.
        output_template = str(dest.with_suffix(".%(ext)s"))
        return self._base_args() + [
            "-f",
            DOWNLOAD_FORMAT,
            "-x",
            "--audio-format",
            DOWNLOAD_AUDIO_FORMAT,
            "-o",
            output_template,
            WATCH_URL_TEMPLATE.format(video_id=video_id),
        ]

    async def _run(self, args: List[str], timeout: float) -> Tuple[str, str]:
        """
        Run the tool and return its decoded stdout and stderr.

        Raises
        ------
        ExtractionToolMissingError
            If the binary cannot be executed.
        ExtractionError
            On timeout or nonzero exit.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExtractionToolMissingError(self.binary_path) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise ExtractionError(
                message=f"yt-dlp timed out after {timeout:.0f}s",
                timed_out=True,
            ) from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        stdout_text = stdout.decode("utf-8", errors="replace")
        stderr_text = stderr.decode("utf-8", errors="replace")

        if process.returncode != 0:
            tail = stderr_text[-_STDERR_TAIL_CHARS:].strip()
            logger.warning(
                "yt-dlp exited with code %s: %s", process.returncode, tail
            )
            raise ExtractionError(
                message=f"yt-dlp exited with code {process.returncode}",
                exit_code=process.returncode,
                stderr=tail or None,
            )

        return stdout_text, stderr_text

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    async def resolve_url(self, video_id: str, timeout: float) -> Optional[str]:
        """
        Resolve the best playable audio URL.

        yt-dlp may print one URL per selected format; the first line wins.
        """
        stdout, _ = await self._run(self.build_resolve_args(video_id), timeout)
        for line in stdout.splitlines():
            url = line.strip()
            if url:
                return url
        logger.warning("yt-dlp printed no URL for %s", video_id)
        return None

    async def download_to_file(
        self, video_id: str, dest: Path, timeout: float
    ) -> None:
        """Download and transcode the audio track of a video into *dest*."""
        logger.info("Downloading audio for %s to %s", video_id, dest)
        await self._run(self.build_download_args(video_id, dest), timeout)
