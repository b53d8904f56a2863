"""
Services module for audiovista.

Contains the audio cache services: extraction, disk quota management,
download orchestration and streaming.
"""

from __future__ import annotations

from audiovista.services.audio_download import AudioDownloadService
from audiovista.services.audio_stream import AudioStreamService
from audiovista.services.disk_quota import DiskQuotaManager
from audiovista.services.ytdlp_client import YtDlpClient

__all__: list[str] = [
    "AudioDownloadService",
    "AudioStreamService",
    "DiskQuotaManager",
    "YtDlpClient",
]
