"""
audiovista - Audio cache and streaming engine for a personal video feed reader.

Resolves and caches playable media URLs, downloads audio tracks to a local
disk cache under a quota, and streams them to HTTP clients with byte-range
support or by proxying the remote source.
"""

from __future__ import annotations

__version__ = "0.4.0"
__author__ = "audiovista"
__email__ = "noreply@audiovista.dev"
__license__ = "AGPL-3.0-or-later"

__all__ = ["__version__", "__author__", "__email__", "__license__"]
