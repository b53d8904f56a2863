"""
CLI interface module for audiovista.

Provides the Typer-based command-line interface for serving the API and for
operating the audio cache.
"""

from __future__ import annotations

__all__: list[str] = []
