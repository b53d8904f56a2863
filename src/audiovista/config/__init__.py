"""
Configuration management module for audiovista.

Handles application settings, environment variables, database configuration,
and the audio cache parameters passed to the core services.
"""

from __future__ import annotations

__all__: list[str] = []
