"""
Database module for audiovista.

Contains the SQLAlchemy models for the audio cache records and the Alembic
migration environment.
"""

from __future__ import annotations

__all__: list[str] = []
