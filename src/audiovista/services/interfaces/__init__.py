"""
Service interfaces (ABCs) for the audiovista application.

These abstract base classes define contracts for service implementations,
enabling dependency injection, testing with fakes, and swappable implementations.
"""

from .extraction_client_interface import ExtractionClientInterface

__all__ = [
    "ExtractionClientInterface",
]
