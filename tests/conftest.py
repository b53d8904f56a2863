"""
Pytest configuration and fixtures for audiovista tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from audiovista.config.audio_cache import AudioCacheConfig
from audiovista.db.models import Base
from tests.factories.extraction_client_fake import FakeExtractionClient

_BYTES_PER_GB = 1024 * 1024 * 1024


@pytest.fixture
def audio_config(tmp_path: Path) -> AudioCacheConfig:
    """Audio cache configuration with a 1 GB maximum under tmp_path."""
    return AudioCacheConfig(
        cache_dir=tmp_path / "audio",
        max_cache_bytes=_BYTES_PER_GB,
        download_timeout=5.0,
        resolve_timeout=5.0,
        upstream_connect_timeout=5.0,
    )


@pytest.fixture
def fake_extraction_client() -> FakeExtractionClient:
    """Extraction client that succeeds with a 1000-byte file."""
    return FakeExtractionClient()


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite engine with all tables created.

    A file database (rather than ``:memory:``) lets background downloads and
    post-response updates use their own connections alongside the test's.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'audiovista-test.db'}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Database session for a single test."""
    async with session_factory() as session:
        yield session
