"""Pytest configuration and fixtures for CineMirror tests.

This module provides reusable fixtures for:
- Settings overrides
- A file-backed SQLite database with all tables created
- A fake TMDB upstream
- Services wired against both, and an async test client
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from mocks.tmdb_responses import FakeTMDB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings
from cinemirror.core.database import build_engine, build_session_factory, create_all
from cinemirror.core.tasks import drain_background_tasks
from cinemirror.dependencies import Services, build_services
from cinemirror.main import create_app

# Items per page, shared by the settings and the fake upstream
PAGE_SIZE = 5


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test-specific settings.

    Uses a SQLite file instead of ``:memory:`` because the SQLite engine
    opens a fresh connection per session, and every in-memory connection
    would see its own empty database.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cinemirror-test.db'}",
        tmdb_api_key="test-api-key",  # type: ignore[arg-type]
        tmdb_max_pages=500,
        catalog_page_size=PAGE_SIZE,
        sync_page_delay_ms=0,
        prefetch_enabled=False,
        cache_cleanup_target=5,
        cache_cleanup_threshold=10,
        cache_light_cleanup_days=7,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh database with every table created.

    Background tasks (usage bumps, cache writes, prefetches) are drained
    before the engine is disposed.
    """
    engine = build_engine(test_settings)
    await create_all(engine)

    yield build_session_factory(engine)

    await drain_background_tasks(timeout=5)
    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A single session for repository tests. Commit explicitly."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Upstream Fixtures
# =============================================================================


@pytest.fixture
def fake_tmdb() -> FakeTMDB:
    """Fake upstream with 500 pages of PAGE_SIZE items per category."""
    return FakeTMDB(total_pages=500, page_size=PAGE_SIZE)


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def services(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    fake_tmdb: FakeTMDB,
) -> Services:
    """Every service wired against the test database and the fake upstream."""
    return build_services(test_settings, session_factory, fake_tmdb)  # type: ignore[arg-type]


@pytest.fixture
def app(test_settings: Settings, services: Services) -> FastAPI:
    """Create a test FastAPI application with test settings.

    The lifespan does not run under ASGITransport, so the services it would
    build are attached directly.
    """
    app = create_app(settings=test_settings)
    app.state.services = services
    return app


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    This client makes requests to the test app without starting a server.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_item_row() -> dict[str, Any]:
    """Return a catalog row as produced by the sync path."""
    return {
        "tmdb_id": 550,
        "title": "Fight Club",
        "original_title": "Fight Club",
        "overview": "A ticking-time-bomb insomniac...",
        "release_date": "1999-10-15",
        "release_year": 1999,
        "vote_average": 8.4,
        "vote_count": 26280,
        "popularity": 61.4,
        "genre_ids": [18, 53],
        "genre_key": ",18,53,",
        "original_language": "en",
        "adult": False,
        "media_type": "movie",
    }
