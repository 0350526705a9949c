"""Tests for SyncLedgerRepository against a real SQLite database."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cinemirror.config import Settings
from cinemirror.models.base import utcnow
from cinemirror.models.sync_status import CatalogFilters, SyncCategory, SyncStatus
from cinemirror.repositories.sync_status import SyncLedgerRepository

pytestmark = pytest.mark.integration

ACTION = CatalogFilters(genre="28")


async def _row_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(SyncStatus))
    return result.scalar_one()


class TestRecordPageSynced:
    @pytest.mark.asyncio
    async def test_records_entry(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)

        await ledger.record_page_synced(
            SyncCategory.MOVIES, 3, None, item_count=20, total_pages=500
        )
        await db_session.commit()

        entry = await ledger.get_entry(SyncCategory.MOVIES, 3, None)
        assert entry is not None
        assert entry.item_count == 20
        assert entry.total_pages == 500
        assert entry.filters_hash == ""
        assert entry.filter_signature is None
        assert entry.language == "en-US"
        assert await ledger.is_page_synced("movies", 3, None)

    @pytest.mark.asyncio
    async def test_language_defaults_to_configured(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        settings = test_settings.model_copy(update={"tmdb_default_language": "vi-VN"})
        ledger = SyncLedgerRepository(db_session)

        with patch("cinemirror.repositories.sync_status.get_settings", return_value=settings):
            await ledger.record_page_synced(SyncCategory.MOVIES, 1, None, item_count=5)
        await ledger.record_page_synced(
            SyncCategory.MOVIES, 2, CatalogFilters(language="ja-JP"), item_count=5
        )
        await db_session.commit()

        first = await ledger.get_entry(SyncCategory.MOVIES, 1, None)
        second = await ledger.get_entry(SyncCategory.MOVIES, 2, None)
        assert first is not None and first.language == "vi-VN"
        assert second is not None and second.language == "ja-JP"

    @pytest.mark.asyncio
    async def test_resync_updates_single_row(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)

        await ledger.record_page_synced(
            SyncCategory.MOVIES,
            1,
            None,
            item_count=20,
            total_pages=500,
            metadata={"source": "first"},
        )
        await ledger.record_page_synced(SyncCategory.MOVIES, 1, None, item_count=18)
        await db_session.commit()

        assert await _row_count(db_session) == 1
        entry = await ledger.get_entry(SyncCategory.MOVIES, 1, None)
        await db_session.refresh(entry)
        assert entry.item_count == 18
        # Omitted values keep what was there
        assert entry.total_pages == 500
        assert entry.sync_metadata == {"source": "first"}

    @pytest.mark.asyncio
    async def test_tracks_are_separate(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)

        await ledger.record_page_synced(SyncCategory.MOVIES, 1, None, item_count=5)
        await ledger.record_page_synced(SyncCategory.MOVIES, 1, ACTION, item_count=5)
        await ledger.record_page_synced(SyncCategory.TV_SERIES, 1, None, item_count=5)
        await db_session.commit()

        assert await _row_count(db_session) == 3
        assert not await ledger.is_page_synced(SyncCategory.MOVIES, 2, ACTION)
        assert await ledger.is_page_synced(SyncCategory.MOVIES, 1, ACTION)

    @pytest.mark.asyncio
    async def test_language_alone_shares_unfiltered_track(
        self, db_session: AsyncSession
    ) -> None:
        ledger = SyncLedgerRepository(db_session)

        await ledger.record_page_synced(
            SyncCategory.MOVIES, 1, CatalogFilters(language="fr-FR"), item_count=5
        )
        await db_session.commit()

        assert await ledger.is_page_synced(SyncCategory.MOVIES, 1, None)
        entry = await ledger.get_entry(SyncCategory.MOVIES, 1, None)
        assert entry is not None and entry.language == "fr-FR"


class TestLedgerQueries:
    @pytest.mark.asyncio
    async def test_high_water_mark_and_synced_pages(
        self, db_session: AsyncSession
    ) -> None:
        ledger = SyncLedgerRepository(db_session)
        assert await ledger.high_water_mark(SyncCategory.MOVIES, None) == 0

        for page in (3, 1, 7):
            await ledger.record_page_synced(SyncCategory.MOVIES, page, None, item_count=5)
        await db_session.commit()

        assert await ledger.high_water_mark(SyncCategory.MOVIES, None) == 7
        assert await ledger.synced_pages(SyncCategory.MOVIES, None) == [1, 3, 7]
        assert await ledger.high_water_mark(SyncCategory.MOVIES, ACTION) == 0

    @pytest.mark.asyncio
    async def test_invalidate(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)
        await ledger.record_page_synced(SyncCategory.TRENDING, 2, None, item_count=5)
        await db_session.commit()

        assert await ledger.invalidate(SyncCategory.TRENDING, 2, None) is True
        assert await ledger.invalidate(SyncCategory.TRENDING, 2, None) is False
        await db_session.commit()

        assert not await ledger.is_page_synced(SyncCategory.TRENDING, 2, None)

    @pytest.mark.asyncio
    async def test_get_total_pages(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)
        assert await ledger.get_total_pages(SyncCategory.MOVIES, None) is None

        await ledger.record_page_synced(
            SyncCategory.MOVIES, 1, None, item_count=5, total_pages=480
        )
        await db_session.commit()

        assert await ledger.get_total_pages(SyncCategory.MOVIES, None) == 480

    @pytest.mark.asyncio
    async def test_sync_stats(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)
        await ledger.record_page_synced(
            SyncCategory.MOVIES, 1, None, item_count=20, total_pages=500
        )
        await ledger.record_page_synced(SyncCategory.MOVIES, 2, None, item_count=20)
        await ledger.record_page_synced(SyncCategory.MOVIES, 1, ACTION, item_count=7)
        await db_session.commit()

        stats = await ledger.get_sync_stats(SyncCategory.MOVIES)

        assert stats["category"] == "movies"
        assert stats["synced_pages"] == 3
        assert stats["total_items"] == 47
        assert stats["filter_tracks"] == 2
        assert stats["high_water_mark"] == 2
        assert stats["total_pages"] == 500
        assert stats["last_synced_at"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_sync_stats_empty(self, db_session: AsyncSession) -> None:
        stats = await SyncLedgerRepository(db_session).get_sync_stats("trending")

        assert stats["synced_pages"] == 0
        assert stats["last_synced_at"] is None
        assert stats["high_water_mark"] == 0

    @pytest.mark.asyncio
    async def test_clear_old_sync(self, db_session: AsyncSession) -> None:
        ledger = SyncLedgerRepository(db_session)
        await ledger.record_page_synced(SyncCategory.MOVIES, 1, None, item_count=5)
        await ledger.record_page_synced(SyncCategory.MOVIES, 2, None, item_count=5)
        await db_session.commit()
        await db_session.execute(
            update(SyncStatus)
            .where(SyncStatus.page == 1)
            .values(synced_at=utcnow() - timedelta(days=40))
        )
        await db_session.commit()

        removed = await ledger.clear_old_sync(SyncCategory.MOVIES, older_than_days=30)
        await db_session.commit()

        assert removed == 1
        assert await ledger.synced_pages(SyncCategory.MOVIES, None) == [2]
