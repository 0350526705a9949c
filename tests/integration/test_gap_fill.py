"""Tests for GapFillSynchronizer against SQLite and a fake upstream.

Covers window runs from a known high-water mark, concurrent fills of the
same page, the upstream page cap, stale ledger entries, resumption after
an upstream failure, end of data and the iteration guard.
"""

import asyncio

import pytest
from mocks.tmdb_responses import FakeTMDB
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings
from cinemirror.core.database import session_scope
from cinemirror.core.exceptions import (
    PageLimitExceededError,
    UpstreamFetchError,
    ValidationError,
)
from cinemirror.models.catalog_item import CatalogItem
from cinemirror.models.sync_status import CatalogFilters, SyncCategory, SyncStatus
from cinemirror.repositories.catalog_item import CatalogItemRepository
from cinemirror.repositories.sync_status import SyncLedgerRepository
from cinemirror.services.gap_fill import GapFillSynchronizer

pytestmark = pytest.mark.integration

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def synchronizer(
    session_factory: async_sessionmaker[AsyncSession],
    fake_tmdb: FakeTMDB,
    test_settings: Settings,
) -> GapFillSynchronizer:
    return GapFillSynchronizer(session_factory, fake_tmdb, test_settings)  # type: ignore[arg-type]


async def _seed_pages(
    session_factory: async_sessionmaker[AsyncSession],
    fake_tmdb: FakeTMDB,
    pages: range,
    category: SyncCategory = SyncCategory.MOVIES,
) -> None:
    """Store pages as if an earlier fill had fetched them."""
    async with session_scope(session_factory) as session:
        for page in pages:
            await CatalogItemRepository(session).upsert_many(
                category, [item.to_row() for item in fake_tmdb.items_for(page)]
            )
            await SyncLedgerRepository(session).record_page_synced(
                category, page, None, item_count=fake_tmdb.page_size
            )


# =============================================================================
# Window Runs
# =============================================================================


class TestFillFromHighWaterMark:
    @pytest.mark.asyncio
    async def test_far_target_fetches_exact_window(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        """H=100, T=150: pages 101..150 are fetched, nothing else."""
        await _seed_pages(session_factory, fake_tmdb, range(1, 101))

        result = await synchronizer.fill(SyncCategory.MOVIES, 150)

        assert fake_tmdb.pages_called() == list(range(101, 151))
        assert result.pages_fetched == list(range(101, 151))
        assert result.windows_run == 1
        assert result.items_upserted == 50 * fake_tmdb.page_size
        async with session_scope(session_factory) as session:
            ledger = SyncLedgerRepository(session)
            assert await ledger.high_water_mark(SyncCategory.MOVIES, None) == 150
            assert await ledger.is_page_synced(SyncCategory.MOVIES, 150, None)

    @pytest.mark.asyncio
    async def test_near_target_reads_ahead(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        result = await synchronizer.fill(SyncCategory.TV_SERIES, 3)

        assert fake_tmdb.pages_called() == [1, 2, 3, 4, 5]
        assert fake_tmdb.calls[0][0] == "tv_series"
        assert result.stopped_early is False

    @pytest.mark.asyncio
    async def test_synced_target_is_not_refetched(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        await synchronizer.fill(SyncCategory.MOVIES, 5)
        fake_tmdb.calls.clear()

        result = await synchronizer.fill(SyncCategory.MOVIES, 5)

        assert result.already_synced
        assert fake_tmdb.calls == []

    @pytest.mark.asyncio
    async def test_hole_is_patched(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        await _seed_pages(session_factory, fake_tmdb, range(1, 21))
        async with session_scope(session_factory) as session:
            await SyncLedgerRepository(session).invalidate(SyncCategory.MOVIES, 12, None)

        await synchronizer.fill(SyncCategory.MOVIES, 12)

        # Only the missing page inside [7, 17] is fetched
        assert fake_tmdb.pages_called() == [12]

    @pytest.mark.asyncio
    async def test_high_water_mark_never_decreases(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        marks = []
        for target in (5, 3, 20, 8, 160):
            await synchronizer.fill(SyncCategory.MOVIES, target)
            async with session_scope(session_factory) as session:
                marks.append(
                    await SyncLedgerRepository(session).high_water_mark(
                        SyncCategory.MOVIES, None
                    )
                )

        assert marks == sorted(marks)
        assert marks[-1] >= 160

    @pytest.mark.asyncio
    async def test_every_fetched_page_is_recorded(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        result = await synchronizer.fill(SyncCategory.MOVIES, 10)

        async with session_scope(session_factory) as session:
            ledger = SyncLedgerRepository(session)
            assert await ledger.synced_pages(SyncCategory.MOVIES, None) == (
                result.pages_fetched
            )
            entry = await ledger.get_entry(SyncCategory.MOVIES, 10, None)
            assert entry is not None
            assert entry.total_pages == 500
            assert entry.sync_metadata["source"] == "on-demand-gap-fill"
            assert entry.sync_metadata["target_page"] == 10


# =============================================================================
# Filter Tracks
# =============================================================================


class TestFilteredTracks:
    @pytest.mark.asyncio
    async def test_filtered_track_has_own_high_water_mark(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        action = CatalogFilters(genre="28")
        await _seed_pages(session_factory, fake_tmdb, range(1, 11))

        await synchronizer.fill(SyncCategory.MOVIES, 2, action)

        assert fake_tmdb.pages_called() == [1, 2, 3, 4]
        assert all(signature == action.signature for _, _, signature in fake_tmdb.calls)
        async with session_scope(session_factory) as session:
            ledger = SyncLedgerRepository(session)
            assert await ledger.high_water_mark(SyncCategory.MOVIES, action) == 4
            assert await ledger.high_water_mark(SyncCategory.MOVIES, None) == 10

    @pytest.mark.asyncio
    async def test_language_only_filters_use_unfiltered_track(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        await synchronizer.fill(SyncCategory.MOVIES, 1, CatalogFilters(language="ja-JP"))

        assert fake_tmdb.calls[0] == ("movies", 1, None)

    @pytest.mark.asyncio
    async def test_trending_facets_use_unfiltered_track(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        await synchronizer.fill(SyncCategory.TRENDING, 2, CatalogFilters(genre="18"))

        assert fake_tmdb.calls[0] == ("trending", 1, None)
        async with session_scope(session_factory) as session:
            ledger = SyncLedgerRepository(session)
            assert await ledger.high_water_mark(SyncCategory.TRENDING, None) == 4
            assert await ledger.high_water_mark(
                SyncCategory.TRENDING, CatalogFilters(genre="18")
            ) == 0


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrentFills:
    @pytest.mark.asyncio
    async def test_concurrent_fills_do_not_duplicate(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        """Two fills of page 50 at once leave one row per item and page."""
        first, second = await asyncio.gather(
            synchronizer.fill(SyncCategory.MOVIES, 50),
            synchronizer.fill(SyncCategory.MOVIES, 50),
        )

        async with session_scope(session_factory) as session:
            ledger_rows = await session.execute(
                select(SyncStatus.page, func.count())
                .group_by(SyncStatus.page)
                .having(func.count() > 1)
            )
            assert ledger_rows.all() == []

            item_rows = await session.execute(
                select(CatalogItem.tmdb_id, func.count())
                .group_by(CatalogItem.category, CatalogItem.tmdb_id)
                .having(func.count() > 1)
            )
            assert item_rows.all() == []

            ledger = SyncLedgerRepository(session)
            assert await ledger.is_page_synced(SyncCategory.MOVIES, 50, None)
            page_50 = await CatalogItemRepository(session).find_page(
                SyncCategory.MOVIES, 50, fake_tmdb.page_size
            )
            assert [i.tmdb_id for i in page_50] == [
                item.tmdb_id for item in fake_tmdb.items_for(50)
            ]

        # Inserts were split between the two fills, never doubled
        total_items = first.items_upserted + second.items_upserted
        assert total_items == 52 * fake_tmdb.page_size

    @pytest.mark.asyncio
    async def test_single_flight_collapses_identical_fills(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
        test_settings: Settings,
    ) -> None:
        settings = test_settings.model_copy(update={"sync_single_flight": True})
        synchronizer = GapFillSynchronizer(session_factory, fake_tmdb, settings)  # type: ignore[arg-type]

        first, second = await asyncio.gather(
            synchronizer.fill(SyncCategory.MOVIES, 5),
            synchronizer.fill(SyncCategory.MOVIES, 5),
        )

        assert first is second
        assert fake_tmdb.pages_called() == [1, 2, 3, 4, 5, 6, 7]
        assert synchronizer._in_flight == {}


# =============================================================================
# Page Cap and Validation
# =============================================================================


class TestPageLimit:
    @pytest.mark.asyncio
    async def test_page_beyond_cap_makes_no_calls(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        with pytest.raises(PageLimitExceededError) as exc_info:
            await synchronizer.fill(SyncCategory.MOVIES, 501)

        assert exc_info.value.details["max_page"] == 500
        assert exc_info.value.retryable is False
        assert fake_tmdb.calls == []

    @pytest.mark.asyncio
    async def test_last_page_is_allowed(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        await _seed_pages(session_factory, fake_tmdb, range(1, 490))

        await synchronizer.fill(SyncCategory.MOVIES, 500)

        assert fake_tmdb.pages_called() == list(range(490, 501))

    @pytest.mark.asyncio
    async def test_page_zero_is_rejected(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        with pytest.raises(ValidationError):
            await synchronizer.fill(SyncCategory.MOVIES, 0)
        assert fake_tmdb.calls == []


# =============================================================================
# Failure Handling
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_stale_entry_is_healed(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        """A ledger entry without rows is dropped and the page refetched."""
        async with session_scope(session_factory) as session:
            await SyncLedgerRepository(session).record_page_synced(
                SyncCategory.MOVIES, 3, None, item_count=5
            )

        result = await synchronizer.fill(SyncCategory.MOVIES, 3)

        assert result.healed_stale_entry is True
        assert 3 in fake_tmdb.pages_called()
        async with session_scope(session_factory) as session:
            assert await CatalogItemRepository(session).count_items_on_page(
                SyncCategory.MOVIES, 3, fake_tmdb.page_size
            ) == fake_tmdb.page_size
            assert await SyncLedgerRepository(session).is_page_synced(
                SyncCategory.MOVIES, 3, None
            )

    @pytest.mark.asyncio
    async def test_upstream_failure_keeps_committed_pages(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        fake_tmdb.fail_on = {4}

        with pytest.raises(UpstreamFetchError) as exc_info:
            await synchronizer.fill(SyncCategory.MOVIES, 10)

        assert exc_info.value.retryable is True
        assert exc_info.value.details["page"] == 4
        async with session_scope(session_factory) as session:
            ledger = SyncLedgerRepository(session)
            assert await ledger.synced_pages(SyncCategory.MOVIES, None) == [1, 2, 3]
            assert await ledger.high_water_mark(SyncCategory.MOVIES, None) == 3

        # The retry resumes after the last committed page
        fake_tmdb.fail_on.clear()
        fake_tmdb.calls.clear()
        await synchronizer.fill(SyncCategory.MOVIES, 10)

        assert fake_tmdb.pages_called() == list(range(4, 13))

    @pytest.mark.asyncio
    async def test_end_of_data_stops_early(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
    ) -> None:
        short_upstream = FakeTMDB(total_pages=3, page_size=5)
        synchronizer = GapFillSynchronizer(session_factory, short_upstream, test_settings)  # type: ignore[arg-type]

        result = await synchronizer.fill(SyncCategory.TRENDING, 2)

        assert result.stopped_early is True
        assert result.pages_fetched == [1, 2, 3]
        assert short_upstream.pages_called() == [1, 2, 3, 4]
        async with session_scope(session_factory) as session:
            assert await SyncLedgerRepository(session).synced_pages(
                SyncCategory.TRENDING, None
            ) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_people_only_page_is_not_end_of_data(
        self,
        synchronizer: GapFillSynchronizer,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
    ) -> None:
        fake_tmdb.person_pages = {2}

        result = await synchronizer.fill(SyncCategory.TRENDING, 3)

        assert result.stopped_early is False
        assert result.pages_fetched == [1, 2, 3, 4, 5]
        async with session_scope(session_factory) as session:
            entry = await SyncLedgerRepository(session).get_entry(
                SyncCategory.TRENDING, 2, None
            )
            assert entry is not None
            assert entry.item_count == 0

    @pytest.mark.asyncio
    async def test_target_past_end_of_data(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
    ) -> None:
        short_upstream = FakeTMDB(total_pages=3, page_size=5)
        synchronizer = GapFillSynchronizer(session_factory, short_upstream, test_settings)  # type: ignore[arg-type]

        result = await synchronizer.fill(SyncCategory.MOVIES, 8)

        assert result.stopped_early is True
        assert result.windows_run == 1
        assert 8 not in result.pages_fetched

    @pytest.mark.asyncio
    async def test_iteration_guard(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fake_tmdb: FakeTMDB,
        test_settings: Settings,
    ) -> None:
        settings = test_settings.model_copy(update={"sync_max_iterations": 2})
        synchronizer = GapFillSynchronizer(session_factory, fake_tmdb, settings)  # type: ignore[arg-type]

        result = await synchronizer.fill(SyncCategory.MOVIES, 300)

        assert result.iteration_limit_hit is True
        assert result.windows_run == 2
        assert result.pages_fetched == list(range(1, 101))

    @pytest.mark.asyncio
    async def test_far_target_reached_in_batches(
        self, synchronizer: GapFillSynchronizer, fake_tmdb: FakeTMDB
    ) -> None:
        result = await synchronizer.fill(SyncCategory.MOVIES, 120)

        assert result.iteration_limit_hit is False
        assert result.windows_run == 3
        assert result.pages_fetched == list(range(1, 123))
