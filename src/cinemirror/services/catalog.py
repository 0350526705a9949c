"""Catalog service - the consumer entry point for catalog reads.

Local data is served as-is. A page with no local rows is filled from TMDB
on demand, then re-queried, and the next page is prefetched in the
background. A single item missing locally is fetched from the TMDB detail
endpoint and stored. Callers learn from ``was_on_demand_synced`` whether
the request paid for an upstream call.
"""

import math
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings, get_settings
from cinemirror.core.database import session_scope
from cinemirror.core.exceptions import CatalogItemNotFoundError, UpstreamFetchError
from cinemirror.models.catalog_item import CatalogItem
from cinemirror.models.sync_status import CatalogFilters, SyncCategory, track_filters
from cinemirror.repositories.catalog_item import CatalogItemRepository
from cinemirror.services.gap_fill import GapFillResult, GapFillSynchronizer
from cinemirror.services.prefetch import PrefetchAdvisor
from cinemirror.services.tmdb import TMDBError, TMDBNotFoundError, TMDBService

logger = structlog.get_logger(__name__)

# Upstream detail endpoint per category; trending has none
DETAIL_CONTENT_TYPES = {
    SyncCategory.MOVIES: "movie",
    SyncCategory.TV_SERIES: "tv",
}


@dataclass(frozen=True)
class PageInfo:
    """Pagination of the local store (not of the upstream catalog)."""

    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total > 0 else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass
class CatalogPage:
    items: list[CatalogItem]
    pagination: PageInfo
    was_on_demand_synced: bool = False
    sync_result: GapFillResult | None = None


@dataclass
class CatalogDetail:
    item: CatalogItem
    was_on_demand_synced: bool = False


class CatalogService:
    """Serves catalog pages and items, filling local misses from upstream."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        synchronizer: GapFillSynchronizer,
        prefetch: PrefetchAdvisor,
        tmdb: TMDBService,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._synchronizer = synchronizer
        self._prefetch = prefetch
        self._tmdb = tmdb
        self._settings = settings or get_settings()

    async def get_page(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None = None,
        language: str | None = None,
        limit: int | None = None,
    ) -> CatalogPage:
        """Get page ``page`` of a category, syncing it first if it is missing.

        Facets a category cannot be filtered by upstream are ignored, so the
        local query and the ledger always describe the same rows.

        Args:
            category: Content class
            page: 1-based page number
            filters: Optional genre/year facets
            language: Language for upstream fetches
            limit: Items per page (defaults to the upstream page size)

        Returns:
            CatalogPage with items, local pagination and the sync flag

        Raises:
            PageLimitExceededError: The page lies beyond the upstream cap
            UpstreamFetchError: The on-demand fill failed
        """
        category = SyncCategory(category)
        limit = limit or self._settings.catalog_page_size
        if filters is not None:
            language = language or filters.language
        filters = track_filters(category, filters)

        items, total = await self._query(category, page, limit, filters)
        if items:
            return CatalogPage(items=items, pagination=PageInfo(page, limit, total))

        # The synchronizer drops a ledger entry whose page turns out empty
        target = self._upstream_page_for(page, limit)
        logger.info(
            "catalog_page_missing",
            category=category.value,
            page=page,
            upstream_page=target,
        )
        result = await self._synchronizer.fill(category, target, filters, language)
        self._prefetch.schedule(category, target, filters, language)

        items, total = await self._query(category, page, limit, filters)
        return CatalogPage(
            items=items,
            pagination=PageInfo(page, limit, total),
            was_on_demand_synced=True,
            sync_result=result,
        )

    async def get_item(
        self, category: SyncCategory | str, tmdb_id: int
    ) -> CatalogDetail:
        """Get one item, fetching it from the TMDB detail endpoint on a miss.

        The fetched item overwrites whatever a concurrent list sync may have
        stored meanwhile, since the detail endpoint is the fresher source.

        Raises:
            CatalogItemNotFoundError: Not mirrored and unknown upstream
            UpstreamFetchError: The detail request failed
        """
        category = SyncCategory(category)
        async with session_scope(self._session_factory) as session:
            item = await CatalogItemRepository(session).get_by_tmdb_id(category, tmdb_id)
        if item is not None:
            return CatalogDetail(item=item)

        content_type = DETAIL_CONTENT_TYPES.get(category)
        if content_type is None:
            # Trending rows only ever come from list pages
            raise CatalogItemNotFoundError(category.value, tmdb_id)

        logger.info("catalog_item_missing", category=category.value, tmdb_id=tmdb_id)
        try:
            upstream = await self._tmdb.get_details(content_type, tmdb_id)
        except TMDBNotFoundError as e:
            raise CatalogItemNotFoundError(category.value, tmdb_id) from e
        except TMDBError as e:
            raise UpstreamFetchError(
                f"Failed to fetch {content_type} {tmdb_id} from the upstream catalog",
                category=category.value,
                error=str(e),
            ) from e

        async with session_scope(self._session_factory) as session:
            repo = CatalogItemRepository(session)
            await repo.upsert_by_tmdb_id(
                category, tmdb_id, upstream.to_row(), overwrite=True
            )
            item = await repo.get_by_tmdb_id(category, tmdb_id)

        if item is None:
            raise CatalogItemNotFoundError(category.value, tmdb_id)
        return CatalogDetail(item=item, was_on_demand_synced=True)

    def _upstream_page_for(self, page: int, limit: int) -> int:
        """Upstream page holding the last row of a local page."""
        page_size = self._settings.catalog_page_size
        return max(1, math.ceil(page * limit / page_size))

    async def _query(
        self,
        category: SyncCategory,
        page: int,
        limit: int,
        filters: CatalogFilters | None,
    ) -> tuple[list[CatalogItem], int]:
        async with session_scope(self._session_factory) as session:
            repo = CatalogItemRepository(session)
            items = await repo.find_page(category, page, limit, filters)
            total = await repo.count_matching(category, filters)
        return items, total
