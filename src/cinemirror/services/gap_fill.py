"""Gap-fill synchronizer - on-demand mirroring of upstream catalog pages.

When a consumer asks for a page the local store does not have, the
synchronizer pulls the missing upstream pages around it and records each
one in the sync ledger. Only requested regions of the catalog are ever
mirrored.

Fill for a target page T of a (category, filter track):

    1. Reject T beyond the upstream hard page cap before any network call.
    2. If the ledger says T is synced, trust it only when the catalog table
       actually has rows for T. A phantom entry is deleted and T refilled.
    3. Pick a fetch window from T and the track's high-water mark H
       (``compute_fetch_window``).
    4. Fetch every unsynced page in the window. Each page is committed on
       its own, so an upstream failure keeps everything fetched before it.
       An empty upstream page means end of data.
    5. If the window stopped short of T, run another window, up to
       ``sync_max_iterations`` windows per call.

Concurrent fills of the same page are safe without locks: item upserts and
ledger writes are both idempotent. ``sync_single_flight`` additionally
collapses identical concurrent fills in this process into one.
"""

import asyncio
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings, get_settings
from cinemirror.core.database import session_scope
from cinemirror.core.exceptions import (
    PageLimitExceededError,
    StaleLedgerEntryError,
    UpstreamFetchError,
    ValidationError,
)
from cinemirror.models.sync_status import (
    NO_FILTERS_HASH,
    CatalogFilters,
    SyncCategory,
    track_filters,
)
from cinemirror.repositories.catalog_item import CatalogItemRepository
from cinemirror.repositories.sync_status import SyncLedgerRepository
from cinemirror.services.tmdb import TMDBError, TMDBService

logger = structlog.get_logger(__name__)

# Window selection
HOLE_RADIUS = 5
NEAR_TARGET_LIMIT = 100
NEAR_LOOKAHEAD = 2
NEAR_MAX_LOOKAHEAD = 10
FAR_BATCH = 50
FAR_SLACK = 5
DEFAULT_MAX_WIDTH = 100

SYNC_SOURCE = "on-demand-gap-fill"


@dataclass(frozen=True)
class FetchWindow:
    """Inclusive range of upstream pages to fetch."""

    start: int
    end: int

    @property
    def width(self) -> int:
        return max(0, self.end - self.start + 1)

    def pages(self) -> range:
        return range(self.start, self.end + 1)


def compute_fetch_window(
    target: int,
    high_water_mark: int,
    *,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_page: int | None = None,
) -> FetchWindow:
    """Choose which pages to fetch for ``target``.

    - Target inside the synced range (a hole): patch the pages around it,
      never past the high-water mark.
    - Target close to the start (<= 100): continue from the high-water mark
      to a couple of pages past the target.
    - Far target: continue from the high-water mark in batches of at most
      50 pages, building a contiguous run toward the target.

    The width never exceeds ``max_width`` and the window never extends
    past ``max_page``.

    Example:
        compute_fetch_window(150, 100) -> FetchWindow(101, 150)
    """
    if high_water_mark >= target:
        start = max(1, target - HOLE_RADIUS)
        end = min(target + HOLE_RADIUS, high_water_mark)
    elif target <= NEAR_TARGET_LIMIT:
        start = high_water_mark + 1
        end = min(target + NEAR_LOOKAHEAD, target + NEAR_MAX_LOOKAHEAD)
    else:
        batch = min(FAR_BATCH, target - high_water_mark + FAR_SLACK)
        start = high_water_mark + 1
        end = min(high_water_mark + batch, target + NEAR_LOOKAHEAD)

    end = min(end, start + max_width - 1)
    if max_page is not None:
        end = min(end, max_page)
    return FetchWindow(start=start, end=end)


@dataclass
class GapFillResult:
    """Summary of one fill call."""

    category: str
    target_page: int
    pages_fetched: list[int] = field(default_factory=list)
    items_upserted: int = 0
    windows_run: int = 0
    stopped_early: bool = False
    iteration_limit_hit: bool = False
    healed_stale_entry: bool = False

    @property
    def already_synced(self) -> bool:
        return self.windows_run == 0


class GapFillSynchronizer:
    """Fills missing catalog pages from TMDB on demand.

    Usage:
        ```python
        synchronizer = GapFillSynchronizer(get_session_factory(), tmdb)
        result = await synchronizer.fill(SyncCategory.MOVIES, 150)
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb: TMDBService,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tmdb = tmdb
        self._settings = settings or get_settings()
        self._in_flight: dict[tuple[str, str, int], asyncio.Task[GapFillResult]] = {}

    async def fill(
        self,
        category: SyncCategory | str,
        target: int,
        filters: CatalogFilters | None = None,
        language: str | None = None,
    ) -> GapFillResult:
        """Make sure ``target`` is mirrored locally.

        Args:
            category: Content class
            target: Requested 1-based page
            filters: Optional genre/year facets (None for the unfiltered track)
            language: Fetch language (defaults to the filters' or configured one)

        Returns:
            GapFillResult describing what was fetched

        Raises:
            PageLimitExceededError: Target beyond the upstream page cap
            UpstreamFetchError: Upstream failed; committed pages are kept
        """
        category = SyncCategory(category)
        max_page = self._settings.tmdb_max_pages

        if target < 1:
            raise ValidationError("Page must be a positive integer", field="page")
        if target > max_page:
            logger.info(
                "gap_fill_page_limit_exceeded",
                category=category.value,
                page=target,
                max_page=max_page,
            )
            raise PageLimitExceededError(page=target, max_page=max_page)

        language = (
            language
            or (filters.language if filters else None)
            or self._settings.tmdb_default_language
        )
        filters = track_filters(category, filters)

        if not self._settings.sync_single_flight:
            return await self._fill(category, target, filters, language)

        key = (
            category.value,
            filters.stored_hash if filters else NO_FILTERS_HASH,
            target,
        )
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._fill(category, target, filters, language))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        else:
            logger.debug("gap_fill_joined_in_flight", category=category.value, page=target)
        return await asyncio.shield(task)

    async def _fill(
        self,
        category: SyncCategory,
        target: int,
        filters: CatalogFilters | None,
        language: str,
    ) -> GapFillResult:
        result = GapFillResult(category=category.value, target_page=target)
        log = logger.bind(
            category=category.value,
            target_page=target,
            filters=filters.signature if filters else None,
        )

        try:
            if await self._target_is_present(category, target, filters):
                log.debug("gap_fill_not_needed")
                return result
        except StaleLedgerEntryError as stale:
            log.warning("stale_ledger_entry", page=stale.page)
            async with session_scope(self._session_factory) as session:
                await SyncLedgerRepository(session).invalidate(category, target, filters)
            result.healed_stale_entry = True

        max_iterations = self._settings.sync_max_iterations
        for _ in range(max_iterations):
            async with session_scope(self._session_factory) as session:
                ledger = SyncLedgerRepository(session)
                high_water_mark = await ledger.high_water_mark(category, filters)
                synced = set(await ledger.synced_pages(category, filters))

            window = compute_fetch_window(
                target,
                high_water_mark,
                max_width=self._settings.sync_max_window,
                max_page=self._settings.tmdb_max_pages,
            )
            result.windows_run += 1
            log.info(
                "gap_fill_window",
                high_water_mark=high_water_mark,
                window_start=window.start,
                window_end=window.end,
            )

            if await self._run_window(category, window, synced, filters, language, result):
                result.stopped_early = True
                break
            if window.end >= target:
                break
        else:
            result.iteration_limit_hit = True
            log.warning("gap_fill_iteration_limit", max_iterations=max_iterations)

        log.info(
            "gap_fill_completed",
            pages_fetched=len(result.pages_fetched),
            items_upserted=result.items_upserted,
            windows_run=result.windows_run,
            stopped_early=result.stopped_early,
        )
        return result

    async def _target_is_present(
        self,
        category: SyncCategory,
        target: int,
        filters: CatalogFilters | None,
    ) -> bool:
        """True when the ledger and the catalog table agree the page exists.

        Raises:
            StaleLedgerEntryError: Ledger entry without any catalog rows
        """
        async with session_scope(self._session_factory) as session:
            if not await SyncLedgerRepository(session).is_page_synced(
                category, target, filters
            ):
                return False
            count = await CatalogItemRepository(session).count_items_on_page(
                category, target, self._settings.catalog_page_size, filters
            )

        if count > 0:
            return True
        raise StaleLedgerEntryError(
            category.value, target, filters.signature if filters else None
        )

    async def _run_window(
        self,
        category: SyncCategory,
        window: FetchWindow,
        synced: set[int],
        filters: CatalogFilters | None,
        language: str,
        result: GapFillResult,
    ) -> bool:
        """Fetch and store every unsynced page of a window.

        Returns:
            True if upstream ran out of data inside the window
        """
        delay = self._settings.sync_page_delay_seconds

        for page in window.pages():
            if page in synced:
                continue

            try:
                upstream = await self._tmdb.fetch_page(category, page, filters, language)
            except TMDBError as e:
                logger.error(
                    "gap_fill_upstream_failed",
                    category=category.value,
                    page=page,
                    error=str(e),
                )
                raise UpstreamFetchError(
                    category=category.value, page=page, error=str(e)
                ) from e

            if upstream.is_empty:
                logger.info("gap_fill_end_of_data", category=category.value, page=page)
                return True

            async with session_scope(self._session_factory) as session:
                # Existing rows are kept as they are to keep bulk fills fast
                written = await CatalogItemRepository(session).upsert_many(
                    category, [item.to_row() for item in upstream.items]
                )
                await SyncLedgerRepository(session).record_page_synced(
                    category,
                    page,
                    filters,
                    item_count=len(upstream.items),
                    total_pages=upstream.total_pages,
                    metadata={
                        "source": SYNC_SOURCE,
                        "tmdb_total_results": upstream.total_results,
                        "target_page": result.target_page,
                    },
                    language=language,
                )

            result.pages_fetched.append(page)
            result.items_upserted += written
            logger.debug(
                "gap_fill_page_synced",
                category=category.value,
                page=page,
                items=len(upstream.items),
                inserted=written,
            )

            if delay > 0:
                await asyncio.sleep(delay)

        return False
