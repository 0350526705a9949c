"""Prefetch advisor - background read-ahead of the next catalog page.

After page T has been served, page T+1 is gap-filled in a detached task so
the next request in a paging session is likely to hit local data. The task
holds its own database sessions and never reports back to the request.
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings, get_settings
from cinemirror.core.database import session_scope
from cinemirror.core.exceptions import CineMirrorError
from cinemirror.core.tasks import spawn_background
from cinemirror.models.sync_status import CatalogFilters, SyncCategory
from cinemirror.repositories.catalog_item import CatalogItemRepository
from cinemirror.services.gap_fill import GapFillSynchronizer

logger = structlog.get_logger(__name__)


class PrefetchAdvisor:
    """Schedules fire-and-forget gap-fills of the page after a served one."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        synchronizer: GapFillSynchronizer,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._synchronizer = synchronizer
        self._settings = settings or get_settings()

    def schedule(
        self,
        category: SyncCategory | str,
        served_page: int,
        filters: CatalogFilters | None = None,
        language: str | None = None,
    ) -> asyncio.Task[None] | None:
        """Prefetch ``served_page + 1`` in the background.

        Returns:
            The scheduled task, or None when there is nothing to prefetch
        """
        next_page = served_page + 1
        if not self._settings.prefetch_enabled:
            return None
        if next_page > self._settings.tmdb_max_pages:
            return None

        return spawn_background(
            self._prefetch(SyncCategory(category), next_page, filters, language),
            name="catalog_prefetch",
        )

    async def _prefetch(
        self,
        category: SyncCategory,
        page: int,
        filters: CatalogFilters | None,
        language: str | None,
    ) -> None:
        async with session_scope(self._session_factory) as session:
            present = await CatalogItemRepository(session).count_items_on_page(
                category, page, self._settings.catalog_page_size, filters
            )
        if present > 0:
            logger.debug("prefetch_not_needed", category=category.value, page=page)
            return

        try:
            result = await self._synchronizer.fill(category, page, filters, language)
        except CineMirrorError as e:
            logger.warning(
                "prefetch_failed",
                category=category.value,
                page=page,
                error_code=e.code,
                error=e.message,
            )
            return

        logger.debug(
            "prefetch_completed",
            category=category.value,
            page=page,
            pages_fetched=len(result.pages_fetched),
        )
