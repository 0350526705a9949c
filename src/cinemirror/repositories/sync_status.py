"""SyncLedgerRepository for the page-level sync ledger.

Pure storage: records which (category, page, filter track) combinations
have been pulled from the upstream catalog. No business logic lives here;
the gap-fill synchronizer decides what the entries mean.

All writes are idempotent. ``record_page_synced`` is an INSERT ... ON
CONFLICT DO UPDATE keyed by (category, page, filters_hash), so concurrent
fills of the same page converge on a single row.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select

from cinemirror.config import get_settings
from cinemirror.models.base import utcnow
from cinemirror.models.sync_status import (
    NO_FILTERS_HASH,
    CatalogFilters,
    SyncCategory,
    SyncStatus,
    category_value,
)
from cinemirror.repositories.base import BaseRepository, dialect_insert


def _stored_hash(filters: CatalogFilters | None) -> str:
    return filters.stored_hash if filters is not None else NO_FILTERS_HASH


def _as_aware(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they are stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SyncLedgerRepository(BaseRepository[SyncStatus]):
    """Repository for SyncStatus ledger entries."""

    def _track(self, category: SyncCategory | str, filters: CatalogFilters | None):
        return select(SyncStatus).where(
            SyncStatus.category == category_value(category),
            SyncStatus.filters_hash == _stored_hash(filters),
        )

    async def record_page_synced(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None,
        item_count: int,
        total_pages: int | None = None,
        metadata: dict[str, Any] | None = None,
        language: str | None = None,
    ) -> None:
        """Create or update the ledger entry for one page.

        On re-sync the existing row is updated in place. ``total_pages`` and
        ``metadata`` keep their previous values when passed as None.

        Args:
            category: Content class of the page
            page: Upstream page number
            filters: Filter track, None for the unfiltered track
            item_count: Items stored from the page
            total_pages: Upstream total page count, if reported
            metadata: Free-form details about the sync run
            language: Language the page was fetched in
        """
        now = utcnow()
        language = (
            language
            or (filters.language if filters else None)
            or get_settings().tmdb_default_language
        )

        stmt = dialect_insert(self.session, SyncStatus).values(
            category=category_value(category),
            page=page,
            filters_hash=_stored_hash(filters),
            total_pages=total_pages,
            item_count=item_count,
            language=language,
            sync_metadata=metadata,
            synced_at=now,
            last_updated_at=now,
        )

        updates: dict[str, Any] = {
            "item_count": stmt.excluded.item_count,
            "language": stmt.excluded.language,
            "last_updated_at": now,
        }
        if total_pages is not None:
            updates["total_pages"] = stmt.excluded.total_pages
        if metadata is not None:
            updates["sync_metadata"] = stmt.excluded.sync_metadata

        await self.session.execute(
            stmt.on_conflict_do_update(
                index_elements=["category", "page", "filters_hash"],
                set_=updates,
            )
        )

    async def get_entry(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None,
    ) -> SyncStatus | None:
        """Get the ledger entry for one page, if any."""
        result = await self.session.execute(
            self._track(category, filters).where(SyncStatus.page == page)
        )
        return result.scalar_one_or_none()

    async def is_page_synced(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None,
    ) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(SyncStatus)
            .where(
                SyncStatus.category == category_value(category),
                SyncStatus.filters_hash == _stored_hash(filters),
                SyncStatus.page == page,
            )
        )
        return result.scalar_one() > 0

    async def synced_pages(
        self,
        category: SyncCategory | str,
        filters: CatalogFilters | None,
    ) -> list[int]:
        """All synced page numbers of a track, ascending."""
        result = await self.session.execute(
            select(SyncStatus.page)
            .where(
                SyncStatus.category == category_value(category),
                SyncStatus.filters_hash == _stored_hash(filters),
            )
            .order_by(SyncStatus.page.asc())
        )
        return list(result.scalars().all())

    async def invalidate(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None,
    ) -> bool:
        """Hard-delete the entry for one page.

        Returns:
            True if an entry was removed
        """
        result = await self.session.execute(
            delete(SyncStatus).where(
                SyncStatus.category == category_value(category),
                SyncStatus.filters_hash == _stored_hash(filters),
                SyncStatus.page == page,
            )
        )
        return result.rowcount > 0

    async def high_water_mark(
        self,
        category: SyncCategory | str,
        filters: CatalogFilters | None,
    ) -> int:
        """Greatest synced page of a track, 0 if nothing is recorded."""
        result = await self.session.execute(
            select(func.coalesce(func.max(SyncStatus.page), 0)).where(
                SyncStatus.category == category_value(category),
                SyncStatus.filters_hash == _stored_hash(filters),
            )
        )
        return int(result.scalar_one())

    async def get_total_pages(
        self,
        category: SyncCategory | str,
        filters: CatalogFilters | None,
    ) -> int | None:
        """Most recently reported upstream total page count of a track."""
        result = await self.session.execute(
            select(SyncStatus.total_pages)
            .where(
                SyncStatus.category == category_value(category),
                SyncStatus.filters_hash == _stored_hash(filters),
                SyncStatus.total_pages.is_not(None),
            )
            .order_by(SyncStatus.last_updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_sync_stats(self, category: SyncCategory | str) -> dict[str, Any]:
        """Summary of everything recorded for a category, across all tracks."""
        category_str = category_value(category)
        result = await self.session.execute(
            select(
                func.count(),
                func.max(SyncStatus.synced_at),
                func.coalesce(func.sum(SyncStatus.item_count), 0),
                func.count(func.distinct(SyncStatus.filters_hash)),
            ).where(SyncStatus.category == category_str)
        )
        synced, last_synced_at, total_items, tracks = result.one()

        return {
            "category": category_str,
            "synced_pages": synced,
            "last_synced_at": _as_aware(last_synced_at) if last_synced_at else None,
            "total_items": int(total_items),
            "filter_tracks": tracks,
            "high_water_mark": await self.high_water_mark(category_str, None),
            "total_pages": await self.get_total_pages(category_str, None),
        }

    async def clear_old_sync(
        self, category: SyncCategory | str, older_than_days: int
    ) -> int:
        """Delete entries first synced more than ``older_than_days`` ago.

        Returns:
            Number of entries removed
        """
        cutoff = utcnow() - timedelta(days=older_than_days)
        result = await self.session.execute(
            delete(SyncStatus).where(
                SyncStatus.category == category_value(category),
                SyncStatus.synced_at < cutoff,
            )
        )
        return result.rowcount
