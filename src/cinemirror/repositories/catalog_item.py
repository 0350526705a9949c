"""CatalogItemRepository for the local catalog mirror.

Local pages are slices of ``page_size`` rows ordered by popularity, the
same order the upstream list endpoints use, so local page P holds roughly
what upstream page P returned.
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import Select, func, select

from cinemirror.models.base import utcnow
from cinemirror.models.catalog_item import UPSTREAM_FIELDS, CatalogItem
from cinemirror.models.sync_status import CatalogFilters, SyncCategory, category_value
from cinemirror.repositories.base import BaseRepository, dialect_insert


class CatalogItemRepository(BaseRepository[CatalogItem]):
    """Repository for mirrored catalog items."""

    def _filtered(
        self,
        stmt: Select,
        category: SyncCategory | str,
        filters: CatalogFilters | None,
    ) -> Select:
        stmt = stmt.where(CatalogItem.category == category_value(category))
        if filters is None:
            return stmt

        if filters.genre:
            for genre_id in filters.genre.split(","):
                genre_id = genre_id.strip()
                if genre_id:
                    stmt = stmt.where(CatalogItem.genre_key.like(f"%,{genre_id},%"))
        if filters.year:
            stmt = stmt.where(CatalogItem.release_year == filters.year)
        return stmt

    async def find_page(
        self,
        category: SyncCategory | str,
        page: int,
        page_size: int,
        filters: CatalogFilters | None = None,
    ) -> list[CatalogItem]:
        """Get local page ``page`` of a category/filter track.

        Args:
            category: Content class
            page: 1-based page number
            page_size: Rows per page
            filters: Optional genre/year facets

        Returns:
            Up to ``page_size`` items, most popular first
        """
        stmt = self._filtered(select(CatalogItem), category, filters)
        stmt = (
            stmt.order_by(CatalogItem.popularity.desc(), CatalogItem.tmdb_id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_matching(
        self,
        category: SyncCategory | str,
        filters: CatalogFilters | None = None,
    ) -> int:
        """Count all rows of a category/filter track."""
        stmt = self._filtered(
            select(func.count()).select_from(CatalogItem), category, filters
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_items_on_page(
        self,
        category: SyncCategory | str,
        page: int,
        page_size: int,
        filters: CatalogFilters | None = None,
    ) -> int:
        """Number of rows that local page ``page`` would return."""
        total = await self.count_matching(category, filters)
        return max(0, min(page_size, total - (page - 1) * page_size))

    async def get_by_tmdb_id(
        self, category: SyncCategory | str, tmdb_id: int
    ) -> CatalogItem | None:
        result = await self.session.execute(
            select(CatalogItem).where(
                CatalogItem.category == category_value(category),
                CatalogItem.tmdb_id == tmdb_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_by_tmdb_id(
        self,
        category: SyncCategory | str,
        tmdb_id: int,
        data: Mapping[str, Any],
        *,
        overwrite: bool = False,
    ) -> bool:
        """Insert an upstream item, keyed by (category, tmdb_id).

        With ``overwrite=False`` (the bulk sync path) an existing row is left
        untouched. With ``overwrite=True`` the upstream-sourced columns are
        refreshed; ``is_blocked`` is never written either way.

        Args:
            category: Content class the item is mirrored under
            tmdb_id: Upstream item id
            data: Column values, keys outside the upstream fields are ignored
            overwrite: Update the row when it already exists

        Returns:
            True if a row was inserted or updated
        """
        values = {k: data[k] for k in UPSTREAM_FIELDS if k in data}
        now = utcnow()
        stmt = dialect_insert(self.session, CatalogItem).values(
            category=category_value(category),
            tmdb_id=tmdb_id,
            created_at=now,
            updated_at=now,
            **values,
        )

        if overwrite:
            updates: dict[str, Any] = {k: stmt.excluded[k] for k in values}
            updates["updated_at"] = now
            stmt = stmt.on_conflict_do_update(
                index_elements=["category", "tmdb_id"],
                set_=updates,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["category", "tmdb_id"],
            )

        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def upsert_many(
        self,
        category: SyncCategory | str,
        rows: list[Mapping[str, Any]],
        *,
        overwrite: bool = False,
    ) -> int:
        """Upsert a batch of upstream rows (each must carry ``tmdb_id``).

        Returns:
            Number of rows inserted or updated
        """
        written = 0
        for row in rows:
            if await self.upsert_by_tmdb_id(
                category, row["tmdb_id"], row, overwrite=overwrite
            ):
                written += 1
        return written
