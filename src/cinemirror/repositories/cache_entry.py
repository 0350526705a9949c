"""CacheEntryRepository for the bounded derived-lookup cache.

Pure storage. Writes are full replace (delete then insert in the caller's
transaction); eviction deletes are ordered and limited inside the database.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update

from cinemirror.models.base import utcnow
from cinemirror.models.cache_entry import CacheEntry, CacheKey
from cinemirror.repositories.base import BaseRepository


def _key_filter(key: CacheKey) -> tuple:
    return (
        CacheEntry.content_type == key.content_type,
        CacheEntry.content_id == key.content_id,
        CacheEntry.subtype == key.subtype,
    )


class CacheEntryRepository(BaseRepository[CacheEntry]):
    """Repository for CacheEntry rows."""

    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        result = await self.session.execute(
            select(CacheEntry).where(*_key_filter(key))
        )
        return result.scalar_one_or_none()

    async def replace(
        self,
        key: CacheKey,
        payload: dict | list,
        payload_metadata: dict[str, Any],
        score: float,
    ) -> CacheEntry:
        """Replace whatever is stored under ``key`` with a fresh entry.

        Usage statistics start over; the previous row is deleted, never
        merged into.
        """
        await self.session.execute(delete(CacheEntry).where(*_key_filter(key)))

        now = utcnow()
        entry = CacheEntry(
            content_type=key.content_type,
            content_id=key.content_id,
            subtype=key.subtype,
            payload=payload,
            payload_metadata=payload_metadata,
            score=score,
            usage_count=0,
            last_accessed_at=None,
            created_at=now,
            last_synced_at=now,
        )
        return await self.create(entry)

    async def bump_usage(self, key: CacheKey) -> bool:
        """Record one cache hit.

        Returns:
            False if the entry disappeared in the meantime
        """
        result = await self.session.execute(
            update(CacheEntry)
            .where(*_key_filter(key))
            .values(
                usage_count=CacheEntry.usage_count + 1,
                last_accessed_at=utcnow(),
            )
        )
        return result.rowcount > 0

    async def delete_unused_before(self, cutoff: datetime) -> int:
        """Delete never-read entries created before ``cutoff``."""
        result = await self.session.execute(
            delete(CacheEntry).where(
                CacheEntry.usage_count == 0,
                CacheEntry.created_at < cutoff,
            )
        )
        return result.rowcount

    async def delete_lowest_value(self, limit: int) -> int:
        """Delete the ``limit`` least valuable entries.

        Value order: usage count, then last access (never-read first), then
        score, all ascending. Creation time and id only break exact ties.
        """
        if limit <= 0:
            return 0

        victims = (
            select(CacheEntry.id)
            .order_by(
                CacheEntry.usage_count.asc(),
                CacheEntry.last_accessed_at.asc().nulls_first(),
                CacheEntry.score.asc(),
                CacheEntry.created_at.asc(),
                CacheEntry.id.asc(),
            )
            .limit(limit)
            .scalar_subquery()
        )
        result = await self.session.execute(
            delete(CacheEntry)
            .where(CacheEntry.id.in_(victims))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(CacheEntry))
        return result.rowcount

    async def count_by_content_type(self) -> dict[str, int]:
        result = await self.session.execute(
            select(CacheEntry.content_type, func.count())
            .group_by(CacheEntry.content_type)
            .order_by(CacheEntry.content_type)
        )
        return {content_type: count for content_type, count in result.all()}

    async def most_used(self, limit: int = 10) -> list[CacheEntry]:
        result = await self.session.execute(
            select(CacheEntry)
            .order_by(CacheEntry.usage_count.desc(), CacheEntry.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def oldest(self) -> CacheEntry | None:
        result = await self.session.execute(
            select(CacheEntry).order_by(CacheEntry.created_at.asc()).limit(1)
        )
        return result.scalar_one_or_none()
