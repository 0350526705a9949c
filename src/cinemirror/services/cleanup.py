"""Cache lifecycle manager - keeps the bounded cache bounded.

Two policies, both run outside the request path (operator endpoints or the
background monitor, never a cache write):

    - Light cleanup: delete entries that were never read and are older
      than ``max_age_days``. Safe to run at any time.
    - Major cleanup: trim the table to ``target_size`` rows by deleting the
      least valuable ones, ordered by usage count, then last access
      (never-read first), then score. The database does the ordering and
      limiting; nothing is loaded into memory.

Runs in one process never overlap: every policy takes the same lock.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings, get_settings
from cinemirror.core.database import session_scope
from cinemirror.models.base import utcnow
from cinemirror.repositories.cache_entry import CacheEntryRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    """Row counts around a major cleanup."""

    before_count: int
    after_count: int
    removed_count: int


@dataclass(frozen=True)
class MaintenanceResult:
    light_removed: int
    major: CleanupResult | None

    @property
    def major_ran(self) -> bool:
        return self.major is not None


class CacheLifecycleManager:
    """Light and major cleanups, stats and emergency purge for the cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._lock = asyncio.Lock()

    async def light_cleanup(self, max_age_days: int | None = None) -> int:
        """Delete never-used entries older than ``max_age_days``.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            return await self._light_cleanup(max_age_days)

    async def major_cleanup(self, target_size: int | None = None) -> CleanupResult:
        """Trim the cache to ``target_size`` entries, evicting lowest value first."""
        async with self._lock:
            return await self._major_cleanup(target_size)

    async def run_maintenance(self, max_age_days: int | None = None) -> MaintenanceResult:
        """Light cleanup, then a major cleanup if the cache is over threshold."""
        async with self._lock:
            light_removed = await self._light_cleanup(max_age_days)

            major = None
            if await self.needs_major_cleanup():
                major = await self._major_cleanup(self._settings.cache_cleanup_target)

        logger.info(
            "cache_maintenance_completed",
            light_removed=light_removed,
            major_removed=major.removed_count if major else 0,
        )
        return MaintenanceResult(light_removed=light_removed, major=major)

    async def needs_major_cleanup(self) -> bool:
        async with session_scope(self._session_factory) as session:
            count = await CacheEntryRepository(session).count()
        return count > self._settings.cache_cleanup_threshold

    async def get_stats(self) -> dict[str, Any]:
        """Snapshot of cache size and usage for operators."""
        async with session_scope(self._session_factory) as session:
            repo = CacheEntryRepository(session)
            total = await repo.count()
            by_type = await repo.count_by_content_type()
            most_used = await repo.most_used(limit=10)
            oldest = await repo.oldest()

        return {
            "total_entries": total,
            "entries_by_content_type": by_type,
            "most_used": [
                {
                    "key": str(entry.key),
                    "usage_count": entry.usage_count,
                    "last_accessed_at": entry.last_accessed_at,
                }
                for entry in most_used
            ],
            "oldest_entry_at": oldest.created_at if oldest else None,
            "cleanup_threshold": self._settings.cache_cleanup_threshold,
            "cleanup_target": self._settings.cache_cleanup_target,
            "needs_cleanup": total > self._settings.cache_cleanup_threshold,
        }

    async def clear_all(self) -> int:
        """Delete every cache entry. Emergency use only."""
        async with self._lock:
            async with session_scope(self._session_factory) as session:
                removed = await CacheEntryRepository(session).delete_all()
        logger.warning("cache_cleared", removed_count=removed)
        return removed

    async def _light_cleanup(self, max_age_days: int | None) -> int:
        if max_age_days is None:
            max_age_days = self._settings.cache_light_cleanup_days
        cutoff = utcnow() - timedelta(days=max_age_days)

        async with session_scope(self._session_factory) as session:
            removed = await CacheEntryRepository(session).delete_unused_before(cutoff)

        logger.info(
            "cache_light_cleanup_completed",
            max_age_days=max_age_days,
            removed_count=removed,
        )
        return removed

    async def _major_cleanup(self, target_size: int | None) -> CleanupResult:
        if target_size is None:
            target_size = self._settings.cache_cleanup_target

        async with session_scope(self._session_factory) as session:
            repo = CacheEntryRepository(session)
            before = await repo.count()
            if before <= target_size:
                logger.debug(
                    "cache_major_cleanup_skipped", count=before, target_size=target_size
                )
                return CleanupResult(before, before, 0)

            removed = await repo.delete_lowest_value(before - target_size)
            after = await repo.count()

        logger.info(
            "cache_major_cleanup_completed",
            before_count=before,
            after_count=after,
            removed_count=removed,
            target_size=target_size,
        )
        return CleanupResult(before_count=before, after_count=after, removed_count=removed)


class CacheMonitor:
    """Runs cache maintenance every ``interval_seconds`` in the background."""

    def __init__(
        self,
        manager: CacheLifecycleManager,
        interval_seconds: float,
        max_age_days: int,
    ) -> None:
        self._manager = manager
        self._interval = interval_seconds
        self._max_age_days = max_age_days
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache_monitor")
        logger.info("cache_monitor_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("cache_monitor_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._manager.run_maintenance(self._max_age_days)
            except Exception:
                # The loop must outlive a failed run; the next one retries
                logger.exception("cache_maintenance_failed")
