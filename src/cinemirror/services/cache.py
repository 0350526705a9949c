"""BoundedCacheStore - durable cache for expensive derived lookups.

Cached results (recommendations, person credits) live in the
``cache_entries`` table instead of an in-memory store so they survive
restarts. There is no TTL: entries stay until the cache lifecycle manager
evicts them, and the table is kept bounded by usage-ranked cleanups.

Hot path rules:
    - A hit schedules the usage bump in the background; the read never
      waits on it and a failed bump is only logged.
    - A miss is filled by the caller, who writes back with
      ``schedule_put`` and returns the fresh payload immediately.

Cache Key Types:
    - (movie|tv, id, "recommendations") - recommendation lists
    - (person, id, "credits") - combined cast and crew credits
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings, get_settings
from cinemirror.core.database import session_scope
from cinemirror.core.tasks import spawn_background
from cinemirror.models.cache_entry import CacheEntry, CacheKey
from cinemirror.repositories.cache_entry import CacheEntryRepository

logger = structlog.get_logger(__name__)

Payload = dict[str, Any] | list[Any]


def derive_metadata(payload: Payload) -> dict[str, Any]:
    """Sort and pagination facts computed from a payload.

    Recomputed on every write so it can never drift from the payload.
    """
    if isinstance(payload, list):
        return {"total_items": len(payload)}

    if "cast" in payload or "crew" in payload:
        cast = payload.get("cast") or []
        crew = payload.get("crew") or []
        credits = [*cast, *crew]
        release_dates = [
            d
            for d in (c.get("release_date") or c.get("first_air_date") for c in credits)
            if d
        ]
        return {
            "total_credits": len(credits),
            "cast_count": len(cast),
            "crew_count": len(crew),
            "latest_release_date": max(release_dates) if release_dates else None,
            "departments": sorted({c["department"] for c in crew if c.get("department")}),
            "media_types": sorted({c["media_type"] for c in credits if c.get("media_type")}),
        }

    return {"keys": sorted(payload)}


class BoundedCacheStore:
    """Key to payload store with per-entry usage statistics.

    Every operation opens its own session, so background bumps and writes
    never share a session with the request that triggered them.

    Usage:
        ```python
        store = BoundedCacheStore(get_session_factory())
        key = CacheKey("movie", 550, "recommendations")
        payload, from_cache = await store.get_or_fetch(key, fetch_recs)
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    async def get(self, key: CacheKey) -> CacheEntry | None:
        """Look up an entry.

        A read failure is reported as a miss. On a hit the usage bump is
        scheduled in the background.
        """
        try:
            async with session_scope(self._session_factory) as session:
                entry = await CacheEntryRepository(session).get_by_key(key)
        except SQLAlchemyError as e:
            logger.warning("cache_get_failed", cache_key=str(key), error=str(e))
            return None

        if entry is None:
            logger.debug("cache_miss", cache_key=str(key))
            return None

        logger.debug("cache_hit", cache_key=str(key), usage_count=entry.usage_count)
        spawn_background(self._bump_usage(key), name="cache_usage_bump")
        return entry

    async def put(self, key: CacheKey, payload: Payload, score: float = 0.0) -> CacheEntry:
        """Replace the entry for ``key`` (delete then insert).

        Returns:
            The freshly stored entry
        """
        metadata = derive_metadata(payload)
        async with session_scope(self._session_factory) as session:
            repo = CacheEntryRepository(session)
            entry = await repo.replace(key, payload, metadata, score)
            total = await repo.count()

        logger.debug("cache_set", cache_key=str(key), score=score)
        if total > self._settings.cache_cleanup_threshold:
            # Cleanup is never run from the write path
            logger.warning(
                "cache_over_threshold",
                count=total,
                threshold=self._settings.cache_cleanup_threshold,
            )
        return entry

    def schedule_put(self, key: CacheKey, payload: Payload, score: float = 0.0) -> None:
        """Write an entry in the background; failures are logged only."""
        spawn_background(self.put(key, payload, score), name="cache_put")

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[Payload]],
        score: float | Callable[[Payload], float] = 0.0,
    ) -> tuple[Payload, bool]:
        """Return the cached payload, or fetch it and cache it in the background.

        Args:
            key: Cache key
            fetch: Coroutine function producing the payload on a miss
            score: Fixed score, or a function of the fetched payload

        Returns:
            Tuple of (payload, from_cache)
        """
        entry = await self.get(key)
        if entry is not None:
            return entry.payload, True

        payload = await fetch()
        entry_score = score(payload) if callable(score) else score
        self.schedule_put(key, payload, entry_score)
        return payload, False

    async def _bump_usage(self, key: CacheKey) -> None:
        async with session_scope(self._session_factory) as session:
            found = await CacheEntryRepository(session).bump_usage(key)
        if not found:
            logger.debug("cache_usage_bump_missed", cache_key=str(key))
