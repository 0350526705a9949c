"""Cached derived lookups: recommendations and person credits.

Both services follow the bounded cache contract: read the cache, and on a
miss fetch upstream, shape the payload, write it back in the background
and return the fresh payload right away.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from cinemirror.config import Settings, get_settings
from cinemirror.core.exceptions import UpstreamFetchError, ValidationError
from cinemirror.models.cache_entry import CacheKey
from cinemirror.services.cache import BoundedCacheStore
from cinemirror.services.tmdb import TMDBError, TMDBService, UpstreamItem

logger = structlog.get_logger(__name__)

CONTENT_TYPES = ("movie", "tv")
CREDIT_MEDIA_TYPES = ("all", "movie", "tv")
CREDIT_SORT_FIELDS = ("release_date", "popularity", "vote_average")

RECOMMENDATIONS = "recommendations"
CREDITS = "credits"

# Undated credits sort after everything else
_NO_DATE = "1900-01-01"


class RecommendationService:
    """Recommendations for a movie or TV series, cached per content item."""

    def __init__(
        self,
        cache: BoundedCacheStore,
        tmdb: TMDBService,
        settings: Settings | None = None,
    ) -> None:
        self._cache = cache
        self._tmdb = tmdb
        self._settings = settings or get_settings()

    async def get_recommendations(
        self, content_type: str, tmdb_id: int
    ) -> list[dict[str, Any]]:
        """Get up to ``recommendations_per_content`` recommendations.

        Upstream failures are logged and answered with an empty list, so a
        page embedding recommendations never breaks because of them.

        Raises:
            ValidationError: Unknown content type
        """
        if content_type not in CONTENT_TYPES:
            raise ValidationError(
                f"Content type must be one of: {', '.join(CONTENT_TYPES)}",
                field="content_type",
            )

        key = CacheKey(content_type, tmdb_id, RECOMMENDATIONS)
        entry = await self._cache.get(key)
        if entry is not None:
            return list(entry.payload)

        try:
            raw = await self._tmdb.get_recommendations(content_type, tmdb_id)
        except TMDBError as e:
            logger.warning(
                "recommendations_fetch_failed",
                content_type=content_type,
                tmdb_id=tmdb_id,
                error=str(e),
            )
            return []

        limit = self._settings.recommendations_per_content
        shaped = [
            UpstreamItem.from_dict(r, default_media_type=content_type).to_dict()
            for r in raw
            if "id" in r
        ][:limit]

        if shaped:
            self._cache.schedule_put(key, shaped, score=float(len(shaped)))
        return shaped


@dataclass
class CreditsPage:
    """One page of a person's credits, cast and crew kept apart."""

    cast: list[dict[str, Any]]
    crew: list[dict[str, Any]]
    page: int
    limit: int
    total: int
    total_cast: int
    total_crew: int
    from_cache: bool
    cache_info: dict[str, Any] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total > 0 else 0


def _credit_sort_key(sort_by: str):
    if sort_by == "release_date":
        return lambda c: c.get("release_date") or c.get("first_air_date") or _NO_DATE
    return lambda c: c.get(sort_by) or 0


class CreditsService:
    """Combined movie and TV credits of a person, cached per person."""

    def __init__(self, cache: BoundedCacheStore, tmdb: TMDBService) -> None:
        self._cache = cache
        self._tmdb = tmdb

    async def get_person_credits(
        self,
        person_id: int,
        page: int = 1,
        limit: int = 20,
        media_type: str = "all",
        sort_by: str = "release_date",
    ) -> CreditsPage:
        """Get a page of a person's credits, newest/most popular first.

        Cast and crew are sorted separately, concatenated (cast first) and
        paginated together, then split again.

        Raises:
            ValidationError: Unknown media type or sort field
            UpstreamFetchError: Cache miss and TMDB failed
        """
        if media_type not in CREDIT_MEDIA_TYPES:
            raise ValidationError(
                f"Media type must be one of: {', '.join(CREDIT_MEDIA_TYPES)}",
                field="media_type",
            )
        if sort_by not in CREDIT_SORT_FIELDS:
            raise ValidationError(
                f"Sort field must be one of: {', '.join(CREDIT_SORT_FIELDS)}",
                field="sort_by",
            )

        key = CacheKey("person", person_id, CREDITS)
        cache_info: dict[str, Any] = {}
        entry = await self._cache.get(key)
        if entry is not None:
            credits = entry.payload
            from_cache = True
            cache_info = dict(entry.payload_metadata or {})
        else:
            try:
                credits = await self._tmdb.get_person_credits(person_id)
            except TMDBError as e:
                raise UpstreamFetchError(
                    message=f"Failed to fetch credits for person {person_id}",
                    error=str(e),
                ) from e
            from_cache = False
            total_credits = len(credits["cast"]) + len(credits["crew"])
            self._cache.schedule_put(key, credits, score=float(total_credits))

        return self._paginate(
            credits, page, limit, media_type, sort_by, from_cache, cache_info
        )

    def _paginate(
        self,
        credits: dict[str, list[dict[str, Any]]],
        page: int,
        limit: int,
        media_type: str,
        sort_by: str,
        from_cache: bool,
        cache_info: dict[str, Any],
    ) -> CreditsPage:
        sort_key = _credit_sort_key(sort_by)
        lists = {}
        for role in ("cast", "crew"):
            items = credits.get(role) or []
            if media_type != "all":
                items = [c for c in items if c.get("media_type") == media_type]
            lists[role] = sorted(items, key=sort_key, reverse=True)

        tagged = [("cast", c) for c in lists["cast"]] + [
            ("crew", c) for c in lists["crew"]
        ]
        start = (page - 1) * limit
        window = tagged[start : start + limit]

        return CreditsPage(
            cast=[c for role, c in window if role == "cast"],
            crew=[c for role, c in window if role == "crew"],
            page=page,
            limit=limit,
            total=len(tagged),
            total_cast=len(lists["cast"]),
            total_crew=len(lists["crew"]),
            from_cache=from_cache,
            cache_info=cache_info,
        )
