"""TMDB API client service.

This service provides async access to the TMDB v3 API: the paginated list
endpoints mirrored by the gap-fill synchronizer, and the per-id detail,
recommendations and credits endpoints behind the bounded cache. Responses
are converted to canonical DTOs before they leave this module.

See: https://developer.themoviedb.org/reference/intro/getting-started
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from cinemirror.config import Settings, get_settings
from cinemirror.models.catalog_item import build_genre_key
from cinemirror.models.sync_status import CatalogFilters, SyncCategory

logger = structlog.get_logger(__name__)


# -----------------------------------------------------------------------------
# DTOs (Canonical Internal Models - Anti-Corruption Layer)
# -----------------------------------------------------------------------------


def _release_year(release_date: str | None) -> int | None:
    if release_date and len(release_date) >= 4 and release_date[:4].isdigit():
        return int(release_date[:4])
    return None


@dataclass
class UpstreamItem:
    """Canonical catalog item - provider agnostic.

    Movies and TV series are folded into one shape: ``title`` holds the
    TV ``name`` and ``release_date`` the TV ``first_air_date``.
    """

    tmdb_id: int
    title: str
    media_type: str
    original_title: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0
    genre_ids: list[int] = field(default_factory=list)
    original_language: str | None = None
    adult: bool = False

    @property
    def release_year(self) -> int | None:
        return _release_year(self.release_date)

    def to_row(self) -> dict[str, Any]:
        """Column values for the catalog table."""
        return {
            "tmdb_id": self.tmdb_id,
            "title": self.title,
            "original_title": self.original_title,
            "overview": self.overview,
            "poster_path": self.poster_path,
            "backdrop_path": self.backdrop_path,
            "release_date": self.release_date,
            "release_year": self.release_year,
            "vote_average": self.vote_average,
            "vote_count": self.vote_count,
            "popularity": self.popularity,
            "genre_ids": self.genre_ids,
            "genre_key": build_genre_key(self.genre_ids),
            "original_language": self.original_language,
            "adult": self.adult,
            "media_type": self.media_type,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict for caching."""
        return {
            "id": self.tmdb_id,
            "title": self.title,
            "media_type": self.media_type,
            "original_title": self.original_title,
            "overview": self.overview,
            "poster_path": self.poster_path,
            "backdrop_path": self.backdrop_path,
            "release_date": self.release_date,
            "vote_average": self.vote_average,
            "vote_count": self.vote_count,
            "popularity": self.popularity,
            "genre_ids": self.genre_ids,
            "original_language": self.original_language,
            "adult": self.adult,
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_media_type: str = "movie"
    ) -> "UpstreamItem":
        """Create from a raw TMDB result or a cached dict."""
        media_type = data.get("media_type") or default_media_type
        genre_ids = data.get("genre_ids")
        if genre_ids is None:
            # Detail endpoints return full genre objects
            genre_ids = [g["id"] for g in data.get("genres", []) if "id" in g]

        return cls(
            tmdb_id=int(data["id"]),
            title=data.get("title") or data.get("name") or "Unknown",
            media_type=media_type,
            original_title=data.get("original_title") or data.get("original_name"),
            overview=data.get("overview"),
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            release_date=data.get("release_date") or data.get("first_air_date") or None,
            vote_average=float(data.get("vote_average") or 0.0),
            vote_count=int(data.get("vote_count") or 0),
            popularity=float(data.get("popularity") or 0.0),
            genre_ids=list(genre_ids),
            original_language=data.get("original_language"),
            adult=bool(data.get("adult", False)),
        )


@dataclass
class UpstreamPage:
    """One page of a TMDB list endpoint.

    ``result_count`` counts every raw result, including the ones that were
    dropped while parsing (trending people), so a page of people only is
    not mistaken for the end of the list.
    """

    items: list[UpstreamItem]
    page: int
    total_pages: int
    total_results: int
    result_count: int | None = None

    def __post_init__(self) -> None:
        if self.result_count is None:
            self.result_count = len(self.items)

    @property
    def is_empty(self) -> bool:
        return self.result_count == 0


# -----------------------------------------------------------------------------
# TMDB Service
# -----------------------------------------------------------------------------


class TMDBError(Exception):
    """Base exception for TMDB API errors."""

    pass


class TMDBRateLimitError(TMDBError):
    """Rate limit exceeded."""

    pass


class TMDBNotFoundError(TMDBError):
    """The requested resource does not exist upstream."""

    pass


class TMDBService:
    """Async client for the TMDB v3 API.

    Uses httpx for async HTTP requests. The API key travels as the
    ``api_key`` query parameter on every request.

    Usage:
        ```python
        service = TMDBService()
        page = await service.fetch_page(SyncCategory.MOVIES, 3)
        ```
    """

    MEDIA_TYPES = {
        SyncCategory.MOVIES: "movie",
        SyncCategory.TV_SERIES: "tv",
    }

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def _user_agent(self) -> str:
        """User-Agent header for API compliance."""
        return f"{self._settings.app_name}/{self._settings.app_version}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.tmdb_base_url,
                timeout=self._settings.tmdb_timeout,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                params={"api_key": self._settings.tmdb_api_key.get_secret_value()},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_page(
        self,
        category: SyncCategory | str,
        page: int,
        filters: CatalogFilters | None = None,
        language: str | None = None,
    ) -> UpstreamPage:
        """Fetch one page of a category's list endpoint.

        Unfiltered movies and TV use the popular lists; filtered ones use
        discover, sorted by popularity. Trending ignores facets.

        Args:
            category: Content class to list
            page: 1-based upstream page number
            filters: Optional genre/year facets
            language: Response language (defaults to the configured one)

        Returns:
            UpstreamPage with canonical items

        Raises:
            TMDBError: On API errors
        """
        category = SyncCategory(category)
        language = (
            language
            or (filters.language if filters else None)
            or self._settings.tmdb_default_language
        )
        params: dict[str, Any] = {"page": page, "language": language}

        if category == SyncCategory.TRENDING:
            path = "/trending/all/week"
            default_media_type = "movie"
        else:
            media_type = self.MEDIA_TYPES[category]
            default_media_type = media_type
            if filters is not None and filters.has_facets:
                path = f"/discover/{media_type}"
                params["sort_by"] = "popularity.desc"
                if filters.genre:
                    params["with_genres"] = filters.genre
                if filters.year:
                    year_param = (
                        "primary_release_year"
                        if media_type == "movie"
                        else "first_air_date_year"
                    )
                    params[year_param] = filters.year
            else:
                path = f"/{media_type}/popular"

        data = await self._get_json(path, params, category=category.value, page=page)
        return self._parse_list_response(data, page, default_media_type)

    async def get_details(self, content_type: str, tmdb_id: int) -> UpstreamItem:
        """Get a single movie or TV series.

        Raises:
            TMDBNotFoundError: Unknown id
            TMDBError: On other API errors
        """
        data = await self._get_json(
            f"/{content_type}/{tmdb_id}",
            {"language": self._settings.tmdb_default_language},
            content_type=content_type,
            tmdb_id=tmdb_id,
        )
        return UpstreamItem.from_dict(data, default_media_type=content_type)

    async def get_recommendations(
        self, content_type: str, tmdb_id: int, page: int = 1
    ) -> list[dict[str, Any]]:
        """Get raw recommendation results for a movie or TV series.

        Raises:
            TMDBError: On API errors
        """
        data = await self._get_json(
            f"/{content_type}/{tmdb_id}/recommendations",
            {"page": page, "language": self._settings.tmdb_default_language},
            content_type=content_type,
            tmdb_id=tmdb_id,
        )
        return list(data.get("results", []))

    async def get_person_credits(self, person_id: int) -> dict[str, list[dict]]:
        """Get combined movie and TV credits of a person.

        Returns:
            Dict with ``cast`` and ``crew`` lists

        Raises:
            TMDBError: On API errors
        """
        data = await self._get_json(
            f"/person/{person_id}/combined_credits",
            {"language": self._settings.tmdb_default_language},
            person_id=person_id,
        )
        return {
            "cast": list(data.get("cast", [])),
            "crew": list(data.get("crew", [])),
        }

    # -------------------------------------------------------------------------
    # Private Methods - API Fetching
    # -------------------------------------------------------------------------

    async def _get_json(
        self, path: str, params: dict[str, Any], **log_context: Any
    ) -> dict[str, Any]:
        client = await self._get_client()

        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise TMDBRateLimitError("Rate limit exceeded") from e
            if e.response.status_code == 404:
                raise TMDBNotFoundError(f"Not found: {path}") from e
            logger.error(
                "tmdb_request_failed",
                path=path,
                status_code=e.response.status_code,
                **log_context,
            )
            raise TMDBError(f"API request failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("tmdb_request_error", path=path, error=str(e), **log_context)
            raise TMDBError(f"Request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise TMDBError(f"Invalid JSON from {path}") from e

    # -------------------------------------------------------------------------
    # Private Methods - Response Parsing (Anti-Corruption Layer)
    # -------------------------------------------------------------------------

    def _parse_list_response(
        self, data: dict[str, Any], page: int, default_media_type: str
    ) -> UpstreamPage:
        results = data.get("results", [])
        items = []
        for result in results:
            # Trending mixes in people, which have no place in the catalog
            if result.get("media_type") == "person" or "id" not in result:
                continue
            items.append(
                UpstreamItem.from_dict(result, default_media_type=default_media_type)
            )

        return UpstreamPage(
            items=items,
            page=data.get("page", page),
            total_pages=data.get("total_pages", 0),
            total_results=data.get("total_results", 0),
            result_count=len(results),
        )

