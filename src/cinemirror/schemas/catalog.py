"""Catalog, recommendation and credits API schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cinemirror.schemas.common import BaseSchema, PaginationMeta

# =============================================================================
# Catalog Pages
# =============================================================================


class CatalogItemResponse(BaseSchema):
    """A mirrored catalog entry."""

    id: UUID
    tmdb_id: int = Field(..., description="TMDB identifier")
    category: str
    media_type: str
    title: str
    original_title: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    vote_average: float
    vote_count: int
    popularity: float
    genre_ids: list[int] = Field(default_factory=list)
    original_language: str | None = None
    adult: bool = False
    updated_at: datetime


class SyncSummary(BaseModel):
    """What an on-demand sync did while serving the page."""

    pages_fetched: list[int] = Field(default_factory=list)
    items_upserted: int = 0
    windows_run: int = 0
    stopped_early: bool = Field(
        False, description="Upstream ran out of pages before the target"
    )


class CatalogItemDetailResponse(BaseModel):
    """A single catalog entry."""

    item: CatalogItemResponse
    was_on_demand_synced: bool = Field(
        False, description="True when the item was fetched from TMDB just now"
    )


class CatalogPageResponse(BaseModel):
    """One page of a catalog category.

    Attributes:
        items: Items on the page, most popular first
        pagination: Pagination of the local store
        was_on_demand_synced: True when the page was fetched from TMDB
            while serving this request
    """

    items: list[CatalogItemResponse]
    pagination: PaginationMeta
    was_on_demand_synced: bool = False
    sync: SyncSummary | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [],
                "pagination": {
                    "page": 3,
                    "limit": 20,
                    "total": 60,
                    "total_pages": 3,
                    "has_next": False,
                },
                "was_on_demand_synced": True,
            }
        }
    )


# =============================================================================
# Derived Lookups
# =============================================================================


class RecommendationsResponse(BaseModel):
    content_type: str
    tmdb_id: int
    results: list[dict[str, Any]] = Field(default_factory=list)


class CreditsResponse(BaseModel):
    """A page of a person's credits, cast and crew kept apart."""

    person_id: int
    cast: list[dict[str, Any]] = Field(default_factory=list)
    crew: list[dict[str, Any]] = Field(default_factory=list)
    pagination: PaginationMeta
    from_cache: bool = False
    total_cast: int = 0
    total_crew: int = 0
    cache_info: dict[str, Any] = Field(default_factory=dict)
