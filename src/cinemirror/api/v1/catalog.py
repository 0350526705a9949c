"""Catalog browsing endpoints.

Serves paged movie, TV and trending lists from the local mirror. Pages
that are not mirrored yet are fetched from TMDB while the request waits.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from cinemirror.core.logging import get_logger
from cinemirror.dependencies import SettingsDep, get_catalog_service
from cinemirror.models.sync_status import CatalogFilters, SyncCategory
from cinemirror.schemas.catalog import (
    CatalogItemDetailResponse,
    CatalogItemResponse,
    CatalogPageResponse,
    SyncSummary,
)
from cinemirror.schemas.common import ErrorResponse, PaginationMeta
from cinemirror.services.catalog import CatalogService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/{category}",
    response_model=CatalogPageResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a catalog page",
    description=(
        "Returns one page of a catalog category, most popular first. "
        "Missing pages are synced from TMDB on demand."
    ),
    responses={
        200: {"description": "Catalog page"},
        400: {"model": ErrorResponse, "description": "Page beyond the upstream limit"},
        502: {"model": ErrorResponse, "description": "TMDB failed, retry later"},
    },
)
async def get_catalog_page(
    category: Annotated[SyncCategory, Path(description="Catalog category")],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
    settings: SettingsDep,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int | None, Query(ge=1, le=100, description="Items per page")] = None,
    genre: Annotated[
        str | None, Query(max_length=100, description="TMDB genre id(s), comma separated")
    ] = None,
    year: Annotated[int | None, Query(ge=1870, le=2100, description="Release year")] = None,
    language: Annotated[
        str | None, Query(min_length=2, max_length=10, description="e.g. 'en-US'")
    ] = None,
) -> CatalogPageResponse:
    """Get a page of movies, TV series or trending content."""
    filters = None
    if genre or year:
        filters = CatalogFilters(
            genre=genre,
            year=year,
            language=language or settings.tmdb_default_language,
        )

    logger.info(
        "catalog_page_request",
        category=category.value,
        page=page,
        genre=genre,
        year=year,
    )

    result = await catalog.get_page(
        category, page, filters=filters, language=language, limit=limit
    )

    sync = None
    if result.sync_result is not None:
        sync = SyncSummary(
            pages_fetched=result.sync_result.pages_fetched,
            items_upserted=result.sync_result.items_upserted,
            windows_run=result.sync_result.windows_run,
            stopped_early=result.sync_result.stopped_early,
        )

    return CatalogPageResponse(
        items=[CatalogItemResponse.model_validate(item) for item in result.items],
        pagination=PaginationMeta.create(
            page=result.pagination.page,
            limit=result.pagination.limit,
            total=result.pagination.total,
        ),
        was_on_demand_synced=result.was_on_demand_synced,
        sync=sync,
    )


@router.get(
    "/{category}/{tmdb_id}",
    response_model=CatalogItemDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a catalog item",
    description=(
        "Returns one movie or TV series by TMDB id. Items not mirrored yet "
        "are fetched from the TMDB detail endpoint and stored."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Unknown item"},
        502: {"model": ErrorResponse, "description": "TMDB failed, retry later"},
    },
)
async def get_catalog_item(
    category: Annotated[SyncCategory, Path(description="Catalog category")],
    tmdb_id: Annotated[int, Path(ge=1, description="TMDB id of the item")],
    catalog: Annotated[CatalogService, Depends(get_catalog_service)],
) -> CatalogItemDetailResponse:
    detail = await catalog.get_item(category, tmdb_id)
    return CatalogItemDetailResponse(
        item=CatalogItemResponse.model_validate(detail.item),
        was_on_demand_synced=detail.was_on_demand_synced,
    )
