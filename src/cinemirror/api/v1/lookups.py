"""Recommendation and person credit endpoints.

Both are served from the bounded cache when possible; a miss costs one
TMDB call and the result is cached in the background.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path, Query, status

from cinemirror.core.logging import get_logger
from cinemirror.dependencies import get_credits_service, get_recommendation_service
from cinemirror.schemas.catalog import CreditsResponse, RecommendationsResponse
from cinemirror.schemas.common import ErrorResponse, PaginationMeta
from cinemirror.services.derived import CreditsService, RecommendationService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/recommendations/{content_type}/{tmdb_id}",
    response_model=RecommendationsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get recommendations",
    description="Recommended movies or TV series for a title. Empty if TMDB fails.",
    tags=["Recommendations"],
)
async def get_recommendations(
    content_type: Annotated[Literal["movie", "tv"], Path(description="movie or tv")],
    tmdb_id: Annotated[int, Path(ge=1, description="TMDB id of the title")],
    service: Annotated[RecommendationService, Depends(get_recommendation_service)],
) -> RecommendationsResponse:
    results = await service.get_recommendations(content_type, tmdb_id)
    return RecommendationsResponse(
        content_type=content_type, tmdb_id=tmdb_id, results=results
    )


@router.get(
    "/people/{person_id}/credits",
    response_model=CreditsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get person credits",
    description="Paged cast and crew credits of a person.",
    tags=["People"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid filter or sort"},
        502: {"model": ErrorResponse, "description": "TMDB failed, retry later"},
    },
)
async def get_person_credits(
    person_id: Annotated[int, Path(ge=1, description="TMDB person id")],
    service: Annotated[CreditsService, Depends(get_credits_service)],
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
    media_type: Annotated[str, Query(description="all, movie or tv")] = "all",
    sort_by: Annotated[
        str, Query(description="release_date, popularity or vote_average")
    ] = "release_date",
) -> CreditsResponse:
    logger.info(
        "person_credits_request",
        person_id=person_id,
        page=page,
        media_type=media_type,
        sort_by=sort_by,
    )
    credits = await service.get_person_credits(
        person_id, page=page, limit=limit, media_type=media_type, sort_by=sort_by
    )
    return CreditsResponse(
        person_id=person_id,
        cast=credits.cast,
        crew=credits.crew,
        pagination=PaginationMeta.create(page=page, limit=limit, total=credits.total),
        from_cache=credits.from_cache,
        total_cast=credits.total_cast,
        total_crew=credits.total_crew,
        cache_info=credits.cache_info,
    )
