"""Operator endpoints for the bounded cache and the sync ledger.

Cleanups are long-running bulk deletes; they are meant to be triggered by
an operator or a scheduler, never by end-user traffic.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.core.database import session_scope
from cinemirror.core.logging import get_logger
from cinemirror.dependencies import (
    SettingsDep,
    get_cache_manager,
    get_session_factory_dep,
)
from cinemirror.models.sync_status import SyncCategory
from cinemirror.repositories.sync_status import SyncLedgerRepository
from cinemirror.schemas.admin import (
    CacheStatsResponse,
    LightCleanupResponse,
    MaintenanceResponse,
    MajorCleanupResponse,
    SyncClearResponse,
    SyncStatsResponse,
)
from cinemirror.services.cleanup import CacheLifecycleManager

logger = get_logger(__name__)

router = APIRouter()

CacheManagerDep = Annotated[CacheLifecycleManager, Depends(get_cache_manager)]


# =============================================================================
# Cache Endpoints
# =============================================================================


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    summary="Cache statistics",
)
async def get_cache_stats(manager: CacheManagerDep) -> CacheStatsResponse:
    return CacheStatsResponse(**await manager.get_stats())


@router.post(
    "/cache/cleanup/light",
    response_model=LightCleanupResponse,
    status_code=status.HTTP_200_OK,
    summary="Remove old unused cache entries",
)
async def run_light_cleanup(
    manager: CacheManagerDep,
    settings: SettingsDep,
    max_age_days: Annotated[int | None, Query(ge=0, le=3650)] = None,
) -> LightCleanupResponse:
    max_age_days = (
        max_age_days if max_age_days is not None else settings.cache_light_cleanup_days
    )
    logger.info("cache_light_cleanup_requested", max_age_days=max_age_days)
    removed = await manager.light_cleanup(max_age_days)
    return LightCleanupResponse(max_age_days=max_age_days, removed_count=removed)


@router.post(
    "/cache/cleanup/major",
    response_model=MajorCleanupResponse,
    status_code=status.HTTP_200_OK,
    summary="Trim the cache to a target size",
)
async def run_major_cleanup(
    manager: CacheManagerDep,
    settings: SettingsDep,
    target_size: Annotated[int | None, Query(ge=0)] = None,
) -> MajorCleanupResponse:
    target_size = (
        target_size if target_size is not None else settings.cache_cleanup_target
    )
    logger.info("cache_major_cleanup_requested", target_size=target_size)
    result = await manager.major_cleanup(target_size)
    return MajorCleanupResponse(
        target_size=target_size,
        before_count=result.before_count,
        after_count=result.after_count,
        removed_count=result.removed_count,
    )


@router.post(
    "/cache/maintenance",
    response_model=MaintenanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Run the scheduled cache maintenance now",
)
async def run_maintenance(
    manager: CacheManagerDep,
    settings: SettingsDep,
) -> MaintenanceResponse:
    result = await manager.run_maintenance()
    major = None
    if result.major is not None:
        major = MajorCleanupResponse(
            target_size=settings.cache_cleanup_target,
            before_count=result.major.before_count,
            after_count=result.major.after_count,
            removed_count=result.major.removed_count,
        )
    return MaintenanceResponse(
        light_removed=result.light_removed,
        major_ran=result.major_ran,
        major=major,
    )


# =============================================================================
# Sync Ledger Endpoints
# =============================================================================


@router.get(
    "/sync/{category}/stats",
    response_model=SyncStatsResponse,
    summary="Sync ledger statistics of a category",
)
async def get_sync_stats(
    category: Annotated[SyncCategory, Path(description="Catalog category")],
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory_dep)
    ],
) -> SyncStatsResponse:
    async with session_scope(session_factory) as session:
        stats = await SyncLedgerRepository(session).get_sync_stats(category)
    return SyncStatsResponse(**stats)


@router.delete(
    "/sync/{category}",
    response_model=SyncClearResponse,
    status_code=status.HTTP_200_OK,
    summary="Forget old ledger entries of a category",
    description=(
        "Deletes ledger entries first synced more than `older_than_days` ago. "
        "Mirrored items stay; their pages are fetched again on the next miss."
    ),
)
async def clear_sync_ledger(
    category: Annotated[SyncCategory, Path(description="Catalog category")],
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory_dep)
    ],
    older_than_days: Annotated[int, Query(ge=0, le=3650)] = 30,
) -> SyncClearResponse:
    logger.info(
        "sync_ledger_clear_requested",
        category=category.value,
        older_than_days=older_than_days,
    )
    async with session_scope(session_factory) as session:
        removed = await SyncLedgerRepository(session).clear_old_sync(
            category, older_than_days
        )
    return SyncClearResponse(
        category=category.value,
        older_than_days=older_than_days,
        removed_count=removed,
    )
