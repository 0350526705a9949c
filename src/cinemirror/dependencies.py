"""FastAPI dependency injection container.

Long-lived services are built once at startup (``build_services``) because
some of them hold process-wide state: the HTTP client, the single-flight
map of the synchronizer and the cleanup lock. Route dependencies hand them
out and can be replaced with ``app.dependency_overrides`` in tests.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cinemirror.config import Settings
from cinemirror.services.cache import BoundedCacheStore
from cinemirror.services.catalog import CatalogService
from cinemirror.services.cleanup import CacheLifecycleManager, CacheMonitor
from cinemirror.services.derived import CreditsService, RecommendationService
from cinemirror.services.gap_fill import GapFillSynchronizer
from cinemirror.services.prefetch import PrefetchAdvisor
from cinemirror.services.tmdb import TMDBService


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    tmdb: TMDBService
    cache: BoundedCacheStore
    synchronizer: GapFillSynchronizer
    prefetch: PrefetchAdvisor
    catalog: CatalogService
    cleanup: CacheLifecycleManager
    monitor: CacheMonitor
    recommendations: RecommendationService
    credits: CreditsService


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    tmdb: TMDBService,
) -> Services:
    """Wire every service against one session factory and TMDB client."""
    cache = BoundedCacheStore(session_factory, settings)
    synchronizer = GapFillSynchronizer(session_factory, tmdb, settings)
    prefetch = PrefetchAdvisor(session_factory, synchronizer, settings)
    cleanup = CacheLifecycleManager(session_factory, settings)

    return Services(
        session_factory=session_factory,
        tmdb=tmdb,
        cache=cache,
        synchronizer=synchronizer,
        prefetch=prefetch,
        catalog=CatalogService(
            session_factory, synchronizer, prefetch, tmdb, settings
        ),
        cleanup=cleanup,
        monitor=CacheMonitor(
            cleanup,
            interval_seconds=settings.cache_monitor_interval_seconds,
            max_age_days=settings.cache_light_cleanup_days,
        ),
        recommendations=RecommendationService(cache, tmdb, settings),
        credits=CreditsService(cache, tmdb),
    )


# ========================================
# Settings Dependencies
# ========================================
def get_settings_from_request(request: Request) -> Settings:
    """Get settings from request state (set during lifespan)."""
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_settings_from_request)]


# ========================================
# Service Dependencies
# ========================================
def get_services(request: Request) -> Services:
    """Services built during application startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized. Is the app lifespan running?")
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


def get_catalog_service(services: ServicesDep) -> CatalogService:
    return services.catalog


def get_recommendation_service(services: ServicesDep) -> RecommendationService:
    return services.recommendations


def get_credits_service(services: ServicesDep) -> CreditsService:
    return services.credits


def get_cache_manager(services: ServicesDep) -> CacheLifecycleManager:
    return services.cleanup


def get_session_factory_dep(
    services: ServicesDep,
) -> async_sessionmaker[AsyncSession]:
    return services.session_factory
