"""Services package for CineMirror.

Business logic between the API layer and the repositories.
"""

from cinemirror.services.cache import BoundedCacheStore, derive_metadata
from cinemirror.services.catalog import CatalogPage, CatalogService, PageInfo
from cinemirror.services.cleanup import (
    CacheLifecycleManager,
    CacheMonitor,
    CleanupResult,
    MaintenanceResult,
)
from cinemirror.services.derived import CreditsPage, CreditsService, RecommendationService
from cinemirror.services.gap_fill import (
    FetchWindow,
    GapFillResult,
    GapFillSynchronizer,
    compute_fetch_window,
)
from cinemirror.services.prefetch import PrefetchAdvisor
from cinemirror.services.tmdb import (
    TMDBError,
    TMDBRateLimitError,
    TMDBService,
    UpstreamItem,
    UpstreamPage,
)

__all__ = [
    # Upstream client
    "TMDBService",
    "TMDBError",
    "TMDBRateLimitError",
    "UpstreamItem",
    "UpstreamPage",
    # Catalog mirror
    "CatalogService",
    "CatalogPage",
    "PageInfo",
    "GapFillSynchronizer",
    "GapFillResult",
    "FetchWindow",
    "compute_fetch_window",
    "PrefetchAdvisor",
    # Bounded cache
    "BoundedCacheStore",
    "derive_metadata",
    "CacheLifecycleManager",
    "CacheMonitor",
    "CleanupResult",
    "MaintenanceResult",
    "RecommendationService",
    "CreditsService",
    "CreditsPage",
]
