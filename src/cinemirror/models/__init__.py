"""Models package for CineMirror.

This module exports the Base class and all model classes.
"""

from cinemirror.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from cinemirror.models.cache_entry import CacheEntry, CacheKey
from cinemirror.models.catalog_item import CatalogItem
from cinemirror.models.sync_status import CatalogFilters, SyncCategory, SyncStatus

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Catalog mirror
    "CatalogItem",
    "CatalogFilters",
    "SyncCategory",
    "SyncStatus",
    # Bounded cache
    "CacheEntry",
    "CacheKey",
]
