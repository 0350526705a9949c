"""Repositories package for CineMirror.

Data access layer over the async SQLAlchemy session.
"""

from cinemirror.repositories.base import BaseRepository, dialect_insert
from cinemirror.repositories.cache_entry import CacheEntryRepository
from cinemirror.repositories.catalog_item import CatalogItemRepository
from cinemirror.repositories.sync_status import SyncLedgerRepository

__all__ = [
    "BaseRepository",
    "dialect_insert",
    "CacheEntryRepository",
    "CatalogItemRepository",
    "SyncLedgerRepository",
]
