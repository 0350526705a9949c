"""SyncStatus model - the ledger of upstream pages already mirrored locally.

One row means "page P of category C under filter track F has been fetched
from the upstream catalog and its items were stored". The gap-fill
synchronizer reads it to decide which pages to fetch and writes it after
every committed page.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cinemirror.models.base import Base, UUIDPrimaryKeyMixin, utcnow

# Stored value of the "no extra filters" track. Unique indexes treat NULLs
# as distinct, so a NULL here would let duplicate ledger rows through.
NO_FILTERS_HASH = ""


class SyncCategory(str, Enum):
    """Content classes that each own a pagination space upstream."""

    MOVIES = "movies"
    TV_SERIES = "tv_series"
    TRENDING = "trending"


def category_value(category: SyncCategory | str) -> str:
    """Plain string form of a category, as stored in the database."""
    return category.value if isinstance(category, SyncCategory) else category


@dataclass(frozen=True)
class CatalogFilters:
    """Non-default query facets that split a category into separate tracks.

    Language is part of the track identity only when a facet is set; the
    unfiltered track is shared across languages. Without a language the
    configured default is used.
    """

    genre: str | None = None
    year: int | None = None
    language: str | None = None

    @property
    def has_facets(self) -> bool:
        return bool(self.genre) or bool(self.year)

    @property
    def signature(self) -> str | None:
        """Stable hash of the facets, or None for the unfiltered track.

        Normalizes input (lowercase, strip, sorted keys) so equivalent
        filters always land on the same track.
        """
        if not self.has_facets:
            return None

        normalized = {
            "genre": (self.genre or "").lower().strip(),
            "year": str(self.year) if self.year else "",
            "language": (self.language or "").lower().strip(),
        }
        key_string = "&".join(sorted(f"{k}={v}" for k, v in normalized.items()))
        return hashlib.sha256(key_string.encode()).hexdigest()[:32]

    @property
    def stored_hash(self) -> str:
        """Signature as persisted in the ledger."""
        return self.signature or NO_FILTERS_HASH


def track_filters(
    category: SyncCategory | str, filters: CatalogFilters | None
) -> CatalogFilters | None:
    """Filters that actually split ``category`` into a separate ledger track.

    Language alone never does, and trending has no facet support upstream:
    its pages are the same whatever genre or year is asked for.
    """
    if filters is None or not filters.has_facets:
        return None
    if SyncCategory(category) == SyncCategory.TRENDING:
        return None
    return filters


class SyncStatus(UUIDPrimaryKeyMixin, Base):
    """Ledger entry for one fetched upstream page.

    Attributes:
        category: Content class of the page
        page: Upstream page number (1-based)
        filters_hash: Filter track signature ("" for the unfiltered track)
        total_pages: Last total page count reported upstream for this track
        item_count: Items actually stored from this page
        language: Language the page was fetched in
        sync_metadata: Free-form details about the sync run
        synced_at: When the page was first synced
        last_updated_at: When the page was last re-synced
    """

    __tablename__ = "sync_status"

    category: Mapped[str] = mapped_column(String(20), nullable=False)
    page: Mapped[int] = mapped_column(Integer, nullable=False)
    filters_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=NO_FILTERS_HASH,
        server_default=NO_FILTERS_HASH,
    )
    total_pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en-US")
    sync_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "category", "page", "filters_hash", name="uq_sync_category_page_filters"
        ),
        Index("ix_sync_status_category_filters", "category", "filters_hash"),
    )

    @property
    def filter_signature(self) -> str | None:
        """Filter track signature, None for the unfiltered track."""
        return self.filters_hash or None

    def __repr__(self) -> str:
        return (
            f"<SyncStatus(category='{self.category}', page={self.page}, "
            f"filters='{self.filters_hash}', items={self.item_count})>"
        )
