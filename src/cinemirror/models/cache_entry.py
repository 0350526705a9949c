"""CacheEntry model - bounded cache of expensive derived lookups.

Holds upstream results that are slow to recompute (recommendations, person
credits). Entries never expire on their own; the table is kept bounded by
the cache lifecycle manager, which evicts the least valuable rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cinemirror.models.base import Base, UUIDPrimaryKeyMixin, utcnow


@dataclass(frozen=True)
class CacheKey:
    """Identifies what a cache entry is a cache of.

    Example: CacheKey("movie", 550, "recommendations")
    """

    content_type: str
    content_id: int
    subtype: str = ""

    def __str__(self) -> str:
        suffix = f":{self.subtype}" if self.subtype else ""
        return f"{self.content_type}:{self.content_id}{suffix}"


class CacheEntry(UUIDPrimaryKeyMixin, Base):
    """A cached derived result with usage statistics.

    Attributes:
        content_type: Kind of content the lookup belongs to ("movie", "person")
        content_id: Upstream id of that content
        subtype: Which derived lookup this is ("recommendations", "credits")
        payload: Externally sourced data, stored as-is
        payload_metadata: Sort/pagination facts recomputed from payload on write
        score: Ranking weight assigned at write time (eviction tiebreaker)
        usage_count: Number of cache hits
        last_accessed_at: Time of the last hit, None if never read
        created_at: When the entry was written
        last_synced_at: When the payload was last fetched upstream
    """

    __tablename__ = "cache_entries"

    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subtype: Mapped[str] = mapped_column(
        String(40), nullable=False, default="", server_default=""
    )
    payload: Mapped[dict | list] = mapped_column(JSON, nullable=False)
    payload_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "content_type", "content_id", "subtype", name="uq_cache_entry_key"
        ),
        # Supports the eviction ordering of major cleanups
        Index(
            "ix_cache_entries_eviction",
            "usage_count",
            "last_accessed_at",
            "score",
        ),
        Index("ix_cache_entries_created_at", "created_at"),
    )

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.content_type, self.content_id, self.subtype)

    def __repr__(self) -> str:
        return (
            f"<CacheEntry(key='{self.key}', uses={self.usage_count}, "
            f"score={self.score})>"
        )
