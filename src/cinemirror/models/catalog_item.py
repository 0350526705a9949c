"""CatalogItem model - the local mirror of upstream catalog entries.

Rows are keyed by (category, tmdb_id). Upstream-sourced fields are written
only by the sync path; ``is_blocked`` belongs to the moderation side of the
application and is never touched by upserts.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cinemirror.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# Columns an upstream upsert may write
UPSTREAM_FIELDS = (
    "title",
    "original_title",
    "overview",
    "poster_path",
    "backdrop_path",
    "release_date",
    "release_year",
    "vote_average",
    "vote_count",
    "popularity",
    "genre_ids",
    "genre_key",
    "original_language",
    "adult",
    "media_type",
)


def build_genre_key(genre_ids: list[int] | None) -> str:
    """Delimited genre string usable with a portable LIKE filter.

    Example: [28, 12] -> ",28,12,"
    """
    if not genre_ids:
        return ""
    return "," + ",".join(str(g) for g in genre_ids) + ","


class CatalogItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A movie, TV series or trending entry mirrored from TMDB.

    Attributes:
        category: Sync category the row was mirrored under
        tmdb_id: Upstream identifier (unique per category)
        title: Display title (``name`` for TV entries)
        release_date: ISO date string as reported upstream
        release_year: Year derived from release_date, for year filters
        genre_ids: Upstream genre identifiers
        genre_key: ``,id,id,`` form of genre_ids for genre filters
        popularity: Upstream popularity, the local page ordering key
        media_type: "movie" or "tv"
        is_blocked: Moderation flag owned by the rest of the application
    """

    __tablename__ = "catalog_items"

    category: Mapped[str] = mapped_column(String(20), nullable=False)
    tmdb_id: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    original_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vote_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    popularity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    genre_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    genre_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    original_language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    adult: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    media_type: Mapped[str] = mapped_column(String(10), nullable=False, default="movie")

    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("category", "tmdb_id", name="uq_catalog_category_tmdb_id"),
        Index("ix_catalog_items_category_popularity", "category", "popularity"),
        Index("ix_catalog_items_category_year", "category", "release_year"),
    )

    def __repr__(self) -> str:
        return (
            f"<CatalogItem(category='{self.category}', tmdb_id={self.tmdb_id}, "
            f"title='{self.title}')>"
        )
