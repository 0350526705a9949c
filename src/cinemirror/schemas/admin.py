"""Operator API schemas: cache statistics, cleanups and sync ledger stats."""

from datetime import datetime

from pydantic import BaseModel, Field


class CacheEntryUsage(BaseModel):
    key: str
    usage_count: int
    last_accessed_at: datetime | None = None


class CacheStatsResponse(BaseModel):
    """Snapshot of the bounded cache."""

    total_entries: int
    entries_by_content_type: dict[str, int] = Field(default_factory=dict)
    most_used: list[CacheEntryUsage] = Field(default_factory=list)
    oldest_entry_at: datetime | None = None
    cleanup_threshold: int
    cleanup_target: int
    needs_cleanup: bool


class LightCleanupResponse(BaseModel):
    max_age_days: int
    removed_count: int


class MajorCleanupResponse(BaseModel):
    target_size: int
    before_count: int
    after_count: int
    removed_count: int


class MaintenanceResponse(BaseModel):
    light_removed: int
    major_ran: bool
    major: MajorCleanupResponse | None = None


class SyncStatsResponse(BaseModel):
    """Ledger summary of one catalog category."""

    category: str
    synced_pages: int
    last_synced_at: datetime | None = None
    total_items: int
    filter_tracks: int
    high_water_mark: int = Field(..., description="For the unfiltered track")
    total_pages: int | None = Field(
        None, description="Upstream total pages last reported for the unfiltered track"
    )


class SyncClearResponse(BaseModel):
    category: str
    older_than_days: int
    removed_count: int = Field(..., description="Ledger entries deleted")
