"""Persistence data models.

Defines the store-side views: cached namespace metadata and aggregate results.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NamespaceMetadata(BaseModel):
    """Cached per-branch metadata.

    Only a hint for fast lookups; a re-scan of the namespace is authoritative.
    """

    branch: str
    record_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StoreStatistics(BaseModel):
    """Aggregate statistics across every branch in the store."""

    total_entries: int = 0
    storage_size: int = 0  # bytes
    branches: dict[str, int] = Field(default_factory=dict)
    projects: dict[str, int] = Field(default_factory=dict)
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
    generated_at: datetime = Field(default_factory=_utcnow)


class CleanupResult(BaseModel):
    """Outcome of a retention pass."""

    removed: int = 0
    kept: int = 0
    skipped: int = 0  # unreadable units left in place
