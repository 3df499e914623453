"""Sync data models.

Defines the portable history bundle exchanged with external artifact storage.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from covtrend.models.snapshot import HistoryRecord

BUNDLE_VERSION = "1.0"


class BundleMetadata(BaseModel):
    """Bookkeeping for a history bundle."""

    version: str = BUNDLE_VERSION
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    record_count: int = 0
    repository: str = ""


class HistoryBundle(BaseModel):
    """A set of history records, newest first, as shipped between CI runs."""

    records: list[HistoryRecord] = Field(default_factory=list)
    metadata: BundleMetadata = Field(default_factory=BundleMetadata)


class ArtifactInfo(BaseModel):
    """Entry in an artifact transport's listing."""

    artifact_id: str
    name: str
    branch: str
    commit_sha: str | None = None
    pr_number: str | None = None
    created_at: datetime
    size: int = 0


class ArtifactIndex(BaseModel):
    """Index of all artifacts held by a directory transport."""

    artifacts: list[ArtifactInfo] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
