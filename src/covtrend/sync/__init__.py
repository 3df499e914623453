"""Sync module for sharing history across CI runs."""

from covtrend.sync.merge import HistorySynchronizer, merge_histories
from covtrend.sync.models import ArtifactIndex, ArtifactInfo, BundleMetadata, HistoryBundle
from covtrend.sync.transport import (
    ArtifactTransport,
    DirectoryTransport,
    generate_artifact_name,
    normalize_branch_name,
)

__all__ = [
    "ArtifactIndex",
    "ArtifactInfo",
    "ArtifactTransport",
    "BundleMetadata",
    "DirectoryTransport",
    "HistoryBundle",
    "HistorySynchronizer",
    "generate_artifact_name",
    "merge_histories",
    "normalize_branch_name",
]
