"""Core data models for covtrend."""

from covtrend.models.config import ComparisonConfig, HistoryConfig, SyncConfig
from covtrend.models.snapshot import (
    CoverageSnapshot,
    FileCoverage,
    HistoryRecord,
    RecordOptions,
    latest_per_key,
)

__all__ = [
    "ComparisonConfig",
    "CoverageSnapshot",
    "FileCoverage",
    "HistoryConfig",
    "HistoryRecord",
    "RecordOptions",
    "SyncConfig",
    "latest_per_key",
]
