"""Comparison module for base/head coverage diffs."""

from covtrend.comparison.engine import (
    ComparisonEngine,
    load_file_diffs,
    load_snapshot,
    save_comparison,
    summarize_diff,
)
from covtrend.comparison.models import (
    ComparisonResult,
    DiffStatus,
    DiffSummary,
    FileChange,
    FileDiff,
    FileStatus,
    Magnitude,
    Momentum,
    TrendLabel,
)
from covtrend.comparison.paths import is_test_file, normalize_path

__all__ = [
    "ComparisonEngine",
    "ComparisonResult",
    "DiffStatus",
    "DiffSummary",
    "FileChange",
    "FileDiff",
    "FileStatus",
    "Magnitude",
    "Momentum",
    "TrendLabel",
    "is_test_file",
    "load_file_diffs",
    "load_snapshot",
    "normalize_path",
    "save_comparison",
    "summarize_diff",
]
