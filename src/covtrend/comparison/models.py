"""Comparison data models.

Defines the structured diff between a base and a head coverage snapshot.
"""

from enum import Enum

from pydantic import BaseModel, Field

from covtrend.analysis.models import TrendDirection
from covtrend.models.snapshot import CoverageSnapshot


class Magnitude(str, Enum):
    """Size of an overall coverage change."""

    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class Momentum(str, Enum):
    """Whether a change is large enough to read as accelerating."""

    STEADY = "steady"
    ACCELERATING = "accelerating"


class FileStatus(str, Enum):
    """How a file differs between base and head."""

    NEW = "new"
    REMOVED = "removed"
    MODIFIED = "modified"


class DiffStatus(str, Enum):
    """Status reported by the source-control diff."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    RENAMED = "renamed"


class FileDiff(BaseModel):
    """Line-level change counts for one file, from the VCS diff."""

    filename: str
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    status: DiffStatus = DiffStatus.MODIFIED
    previous_filename: str | None = None  # set for renames


class FileChange(BaseModel):
    """Coverage change of a single file."""

    filename: str
    status: FileStatus = FileStatus.MODIFIED
    base_coverage: float = 0.0
    head_coverage: float = 0.0
    difference: float = 0.0
    lines_added: int = 0
    lines_removed: int = 0
    is_significant: bool = False

    @property
    def is_regression(self) -> bool:
        """Coverage dropped on a file that still exists."""
        return self.difference < 0 and self.status != FileStatus.REMOVED


class TrendLabel(BaseModel):
    """Direction and size of the overall change."""

    direction: TrendDirection = TrendDirection.STABLE
    magnitude: Magnitude = Magnitude.MINOR
    momentum: Momentum = Momentum.STEADY


class DiffSummary(BaseModel):
    """Categorized totals of a pull request's changed files."""

    total_files: int = 0
    source_files: int = 0
    test_files: int = 0
    other_files: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    source_additions: int = 0
    source_deletions: int = 0


class ComparisonResult(BaseModel):
    """Outcome of comparing base and head coverage."""

    base_coverage: CoverageSnapshot
    head_coverage: CoverageSnapshot
    # False when no base existed and a zero-valued placeholder was used
    baseline_available: bool = True
    difference: float = 0.0
    file_changes: list[FileChange] = Field(default_factory=list)
    significant_files: list[str] = Field(default_factory=list)
    trend: TrendLabel = Field(default_factory=TrendLabel)
    diff_summary: DiffSummary | None = None

    @property
    def regressions(self) -> list[FileChange]:
        return [c for c in self.file_changes if c.is_regression]
