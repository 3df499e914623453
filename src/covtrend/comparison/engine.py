"""Coverage comparison between a base and a head snapshot.

Produces per-file deltas and significance flags that feed pull-request
comments and merge gating.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from covtrend.analysis.models import TrendDirection
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
from covtrend.comparison.paths import is_source_file, is_test_file, normalize_path
from covtrend.exceptions import StorageError, ValidationError
from covtrend.models.config import ComparisonConfig
from covtrend.models.snapshot import CoverageSnapshot

if TYPE_CHECKING:
    from covtrend.models.snapshot import FileCoverage

logger = logging.getLogger(__name__)

# Constants for change classification
DIRECTION_EPSILON = 0.05
MINOR_CHANGE_LIMIT = 1.0
MODERATE_CHANGE_LIMIT = 5.0
ACCELERATING_CHANGE = 2.0
BASELINE_UNAVAILABLE = "unavailable"

_FILE_DIFF_LIST = TypeAdapter(list[FileDiff])


class ComparisonEngine:
    """Compares coverage snapshots file by file."""

    def __init__(self, config: ComparisonConfig | None = None) -> None:
        """Initialize the comparison engine.

        Args:
            config: Significance thresholds and matching options.
        """
        self._config = config or ComparisonConfig()

    def compare(
        self,
        base: CoverageSnapshot | None,
        head: CoverageSnapshot,
        file_diffs: Iterable[FileDiff] | None = None,
    ) -> ComparisonResult:
        """Compare head coverage against base coverage.

        Args:
            base: Baseline snapshot, or None on a branch's first run.
            head: Snapshot under review.
            file_diffs: Optional line-diff counts from source control.

        Returns:
            The structured comparison.
        """
        baseline_available = base is not None
        if base is None:
            base = CoverageSnapshot(
                percentage=0.0,
                timestamp=head.timestamp,
                metadata={"baseline": BASELINE_UNAVAILABLE},
            )

        diffs = list(file_diffs) if file_diffs is not None else None
        difference = head.percentage - base.percentage
        file_changes = self._analyze_file_changes(base, head, diffs or [])

        return ComparisonResult(
            base_coverage=base,
            head_coverage=head,
            baseline_available=baseline_available,
            difference=difference,
            file_changes=file_changes,
            significant_files=self._identify_significant_files(file_changes),
            trend=self._trend_label(difference),
            diff_summary=summarize_diff(diffs) if diffs is not None else None,
        )

    def _trend_label(self, difference: float) -> TrendLabel:
        direction = TrendDirection.STABLE
        if difference > DIRECTION_EPSILON:
            direction = TrendDirection.UP
        elif difference < -DIRECTION_EPSILON:
            direction = TrendDirection.DOWN

        abs_change = abs(difference)
        if abs_change < MINOR_CHANGE_LIMIT:
            magnitude = Magnitude.MINOR
        elif abs_change <= MODERATE_CHANGE_LIMIT:
            magnitude = Magnitude.MODERATE
        else:
            magnitude = Magnitude.MAJOR

        momentum = Momentum.STEADY
        if direction != TrendDirection.STABLE and abs_change >= ACCELERATING_CHANGE:
            momentum = Momentum.ACCELERATING

        return TrendLabel(direction=direction, magnitude=magnitude, momentum=momentum)

    def _canonical_keys(self, paths: Iterable[str]) -> dict[str, str]:
        """Map each reported path to its comparison key.

        A path already in normalized form always keys under itself. Other
        paths take their normalized form unless that key is taken, in which
        case they keep their raw path so distinct files are never merged.
        Assignment does not depend on input order.
        """
        prefixes = self._config.module_prefixes
        normalized = {path: normalize_path(path, prefixes) for path in paths}
        keys = {path: path for path, key in normalized.items() if key == path}
        taken = set(keys.values())
        for path in sorted(p for p in normalized if p not in keys):
            key = normalized[path]
            if key in taken:
                logger.debug("Path %s collides with %s after normalization", path, key)
                key = path
            keys[path] = key
            taken.add(key)
        return keys

    def _key_files(self, files: Mapping[str, FileCoverage]) -> dict[str, FileCoverage]:
        keys = self._canonical_keys(files)
        return {keys[path]: coverage for path, coverage in files.items()}

    def _key_diffs(self, diffs: list[FileDiff]) -> dict[str, FileDiff]:
        keys = self._canonical_keys(d.filename for d in diffs)
        return {keys[d.filename]: d for d in diffs}

    def _apply_renames(
        self,
        base_files: dict[str, FileCoverage],
        head_files: dict[str, FileCoverage],
        diffs: dict[str, FileDiff],
    ) -> None:
        """Re-key base entries of renamed files under their new name."""
        for new_key, diff in diffs.items():
            if diff.status != DiffStatus.RENAMED or not diff.previous_filename:
                continue
            old_key = normalize_path(diff.previous_filename, self._config.module_prefixes)
            if old_key in base_files and new_key not in base_files and new_key in head_files:
                base_files[new_key] = base_files.pop(old_key)

    def _analyze_file_changes(
        self,
        base: CoverageSnapshot,
        head: CoverageSnapshot,
        diffs: list[FileDiff],
    ) -> list[FileChange]:
        base_files = self._key_files(base.files)
        head_files = self._key_files(head.files)
        keyed_diffs = self._key_diffs(diffs)
        self._apply_renames(base_files, head_files, keyed_diffs)

        changes: list[FileChange] = []
        for filename in sorted(base_files.keys() | head_files.keys()):
            if self._config.ignore_test_files and is_test_file(filename):
                continue
            base_file = base_files.get(filename)
            head_file = head_files.get(filename)
            diff = keyed_diffs.get(filename)
            if base_file is not None and head_file is not None:
                changes.append(self._modified_file(filename, base_file, head_file, diff))
            elif head_file is not None:
                changes.append(self._new_file(filename, head_file, diff))
            elif base_file is not None:
                changes.append(self._removed_file(filename, base_file, diff))

        changes.sort(key=lambda c: (not c.is_significant, -abs(c.difference), c.filename))
        return changes

    def _new_file(
        self,
        filename: str,
        head_file: FileCoverage,
        diff: FileDiff | None,
    ) -> FileChange:
        """A file that exists only in head; its whole body counts as added."""
        total_lines = head_file.total_lines or head_file.total_statements
        difference = head_file.percentage
        return FileChange(
            filename=filename,
            status=FileStatus.NEW,
            base_coverage=0.0,
            head_coverage=head_file.percentage,
            difference=difference,
            lines_added=diff.additions if diff else total_lines,
            lines_removed=0,
            is_significant=(
                abs(difference) >= self._config.significant_threshold
                or head_file.percentage < self._config.acceptable_threshold
            ),
        )

    def _removed_file(
        self,
        filename: str,
        base_file: FileCoverage,
        diff: FileDiff | None,
    ) -> FileChange:
        """A file that exists only in base; listed for visibility, never a regression."""
        total_lines = base_file.total_lines or base_file.total_statements
        difference = -base_file.percentage
        return FileChange(
            filename=filename,
            status=FileStatus.REMOVED,
            base_coverage=base_file.percentage,
            head_coverage=0.0,
            difference=difference,
            lines_added=0,
            lines_removed=diff.deletions if diff else total_lines,
            is_significant=(
                abs(difference) >= self._config.significant_threshold
                or base_file.percentage > 0
            ),
        )

    def _modified_file(
        self,
        filename: str,
        base_file: FileCoverage,
        head_file: FileCoverage,
        diff: FileDiff | None,
    ) -> FileChange:
        difference = head_file.percentage - base_file.percentage
        return FileChange(
            filename=filename,
            status=FileStatus.MODIFIED,
            base_coverage=base_file.percentage,
            head_coverage=head_file.percentage,
            difference=difference,
            lines_added=diff.additions if diff else 0,
            lines_removed=diff.deletions if diff else 0,
            is_significant=abs(difference) >= self._config.significant_threshold,
        )

    def _identify_significant_files(self, changes: list[FileChange]) -> list[str]:
        significant = [c for c in changes if c.is_significant]
        significant.sort(key=lambda c: (-abs(c.difference), c.filename))
        return [c.filename for c in significant[: self._config.max_significant_files]]


def summarize_diff(diffs: Iterable[FileDiff]) -> DiffSummary:
    """Categorize changed files into source, test and other files."""
    summary = DiffSummary()
    for diff in diffs:
        summary.total_files += 1
        summary.total_additions += diff.additions
        summary.total_deletions += diff.deletions

        if is_test_file(diff.filename):
            summary.test_files += 1
        elif is_source_file(diff.filename):
            summary.source_files += 1
            summary.source_additions += diff.additions
            summary.source_deletions += diff.deletions
        else:
            summary.other_files += 1
    return summary


def load_snapshot(path: Path) -> CoverageSnapshot:
    """Load a coverage snapshot from a JSON file.

    Raises:
        StorageError: If the file cannot be read.
        ValidationError: If the content is not a valid snapshot.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        msg = f"Failed to read coverage snapshot {path}: {e}"
        raise StorageError(msg) from e

    try:
        snapshot = CoverageSnapshot.model_validate_json(raw)
    except PydanticValidationError as e:
        msg = f"Invalid coverage snapshot in {path}: {e}"
        raise ValidationError(msg) from e

    snapshot.ensure_valid()
    return snapshot


def load_file_diffs(path: Path) -> list[FileDiff]:
    """Load a JSON list of per-file line diffs.

    Raises:
        StorageError: If the file cannot be read.
        ValidationError: If the content is malformed.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        msg = f"Failed to read file diff {path}: {e}"
        raise StorageError(msg) from e

    try:
        return _FILE_DIFF_LIST.validate_json(raw)
    except PydanticValidationError as e:
        msg = f"Invalid file diff in {path}: {e}"
        raise ValidationError(msg) from e


def save_comparison(result: ComparisonResult, path: Path) -> None:
    """Write a comparison result as JSON.

    Raises:
        StorageError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(result.model_dump_json(indent=2))
    except OSError as e:
        msg = f"Failed to write comparison result {path}: {e}"
        raise StorageError(msg) from e
