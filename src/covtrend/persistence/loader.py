"""Record loader implementation.

Handles reading history units from the filesystem. A unit that cannot be
read or parsed is skipped with a warning; one bad file never fails a scan.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from covtrend.cancellation import check_scope
from covtrend.exceptions import StorageError
from covtrend.models.snapshot import HistoryRecord
from covtrend.persistence.layout import (
    BRANCHES_DIR,
    NAMESPACE_METADATA_FILE,
    UNIT_GLOB,
    namespace_dir,
)
from covtrend.persistence.models import NamespaceMetadata

if TYPE_CHECKING:
    from covtrend.cancellation import CancelScope

logger = logging.getLogger(__name__)


class RecordLoader:
    """Handles loading history records from the filesystem."""

    def __init__(self, storage_path: Path) -> None:
        """Initialize the record loader.

        Args:
            storage_path: Root directory of the history store.
        """
        self._storage_path = storage_path
        self._branches_dir = storage_path / BRANCHES_DIR

    def namespace_dirs(self) -> list[Path]:
        """List every branch namespace directory, sorted by name."""
        if not self._branches_dir.exists():
            return []
        try:
            return sorted(p for p in self._branches_dir.iterdir() if p.is_dir())
        except OSError as e:
            msg = f"Failed to list history namespaces in {self._branches_dir}: {e}"
            raise StorageError(msg) from e

    def unit_paths(self, directory: Path, *, newest_first: bool = False) -> list[Path]:
        """List record units in a namespace, ordered by their timestamp prefix."""
        if not directory.exists():
            return []
        try:
            return sorted(directory.glob(UNIT_GLOB), reverse=newest_first)
        except OSError as e:
            msg = f"Failed to list history units in {directory}: {e}"
            raise StorageError(msg) from e

    def load_unit(self, path: Path) -> HistoryRecord | None:
        """Load a single unit.

        Returns:
            The record, or None if the unit is unreadable or corrupt.
        """
        try:
            return HistoryRecord.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            # Removed by a concurrent cleanup between listing and reading
            return None
        except (OSError, PydanticValidationError, ValueError) as e:
            logger.warning("Skipping unreadable history unit %s: %s", path, e)
            return None

    def iter_records(
        self,
        directory: Path,
        *,
        newest_first: bool = False,
        scope: CancelScope | None = None,
    ) -> Iterator[HistoryRecord]:
        """Lazily yield readable records of one namespace."""
        for path in self.unit_paths(directory, newest_first=newest_first):
            check_scope(scope, "history scan")
            record = self.load_unit(path)
            if record is not None:
                yield record

    def load_namespace_metadata(self, directory: Path) -> NamespaceMetadata | None:
        """Load cached namespace metadata, or None if missing or corrupt."""
        path = directory / NAMESPACE_METADATA_FILE
        if not path.exists():
            return None
        try:
            return NamespaceMetadata.model_validate_json(path.read_bytes())
        except (OSError, PydanticValidationError, ValueError) as e:
            logger.warning("Ignoring corrupt namespace metadata %s: %s", path, e)
            return None

    def list_branches(self) -> list[str]:
        """List branch names that have a namespace.

        The metadata unit names the branch; when it is missing the first
        readable record is used instead.
        """
        branches: list[str] = []
        for directory in self.namespace_dirs():
            metadata = self.load_namespace_metadata(directory)
            if metadata is not None:
                branches.append(metadata.branch)
                continue
            first = next(self.iter_records(directory), None)
            if first is not None:
                branches.append(first.branch)
        return sorted(branches)


class RecordQuery:
    """Lazy, restartable view of one branch's records in a time window.

    Each iteration re-scans the namespace and yields records ordered by
    timestamp ascending.
    """

    def __init__(
        self,
        loader: RecordLoader,
        storage_path: Path,
        branch: str,
        since: datetime | None = None,
        scope: CancelScope | None = None,
    ) -> None:
        self._loader = loader
        self._directory = namespace_dir(storage_path, branch)
        self.branch = branch
        self.since = since
        self._scope = scope

    def __iter__(self) -> Iterator[HistoryRecord]:
        records = (
            record
            for record in self._loader.iter_records(self._directory, scope=self._scope)
            if record.branch == self.branch
        )
        if self.since is None:
            yield from records
            return
        for record in records:
            if record.timestamp >= self.since:
                yield record

    def to_list(self) -> list[HistoryRecord]:
        """Materialize the window, sorted defensively by timestamp."""
        return sorted(self, key=lambda r: r.timestamp)
