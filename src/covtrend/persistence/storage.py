"""History store implementation.

Handles saving coverage records to JSON units, one file per record. Writers
in independent processes never rewrite a shared file, so concurrent CI jobs
cannot corrupt each other's data.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from covtrend.cancellation import check_scope
from covtrend.exceptions import CancellationError, NotFoundError, StorageError, ValidationError
from covtrend.models.snapshot import HistoryRecord, RecordOptions
from covtrend.persistence.layout import (
    NAMESPACE_METADATA_FILE,
    namespace_dir,
    unit_filename,
)
from covtrend.persistence.loader import RecordLoader, RecordQuery
from covtrend.persistence.models import CleanupResult, NamespaceMetadata, StoreStatistics
from covtrend.persistence.retention import select_expired

if TYPE_CHECKING:
    from collections.abc import Iterable

    from covtrend.cancellation import CancelScope
    from covtrend.models.config import HistoryConfig
    from covtrend.models.snapshot import CoverageSnapshot

logger = logging.getLogger(__name__)

TRACKER_VERSION = "1.0"


class HistoryStore:
    """Append-only store of coverage records, namespaced by branch."""

    def __init__(self, config: HistoryConfig) -> None:
        """Initialize the history store.

        Args:
            config: Store configuration (path, retention, defaults).
        """
        self._config = config
        self._storage_path = Path(config.storage_path)
        self._loader = RecordLoader(self._storage_path)

    @property
    def config(self) -> HistoryConfig:
        return self._config

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def _ensure_dir(self, directory: Path) -> None:
        """Ensure a store directory exists."""
        if directory.exists() and not directory.is_dir():
            msg = f"History path exists but is not a directory: {directory}"
            raise StorageError(msg)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Failed to create history directory {directory}: {e}"
            raise StorageError(msg) from e

    def _resolve_record(
        self,
        snapshot: CoverageSnapshot,
        options: RecordOptions,
    ) -> HistoryRecord:
        """Apply options and store defaults to a snapshot."""
        data = snapshot.model_dump()
        data["branch"] = options.branch or snapshot.branch or self._config.default_branch
        data["commit_sha"] = options.commit_sha or snapshot.commit_sha or f"auto_{time.time_ns()}"
        data["commit_url"] = options.commit_url or snapshot.commit_url
        if options.timestamp is not None:
            data["timestamp"] = options.timestamp
        data["metadata"] = {
            **snapshot.metadata,
            **options.metadata,
            "tracker_version": TRACKER_VERSION,
            "record_timestamp": datetime.now(UTC).isoformat(),
        }
        return HistoryRecord.model_validate(data)

    def _write_unit(
        self,
        directory: Path,
        record: HistoryRecord,
        scope: CancelScope | None = None,
    ) -> tuple[Path, bool]:
        """Write one record unit with create-if-absent semantics.

        The payload goes to a temp file first and is published with a hard
        link, which fails if the unit already exists. Readers never observe
        a partial unit.

        Returns:
            The unit path and whether it was newly created.
        """
        path = directory / unit_filename(record)
        tmp_path = directory / f".{uuid.uuid4().hex}.tmp"
        payload = record.model_dump_json(indent=2).encode("utf-8")
        try:
            tmp_path.write_bytes(payload)
            check_scope(scope, "record")
            try:
                os.link(tmp_path, path)
            except FileExistsError:
                logger.debug("History unit %s already exists; keeping existing copy", path.name)
                return path, False
        except OSError as e:
            msg = f"Failed to write history unit {path} ({len(payload)} bytes): {e}"
            raise StorageError(msg) from e
        finally:
            tmp_path.unlink(missing_ok=True)
        return path, True

    def _refresh_namespace_metadata(self, directory: Path, branch: str) -> None:
        """Rewrite the cached namespace metadata (best-effort)."""
        existing = self._loader.load_namespace_metadata(directory)
        now = datetime.now(UTC)
        metadata = NamespaceMetadata(
            branch=branch,
            record_count=len(self._loader.unit_paths(directory)),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        target = directory / NAMESPACE_METADATA_FILE
        tmp_path = directory / f".{uuid.uuid4().hex}.tmp"
        try:
            tmp_path.write_text(metadata.model_dump_json(indent=2))
            os.replace(tmp_path, target)
        except OSError as e:
            logger.warning("Failed to update namespace metadata %s: %s", target, e)
        finally:
            tmp_path.unlink(missing_ok=True)

    def record(
        self,
        snapshot: CoverageSnapshot,
        options: RecordOptions | None = None,
        *,
        scope: CancelScope | None = None,
    ) -> HistoryRecord:
        """Persist a snapshot as a new history record.

        Args:
            snapshot: The measurement to record.
            options: Overrides for branch, commit, timestamp and metadata.
            scope: Optional cancellation scope.

        Returns:
            The record as persisted.

        Raises:
            ValidationError: If the snapshot is malformed.
            StorageError: If the namespace cannot be created or written.
            CancellationError: If the scope ends before the unit is published.
        """
        check_scope(scope, "record")
        snapshot.ensure_valid()
        record = self._resolve_record(snapshot, options or RecordOptions())

        directory = namespace_dir(self._storage_path, record.branch)
        self._ensure_dir(directory)
        path, created = self._write_unit(directory, record, scope)
        if created:
            logger.debug(
                "Recorded %.2f%% for %s@%s in %s",
                record.percentage,
                record.branch,
                record.commit_sha,
                path.name,
            )
        self._refresh_namespace_metadata(directory, record.branch)

        if self._config.auto_cleanup:
            # The unit is already published; an interrupted cleanup resumes next time
            try:
                self.cleanup(record.branch, scope=scope)
            except CancellationError as e:
                logger.warning(
                    "Cleanup after recording %s@%s interrupted: %s",
                    record.branch,
                    record.commit_sha,
                    e,
                )

        return record

    def import_records(
        self,
        records: Iterable[HistoryRecord],
        *,
        scope: CancelScope | None = None,
    ) -> int:
        """Materialize externally held records.

        Records already present are left untouched; invalid ones are skipped.

        Returns:
            Number of units newly written.
        """
        written = 0
        touched: dict[Path, str] = {}
        for record in records:
            check_scope(scope, "import")
            try:
                record.ensure_valid()
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid record %s@%s: %s", record.branch, record.commit_sha, e
                )
                continue
            directory = namespace_dir(self._storage_path, record.branch)
            self._ensure_dir(directory)
            _, created = self._write_unit(directory, record, scope)
            if created:
                written += 1
                touched[directory] = record.branch

        for directory, branch in touched.items():
            self._refresh_namespace_metadata(directory, branch)
        return written

    def get_latest_entry(
        self,
        branch: str,
        *,
        scope: CancelScope | None = None,
    ) -> HistoryRecord:
        """Get the most recent record for a branch.

        Raises:
            NotFoundError: If the branch has no readable records.
        """
        directory = namespace_dir(self._storage_path, branch)
        # Unit names sort by timestamp, so the first readable one is the newest
        for record in self._loader.iter_records(directory, newest_first=True, scope=scope):
            if record.branch == branch:
                return record
        msg = f"No history entries found for branch: {branch}"
        raise NotFoundError(msg)

    def query(
        self,
        branch: str,
        since_days: float | None = None,
        *,
        scope: CancelScope | None = None,
    ) -> RecordQuery:
        """Query a branch's records, oldest first.

        Args:
            branch: Branch to query.
            since_days: Only include records newer than this many days; None for all.
            scope: Optional cancellation scope checked during iteration.

        Returns:
            A lazy, restartable iterable of records.
        """
        since = None
        if since_days is not None:
            since = datetime.now(UTC) - timedelta(days=since_days)
        return RecordQuery(self._loader, self._storage_path, branch, since=since, scope=scope)

    def branches(self) -> list[str]:
        """List branches that have history."""
        return self._loader.list_branches()

    def get_statistics(self, *, scope: CancelScope | None = None) -> StoreStatistics:
        """Compute statistics with a full re-scan of the store."""
        stats = StoreStatistics()
        for directory in self._loader.namespace_dirs():
            check_scope(scope, "statistics")
            for path in directory.iterdir():
                try:
                    if path.is_file():
                        stats.storage_size += path.stat().st_size
                except OSError:
                    # Removed by a concurrent cleanup
                    continue
            for record in self._loader.iter_records(directory, scope=scope):
                stats.total_entries += 1
                stats.branches[record.branch] = stats.branches.get(record.branch, 0) + 1
                project = record.metadata.get("project")
                if project:
                    stats.projects[project] = stats.projects.get(project, 0) + 1
                if stats.oldest_entry is None or record.timestamp < stats.oldest_entry:
                    stats.oldest_entry = record.timestamp
                if stats.newest_entry is None or record.timestamp > stats.newest_entry:
                    stats.newest_entry = record.timestamp
        return stats

    def cleanup(
        self,
        branch: str | None = None,
        *,
        scope: CancelScope | None = None,
        now: datetime | None = None,
    ) -> CleanupResult:
        """Remove records outside the retention policy.

        Args:
            branch: Limit cleanup to one branch; None cleans every branch.
            scope: Optional cancellation scope.
            now: Reference time for age checks (defaults to the current time).

        Returns:
            Counts of removed, kept and unreadable units.
        """
        now = now or datetime.now(UTC)
        result = CleanupResult()

        if branch is not None:
            directories = [namespace_dir(self._storage_path, branch)]
        else:
            directories = self._loader.namespace_dirs()

        for directory in directories:
            if not directory.exists():
                continue
            check_scope(scope, "cleanup")
            located: dict[int, Path] = {}
            records: list[HistoryRecord] = []
            for path in self._loader.unit_paths(directory):
                record = self._loader.load_unit(path)
                if record is None:
                    result.skipped += 1
                    continue
                located[id(record)] = path
                records.append(record)

            expired = select_expired(
                records,
                retention_days=self._config.retention_days,
                max_entries=self._config.max_entries,
                now=now,
            )
            for record in expired:
                check_scope(scope, "cleanup")
                try:
                    located[id(record)].unlink(missing_ok=True)
                except OSError as e:
                    msg = f"Failed to remove history unit {located[id(record)]}: {e}"
                    raise StorageError(msg) from e
            result.removed += len(expired)
            result.kept += len(records) - len(expired)

            if expired and records:
                self._refresh_namespace_metadata(directory, records[0].branch)

        if result.removed:
            logger.info("Removed %d expired history record(s)", result.removed)
        return result
