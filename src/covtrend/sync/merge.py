"""Merging local history with externally held history.

CI runners start from an empty workspace, so history lives in an external
artifact store between runs. Each run merges what it finds there with what it
recorded locally and publishes the result for the next run.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from covtrend.cancellation import check_scope
from covtrend.exceptions import SyncError
from covtrend.models.snapshot import latest_per_key
from covtrend.sync.models import BundleMetadata, HistoryBundle
from covtrend.sync.transport import generate_artifact_name

if TYPE_CHECKING:
    from covtrend.cancellation import CancelScope
    from covtrend.models.config import SyncConfig
    from covtrend.persistence import HistoryStore
    from covtrend.sync.models import ArtifactInfo
    from covtrend.sync.transport import ArtifactTransport

logger = logging.getLogger(__name__)


def merge_histories(
    local: HistoryBundle,
    external: HistoryBundle,
    max_runs: int,
    now: datetime | None = None,
) -> HistoryBundle:
    """Merge two history bundles.

    Records sharing (branch, commit_sha) collapse to the newest one. The
    result keeps at most `max_runs` records, newest first. The record set
    does not depend on argument order, and merging a result again with
    either input leaves it unchanged.

    Args:
        local: History recorded by this run.
        external: History fetched from the artifact store.
        max_runs: Maximum number of records to keep.
        now: Value for the merged bundle's updated_at.

    Returns:
        The merged bundle.
    """
    now = now or datetime.now(UTC)
    records = latest_per_key([*local.records, *external.records])
    records.reverse()
    records = records[:max_runs]

    return HistoryBundle(
        records=records,
        metadata=BundleMetadata(
            created_at=min(local.metadata.created_at, external.metadata.created_at),
            updated_at=now,
            record_count=len(records),
            repository=local.metadata.repository or external.metadata.repository,
        ),
    )


class HistorySynchronizer:
    """Keeps the local store and the artifact store in step."""

    def __init__(
        self,
        store: HistoryStore,
        transport: ArtifactTransport,
        config: SyncConfig,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            store: Local history store.
            transport: External artifact storage.
            config: Merge limits and artifact selection rules.
        """
        self._store = store
        self._transport = transport
        self._config = config

    def _select_artifact(
        self,
        artifacts: list[ArtifactInfo],
        branch: str,
        now: datetime,
    ) -> ArtifactInfo | None:
        """Pick the newest artifact for a branch that is young enough."""
        candidates = [a for a in artifacts if a.branch == branch]
        if self._config.max_age_days:
            max_age = timedelta(days=self._config.max_age_days)
            candidates = [a for a in candidates if now - a.created_at <= max_age]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.created_at)

    def fetch(
        self,
        branch: str,
        now: datetime | None = None,
        *,
        scope: CancelScope | None = None,
    ) -> HistoryBundle:
        """Download the newest usable history bundle for a branch.

        Falls back to the configured fallback branch, then to an empty bundle.
        The scope is checked around each transport call.

        Raises:
            SyncError: If the transport fails or the payload is not a bundle.
            CancellationError: If the scope ends between transport calls.
        """
        now = now or datetime.now(UTC)
        check_scope(scope, "fetch")
        artifacts = self._transport.list_artifacts()
        check_scope(scope, "fetch")

        selected = self._select_artifact(artifacts, branch, now)
        fallback = self._config.fallback_branch
        if selected is None and fallback and fallback != branch:
            selected = self._select_artifact(artifacts, fallback, now)
            if selected is not None:
                logger.info(
                    "No history artifact for %s; using %s from %s", branch, selected.name, fallback
                )

        if selected is None:
            logger.info("No history artifact found for %s; starting fresh", branch)
            return HistoryBundle()

        data = self._transport.download(selected)
        check_scope(scope, "fetch")
        try:
            bundle = HistoryBundle.model_validate_json(data)
        except PydanticValidationError as e:
            msg = f"Artifact {selected.name} is not a valid history bundle: {e}"
            raise SyncError(msg) from e

        logger.debug("Fetched %d record(s) from %s", len(bundle.records), selected.name)
        return bundle

    def publish(
        self,
        bundle: HistoryBundle,
        branch: str,
        commit_sha: str | None = None,
        pr_number: str | None = None,
        *,
        scope: CancelScope | None = None,
    ) -> ArtifactInfo:
        """Upload a bundle for later runs to fetch.

        Raises:
            SyncError: If the transport fails.
            CancellationError: If the scope has ended before the upload.
        """
        name = generate_artifact_name(branch, commit_sha, pr_number)
        data = bundle.model_dump_json(indent=2).encode("utf-8")
        check_scope(scope, "publish")
        return self._transport.upload(
            name,
            data,
            branch=branch,
            commit_sha=commit_sha,
            pr_number=pr_number,
        )

    def local_bundle(self, branch: str, *, scope: CancelScope | None = None) -> HistoryBundle:
        """Bundle a branch's locally stored records, newest first."""
        records = self._store.query(branch, scope=scope).to_list()
        records.reverse()
        metadata = BundleMetadata(record_count=len(records))
        if records:
            metadata.created_at = records[-1].timestamp
        return HistoryBundle(records=records, metadata=metadata)

    def sync(
        self,
        branch: str,
        commit_sha: str | None = None,
        pr_number: str | None = None,
        *,
        scope: CancelScope | None = None,
    ) -> HistoryBundle:
        """Merge local and external history, import the result, and publish it.

        Transport failures are logged and never undo local state.
        Cancellation propagates; records imported before it stay imported.

        Returns:
            The merged bundle.
        """
        local = self.local_bundle(branch, scope=scope)

        try:
            external = self.fetch(branch, scope=scope)
        except SyncError as e:
            logger.warning("Failed to fetch external history for %s: %s", branch, e)
            external = HistoryBundle()

        check_scope(scope, "sync")
        merged = merge_histories(local, external, self._config.max_runs)
        imported = self._store.import_records(merged.records, scope=scope)
        logger.info(
            "Merged %d local and %d external record(s) into %d; imported %d",
            len(local.records),
            len(external.records),
            len(merged.records),
            imported,
        )

        try:
            self.publish(merged, branch, commit_sha, pr_number, scope=scope)
        except SyncError as e:
            logger.warning("Failed to publish history for %s: %s", branch, e)

        return merged
