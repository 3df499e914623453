"""Tests for history merging and synchronization."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from covtrend.cancellation import CancelScope
from covtrend.exceptions import CancellationError, SyncError
from covtrend.models import HistoryConfig, HistoryRecord, SyncConfig
from covtrend.persistence import HistoryStore
from covtrend.sync import (
    ArtifactInfo,
    BundleMetadata,
    DirectoryTransport,
    HistoryBundle,
    HistorySynchronizer,
    generate_artifact_name,
    merge_histories,
    normalize_branch_name,
)


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@pytest.fixture
def store(tmp_path: Path) -> HistoryStore:
    """Create a history store in a temporary directory."""
    return HistoryStore(HistoryConfig(storage_path=str(tmp_path / "history")))


@pytest.fixture
def transport(tmp_path: Path) -> DirectoryTransport:
    """Create a directory transport in a temporary directory."""
    return DirectoryTransport(tmp_path / "artifacts")


def _record(
    commit: str,
    timestamp: datetime,
    branch: str = "main",
    pct: float = 70.0,
) -> HistoryRecord:
    return HistoryRecord(percentage=pct, branch=branch, commit_sha=commit, timestamp=timestamp)


def _bundle(*records: HistoryRecord) -> HistoryBundle:
    return HistoryBundle(records=list(records))


def _record_set(bundle: HistoryBundle) -> set[tuple[str, str, datetime, float]]:
    return {(r.branch, r.commit_sha, r.timestamp, r.percentage) for r in bundle.records}


class TestMergeHistories:
    """Tests for merge_histories."""

    def test_newer_record_wins(self, now: datetime) -> None:
        """The local copy of A is newer; B exists only externally."""
        t0, t1, t2 = now - timedelta(hours=3), now - timedelta(hours=2), now - timedelta(hours=1)
        local = _bundle(_record("A", t1, pct=71.0))
        external = _bundle(_record("A", t0, pct=60.0), _record("B", t2))

        merged = merge_histories(local, external, max_runs=100)

        assert [(r.commit_sha, r.timestamp) for r in merged.records] == [("B", t2), ("A", t1)]
        assert merged.records[1].percentage == 71.0
        assert merged.metadata.record_count == 2

    def test_is_commutative(self, now: datetime) -> None:
        a = _bundle(_record("A", now), _record("B", now - timedelta(days=1), pct=50.0))
        b = _bundle(_record("B", now, pct=55.0), _record("C", now - timedelta(days=2)))

        assert _record_set(merge_histories(a, b, 100)) == _record_set(merge_histories(b, a, 100))

    def test_tie_is_commutative(self, now: datetime) -> None:
        """Same key and timestamp resolve identically in either order."""
        a = _bundle(_record("A", now, pct=60.0))
        b = _bundle(_record("A", now, pct=61.0))

        assert _record_set(merge_histories(a, b, 100)) == _record_set(merge_histories(b, a, 100))

    def test_is_idempotent(self, now: datetime) -> None:
        a = _bundle(*(_record(f"a{i}", now - timedelta(hours=i)) for i in range(6)))
        b = _bundle(*(_record(f"b{i}", now - timedelta(hours=i, minutes=30)) for i in range(6)))

        merged = merge_histories(a, b, max_runs=5)

        assert _record_set(merge_histories(merged, a, 5)) == _record_set(merged)
        assert _record_set(merge_histories(merged, merged, 5)) == _record_set(merged)

    def test_truncates_to_newest(self, now: datetime) -> None:
        local = _bundle(*(_record(f"c{i}", now - timedelta(days=i)) for i in range(10)))

        merged = merge_histories(local, HistoryBundle(), max_runs=3)

        assert [r.commit_sha for r in merged.records] == ["c0", "c1", "c2"]
        assert merged.metadata.record_count == 3

    def test_keys_include_branch(self, now: datetime) -> None:
        """The same commit on two branches is two records."""
        local = _bundle(_record("A", now, branch="main"))
        external = _bundle(_record("A", now, branch="dev"))

        assert len(merge_histories(local, external, 100).records) == 2

    def test_metadata(self, now: datetime) -> None:
        early = now - timedelta(days=30)
        local = HistoryBundle(metadata=BundleMetadata(created_at=now, repository="acme/widgets"))
        external = HistoryBundle(metadata=BundleMetadata(created_at=early))

        merged = merge_histories(local, external, 100, now=now)

        assert merged.metadata.created_at == early
        assert merged.metadata.updated_at == now
        assert merged.metadata.repository == "acme/widgets"

    def test_empty_inputs(self) -> None:
        merged = merge_histories(HistoryBundle(), HistoryBundle(), 10)
        assert merged.records == []
        assert merged.metadata.record_count == 0


class TestArtifactNames:
    """Tests for artifact naming."""

    @pytest.mark.parametrize(
        ("branch", "expected"),
        [
            ("23/merge", "pr-23"),
            ("pull/42", "pr-42"),
            ("pr/7", "pr-7"),
            ("feature/pull-request-123", "pr-123"),
            ("feature/new thing", "feature-new-thing"),
            ("main", "main"),
            ("", "unknown"),
            ("///", "unknown"),
        ],
    )
    def test_normalize_branch_name(self, branch: str, expected: str) -> None:
        assert normalize_branch_name(branch) == expected

    def test_pull_request_name_is_stable(self) -> None:
        assert generate_artifact_name("feature/x", "abc", "12") == "coverage-history-pr-12"

    def test_branch_name_with_commit(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        name = generate_artifact_name("feature/x", "0123456789abcdef", now=now)
        assert name == f"coverage-history-feature-x-0123456-{int(now.timestamp())}"

    def test_default_branch_without_commit(self) -> None:
        assert generate_artifact_name("main") == "coverage-history-main-latest"

    def test_branch_without_commit(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        name = generate_artifact_name("dev", now=now)
        assert name == f"coverage-history-dev-{int(now.timestamp())}"


class TestDirectoryTransport:
    """Tests for DirectoryTransport."""

    def test_upload_then_download(self, transport: DirectoryTransport) -> None:
        info = transport.upload("bundle-1", b'{"records": []}', branch="main", commit_sha="abc")

        assert info.size == len(b'{"records": []}')
        assert transport.list_artifacts("main") == [info]
        assert transport.download(info) == b'{"records": []}'

    def test_list_filters_by_branch(self, transport: DirectoryTransport) -> None:
        transport.upload("one", b"{}", branch="main")
        transport.upload("two", b"{}", branch="dev")

        assert [a.name for a in transport.list_artifacts("dev")] == ["two"]
        assert {a.name for a in transport.list_artifacts()} == {"one", "two"}

    def test_upload_replaces_same_name(self, transport: DirectoryTransport) -> None:
        transport.upload("pr", b"old", branch="pr-1")
        info = transport.upload("pr", b"new", branch="pr-1")

        assert transport.list_artifacts() == [info]
        assert transport.download(info) == b"new"

    def test_empty_listing(self, transport: DirectoryTransport) -> None:
        assert transport.list_artifacts() == []

    def test_download_missing_raises(self, transport: DirectoryTransport, now: datetime) -> None:
        ghost = ArtifactInfo(artifact_id="x", name="ghost", branch="main", created_at=now)

        with pytest.raises(SyncError):
            transport.download(ghost)

    def test_corrupt_index_raises(self, tmp_path: Path) -> None:
        root = tmp_path / "artifacts"
        root.mkdir()
        (root / "index.json").write_text("nope")

        with pytest.raises(SyncError):
            DirectoryTransport(root).list_artifacts()


class TestHistorySynchronizer:
    """Tests for HistorySynchronizer."""

    def _publish(
        self,
        transport: DirectoryTransport,
        branch: str,
        *records: HistoryRecord,
    ) -> None:
        data = _bundle(*records).model_dump_json().encode("utf-8")
        transport.upload(f"history-{branch}", data, branch=branch)

    def test_fetch_branch_artifact(
        self,
        store: HistoryStore,
        transport: DirectoryTransport,
        now: datetime,
    ) -> None:
        self._publish(transport, "dev", _record("A", now, branch="dev"))
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        bundle = synchronizer.fetch("dev")

        assert [r.commit_sha for r in bundle.records] == ["A"]

    def test_fetch_falls_back_to_default_branch(
        self,
        store: HistoryStore,
        transport: DirectoryTransport,
        now: datetime,
    ) -> None:
        """A new branch starts from the fallback branch's history."""
        self._publish(transport, "main", _record("M", now))
        synchronizer = HistorySynchronizer(store, transport, SyncConfig(fallback_branch="main"))

        bundle = synchronizer.fetch("feature/new")

        assert [r.commit_sha for r in bundle.records] == ["M"]

    def test_fetch_without_artifacts_is_empty(
        self,
        store: HistoryStore,
        transport: DirectoryTransport,
    ) -> None:
        synchronizer = HistorySynchronizer(store, transport, SyncConfig(fallback_branch=None))

        assert synchronizer.fetch("dev").records == []

    def test_fetch_ignores_stale_artifacts(self, store: HistoryStore, now: datetime) -> None:
        """Artifacts older than max_age_days are not used."""
        stale = ArtifactInfo(
            artifact_id="1",
            name="old",
            branch="dev",
            created_at=now - timedelta(days=10),
        )
        transport = MagicMock()
        transport.list_artifacts.return_value = [stale]
        synchronizer = HistorySynchronizer(
            store, transport, SyncConfig(max_age_days=7, fallback_branch=None)
        )

        assert synchronizer.fetch("dev", now=now).records == []
        transport.download.assert_not_called()

    def test_fetch_picks_newest_artifact(self, store: HistoryStore, now: datetime) -> None:
        older = ArtifactInfo(
            artifact_id="1", name="a", branch="dev", created_at=now - timedelta(days=2)
        )
        newer = ArtifactInfo(
            artifact_id="2", name="b", branch="dev", created_at=now - timedelta(days=1)
        )
        transport = MagicMock()
        transport.list_artifacts.return_value = [older, newer]
        transport.download.return_value = b'{"records": []}'
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        synchronizer.fetch("dev", now=now)

        transport.download.assert_called_once_with(newer)

    def test_fetch_invalid_payload_raises(self, store: HistoryStore, now: datetime) -> None:
        transport = MagicMock()
        transport.list_artifacts.return_value = [
            ArtifactInfo(artifact_id="1", name="a", branch="dev", created_at=now)
        ]
        transport.download.return_value = b"not a bundle"
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        with pytest.raises(SyncError):
            synchronizer.fetch("dev", now=now)

    def test_sync_merges_imports_and_publishes(
        self,
        store: HistoryStore,
        transport: DirectoryTransport,
        now: datetime,
    ) -> None:
        store.import_records([_record("local", now)])
        self._publish(transport, "main", _record("remote", now - timedelta(hours=1)))
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        merged = synchronizer.sync("main", commit_sha="abcdef1234")

        assert [r.commit_sha for r in merged.records] == ["local", "remote"]
        assert [r.commit_sha for r in store.query("main")] == ["remote", "local"]
        published = [a for a in transport.list_artifacts("main") if a.commit_sha == "abcdef1234"]
        assert len(published) == 1
        assert HistoryBundle.model_validate_json(transport.download(published[0])) == merged

    def test_sync_survives_transport_failures(
        self,
        store: HistoryStore,
        now: datetime,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Fetch and publish failures are logged; local history is untouched."""
        store.import_records([_record("local", now)])
        transport = MagicMock()
        transport.list_artifacts.side_effect = SyncError("artifact service down")
        transport.upload.side_effect = SyncError("artifact service down")
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        with caplog.at_level("WARNING"):
            merged = synchronizer.sync("main")

        assert [r.commit_sha for r in merged.records] == ["local"]
        assert [r.commit_sha for r in store.query("main")] == ["local"]
        assert "Failed to fetch external history" in caplog.text
        assert "Failed to publish history" in caplog.text

    def test_cancelled_sync_never_reaches_transport(
        self,
        store: HistoryStore,
        now: datetime,
    ) -> None:
        store.import_records([_record("local", now)])
        transport = MagicMock()
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())
        scope = CancelScope()
        scope.cancel()

        with pytest.raises(CancellationError):
            synchronizer.sync("main", scope=scope)

        transport.list_artifacts.assert_not_called()
        transport.upload.assert_not_called()

    def test_cancel_during_download_stops_before_import(
        self,
        store: HistoryStore,
        now: datetime,
    ) -> None:
        """A scope ending while the transport downloads prevents import and publish."""
        scope = CancelScope()
        payload = _bundle(_record("remote", now)).model_dump_json().encode("utf-8")

        def download(artifact: ArtifactInfo) -> bytes:
            scope.cancel()
            return payload

        transport = MagicMock()
        transport.list_artifacts.return_value = [
            ArtifactInfo(artifact_id="1", name="a", branch="main", created_at=now)
        ]
        transport.download.side_effect = download
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        with pytest.raises(CancellationError, match="fetch cancelled"):
            synchronizer.sync("main", scope=scope)

        assert store.query("main").to_list() == []
        transport.upload.assert_not_called()

    def test_publish_checks_scope_before_upload(self, store: HistoryStore) -> None:
        transport = MagicMock()
        synchronizer = HistorySynchronizer(store, transport, SyncConfig())

        with pytest.raises(CancellationError, match="publish timed out"):
            synchronizer.publish(HistoryBundle(), "main", scope=CancelScope(timeout=0))

        transport.upload.assert_not_called()
