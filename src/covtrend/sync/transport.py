"""Artifact transports for externally held history.

A transport moves serialized history bundles to and from storage that
outlives a single CI run.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from covtrend.exceptions import SyncError
from covtrend.sync.models import ArtifactIndex, ArtifactInfo

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "coverage-history"
SHORT_SHA_LENGTH = 7
MAX_PR_NUMBER_DIGITS = 6

_MERGE_REF = re.compile(r"^(\d+)/merge$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_DEFAULT_BRANCHES = frozenset({"main", "master"})


class ArtifactTransport(Protocol):
    """Storage for history bundles shared between CI runs.

    Implementations raise SyncError for any transport failure.
    """

    def list_artifacts(self, branch: str | None = None) -> list[ArtifactInfo]:
        """List stored artifacts, optionally only those for one branch."""
        ...

    def download(self, artifact: ArtifactInfo) -> bytes:
        """Fetch an artifact's payload."""
        ...

    def upload(
        self,
        name: str,
        data: bytes,
        *,
        branch: str,
        commit_sha: str | None = None,
        pr_number: str | None = None,
    ) -> ArtifactInfo:
        """Store a payload under `name`, replacing any artifact of that name."""
        ...


def normalize_branch_name(branch: str) -> str:
    """Normalize a branch name for use inside artifact names.

    Pull request refs ("23/merge", "pull/23", "pr/23") all map to "pr-23";
    anything else has unsafe characters replaced with dashes.
    """
    if not branch:
        return "unknown"

    match = _MERGE_REF.match(branch)
    if match:
        return f"pr-{match.group(1)}"

    parts = branch.split("/")
    if parts[0] in ("pull", "pr") and len(parts) >= 2 and parts[1].isdigit():
        return f"pr-{parts[1]}"

    if "pull-request" in branch:
        for part in branch.split("-"):
            if part.isdigit() and len(part) <= MAX_PR_NUMBER_DIGITS:
                return f"pr-{part}"

    sanitized = _UNSAFE_CHARS.sub("-", branch).strip("-")
    return sanitized or "unknown"


def generate_artifact_name(
    branch: str,
    commit_sha: str | None = None,
    pr_number: str | None = None,
    now: datetime | None = None,
) -> str:
    """Build the artifact name a bundle is published under.

    Pull request artifacts have a stable name so each run replaces the
    previous one; branch artifacts are timestamped.
    """
    if pr_number:
        return f"{ARTIFACT_PREFIX}-pr-{pr_number}"

    timestamp = int((now or datetime.now(UTC)).timestamp())
    if not branch:
        return f"{ARTIFACT_PREFIX}-{timestamp}"

    normalized = normalize_branch_name(branch)
    if commit_sha:
        return f"{ARTIFACT_PREFIX}-{normalized}-{commit_sha[:SHORT_SHA_LENGTH]}-{timestamp}"
    if branch in _DEFAULT_BRANCHES:
        return f"{ARTIFACT_PREFIX}-{normalized}-latest"
    return f"{ARTIFACT_PREFIX}-{normalized}-{timestamp}"


class DirectoryTransport:
    """Artifact transport backed by a local or mounted directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the directory transport.

        Args:
            root: Directory holding artifacts and their index.
        """
        self._root = root
        self._artifacts_dir = root / "artifacts"
        self._index_path = root / "index.json"

    def _artifact_path(self, name: str) -> Path:
        return self._artifacts_dir / f"{name}.json"

    def _load_index(self) -> ArtifactIndex:
        """Load the artifact index, empty if it doesn't exist."""
        try:
            return ArtifactIndex.model_validate_json(self._index_path.read_bytes())
        except FileNotFoundError:
            return ArtifactIndex()
        except OSError as e:
            msg = f"Failed to read artifact index {self._index_path}: {e}"
            raise SyncError(msg) from e
        except PydanticValidationError as e:
            msg = f"Corrupt artifact index {self._index_path}: {e}"
            raise SyncError(msg) from e

    def _write_atomic(self, target: Path, data: bytes) -> None:
        tmp_path = target.parent / f".{uuid.uuid4().hex}.tmp"
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)

    def list_artifacts(self, branch: str | None = None) -> list[ArtifactInfo]:
        artifacts = self._load_index().artifacts
        if branch is not None:
            artifacts = [a for a in artifacts if a.branch == branch]
        return sorted(artifacts, key=lambda a: a.created_at, reverse=True)

    def download(self, artifact: ArtifactInfo) -> bytes:
        path = self._artifact_path(artifact.name)
        try:
            return path.read_bytes()
        except OSError as e:
            msg = f"Failed to download artifact {artifact.name}: {e}"
            raise SyncError(msg) from e

    def upload(
        self,
        name: str,
        data: bytes,
        *,
        branch: str,
        commit_sha: str | None = None,
        pr_number: str | None = None,
    ) -> ArtifactInfo:
        info = ArtifactInfo(
            artifact_id=uuid.uuid4().hex,
            name=name,
            branch=branch,
            commit_sha=commit_sha,
            pr_number=pr_number,
            created_at=datetime.now(UTC),
            size=len(data),
        )
        try:
            self._artifacts_dir.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self._artifact_path(name), data)

            index = self._load_index()
            index.artifacts = [a for a in index.artifacts if a.name != name]
            index.artifacts.append(info)
            index.last_updated = info.created_at
            self._write_atomic(self._index_path, index.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            msg = f"Failed to upload artifact {name}: {e}"
            raise SyncError(msg) from e

        logger.debug("Uploaded artifact %s (%d bytes) for %s", name, info.size, branch)
        return info
