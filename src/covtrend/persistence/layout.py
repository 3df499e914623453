"""On-disk layout of the history store.

storage_path/
    branches/
        <slug>--<branch hash>/
            _namespace.json
            <timestamp>-<sha8>-<digest>.json   (one unit per record)
"""

import hashlib
import re
from datetime import UTC
from pathlib import Path

from covtrend.models.snapshot import HistoryRecord

BRANCHES_DIR = "branches"
NAMESPACE_METADATA_FILE = "_namespace.json"
UNIT_GLOB = "[0-9]*.json"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_MAX_SLUG_LENGTH = 60


def namespace_name(branch: str) -> str:
    """Directory name for a branch.

    The readable slug alone can collide ("a/b" and "a-b"), so a hash of the
    exact branch name is appended.
    """
    slug = _UNSAFE_CHARS.sub("-", branch).strip(".-")[:_MAX_SLUG_LENGTH] or "branch"
    digest = hashlib.sha1(branch.encode("utf-8")).hexdigest()[:10]  # noqa: S324
    return f"{slug}--{digest}"


def record_digest(record: HistoryRecord) -> str:
    """Content address of a record's identity and time."""
    material = "\0".join(
        [record.branch, record.commit_sha, record.timestamp.astimezone(UTC).isoformat()]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


def unit_filename(record: HistoryRecord) -> str:
    """Deterministic unit name; sorts lexicographically by timestamp."""
    timestamp = record.timestamp.astimezone(UTC).strftime(TIMESTAMP_FORMAT)
    short_sha = _UNSAFE_CHARS.sub("-", record.commit_sha[:8]) or "nocommit"
    return f"{timestamp}-{short_sha}-{record_digest(record)}.json"


def namespace_dir(storage_path: Path, branch: str) -> Path:
    return storage_path / BRANCHES_DIR / namespace_name(branch)
