"""File path canonicalization for matching base and head coverage.

Coverage producers report paths with module or host prefixes, and sometimes
with a leading segment duplicated ("cli/internal/cli/x.go"). Normalization
is best-effort: when a rule is ambiguous the path is left unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import PurePosixPath

_HOST_SEGMENT = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")

# host/owner/repo before the repository-relative part
_HOST_PREFIX_SEGMENTS = 3

SOURCE_EXTENSIONS = frozenset(
    {
        ".c", ".cc", ".cpp", ".cs", ".go", ".h", ".hpp", ".java", ".js", ".jsx",
        ".kt", ".php", ".py", ".rb", ".rs", ".scala", ".swift", ".ts", ".tsx",
    }
)


def _strip_host_prefix(path: str) -> str:
    """Strip "host.tld/owner/repo/" when a file path remains afterwards."""
    parts = path.split("/")
    if len(parts) > _HOST_PREFIX_SEGMENTS and _HOST_SEGMENT.match(parts[0]):
        return "/".join(parts[_HOST_PREFIX_SEGMENTS:])
    return path


def _collapse_repeated_segment(path: str) -> str:
    """Drop a leading directory that reappears later in the path.

    "cli/internal/cli/x.go" becomes "internal/cli/x.go". The file name itself
    is never considered a repetition.
    """
    parts = path.split("/")
    if len(parts) < 3:
        return path
    if parts[0] in parts[1:-1]:
        return "/".join(parts[1:])
    return path


def normalize_path(path: str, module_prefixes: Iterable[str] = ()) -> str:
    """Canonical repository-relative form of a coverage path.

    Args:
        path: Path as reported by the producer.
        module_prefixes: Known module prefixes to strip first.

    Returns:
        The normalized path.
    """
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.lstrip("/")

    for prefix in module_prefixes:
        normalized_prefix = prefix.replace("\\", "/").strip("/") + "/"
        if normalized_prefix != "/" and cleaned.startswith(normalized_prefix):
            cleaned = cleaned[len(normalized_prefix):]
            break
    else:
        cleaned = _strip_host_prefix(cleaned)

    return _collapse_repeated_segment(cleaned)


def is_test_file(path: str) -> bool:
    """Heuristic test-file detection across common ecosystems."""
    name = PurePosixPath(path.replace("\\", "/")).name
    stem = name.split(".", 1)[0]
    return (
        stem.endswith("_test")
        or (stem.startswith("test_") and name.endswith(".py"))
        or ".test." in name
        or ".spec." in name
    )


def is_source_file(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in SOURCE_EXTENSIONS and not is_test_file(path)
