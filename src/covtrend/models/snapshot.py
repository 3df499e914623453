"""Coverage snapshot data models.

Defines a single coverage measurement and its persisted form.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from covtrend.exceptions import ValidationError

# Allowed drift between a reported percentage and the one implied by counts
PERCENTAGE_TOLERANCE = 0.01


def _percentage_of(covered: int, total: int) -> float:
    return covered / total * 100 if total > 0 else 0.0


def _check_counts(label: str, percentage: float, covered: int, total: int) -> None:
    if covered > total:
        msg = f"{label}: covered statements ({covered}) exceed total statements ({total})"
        raise ValidationError(msg)
    if total > 0:
        expected = _percentage_of(covered, total)
        if abs(expected - percentage) > PERCENTAGE_TOLERANCE:
            msg = (
                f"{label}: percentage {percentage:.2f} does not match "
                f"{covered}/{total} statements ({expected:.2f})"
            )
            raise ValidationError(msg)


class FileCoverage(BaseModel):
    """Coverage of a single source file."""

    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    total_statements: int = Field(default=0, ge=0)
    covered_statements: int = Field(default=0, ge=0)
    total_lines: int = Field(default=0, ge=0)  # 0 when the producer does not report it

    @classmethod
    def from_counts(cls, covered: int, total: int, total_lines: int = 0) -> "FileCoverage":
        return cls(
            percentage=_percentage_of(covered, total),
            total_statements=total,
            covered_statements=covered,
            total_lines=total_lines,
        )


class CoverageSnapshot(BaseModel):
    """One coverage measurement produced by a CI run."""

    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    total_statements: int = Field(default=0, ge=0)
    covered_statements: int = Field(default=0, ge=0)
    branch: str = ""
    commit_sha: str = ""
    commit_url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, str] = Field(default_factory=dict)

    # Per-file coverage, keyed by the path the producer reported
    files: dict[str, FileCoverage] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        """Interpret naive timestamps as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @classmethod
    def from_counts(
        cls,
        covered: int,
        total: int,
        **kwargs: object,
    ) -> "CoverageSnapshot":
        """Build a snapshot whose percentage is derived from statement counts."""
        return cls(
            percentage=_percentage_of(covered, total),
            total_statements=total,
            covered_statements=covered,
            **kwargs,  # type: ignore[arg-type]
        )

    def ensure_valid(self) -> None:
        """Check cross-field invariants.

        A snapshot with zero total statements keeps whatever percentage it
        was given; producers that only report a percentage are allowed.

        Raises:
            ValidationError: If counts and percentage disagree.
        """
        _check_counts("snapshot", self.percentage, self.covered_statements, self.total_statements)
        for filename, file_cov in self.files.items():
            _check_counts(
                filename,
                file_cov.percentage,
                file_cov.covered_statements,
                file_cov.total_statements,
            )


class HistoryRecord(CoverageSnapshot):
    """A snapshot committed to the history store.

    Identity is (branch, commit_sha); the newer timestamp wins on conflict.
    """

    @property
    def key(self) -> tuple[str, str]:
        return (self.branch, self.commit_sha)

    @classmethod
    def from_snapshot(cls, snapshot: CoverageSnapshot) -> "HistoryRecord":
        return cls.model_validate(snapshot.model_dump())


def _precedence(record: HistoryRecord) -> tuple[datetime, str]:
    # Serialized form breaks timestamp ties so the winner never depends on input order
    return (record.timestamp, record.model_dump_json())


def latest_per_key(records: Iterable[HistoryRecord]) -> list[HistoryRecord]:
    """Keep one record per (branch, commit_sha): the one with the newest timestamp.

    Returns:
        Surviving records ordered by timestamp ascending.
    """
    winners: dict[tuple[str, str], HistoryRecord] = {}
    for record in records:
        current = winners.get(record.key)
        if current is None or _precedence(record) > _precedence(current):
            winners[record.key] = record
    return sorted(winners.values(), key=_precedence)


class RecordOptions(BaseModel):
    """Overrides applied when a snapshot is recorded.

    Unset fields fall back to the snapshot's own values, then to store defaults.
    """

    branch: str | None = None
    commit_sha: str | None = None
    commit_url: str | None = None
    timestamp: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
