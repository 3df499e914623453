"""Configuration data models.

Each component receives one of these at construction, so several
independently configured instances can live in the same process.
"""

from pydantic import BaseModel, Field


class HistoryConfig(BaseModel):
    """Configuration for the durable history store."""

    storage_path: str = "coverage/history"
    retention_days: int = Field(default=90, ge=0)  # 0 disables age-based cleanup
    max_entries: int = Field(default=1000, ge=0)  # per branch; 0 disables
    auto_cleanup: bool = True
    default_branch: str = Field(default="main", min_length=1)


class SyncConfig(BaseModel):
    """Configuration for merging with externally held history."""

    max_runs: int = Field(default=100, ge=1)
    max_age_days: float = Field(default=7.0, ge=0)  # 0 accepts artifacts of any age
    fallback_branch: str | None = "main"


class ComparisonConfig(BaseModel):
    """Configuration for the comparison engine."""

    significant_threshold: float = Field(default=5.0, ge=0.0)
    acceptable_threshold: float = Field(default=75.0, ge=0.0, le=100.0)
    max_significant_files: int = Field(default=20, ge=0)
    ignore_test_files: bool = False
    # Module prefixes stripped before matching, e.g. "github.com/acme/widgets/"
    module_prefixes: list[str] = Field(default_factory=list)
