"""Custom exception hierarchy for covtrend.

All exceptions inherit from CovTrendError for easy catching at the top level.
Components raise these to their callers and never retry internally.
"""


class CovTrendError(Exception):
    """Base exception for all covtrend errors."""


class ConfigurationError(CovTrendError):
    """Configuration-related errors."""


class NotFoundError(CovTrendError):
    """Requested record or branch has no history."""


class StorageError(CovTrendError):
    """I/O failure creating, reading, or writing a history unit."""


class ValidationError(CovTrendError):
    """Malformed snapshot rejected before persistence."""


class CancellationError(CovTrendError):
    """Operation was cancelled or its deadline expired."""


class SyncError(CovTrendError):
    """Failure talking to the external history transport."""
