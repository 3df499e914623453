"""Persistence module for storing and retrieving coverage history."""

from covtrend.persistence.loader import RecordLoader, RecordQuery
from covtrend.persistence.models import CleanupResult, NamespaceMetadata, StoreStatistics
from covtrend.persistence.retention import select_expired
from covtrend.persistence.storage import HistoryStore

__all__ = [
    "CleanupResult",
    "HistoryStore",
    "NamespaceMetadata",
    "RecordLoader",
    "RecordQuery",
    "StoreStatistics",
    "select_expired",
]
