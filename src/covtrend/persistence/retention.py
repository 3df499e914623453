"""Retention policy for history records.

Selection is pure: the store decides what to delete from the result.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from covtrend.models.snapshot import HistoryRecord


def select_expired(
    records: Iterable[HistoryRecord],
    retention_days: int,
    max_entries: int,
    now: datetime,
) -> list[HistoryRecord]:
    """Select records that fall outside the retention policy.

    A record expires when it is older than retention_days, or when it is not
    among the newest max_entries records of its branch. A non-positive limit
    disables that rule.

    Args:
        records: Records to evaluate; may span several branches.
        retention_days: Maximum record age in days.
        max_entries: Maximum records kept per branch.
        now: Reference time for the age check.

    Returns:
        Expired records, oldest first.
    """
    by_branch: dict[str, list[HistoryRecord]] = defaultdict(list)
    for record in records:
        by_branch[record.branch].append(record)

    cutoff = now - timedelta(days=retention_days) if retention_days > 0 else None

    expired: list[HistoryRecord] = []
    for branch_records in by_branch.values():
        branch_records.sort(key=lambda r: r.timestamp, reverse=True)
        for position, record in enumerate(branch_records):
            too_old = cutoff is not None and record.timestamp < cutoff
            over_limit = max_entries > 0 and position >= max_entries
            if too_old or over_limit:
                expired.append(record)

    expired.sort(key=lambda r: r.timestamp)
    return expired
