"""Statistical helpers for coverage series.

All functions are pure and take values in chronological order.
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence
from datetime import datetime

SECONDS_PER_DAY = 86400.0


def clamp_percentage(value: float) -> float:
    """Clamp a value to the [0, 100] percentage range."""
    return max(0.0, min(100.0, value))


def elapsed_days(timestamps: Sequence[datetime]) -> list[float]:
    """Days elapsed since the first timestamp, for each timestamp."""
    if not timestamps:
        return []
    origin = timestamps[0]
    return [(t - origin).total_seconds() / SECONDS_PER_DAY for t in timestamps]


def linear_slope(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Least-squares slope of ys against xs.

    Returns 0 when the slope is undefined (fewer than two points or all xs equal).
    """
    n = len(xs)
    if n < 2 or n != len(ys):
        return 0.0

    x_mean = statistics.fmean(xs)
    y_mean = statistics.fmean(ys)
    numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys, strict=True))
    denominator = sum((x - x_mean) ** 2 for x in xs)

    if denominator == 0:
        return 0.0
    return numerator / denominator


def population_stdev(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def consecutive_changes(values: Sequence[float]) -> list[float]:
    """Differences between each value and the one before it."""
    return [b - a for a, b in zip(values[:-1], values[1:], strict=True)]


def momentum(values: Sequence[float]) -> float:
    """Mean change between consecutive values; 0 for fewer than two values."""
    changes = consecutive_changes(values)
    if not changes:
        return 0.0
    return statistics.fmean(changes)
