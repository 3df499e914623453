"""Tests for statistical helpers."""

from datetime import UTC, datetime, timedelta

import pytest

from covtrend.analysis.statistics import (
    clamp_percentage,
    consecutive_changes,
    elapsed_days,
    linear_slope,
    momentum,
    population_stdev,
)


class TestLinearSlope:
    """Tests for linear_slope."""

    def test_perfect_line(self) -> None:
        assert linear_slope([0.0, 1.0, 2.0], [1.0, 3.0, 5.0]) == pytest.approx(2.0)

    def test_single_point_is_zero(self) -> None:
        assert linear_slope([0.0], [50.0]) == 0.0

    def test_identical_x_values_is_zero(self) -> None:
        """An undefined slope is reported as flat."""
        assert linear_slope([1.0, 1.0, 1.0], [10.0, 20.0, 30.0]) == 0.0

    def test_mismatched_lengths_is_zero(self) -> None:
        assert linear_slope([0.0, 1.0], [1.0]) == 0.0


class TestDispersion:
    """Tests for volatility and momentum helpers."""

    def test_population_stdev(self) -> None:
        assert population_stdev([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.0)

    def test_population_stdev_short_series(self) -> None:
        assert population_stdev([]) == 0.0
        assert population_stdev([42.0]) == 0.0

    def test_momentum_is_mean_change(self) -> None:
        """Momentum averages consecutive differences."""
        assert momentum([70.0, 72.0, 75.0, 74.0, 80.0]) == pytest.approx(2.5)

    def test_momentum_short_series(self) -> None:
        assert momentum([70.0]) == 0.0

    def test_consecutive_changes(self) -> None:
        assert consecutive_changes([1.0, 3.0, 2.0]) == [2.0, -1.0]
        assert consecutive_changes([]) == []


class TestHelpers:
    """Tests for clamping and time conversion."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(-5.0, 0.0), (0.0, 0.0), (55.5, 55.5), (100.0, 100.0), (130.0, 100.0)],
    )
    def test_clamp_percentage(self, value: float, expected: float) -> None:
        assert clamp_percentage(value) == expected

    def test_elapsed_days(self) -> None:
        """Elapsed time is measured from the first timestamp."""
        start = datetime(2026, 1, 1, tzinfo=UTC)
        stamps = [start, start + timedelta(hours=12), start + timedelta(days=3)]

        assert elapsed_days(stamps) == pytest.approx([0.0, 0.5, 3.0])

    def test_elapsed_days_empty(self) -> None:
        assert elapsed_days([]) == []
