"""Trend analysis for coverage history.

Summarizes a branch's recent records and forecasts where coverage is heading.
"""

from __future__ import annotations

import statistics
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from covtrend.analysis.models import (
    ChangeDirection,
    ChangeStatus,
    DateRange,
    PeriodAnalysis,
    Prediction,
    PredictionPoint,
    PredictionRange,
    ShortTermTrend,
    TrendAnalysis,
    TrendDirection,
    TrendReport,
    TrendSummary,
)
from covtrend.analysis.statistics import (
    clamp_percentage,
    consecutive_changes,
    elapsed_days,
    linear_slope,
    momentum,
    population_stdev,
)
from covtrend.exceptions import NotFoundError, ValidationError
from covtrend.models.snapshot import latest_per_key

# Constants for trend analysis
MIN_DATA_POINTS_FOR_PREDICTION = 3
TREND_DEAD_BAND = 0.5  # percentage points across the window
CHANGE_STATUS_THRESHOLD = 0.1
CONFIDENCE_VOLATILITY_PENALTY = 10.0
CONFIDENCE_SPARSE_PENALTY = 5.0
CONFIDENCE_FULL_DATA_POINTS = 10
DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30
PERIOD_CHANGE_THRESHOLD = 0.1
SHORT_TERM_DAYS = 7
MEDIUM_TERM_DAYS = 30
LONG_TERM_DAYS = 90

if TYPE_CHECKING:
    from covtrend.cancellation import CancelScope
    from covtrend.models.snapshot import HistoryRecord
    from covtrend.persistence import HistoryStore


class TrendAnalyzer:
    """Analyzes coverage trends over a branch's history."""

    def __init__(self, store: HistoryStore) -> None:
        """Initialize the trend analyzer.

        Args:
            store: History store to read records from.
        """
        self._store = store

    def get_trend(
        self,
        branch: str,
        days: float = 30,
        *,
        max_data_points: int | None = None,
        scope: CancelScope | None = None,
    ) -> TrendReport:
        """Analyze a branch's records within the last `days` days.

        An empty window is a valid result, not an error. Store errors
        propagate unchanged. The 7, 30 and 90 day period analyses always
        look back their full length, independent of `days`.

        Args:
            branch: Branch to analyze.
            days: Window length in days.
            max_data_points: Keep only the newest records of the window.
            scope: Optional cancellation scope.

        Returns:
            Summary statistics and trend analysis for the window.

        Raises:
            ValidationError: If max_data_points is smaller than 1.
        """
        if max_data_points is not None and max_data_points < 1:
            msg = f"max_data_points must be at least 1, got {max_data_points}"
            raise ValidationError(msg)

        now = datetime.now(UTC)
        # A re-recorded commit supersedes its earlier measurement
        history = latest_per_key(
            self._store.query(branch, max(days, LONG_TERM_DAYS), scope=scope)
        )
        cutoff = now - timedelta(days=days)
        entries = [e for e in history if e.timestamp >= cutoff]
        if max_data_points is not None:
            entries = entries[-max_data_points:]

        analysis = self._analyze_entries(entries, days)
        analysis.short_term = self._analyze_period(history, SHORT_TERM_DAYS, now)
        analysis.medium_term = self._analyze_period(history, MEDIUM_TERM_DAYS, now)
        analysis.long_term = self._analyze_period(history, LONG_TERM_DAYS, now)

        return TrendReport(
            branch=branch,
            days=days,
            entries=entries,
            summary=self._calculate_summary(entries),
            analysis=analysis,
        )

    def change_status(self, branch: str, current_percentage: float) -> ChangeStatus:
        """Compare a fresh measurement with the branch's latest record.

        Args:
            branch: Branch whose history provides the baseline.
            current_percentage: The new measurement.

        Returns:
            Direction of the change; stable without a baseline.
        """
        try:
            latest = self._store.get_latest_entry(branch)
        except NotFoundError:
            return ChangeStatus()

        diff = current_percentage - latest.percentage
        direction = ChangeDirection.STABLE
        if diff > CHANGE_STATUS_THRESHOLD:
            direction = ChangeDirection.IMPROVED
        elif diff < -CHANGE_STATUS_THRESHOLD:
            direction = ChangeDirection.DECLINED

        return ChangeStatus(
            direction=direction,
            previous_percentage=latest.percentage,
            baseline_available=True,
        )

    def _calculate_summary(self, entries: list[HistoryRecord]) -> TrendSummary:
        if not entries:
            return TrendSummary()

        values = [e.percentage for e in entries]
        current_trend = TrendDirection.STABLE
        if len(values) >= 2:
            current_trend = self._direction_of(values[-1] - values[-2])

        return TrendSummary(
            total_entries=len(entries),
            average_percentage=statistics.fmean(values),
            min_percentage=min(values),
            max_percentage=max(values),
            current_trend=current_trend,
            date_range=DateRange(start=entries[0].timestamp, end=entries[-1].timestamp),
        )

    def _analyze_entries(self, entries: list[HistoryRecord], days: float) -> TrendAnalysis:
        if not entries:
            return TrendAnalysis()

        values = [e.percentage for e in entries]
        xs = elapsed_days([e.timestamp for e in entries])
        slope = linear_slope(xs, values)
        volatility = population_stdev(values)

        analysis = TrendAnalysis(
            volatility=volatility,
            momentum=momentum(values),
            short_term_trend=self._short_term_trend(values, slope, days),
        )

        if len(entries) >= MIN_DATA_POINTS_FOR_PREDICTION:
            analysis.prediction = self._generate_prediction(values[-1], slope, volatility)
            analysis.confidence = self._calculate_confidence(volatility, len(entries))

        return analysis

    def _analyze_period(
        self,
        history: list[HistoryRecord],
        period_days: int,
        now: datetime,
    ) -> PeriodAnalysis:
        """Compare the first and last record of a trailing period."""
        cutoff = now - timedelta(days=period_days)
        period = [e for e in history if e.timestamp >= cutoff]
        if len(period) < 2:
            return PeriodAnalysis(period_days=period_days, data_points=len(period))

        start = period[0].percentage
        end = period[-1].percentage
        change = end - start
        direction = TrendDirection.STABLE
        if change > PERIOD_CHANGE_THRESHOLD:
            direction = TrendDirection.UP
        elif change < -PERIOD_CHANGE_THRESHOLD:
            direction = TrendDirection.DOWN

        return PeriodAnalysis(
            period_days=period_days,
            start_coverage=start,
            end_coverage=end,
            change=change,
            change_percent=change / start * 100 if start > 0 else 0.0,
            direction=direction,
            data_points=len(period),
        )

    def _short_term_trend(
self, values: list[float], slope: float, days: float) -> ShortTermTrend:
        """Classify the fitted slope, with a dead-band against noise.

        A strictly monotone series always reports its direction, however
        small the steps.
        """
        change = slope * days
        changes = consecutive_changes(values)

        if changes and all(c > 0 for c in changes):
            direction = TrendDirection.UP
        elif changes and all(c < 0 for c in changes):
            direction = TrendDirection.DOWN
        elif abs(change) < TREND_DEAD_BAND:
            direction = TrendDirection.STABLE
        else:
            direction = self._direction_of(slope)

        return ShortTermTrend(direction=direction, change_percent=change, slope=slope)

    def _generate_prediction(self, last: float, slope: float, volatility: float) -> Prediction:
        now = datetime.now(UTC)
        return Prediction(
            next_week=self._prediction_point(last, slope, volatility, now, DAYS_PER_WEEK),
            next_month=self._prediction_point(last, slope, volatility, now, DAYS_PER_MONTH),
        )

    def _prediction_point(
        self,
        last: float,
        slope: float,
        volatility: float,
        now: datetime,
        horizon_days: int,
    ) -> PredictionPoint:
        percentage = clamp_percentage(last + slope * horizon_days)
        return PredictionPoint(
            percentage=percentage,
            date=now + timedelta(days=horizon_days),
            range=PredictionRange(
                min=clamp_percentage(percentage - volatility),
                max=clamp_percentage(percentage + volatility),
            ),
        )

    def _calculate_confidence(self, volatility: float, data_points: int) -> float:
        """Confidence decays with volatility and with sparse history."""
        missing = max(0, CONFIDENCE_FULL_DATA_POINTS - data_points)
        confidence = (
            100.0
            - volatility * CONFIDENCE_VOLATILITY_PENALTY
            - missing * CONFIDENCE_SPARSE_PENALTY
        )
        return clamp_percentage(confidence)

    @staticmethod
    def _direction_of(delta: float) -> TrendDirection:
        if delta > 0:
            return TrendDirection.UP
        if delta < 0:
            return TrendDirection.DOWN
        return TrendDirection.STABLE
