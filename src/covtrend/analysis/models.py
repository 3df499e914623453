"""Analysis data models."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from covtrend.models.snapshot import HistoryRecord


class TrendDirection(str, Enum):
    """Direction of a coverage trend."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class ChangeDirection(str, Enum):
    """Direction of a single measurement against the last recorded one."""

    IMPROVED = "improved"
    DECLINED = "declined"
    STABLE = "stable"


class DateRange(BaseModel):
    """Time span covered by a window of records."""

    start: datetime
    end: datetime


class TrendSummary(BaseModel):
    """Descriptive statistics over a window of records."""

    total_entries: int = 0
    average_percentage: float = 0.0
    min_percentage: float = 0.0
    max_percentage: float = 0.0
    current_trend: TrendDirection = TrendDirection.STABLE
    date_range: DateRange | None = None


class ShortTermTrend(BaseModel):
    """Least-squares trend across the analysis window."""

    direction: TrendDirection = TrendDirection.STABLE
    change_percent: float = 0.0
    slope: float = 0.0  # percentage points per day


class PeriodAnalysis(BaseModel):
    """Start-to-end change over a trailing period of fixed length."""

    period_days: int
    start_coverage: float = 0.0
    end_coverage: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0  # relative to start_coverage
    direction: TrendDirection = TrendDirection.STABLE
    data_points: int = 0


class PredictionRange(BaseModel):
    """Confidence band around a predicted percentage."""

    min: float
    max: float


class PredictionPoint(BaseModel):
    """Predicted coverage at a future date."""

    percentage: float = Field(ge=0.0, le=100.0)
    date: datetime
    range: PredictionRange


class Prediction(BaseModel):
    """Linear forecast of coverage."""

    next_week: PredictionPoint
    next_month: PredictionPoint
    model: str = "linear_trend"


class TrendAnalysis(BaseModel):
    """Volatility, momentum and forecast over a window of records."""

    volatility: float = Field(default=0.0, ge=0.0)
    momentum: float = 0.0
    short_term_trend: ShortTermTrend = Field(default_factory=ShortTermTrend)
    short_term: PeriodAnalysis = Field(default_factory=lambda: PeriodAnalysis(period_days=7))
    medium_term: PeriodAnalysis = Field(default_factory=lambda: PeriodAnalysis(period_days=30))
    long_term: PeriodAnalysis = Field(default_factory=lambda: PeriodAnalysis(period_days=90))
    prediction: Prediction | None = None  # None when there is not enough data
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)


class TrendReport(BaseModel):
    """Complete trend result for one branch."""

    branch: str
    days: float
    entries: list[HistoryRecord] = Field(default_factory=list)
    summary: TrendSummary = Field(default_factory=TrendSummary)
    analysis: TrendAnalysis = Field(default_factory=TrendAnalysis)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChangeStatus(BaseModel):
    """A fresh measurement compared against the branch's latest record."""

    direction: ChangeDirection = ChangeDirection.STABLE
    previous_percentage: float | None = None
    baseline_available: bool = False
