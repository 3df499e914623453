"""Analysis module for coverage statistics and trend forecasting."""

from covtrend.analysis.models import (
    ChangeDirection,
    ChangeStatus,
    PeriodAnalysis,
    Prediction,
    PredictionPoint,
    ShortTermTrend,
    TrendAnalysis,
    TrendDirection,
    TrendReport,
    TrendSummary,
)
from covtrend.analysis.trends import TrendAnalyzer

__all__ = [
    "ChangeDirection",
    "ChangeStatus",
    "PeriodAnalysis",
    "Prediction",
    "PredictionPoint",
    "ShortTermTrend",
    "TrendAnalysis",
    "TrendAnalyzer",
    "TrendDirection",
    "TrendReport",
    "TrendSummary",
]
