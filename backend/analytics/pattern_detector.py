"""
Module: pattern_detector.py
Description: Trend and weekly-seasonality signals over an aggregated series.

Method:
    - Trend: least-squares slope of amount vs. day offset, relative to
      the mean amount. Short series (< 14 points) never report a trend.
    - Seasonality: residuals after removing the linear trend are grouped
      by weekday. A pattern is reported when the spread of weekday means
      is a large enough share of the overall mean AND the between-group
      variance dominates the within-group variance.

Both checks also expose a continuous score (signal / threshold) that
the model selector uses to recognize borderline cases.

Author: Budget Analytics Team
Created: 2025-02-10
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from config import AnalyticsSettings, get_settings
from schemas import PatternSignals, TimeSeriesPoint
from analytics.time_series import amounts, day_offsets


MIN_POINTS_FOR_PATTERNS = 14


def fit_line(x: np.ndarray, y: np.ndarray) -> LinearRegression:
    """Fit y = a + b*x with scikit-learn."""
    reg = LinearRegression()
    reg.fit(x.reshape(-1, 1), y)
    return reg


class PatternDetector:
    """Pure predicates over a series; thresholds come from settings."""

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()

    def detect_trend(self, series: Sequence[TimeSeriesPoint]) -> bool:
        return self.trend_score(series)[0] > 1.0

    def detect_seasonality(self, series: Sequence[TimeSeriesPoint]) -> bool:
        return self.seasonality_score(series) > 1.0

    def analyze(self, series: Sequence[TimeSeriesPoint]) -> PatternSignals:
        trend_score, slope, mean = self.trend_score(series)
        seasonality_score = self.seasonality_score(series)
        return PatternSignals(
            has_trend=trend_score > 1.0,
            has_seasonality=seasonality_score > 1.0,
            trend_score=round(trend_score, 4),
            seasonality_score=round(seasonality_score, 4),
            slope=round(slope, 6),
            mean_amount=round(mean, 2),
        )

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def trend_score(self, series: Sequence[TimeSeriesPoint]) -> Tuple[float, float, float]:
        """
        Relative daily slope divided by the trend threshold.

        Returns:
            (score, slope, mean_amount); score is 0 for short or
            non-positive series.
        """
        y = amounts(series)
        if len(y) < MIN_POINTS_FOR_PATTERNS:
            return 0.0, 0.0, float(y.mean()) if len(y) else 0.0

        mean = float(y.mean())
        if mean <= 0:
            return 0.0, 0.0, mean

        slope = float(fit_line(day_offsets(series), y).coef_[0])
        relative = abs(slope) / mean
        return relative / self.settings.trend_slope_threshold, slope, mean

    def seasonality_score(self, series: Sequence[TimeSeriesPoint]) -> float:
        """Weekday amplitude (share of the mean) divided by its threshold."""
        y = amounts(series)
        if len(y) < MIN_POINTS_FOR_PATTERNS:
            return 0.0

        mean = float(y.mean())
        if mean <= 0:
            return 0.0

        x = day_offsets(series)
        residuals = y - fit_line(x, y).predict(x.reshape(-1, 1))

        df = pd.DataFrame({
            'weekday': [p.date.weekday() for p in series],
            'residual': residuals,
        })
        groups = df.groupby('weekday')['residual']
        if groups.ngroups < 2:
            return 0.0

        group_means = groups.mean()
        group_sizes = groups.size()
        overall = df['residual'].mean()

        between = float((group_sizes * (group_means - overall) ** 2).sum() / len(df))
        within = float(((df['residual'] - groups.transform('mean')) ** 2).sum() / len(df))
        if between <= within:
            return 0.0

        amplitude = float(group_means.max() - group_means.min()) / mean
        return amplitude / self.settings.seasonality_amplitude_threshold
