"""Maps detected pattern signals to a forecasting methodology."""

from typing import Optional

from config import AnalyticsSettings, get_settings
from schemas import Methodology, PatternSignals


class ModelSelector:
    """
    Selection policy:

        score of either signal inside the ambiguity band  -> hybrid
        seasonality present                               -> seasonal_decomposition
        trend present (no seasonality)                    -> time_series
        neither                                           -> linear_regression

    Scores are signal / threshold, so 1.0 is the detection boundary and
    the band (default [0.8, 1.2)) brackets it.
    """

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()

    def select(self, signals: PatternSignals) -> Methodology:
        if self._ambiguous(signals.trend_score) or self._ambiguous(signals.seasonality_score):
            return "hybrid"
        if signals.has_seasonality:
            return "seasonal_decomposition"
        if signals.has_trend:
            return "time_series"
        return "linear_regression"

    def _ambiguous(self, score: float) -> bool:
        return self.settings.ambiguity_band_low <= score < self.settings.ambiguity_band_high
