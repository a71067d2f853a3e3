"""
Module: spending_forecaster.py
Description: Daily spending forecasts over a future window.

Forecast Methods:
    1. linear_regression: OLS line over the dense daily history
    2. time_series: Holt linear exponential smoothing (alpha=0.3, beta=0.1)
    3. seasonal_decomposition: centered 7-day moving average extrapolated
       linearly, plus an additive weekday index normalized to sum to zero
    4. hybrid: weighted blend of the three (0.4 / 0.3 / 0.3)

The methodology comes from ModelSelector over PatternDetector signals.
Every point confidence is the in-sample fit quality, discounted by the
history's coefficient of variation and by distance from the last
observed day.

Also provides train_model(), which returns a configuration descriptor
with a retrospective fit summary. Nothing is persisted.

Author: Budget Analytics Team
Created: 2025-02-11
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import (
    f1_score,
    mean_absolute_error,
    precision_score,
    r2_score,
    recall_score,
)

from config import AnalyticsSettings, get_settings
from schemas import (
    DateRange,
    ForecastAccuracy,
    Methodology,
    ModelPerformance,
    PredictionFactor,
    PredictionPoint,
    PredictiveModel,
    RiskFactor,
    SpendingPrediction,
    TimeSeriesPoint,
    TransactionRecord,
)
from analytics.errors import InsufficientDataError
from analytics.model_selector import ModelSelector
from analytics.pattern_detector import PatternDetector, fit_line
from analytics.time_series import (
    TimeSeriesAggregator,
    amounts,
    days_in_range,
    distinct_days,
    validate_date_range,
)


# =============================================================================
# Model Constants
# =============================================================================

SMOOTHING_ALPHA = 0.3
SMOOTHING_BETA = 0.1
SEASONAL_PERIOD = 7
HYBRID_WEIGHTS = {
    'linear_regression': 0.4,
    'time_series': 0.3,
    'seasonal_decomposition': 0.3,
}

CONFIDENCE_HORIZON_DAYS = 60
VOLATILITY_WEIGHT = 0.5
HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4

# Risk factor thresholds
HIGH_VOLATILITY_CV = 0.5
TREND_CHANGE_RATIO = 0.2
THIN_DATA_DAYS = 60
ELEVATED_FORECAST_RATIO = 1.5

# Forecast fn: (day offsets from first history day, weekdays) -> amounts
ForecastFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def fit_quality(actual: np.ndarray, fitted: np.ndarray) -> float:
    """1 - MAE / mean(|actual|), clamped to [0, 1]."""
    if len(actual) == 0:
        return 0.0
    scale = float(np.mean(np.abs(actual)))
    if scale <= 0:
        return 0.0
    mae = float(mean_absolute_error(actual, fitted))
    return float(np.clip(1 - mae / scale, 0.0, 1.0))


def coefficient_of_variation(values: np.ndarray) -> float:
    if len(values) == 0:
        return 0.0
    mean = float(np.mean(values))
    if mean <= 0:
        return 0.0
    return float(np.std(values)) / mean


def confidence_level(confidence: float) -> str:
    if confidence > HIGH_CONFIDENCE:
        return "high"
    if confidence > MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


# =============================================================================
# Spending Forecaster
# =============================================================================

class SpendingForecaster:
    """
    Point forecasts with confidence for each day of a future window.

    Usage:
        forecaster = SpendingForecaster()
        prediction = forecaster.predict(history, date(2025, 3, 1), date(2025, 3, 31))
    """

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()
        self.aggregator = TimeSeriesAggregator()
        self.detector = PatternDetector(self.settings)
        self.selector = ModelSelector(self.settings)

    def predict(
        self,
        history: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
        history_end: Optional[date] = None,
    ) -> SpendingPrediction:
        """
        Forecast daily spending for every day in [start_date, end_date].

        `history_end` is the last day the history covers. Quiet days between
        the last transaction and that day count as zero spend, and forecast
        distance is measured from it. It is clamped to the day before
        start_date.

        Raises:
            InvalidParameterError: end_date precedes start_date.
            InsufficientDataError: fewer than min_history_days distinct days.
        """
        validate_date_range(start_date, end_date)
        self._require_history(history)

        if history_end is not None:
            history_end = min(history_end, start_date - timedelta(days=1))
        series = self.aggregator.daily(history, dense=True, end=history_end)
        signals = self.detector.analyze(series)
        methodology = self.selector.select(signals)

        y = amounts(series)
        fitted, forecast_fns = self._fit(methodology, series)
        weights = self._weights(methodology)

        first_day = series[0].date
        target_days = days_in_range(start_date, end_date)
        offsets = np.array([(d - first_day).days for d in target_days], dtype=float)
        weekdays = np.array([d.weekday() for d in target_days])

        components = {name: fn(offsets, weekdays) for name, fn in forecast_fns.items()}
        blended = np.maximum(sum(weights[name] * values for name, values in components.items()), 0.0)

        quality = fit_quality(y, fitted)
        volatility_factor = 1 / (1 + VOLATILITY_WEIGHT * coefficient_of_variation(y))
        last_offset = len(y) - 1

        predictions = []
        for i, day in enumerate(target_days):
            steps_ahead = max(1.0, offsets[i] - last_offset)
            decay = 1 / (1 + steps_ahead / CONFIDENCE_HORIZON_DAYS)
            confidence = float(np.clip(quality * volatility_factor * decay, 0.0, 1.0))
            predictions.append(PredictionPoint(
                date=day,
                predicted_amount=round(float(blended[i]), 2),
                confidence=round(confidence, 4),
                factors=[
                    PredictionFactor(
                        factor=name,
                        impact=round(float(values[i]), 2),
                        weight=weights[name],
                    )
                    for name, values in components.items()
                ],
            ))

        total = round(sum(p.predicted_amount for p in predictions), 2)
        average_confidence = float(np.mean([p.confidence for p in predictions]))

        return SpendingPrediction(
            period=DateRange(start=start_date, end=end_date),
            predictions=predictions,
            total_predicted_amount=total,
            average_daily_prediction=round(total / len(predictions), 2),
            confidence=confidence_level(average_confidence),
            methodology=methodology,
            accuracy=self._accuracy(y, fitted),
            risk_factors=self.identify_risk_factors(series, predictions),
            has_trend=signals.has_trend,
            has_seasonality=signals.has_seasonality,
        )

    def identify_risk_factors(
        self,
        historical: Sequence[TimeSeriesPoint],
        predictions: Sequence[PredictionPoint],
    ) -> List[RiskFactor]:
        """Flag volatility, recent trend shifts, thin history and elevated forecasts."""
        y = amounts(historical)
        risks = []
        if len(y) == 0:
            return risks

        cv = coefficient_of_variation(y)
        if cv > HIGH_VOLATILITY_CV:
            risks.append(RiskFactor(
                factor="high_volatility",
                impact="high" if cv > 1.0 else "medium",
                probability=round(min(0.95, cv / 2), 2),
                description=f"Daily spending varies widely (coefficient of variation {cv:.2f}).",
                mitigation=["Keep a buffer for irregular expenses", "Review large one-off purchases"],
            ))

        if len(y) >= 14:
            recent = float(np.mean(y[-7:]))
            previous = float(np.mean(y[-14:-7]))
            if previous > 0:
                change = (recent - previous) / previous
                if abs(change) > TREND_CHANGE_RATIO:
                    direction = "up" if change > 0 else "down"
                    risks.append(RiskFactor(
                        factor="trend_change",
                        impact="medium",
                        probability=0.6,
                        description=f"Spending moved {direction} {abs(change) * 100:.0f}% over the last week.",
                        mitigation=["Check whether the change is temporary"],
                    ))

        active_days = sum(1 for p in historical if p.count > 0)
        if active_days < THIN_DATA_DAYS:
            risks.append(RiskFactor(
                factor="thin_data",
                impact="low",
                probability=0.5,
                description=f"Only {active_days} days of spending history are available.",
                mitigation=["Forecasts improve as more history accumulates"],
            ))

        historical_mean = float(np.mean(y))
        if predictions and historical_mean > 0:
            predicted_mean = float(np.mean([p.predicted_amount for p in predictions]))
            if predicted_mean > ELEVATED_FORECAST_RATIO * historical_mean:
                risks.append(RiskFactor(
                    factor="elevated_forecast",
                    impact="medium",
                    probability=0.5,
                    description=(
                        f"Forecast daily spending ${predicted_mean:.2f} is well above "
                        f"the historical ${historical_mean:.2f}."
                    ),
                    mitigation=["Set category limits for the coming period"],
                ))

        return risks

    # -------------------------------------------------------------------------
    # Model training descriptor
    # -------------------------------------------------------------------------

    MODEL_TYPES: Dict[str, Dict[str, Any]] = {
        'spending_prediction': {
            'name': 'Spending Prediction Model',
            'algorithm': 'hybrid_time_series',
            'fit': None,  # chosen by ModelSelector
            'defaults': {'smoothing_alpha': SMOOTHING_ALPHA, 'seasonal_period': SEASONAL_PERIOD},
        },
        'anomaly_detection': {
            'name': 'Anomaly Detection Model',
            'algorithm': 'hybrid_zscore_iqr',
            'fit': 'seasonal_decomposition',
            'defaults': {'z_threshold': 2.5, 'iqr_multiplier': 1.5, 'window_days': 7},
        },
        'trend_analysis': {
            'name': 'Trend Analysis Model',
            'algorithm': 'linear_regression',
            'fit': 'linear_regression',
            'defaults': {},
        },
        'cash_flow': {
            'name': 'Cash Flow Model',
            'algorithm': 'exponential_smoothing',
            'fit': 'time_series',
            'defaults': {'smoothing_alpha': SMOOTHING_ALPHA},
        },
    }

    def train_model(
        self,
        user_id: str,
        model_type: str,
        parameters: Optional[Dict[str, Any]] = None,
        history: Optional[Sequence[TransactionRecord]] = None,
    ) -> PredictiveModel:
        """
        Build a model descriptor with retrospective performance.

        Unknown model types return a descriptor with status "error"
        rather than raising. Callers must check `status`.
        """
        now = datetime.now(timezone.utc)
        model_def = self.MODEL_TYPES.get(model_type)

        if model_def is None:
            return PredictiveModel(
                id=str(uuid.uuid4()),
                name=f"Unsupported model ({model_type})",
                type=model_type,
                algorithm="unknown",
                parameters=dict(parameters or {}),
                performance=ModelPerformance(),
                status="error",
                last_trained=now,
                message=f"Unknown model type: {model_type}",
            )

        merged = {**model_def['defaults'], **(parameters or {})}
        history = list(history or [])
        base = dict(
            id=str(uuid.uuid4()),
            name=model_def['name'],
            type=model_type,
            algorithm=model_def['algorithm'],
            parameters=merged,
            last_trained=now,
        )

        available = distinct_days(history)
        if available < self.settings.min_history_days:
            return PredictiveModel(
                **base,
                performance=ModelPerformance(),
                status="training",
                message=(
                    f"Awaiting history: need at least {self.settings.min_history_days} "
                    f"days of data, have {available}"
                ),
            )

        series = self.aggregator.daily(history, dense=True)
        methodology = model_def['fit'] or self.selector.select(self.detector.analyze(series))
        y = amounts(series)
        fitted, _ = self._fit(methodology, series)

        return PredictiveModel(
            **base,
            performance=self._classification_performance(y, fitted),
            status="ready",
        )

    # -------------------------------------------------------------------------
    # Fitting
    # -------------------------------------------------------------------------

    def _require_history(self, history: Sequence[TransactionRecord]) -> None:
        available = distinct_days(history)
        required = self.settings.min_history_days
        if available < required:
            raise InsufficientDataError(
                f"Insufficient historical data for prediction: need at least {required} "
                f"days of data, found {available}",
                required=required,
                available=available,
            )

    def _weights(self, methodology: Methodology) -> Dict[str, float]:
        if methodology == 'hybrid':
            return dict(HYBRID_WEIGHTS)
        return {methodology: 1.0}

    def _fit(
        self,
        methodology: Methodology,
        series: Sequence[TimeSeriesPoint],
    ) -> Tuple[np.ndarray, Dict[str, ForecastFn]]:
        """Return blended in-sample fitted values and per-component forecast fns."""
        y = amounts(series)
        x = np.arange(len(y), dtype=float)
        weekdays = np.array([p.date.weekday() for p in series])

        fitters = {
            'linear_regression': lambda: self._fit_linear(x, y),
            'time_series': lambda: self._fit_holt(y),
            'seasonal_decomposition': lambda: self._fit_seasonal(x, y, weekdays),
        }

        weights = self._weights(methodology)
        fitted = np.zeros(len(y))
        forecast_fns = {}
        for name, weight in weights.items():
            component_fitted, forecast_fn = fitters[name]()
            fitted += weight * component_fitted
            forecast_fns[name] = forecast_fn
        return fitted, forecast_fns

    def _fit_linear(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, ForecastFn]:
        reg = fit_line(x, y)

        def forecast(offsets, weekdays):
            return reg.predict(offsets.reshape(-1, 1))

        return reg.predict(x.reshape(-1, 1)), forecast

    def _fit_holt(self, y: np.ndarray) -> Tuple[np.ndarray, ForecastFn]:
        """Holt's linear method; fitted values are one-step-ahead forecasts."""
        n = len(y)
        warmup = min(n - 1, SEASONAL_PERIOD)
        level = float(y[0])
        trend = float(y[warmup] - y[0]) / warmup if warmup > 0 else 0.0

        fitted = [level]
        for value in y[1:]:
            fitted.append(level + trend)
            new_level = SMOOTHING_ALPHA * value + (1 - SMOOTHING_ALPHA) * (level + trend)
            trend = SMOOTHING_BETA * (new_level - level) + (1 - SMOOTHING_BETA) * trend
            level = new_level

        last_offset = n - 1

        def forecast(offsets, weekdays):
            return level + (offsets - last_offset) * trend

        return np.array(fitted), forecast

    def _fit_seasonal(
        self,
        x: np.ndarray,
        y: np.ndarray,
        weekdays: np.ndarray,
    ) -> Tuple[np.ndarray, ForecastFn]:
        moving_average = (
            pd.Series(y)
            .rolling(window=SEASONAL_PERIOD, center=True, min_periods=1)
            .mean()
            .to_numpy()
        )
        detrended = pd.Series(y - moving_average).groupby(weekdays).mean()
        seasonal_index = np.array([detrended.get(d, 0.0) for d in range(SEASONAL_PERIOD)])
        seasonal_index -= seasonal_index.mean()

        trend_reg = fit_line(x, moving_average)

        def forecast(offsets, future_weekdays):
            return trend_reg.predict(offsets.reshape(-1, 1)) + seasonal_index[future_weekdays]

        fitted = trend_reg.predict(x.reshape(-1, 1)) + seasonal_index[weekdays]
        return fitted, forecast

    # -------------------------------------------------------------------------
    # Retrospective metrics
    # -------------------------------------------------------------------------

    def _accuracy(self, y: np.ndarray, fitted: np.ndarray) -> ForecastAccuracy:
        return ForecastAccuracy(
            historical_accuracy=round(fit_quality(y, fitted), 4),
            r_squared=round(float(r2_score(y, fitted)), 4) if len(y) > 1 else 0.0,
            mean_absolute_error=round(float(mean_absolute_error(y, fitted)), 2),
            data_points=len(y),
        )

    def _classification_performance(self, y: np.ndarray, fitted: np.ndarray) -> ModelPerformance:
        """Score above-median days: fitted values as predictions, actuals as labels."""
        median = float(np.median(y))
        actual_high = y > median
        predicted_high = fitted > median
        return ModelPerformance(
            accuracy=round(fit_quality(y, fitted), 4),
            precision=round(float(precision_score(actual_high, predicted_high, zero_division=0)), 4),
            recall=round(float(recall_score(actual_high, predicted_high, zero_division=0)), 4),
            f1_score=round(float(f1_score(actual_high, predicted_high, zero_division=0)), 4),
        )
