"""
Test Module: test_spending_forecaster.py
Description: Unit tests for daily spending forecasts and model descriptors.

Tests:
    - Forecast window, totals and methodology per series shape
    - Confidence behaviour over the horizon
    - Risk factor identification
    - Insufficient history handling
    - train_model descriptors

Author: Budget Analytics Team
Created: 2025-02-11
"""

import pytest
import numpy as np
from datetime import date, timedelta

from analytics.errors import InsufficientDataError, InvalidParameterError
from analytics.spending_forecaster import (
    SpendingForecaster,
    coefficient_of_variation,
    confidence_level,
    fit_quality,
)
from analytics.time_series import TimeSeriesAggregator
from conftest import BASE_DATE, daily_transactions


@pytest.fixture
def forecaster(settings):
    return SpendingForecaster(settings)


def day_after(history):
    return max(t.date for t in history) + timedelta(days=1)


# =============================================================================
# Prediction Tests
# =============================================================================

class TestPredict:
    """Tests for SpendingForecaster.predict."""

    def test_window_is_inclusive(self, forecaster, constant_history):
        """Test one prediction per day including both endpoints."""
        start = day_after(constant_history)
        prediction = forecaster.predict(constant_history, start, start + timedelta(days=6))

        assert len(prediction.predictions) == 7
        assert prediction.predictions[0].date == start
        assert prediction.predictions[-1].date == start + timedelta(days=6)

    def test_single_day_window(self, forecaster, constant_history):
        """Test start == end yields exactly one point."""
        start = day_after(constant_history)
        prediction = forecaster.predict(constant_history, start, start)
        assert len(prediction.predictions) == 1

    def test_constant_history_predicts_constant(self, forecaster, constant_history):
        """Test a flat $100/day history forecasts about $100/day."""
        start = day_after(constant_history)
        prediction = forecaster.predict(constant_history, start, start + timedelta(days=6))

        assert prediction.methodology == "linear_regression"
        for point in prediction.predictions:
            assert point.predicted_amount == pytest.approx(100.0, abs=0.01)
        assert prediction.total_predicted_amount == pytest.approx(700.0, abs=0.05)
        assert prediction.average_daily_prediction == pytest.approx(100.0, abs=0.01)
        assert prediction.confidence == "high"
        assert prediction.accuracy.historical_accuracy == pytest.approx(1.0, abs=1e-3)

    def test_total_matches_sum_of_points(self, forecaster, seasonal_history):
        """Test the total equals the sum of rounded point predictions."""
        start = day_after(seasonal_history)
        prediction = forecaster.predict(seasonal_history, start, start + timedelta(days=20))

        total = sum(p.predicted_amount for p in prediction.predictions)
        assert prediction.total_predicted_amount == pytest.approx(total, abs=0.01)

    def test_trending_history_extrapolates(self, forecaster, trending_history):
        """Test a +5/day history continues the line with Holt smoothing."""
        start = day_after(trending_history)
        prediction = forecaster.predict(trending_history, start, start + timedelta(days=6))

        assert prediction.methodology == "time_series"
        assert prediction.has_trend is True
        assert prediction.predictions[0].predicted_amount == pytest.approx(400.0, abs=0.05)
        assert prediction.predictions[-1].predicted_amount == pytest.approx(430.0, abs=0.05)

    def test_seasonal_history_keeps_weekly_shape(self, forecaster, seasonal_history):
        """Test weekend forecasts stay above weekday forecasts."""
        start = day_after(seasonal_history)  # a Monday
        prediction = forecaster.predict(seasonal_history, start, start + timedelta(days=6))
        by_weekday = {p.date.weekday(): p.predicted_amount for p in prediction.predictions}

        assert prediction.methodology == "seasonal_decomposition"
        assert by_weekday[5] > by_weekday[0] * 2

    def test_predictions_never_negative(self, forecaster):
        """Test a steeply falling history is floored at zero."""
        history = daily_transactions([max(1.0, 600.0 - 10 * i) for i in range(60)])
        start = day_after(history)
        prediction = forecaster.predict(history, start, start + timedelta(days=60))

        assert all(p.predicted_amount >= 0 for p in prediction.predictions)

    def test_confidence_decays_with_horizon(self, forecaster, constant_history):
        """Test later points carry lower confidence than earlier ones."""
        start = day_after(constant_history)
        prediction = forecaster.predict(constant_history, start, start + timedelta(days=29))
        confidences = [p.confidence for p in prediction.predictions]

        assert all(0 <= c <= 1 for c in confidences)
        assert confidences == sorted(confidences, reverse=True)
        assert confidences[0] > confidences[-1]

    def test_rising_history_forecast(self, forecaster):
        """Test 60 days rising by $2/day yields a positive total and a known confidence level."""
        history = daily_transactions([100.0 + 2 * i for i in range(60)])
        start = day_after(history)
        prediction = forecaster.predict(history, start, start + timedelta(days=6))

        assert prediction.total_predicted_amount > 0
        assert prediction.confidence in ("low", "medium", "high")

    def test_quiet_days_before_window_count_as_zero(self, forecaster, constant_history):
        """Test days between the last transaction and history_end pull the forecast down."""
        last_day = max(t.date for t in constant_history)
        history_end = last_day + timedelta(days=14)
        start = history_end + timedelta(days=1)

        with_gap = forecaster.predict(
            constant_history, start, start + timedelta(days=6), history_end=history_end
        )
        without_gap = forecaster.predict(constant_history, start, start + timedelta(days=6))

        assert with_gap.predictions[0].predicted_amount < 100.0
        assert with_gap.total_predicted_amount < without_gap.total_predicted_amount

    def test_history_end_on_last_day_changes_nothing(self, forecaster, constant_history):
        start = day_after(constant_history)
        end = start + timedelta(days=6)

        explicit = forecaster.predict(constant_history, start, end, history_end=start - timedelta(days=1))
        implicit = forecaster.predict(constant_history, start, end)

        assert explicit.predictions == implicit.predictions

    def test_history_end_clamped_before_window(self, forecaster, constant_history):
        """Test a history_end inside the forecast window is treated as the day before it."""
        start = day_after(constant_history)
        end = start + timedelta(days=6)

        clamped = forecaster.predict(constant_history, start, end, history_end=end)
        implicit = forecaster.predict(constant_history, start, end)

        assert clamped.predictions == implicit.predictions

    def test_factors_name_model_components(self, forecaster, constant_history):
        """Test each point lists the model components with their weights."""
        start = day_after(constant_history)
        point = forecaster.predict(constant_history, start, start).predictions[0]

        assert [f.factor for f in point.factors] == ["linear_regression"]
        assert point.factors[0].weight == 1.0

    def test_hybrid_blends_three_components(self, forecaster):
        """Test the hybrid methodology exposes three weighted factors."""
        history = daily_transactions([100.0 + 1.2 * i for i in range(60)])
        start = day_after(history)
        prediction = forecaster.predict(history, start, start)

        assert prediction.methodology == "hybrid"
        weights = {f.factor: f.weight for f in prediction.predictions[0].factors}
        assert weights == {
            "linear_regression": 0.4,
            "time_series": 0.3,
            "seasonal_decomposition": 0.3,
        }


# =============================================================================
# Error Handling Tests
# =============================================================================

class TestPredictErrors:
    """Tests for rejected inputs."""

    def test_insufficient_history_raises(self, forecaster):
        """Test fewer than 30 distinct days raises InsufficientDataError."""
        history = daily_transactions([50.0] * 20)

        with pytest.raises(InsufficientDataError) as exc_info:
            forecaster.predict(history, date(2025, 3, 1), date(2025, 3, 7))

        assert "need at least 30 days of data" in str(exc_info.value)
        assert exc_info.value.required == 30
        assert exc_info.value.available == 20

    def test_minimum_history_boundary(self, forecaster):
        """Test 29 distinct days raise while exactly 30 are enough."""
        start = BASE_DATE + timedelta(days=30)

        with pytest.raises(InsufficientDataError):
            forecaster.predict(daily_transactions([50.0] * 29), start, start + timedelta(days=6))

        prediction = forecaster.predict(daily_transactions([50.0] * 30), start, start + timedelta(days=6))
        assert len(prediction.predictions) == 7

    def test_empty_history_raises(self, forecaster):
        """Test an empty history raises InsufficientDataError."""
        with pytest.raises(InsufficientDataError):
            forecaster.predict([], date(2025, 3, 1), date(2025, 3, 7))

    def test_reversed_window_raises(self, forecaster, constant_history):
        """Test end before start raises InvalidParameterError."""
        with pytest.raises(InvalidParameterError):
            forecaster.predict(constant_history, date(2025, 3, 7), date(2025, 3, 1))


# =============================================================================
# Risk Factor Tests
# =============================================================================

class TestRiskFactors:
    """Tests for identify_risk_factors."""

    def test_stable_history_has_no_risks(self, forecaster, constant_history):
        """Test 60 flat days raise no risk factors."""
        start = day_after(constant_history)
        prediction = forecaster.predict(constant_history, start, start + timedelta(days=6))
        assert prediction.risk_factors == []

    def test_thin_history_flagged(self, forecaster):
        """Test fewer than 60 active days is flagged as thin_data."""
        history = daily_transactions([100.0] * 40)
        start = day_after(history)
        prediction = forecaster.predict(history, start, start)

        assert "thin_data" in [r.factor for r in prediction.risk_factors]

    def test_elevated_forecast_flagged(self, forecaster, trending_history):
        """Test a forecast well above the historical mean is flagged."""
        start = day_after(trending_history)
        prediction = forecaster.predict(trending_history, start, start + timedelta(days=6))

        assert "elevated_forecast" in [r.factor for r in prediction.risk_factors]

    def test_high_volatility_flagged(self, forecaster):
        """Test alternating tiny and large days are flagged as volatile."""
        series = TimeSeriesAggregator().daily(daily_transactions([10.0, 300.0] * 30))
        risks = forecaster.identify_risk_factors(series, [])

        volatility = [r for r in risks if r.factor == "high_volatility"]
        assert len(volatility) == 1
        assert volatility[0].mitigation

    def test_recent_trend_change_flagged(self, forecaster):
        """Test a jump in the last week is flagged as trend_change."""
        series = TimeSeriesAggregator().daily(daily_transactions([100.0] * 53 + [200.0] * 7))
        risks = forecaster.identify_risk_factors(series, [])

        assert "trend_change" in [r.factor for r in risks]

    def test_empty_history_has_no_risks(self, forecaster):
        """Test empty input degrades to an empty list."""
        assert forecaster.identify_risk_factors([], []) == []


# =============================================================================
# Helper Tests
# =============================================================================

class TestHelpers:
    """Tests for fit quality and confidence helpers."""

    def test_perfect_fit_quality(self):
        """Test identical fitted values score 1."""
        y = np.array([10.0, 20.0, 30.0])
        assert fit_quality(y, y) == 1.0

    def test_fit_quality_zero_mean(self):
        """Test an all-zero history scores 0 instead of dividing by zero."""
        assert fit_quality(np.zeros(5), np.ones(5)) == 0.0

    def test_coefficient_of_variation_empty(self):
        """Test empty input gives 0."""
        assert coefficient_of_variation(np.array([])) == 0.0

    def test_confidence_buckets(self):
        """Test bucket boundaries at 0.7 and 0.4."""
        assert confidence_level(0.71) == "high"
        assert confidence_level(0.7) == "medium"
        assert confidence_level(0.41) == "medium"
        assert confidence_level(0.4) == "low"


# =============================================================================
# Model Descriptor Tests
# =============================================================================

class TestTrainModel:
    """Tests for train_model descriptors."""

    def test_unknown_type_returns_error_status(self, forecaster):
        """Test an unsupported model type is reported, not raised."""
        model = forecaster.train_model("user-1", "crystal_ball")

        assert model.status == "error"
        assert model.type == "crystal_ball"
        assert "crystal_ball" in model.message

    def test_short_history_awaits_data(self, forecaster):
        """Test a known type with too little history is 'training'."""
        model = forecaster.train_model("user-1", "spending_prediction", history=daily_transactions([10.0] * 5))

        assert model.status == "training"
        assert model.algorithm == "hybrid_time_series"

    def test_ready_model_reports_performance(self, forecaster, trending_history):
        """Test a clean trending history gives perfect classification scores."""
        model = forecaster.train_model("user-1", "cash_flow", history=trending_history)

        assert model.status == "ready"
        assert model.algorithm == "exponential_smoothing"
        assert model.performance.precision == 1.0
        assert model.performance.recall == 1.0
        assert model.performance.f1_score == 1.0
        assert model.performance.accuracy > 0.99

    def test_parameters_override_defaults(self, forecaster, trending_history):
        """Test caller parameters are merged over the type's defaults."""
        model = forecaster.train_model(
            "user-1", "anomaly_detection", parameters={"z_threshold": 3.0}, history=trending_history
        )

        assert model.parameters["z_threshold"] == 3.0
        assert model.parameters["iqr_multiplier"] == 1.5
        assert model.algorithm == "hybrid_zscore_iqr"

    def test_descriptors_have_unique_ids(self, forecaster):
        """Test every descriptor gets a fresh id."""
        first = forecaster.train_model("user-1", "trend_analysis")
        second = forecaster.train_model("user-1", "trend_analysis")
        assert first.id != second.id
