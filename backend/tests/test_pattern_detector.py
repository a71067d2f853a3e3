"""
Test Module: test_pattern_detector.py
Description: Calibration tests for pattern signals and model selection.

Tests:
    - Trend and seasonality predicates on synthetic series
    - Score edge cases (short series, non-positive means)
    - Every methodology outcome is reachable from real series

Author: Budget Analytics Team
Created: 2025-02-10
"""

import pytest
from dataclasses import replace
from datetime import timedelta

from analytics.model_selector import ModelSelector
from analytics.pattern_detector import PatternDetector
from analytics.time_series import TimeSeriesAggregator
from schemas import PatternSignals, TimeSeriesPoint
from conftest import BASE_DATE, daily_transactions, weekly_pattern_values


def series_of(values):
    return TimeSeriesAggregator().daily(daily_transactions(values), dense=True)


@pytest.fixture
def detector(settings):
    return PatternDetector(settings)


@pytest.fixture
def selector(settings):
    return ModelSelector(settings)


# =============================================================================
# Trend Detection Tests
# =============================================================================

class TestTrendDetection:
    """Tests for the relative-slope trend predicate."""

    def test_constant_series_has_no_trend(self, detector):
        """Test a flat series reports no trend."""
        assert detector.detect_trend(series_of([100.0] * 60)) is False

    def test_rising_series_has_trend(self, detector):
        """Test a series rising 5/day (about 2% of its mean) reports a trend."""
        signals = detector.analyze(series_of([100.0 + 5 * i for i in range(60)]))

        assert signals.has_trend is True
        assert signals.trend_score == pytest.approx(2.02, abs=0.01)
        assert signals.slope == pytest.approx(5.0)

    def test_falling_series_has_trend(self, detector):
        """Test a falling series also reports a trend."""
        assert detector.detect_trend(series_of([400.0 - 5 * i for i in range(60)])) is True

    def test_short_series_never_trends(self, detector):
        """Test fewer than 14 points gives no trend."""
        assert detector.detect_trend(series_of([10.0 * i + 1 for i in range(10)])) is False

    def test_non_positive_mean_has_no_trend(self, detector):
        """Test a zero series scores zero."""
        points = [TimeSeriesPoint(date=BASE_DATE + timedelta(days=i), amount=0.0, count=0) for i in range(20)]
        assert detector.trend_score(points)[0] == 0.0


# =============================================================================
# Seasonality Detection Tests
# =============================================================================

class TestSeasonalityDetection:
    """Tests for the weekday seasonality predicate."""

    def test_weekend_pattern_is_seasonal(self, detector):
        """Test expensive weekends over cheap weekdays reports seasonality."""
        signals = detector.analyze(series_of(weekly_pattern_values(9)))

        assert signals.has_seasonality is True
        assert signals.seasonality_score > 5

    def test_linear_series_is_not_seasonal(self, detector):
        """Test a pure trend has no weekday structure."""
        assert detector.detect_seasonality(series_of([100.0 + 5 * i for i in range(60)])) is False

    def test_constant_series_is_not_seasonal(self, detector):
        """Test a flat series has no weekday structure."""
        assert detector.detect_seasonality(series_of([100.0] * 60)) is False

    def test_threshold_comes_from_settings(self, settings):
        """Test a stricter amplitude threshold suppresses detection."""
        strict = PatternDetector(replace(settings, seasonality_amplitude_threshold=5.0))
        assert strict.detect_seasonality(series_of(weekly_pattern_values(9))) is False


# =============================================================================
# Model Selection Calibration Tests
# =============================================================================

class TestModelSelection:
    """Each methodology is reachable from a concrete series."""

    def test_flat_series_selects_linear_regression(self, detector, selector):
        """Test neither signal selects linear_regression."""
        signals = detector.analyze(series_of([100.0] * 60))
        assert selector.select(signals) == "linear_regression"

    def test_trending_series_selects_time_series(self, detector, selector):
        """Test a clear trend without seasonality selects time_series."""
        signals = detector.analyze(series_of([100.0 + 5 * i for i in range(60)]))
        assert selector.select(signals) == "time_series"

    def test_weekly_series_selects_seasonal_decomposition(self, detector, selector):
        """Test a clear weekly pattern selects seasonal_decomposition."""
        signals = detector.analyze(series_of(weekly_pattern_values(9)))
        assert selector.select(signals) == "seasonal_decomposition"

    def test_borderline_trend_selects_hybrid(self, detector, selector):
        """Test a trend score just under the threshold selects hybrid."""
        signals = detector.analyze(series_of([100.0 + 1.2 * i for i in range(60)]))

        assert 0.8 <= signals.trend_score < 1.2
        assert selector.select(signals) == "hybrid"

    def test_band_edges(self, selector):
        """Test the ambiguity band is [0.8, 1.2)."""
        def signals(score):
            return PatternSignals(
                has_trend=score > 1.0,
                has_seasonality=False,
                trend_score=score,
                seasonality_score=0.0,
            )

        assert selector.select(signals(0.79)) == "linear_regression"
        assert selector.select(signals(0.8)) == "hybrid"
        assert selector.select(signals(1.19)) == "hybrid"
        assert selector.select(signals(1.2)) == "time_series"

    def test_seasonality_takes_precedence_over_trend(self, selector):
        """Test both signals present selects seasonal_decomposition."""
        signals = PatternSignals(has_trend=True, has_seasonality=True, trend_score=3.0, seasonality_score=3.0)
        assert selector.select(signals) == "seasonal_decomposition"
