"""
Test Module: test_budget_analytics.py
Description: Unit tests for budget performance, variance and forecast reports.

Author: Budget Analytics Team
Created: 2025-02-15
"""

import pytest
from datetime import date

from analytics.budget_analytics import (
    BudgetAnalyticsReporter,
    current_month_range,
    safe_percentage,
)
from analytics.errors import InvalidParameterError
from schemas import BudgetRecord
from conftest import daily_transactions, make_transaction


@pytest.fixture
def reporter(settings):
    return BudgetAnalyticsReporter(settings)


@pytest.fixture
def january_transactions():
    """
    January spend of 3000 against a 4000 budget:
        groceries 10 x 95 = 950   (95%)
        dining    1 x 1200        (120%)
        rent      1 x 850         (42.5%)
    plus an income and a February expense that must be ignored.
    """
    transactions = daily_transactions([95.0] * 10, start=date(2025, 1, 1))
    transactions.append(make_transaction("dinner", 1200.0, date(2025, 1, 15), category_id="dining"))
    transactions.append(make_transaction("rent", 850.0, date(2025, 1, 2), category_id="rent"))
    transactions.append(make_transaction("pay", 5000.0, date(2025, 1, 3), type="income", category_id="salary"))
    transactions.append(make_transaction("feb", 700.0, date(2025, 2, 1)))
    return transactions


JANUARY = (date(2025, 1, 1), date(2025, 1, 31))


# =============================================================================
# Status Classification Tests
# =============================================================================

class TestClassifyStatus:
    """Tests for over / on_track / under."""

    def test_over_when_spent_exceeds_allocation(self, reporter):
        assert reporter.classify_status(1000.01, 1000.0) == "over"

    def test_on_track_inside_tolerance(self, reporter):
        """Test 80% through 100% is on_track."""
        assert reporter.classify_status(800.0, 1000.0) == "on_track"
        assert reporter.classify_status(1000.0, 1000.0) == "on_track"

    def test_under_below_tolerance(self, reporter):
        assert reporter.classify_status(799.0, 1000.0) == "under"

    def test_zero_allocation(self, reporter):
        """Test a zero allocation reports 0% rather than dividing by zero."""
        assert safe_percentage(0.0, 0.0) == 0.0
        assert reporter.classify_status(0.0, 0.0) == "under"
        assert reporter.classify_status(5.0, 0.0) == "over"


# =============================================================================
# Performance Report Tests
# =============================================================================

class TestPerformanceReport:
    """Tests for performance_report."""

    def test_totals(self, reporter, sample_budget, january_transactions):
        """Test only January expenses count toward the totals."""
        report = reporter.performance_report(sample_budget, january_transactions, *JANUARY)

        assert report.total_allocated == 4000.0
        assert report.total_spent == 3000.0
        assert report.remaining == 1000.0
        assert report.utilization_percentage == 75.0
        assert report.variance_amount == -1000.0
        assert report.variance_percentage == -25.0
        assert report.status == "under"

    def test_category_performance(self, reporter, sample_budget, january_transactions, categories):
        """Test per-category spend, status and transaction stats."""
        report = reporter.performance_report(
            sample_budget, january_transactions, *JANUARY, categories=categories
        )
        by_id = {c.category_id: c for c in report.category_performance}

        assert by_id["groceries"].category_name == "Groceries"
        assert by_id["groceries"].spent == 950.0
        assert by_id["groceries"].status == "on_track"
        assert by_id["groceries"].transaction_count == 10
        assert by_id["groceries"].average_transaction == 95.0
        assert by_id["dining"].status == "over"
        assert by_id["dining"].largest_transaction == 1200.0
        assert by_id["rent"].utilization_percentage == 42.5
        assert by_id["rent"].status == "under"

    def test_alert_thresholds(self, reporter, sample_budget, january_transactions):
        """Test a warning at 90% and a critical alert past 100%."""
        report = reporter.performance_report(sample_budget, january_transactions, *JANUARY)
        alerts = {a.category_id: a.type for a in report.alerts}

        assert alerts == {"groceries": "warning", "dining": "critical"}

    def test_overall_alert_has_no_category(self, reporter, sample_budget):
        """Test an overspent budget raises a budget-level critical alert."""
        transactions = [make_transaction("big", 4500.0, date(2025, 1, 5), category_id="rent")]
        report = reporter.performance_report(sample_budget, transactions, *JANUARY)

        assert report.status == "over"
        assert report.alerts[0].category_id is None
        assert report.alerts[0].type == "critical"

    def test_daily_spending_is_cumulative(self, reporter, sample_budget, january_transactions):
        report = reporter.performance_report(sample_budget, january_transactions, *JANUARY)

        assert report.daily_spending[0].date == date(2025, 1, 1)
        assert report.daily_spending[-1].cumulative == 3000.0

    def test_empty_allocations(self, reporter):
        """Test a budget without allocations reports zeros."""
        budget = BudgetRecord(id="b", name="Empty", period_start=JANUARY[0], period_end=JANUARY[1])
        report = reporter.performance_report(budget, [], *JANUARY)

        assert report.utilization_percentage == 0.0
        assert report.category_performance == []

    def test_defaults_to_current_month(self, reporter, sample_budget, january_transactions):
        """Test a missing range falls back to the month containing today."""
        report = reporter.performance_report(sample_budget, january_transactions, today=date(2025, 1, 20))

        assert report.period.start == date(2025, 1, 1)
        assert report.period.end == date(2025, 1, 31)
        assert report.total_spent == 3000.0

    def test_reversed_range_rejected(self, reporter, sample_budget):
        with pytest.raises(InvalidParameterError):
            reporter.performance_report(sample_budget, [], date(2025, 2, 1), date(2025, 1, 1))

    def test_current_month_range_leap_year(self):
        assert current_month_range(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


# =============================================================================
# Variance Analysis Tests
# =============================================================================

class TestVarianceAnalysis:
    """Tests for variance_analysis."""

    def test_variance_types_and_impact(self, reporter, sample_budget, january_transactions):
        report = reporter.variance_analysis(sample_budget, january_transactions, *JANUARY)
        by_id = {v.category_id: v for v in report.category_variances}

        assert by_id["groceries"].variance == -50.0
        assert by_id["groceries"].variance_type == "favorable"
        assert by_id["groceries"].impact == "low"
        assert by_id["dining"].variance == 200.0
        assert by_id["dining"].variance_type == "unfavorable"
        assert by_id["dining"].impact == "high"
        assert by_id["rent"].variance_percentage == -57.5

    def test_summary(self, reporter, sample_budget, january_transactions):
        summary = reporter.variance_analysis(sample_budget, january_transactions, *JANUARY).summary

        assert summary.total_variance == -1000.0
        assert summary.total_variance_percentage == -25.0
        assert summary.favorable_variances == 1200.0
        assert summary.unfavorable_variances == 200.0
        assert summary.net_variance == -1000.0

    def test_exact_spend_is_neutral(self, reporter, sample_budget):
        transactions = [make_transaction("r", 2000.0, date(2025, 1, 1), category_id="rent")]
        report = reporter.variance_analysis(sample_budget, transactions, *JANUARY)
        rent = next(v for v in report.category_variances if v.category_id == "rent")

        assert rent.variance_type == "neutral"


# =============================================================================
# Forecast Tests
# =============================================================================

class TestBudgetForecast:
    """Tests for the trailing-velocity budget forecast."""

    def test_projection_from_velocity(self, reporter, sample_budget, january_transactions):
        """Test spent-to-date plus 7-day velocity times remaining days."""
        forecast = reporter.forecast(sample_budget, january_transactions, as_of=date(2025, 1, 10))

        assert forecast.days_elapsed == 10
        assert forecast.days_remaining == 21
        assert forecast.spent_to_date == 1800.0
        assert forecast.daily_velocity == 95.0
        assert forecast.projected_spend == 3795.0
        assert forecast.projected_status == "on_track"
        assert forecast.risk_factors == []

    def test_three_velocity_scenarios(self, reporter, sample_budget, january_transactions):
        forecast = reporter.forecast(sample_budget, january_transactions, as_of=date(2025, 1, 10))
        scenarios = {s.scenario: s for s in forecast.scenarios}

        assert [s.velocity_multiplier for s in forecast.scenarios] == [0.9, 1.0, 1.1]
        assert scenarios["optimistic"].projected_spend == pytest.approx(3595.5)
        assert scenarios["pessimistic"].projected_spend == pytest.approx(3994.5)

    def test_category_overrun_recommended(self, reporter, sample_budget, january_transactions, categories):
        """Test a category projected past its allocation is called out."""
        forecast = reporter.forecast(
            sample_budget, january_transactions, as_of=date(2025, 1, 10), categories=categories
        )
        groceries = next(c for c in forecast.category_forecasts if c.category_id == "groceries")

        assert groceries.projected_spend == 2945.0
        assert groceries.status == "over"
        assert any("Groceries" in r for r in forecast.recommendations)

    def test_projected_overspend_risk(self, reporter, sample_budget):
        """Test a pace that overruns the budget carries a high-impact risk."""
        transactions = daily_transactions([300.0] * 10, start=date(2025, 1, 1))
        forecast = reporter.forecast(sample_budget, transactions, as_of=date(2025, 1, 10))

        assert forecast.projected_status == "over"
        assert [r.factor for r in forecast.risk_factors] == ["projected_overspend"]
        assert "under $" in forecast.recommendations[0]

    def test_as_of_clamped_to_period(self, reporter, sample_budget, january_transactions):
        """Test a date after the period projects the final spend."""
        forecast = reporter.forecast(sample_budget, january_transactions, as_of=date(2025, 3, 1))

        assert forecast.as_of == date(2025, 1, 31)
        assert forecast.days_remaining == 0
        assert forecast.projected_spend == 3000.0
