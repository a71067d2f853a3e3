"""
Test Module: test_financial_planner.py
Description: Unit tests for goals, retirement projection, debt payoff
and rule-based recommendations.

Author: Budget Analytics Team
Created: 2025-02-16
"""

import pytest
from datetime import date

from analytics.errors import InvalidParameterError
from analytics.financial_planner import FinancialPlanner, add_months, future_value
from schemas import BudgetUtilization, DebtInput, FinancialSnapshot, SpendingSnapshot


TODAY = date(2025, 1, 15)


@pytest.fixture
def planner():
    return FinancialPlanner()


@pytest.fixture
def car_goal(planner):
    """12000 at 1000/month with exactly twelve months available."""
    return planner.create_goal("Car", 12000.0, 1000.0, target_date=date(2026, 1, 15), today=TODAY)


@pytest.fixture
def debts():
    return [
        DebtInput(name="Loan", balance=1000.0, interest_rate=5.0, minimum_payment=50.0),
        DebtInput(name="Card", balance=5000.0, interest_rate=20.0, minimum_payment=150.0),
    ]


# =============================================================================
# Goal Tests
# =============================================================================

class TestGoals:
    """Tests for goal creation and progress updates."""

    def test_new_goal_not_started(self, car_goal):
        assert car_goal.current_amount == 0.0
        assert car_goal.progress_percentage == 0.0
        assert car_goal.status == "not_started"
        assert car_goal.id

    def test_tight_schedule_is_medium_risk(self, car_goal):
        """Test needing 12 of 12 available months is medium risk."""
        assert car_goal.estimated_completion_date == date(2026, 1, 15)
        assert car_goal.risk_level == "medium"

    def test_progress_update(self, planner, car_goal):
        """Test half the target is in_progress at 50%."""
        updated = planner.update_progress(car_goal, 6000.0, today=TODAY)

        assert updated.progress_percentage == 50.0
        assert updated.status == "in_progress"
        assert updated.risk_level == "low"
        assert updated.estimated_completion_date == date(2025, 7, 15)

    def test_progress_clamped_at_100(self, planner, car_goal):
        """Test overshooting the target completes the goal at 100%."""
        updated = planner.update_progress(car_goal, 15000.0, today=TODAY)

        assert updated.progress_percentage == 100.0
        assert updated.status == "completed"
        assert updated.estimated_completion_date == TODAY
        assert updated.risk_level == "low"

    def test_update_leaves_original_untouched(self, planner, car_goal):
        planner.update_progress(car_goal, 6000.0, today=TODAY)
        assert car_goal.current_amount == 0.0

    def test_no_contribution_is_high_risk(self, planner):
        goal = planner.create_goal("Trip", 3000.0, today=TODAY)

        assert goal.risk_level == "high"
        assert goal.estimated_completion_date is None

    def test_late_goal_is_high_risk(self, planner):
        """Test needing more months than are available is high risk."""
        goal = planner.create_goal("Trip", 3000.0, 100.0, target_date=date(2025, 6, 1), today=TODAY)
        assert goal.risk_level == "high"

    def test_no_target_date_is_low_risk(self, planner):
        goal = planner.create_goal("Fund", 3000.0, 100.0, today=TODAY)
        assert goal.risk_level == "low"

    @pytest.mark.parametrize("target", [0.0, -100.0])
    def test_non_positive_target_rejected(self, planner, target):
        with pytest.raises(InvalidParameterError):
            planner.create_goal("Bad", target, today=TODAY)

    def test_negative_progress_rejected(self, planner, car_goal):
        with pytest.raises(InvalidParameterError):
            planner.update_progress(car_goal, -1.0, today=TODAY)


# =============================================================================
# Retirement Tests
# =============================================================================

class TestRetirementPlan:
    """Tests for retirement projection."""

    def test_projection_with_shortfall(self, planner):
        """Test 1000 saved plus 100/month at 7% for 35 years."""
        plan = planner.retirement_plan(1000.0, 100.0, 7.0, 1_000_000.0, current_age=30, years=35)

        assert plan.retirement_age == 65
        assert plan.projected_amount == pytest.approx(191_600.0, rel=0.01)
        assert plan.shortfall == pytest.approx(1_000_000.0 - plan.projected_amount, abs=0.01)
        assert plan.inflation_adjusted_amount < plan.projected_amount
        assert len(plan.recommendations) >= 3

    def test_required_contribution_closes_gap(self, planner):
        plan = planner.retirement_plan(1000.0, 100.0, 7.0, 1_000_000.0, years=35)
        reached = future_value(1000.0, plan.required_monthly_contribution, 7.0, 35 * 12)

        assert reached == pytest.approx(1_000_000.0, rel=1e-4)

    def test_on_track_has_no_shortfall(self, planner):
        plan = planner.retirement_plan(100_000.0, 2000.0, 7.0, 500_000.0, retirement_age=60)

        assert plan.shortfall == 0.0
        assert "on track" in plan.recommendations[0]

    def test_zero_return(self, planner):
        """Test a 0% return is plain accumulation."""
        plan = planner.retirement_plan(1000.0, 100.0, 0.0, 5000.0, years=1, inflation_rate=0.0)

        assert plan.projected_amount == 2200.0
        assert plan.inflation_adjusted_amount == 2200.0
        assert plan.shortfall == 2800.0

    def test_missing_horizon_rejected(self, planner):
        with pytest.raises(InvalidParameterError):
            planner.retirement_plan(1000.0, 100.0, 7.0, 10000.0)

    def test_past_retirement_age_rejected(self, planner):
        with pytest.raises(InvalidParameterError):
            planner.retirement_plan(1000.0, 100.0, 7.0, 10000.0, current_age=70, retirement_age=65)

    def test_add_months_clamps_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)


# =============================================================================
# Debt Payoff Tests
# =============================================================================

class TestDebtPayoff:
    """Tests for avalanche and snowball payoff plans."""

    def test_avalanche_orders_by_rate(self, planner, debts):
        plan = planner.debt_payoff_plan(debts, "avalanche", extra_payment=200.0)

        assert [d.name for d in plan.debts] == ["Card", "Loan"]
        assert [d.priority for d in plan.debts] == [1, 2]
        assert plan.payoff_order == ["Card", "Loan"]

    def test_snowball_orders_by_balance(self, planner, debts):
        plan = planner.debt_payoff_plan(debts, "snowball", extra_payment=200.0)

        assert [d.name for d in plan.debts] == ["Loan", "Card"]
        assert plan.payoff_order == ["Loan", "Card"]

    def test_avalanche_pays_less_interest(self, planner, debts):
        avalanche = planner.debt_payoff_plan(debts, "avalanche", extra_payment=200.0)
        snowball = planner.debt_payoff_plan(debts, "snowball", extra_payment=200.0)

        assert avalanche.total_interest <= snowball.total_interest

    def test_timeline_runs_down_to_zero(self, planner, debts):
        plan = planner.debt_payoff_plan(debts, extra_payment=200.0)
        remaining = [entry.remaining_debt for entry in plan.timeline]

        assert all(later < earlier for earlier, later in zip(remaining, remaining[1:]))
        assert remaining[-1] == 0.0
        assert plan.payoff_months == len(plan.timeline)
        assert plan.total_debt == 6000.0
        assert plan.monthly_payment == 400.0

    def test_accepts_plain_dicts(self, planner):
        plan = planner.debt_payoff_plan(
            [{"name": "Card", "balance": 600.0, "interest_rate": 0.0, "minimum_payment": 100.0}]
        )

        assert plan.payoff_months == 6
        assert plan.total_interest == 0.0

    def test_minimum_below_interest_rejected(self, planner):
        """Test a minimum that never reduces the balance is rejected."""
        debt = DebtInput(name="Card", balance=10000.0, interest_rate=24.0, minimum_payment=150.0)

        with pytest.raises(InvalidParameterError) as exc_info:
            planner.debt_payoff_plan([debt])

        assert exc_info.value.parameter == "minimum_payment"

    def test_no_open_debts_rejected(self, planner):
        with pytest.raises(InvalidParameterError):
            planner.debt_payoff_plan([])
        with pytest.raises(InvalidParameterError):
            planner.debt_payoff_plan([DebtInput(name="Paid", balance=0.0, interest_rate=5.0, minimum_payment=10.0)])

    def test_unknown_strategy_rejected(self, planner, debts):
        with pytest.raises(InvalidParameterError):
            planner.debt_payoff_plan(debts, "lottery")


# =============================================================================
# Recommendation Tests
# =============================================================================

class TestRecommendations:
    """Tests for rule-based recommendations."""

    def test_missing_snapshot(self, planner):
        assert planner.recommendations(None) == []
        assert planner.recommendations(FinancialSnapshot()) == []

    def test_low_savings_rate_is_medium(self, planner):
        snapshot = FinancialSnapshot(spending=SpendingSnapshot(total_income=5000.0, total_spent=4800.0))
        recs = planner.recommendations(snapshot)

        assert [(r.type, r.priority) for r in recs] == [("savings", "medium")]

    def test_negative_savings_rate_is_high(self, planner):
        snapshot = FinancialSnapshot(spending=SpendingSnapshot(total_income=5000.0, total_spent=5500.0))
        assert planner.recommendations(snapshot)[0].priority == "high"

    def test_healthy_savings_rate_is_quiet(self, planner):
        snapshot = FinancialSnapshot(spending=SpendingSnapshot(total_income=5000.0, total_spent=3000.0))
        assert planner.recommendations(snapshot) == []

    def test_high_income_suggests_investing(self, planner):
        recs = planner.recommendations(FinancialSnapshot(annual_income=60000.0))
        assert [(r.type, r.priority) for r in recs] == [("investment", "medium")]

    def test_over_budget_sorted_first(self, planner):
        snapshot = FinancialSnapshot(
            budgets=[
                BudgetUtilization(budget_id="b1", name="Dining", utilization_percentage=120.0),
                BudgetUtilization(budget_id="b2", name="Rent", utilization_percentage=90.0),
            ],
            annual_income=80000.0,
        )
        recs = planner.recommendations(snapshot)

        assert [r.type for r in recs] == ["budget", "investment"]
        assert "Dining" in recs[0].description
        assert "Rent" not in recs[0].description
