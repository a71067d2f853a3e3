"""
Module: financial_planner.py
Description: Goal tracking, retirement projection, debt payoff and
rule-based recommendations.

Unlike the forecasting components, these calculators work from values
the user supplies (balances, rates, contributions) rather than from
transaction history. Recommendations consume aggregates produced
elsewhere and tolerate missing pieces.

Author: Budget Analytics Team
Created: 2025-02-16

Usage:
    planner = FinancialPlanner()
    plan = planner.debt_payoff_plan(debts, strategy="avalanche", extra_payment=200)
"""

import math
import uuid
from datetime import date
from typing import List, Optional, Sequence, Union

import pandas as pd

from schemas import (
    DebtInput,
    DebtPayoffPlan,
    DebtTimelineEntry,
    FinancialGoal,
    FinancialRecommendation,
    FinancialSnapshot,
    PrioritizedDebt,
    RetirementPlan,
)
from analytics.errors import InvalidParameterError


def add_months(start: date, months: int) -> date:
    return (pd.Timestamp(start) + pd.DateOffset(months=months)).date()


def future_value(savings: float, contribution: float, annual_return: float, months: int) -> float:
    """FV of current savings plus a monthly annuity, compounded monthly."""
    rate = annual_return / 100 / 12
    if rate == 0:
        return savings + contribution * months
    growth = (1 + rate) ** months
    return savings * growth + contribution * (growth - 1) / rate


class FinancialPlanner:
    """Planning calculators; every method is pure."""

    # Goal risk: months needed vs. months available before target date
    MEDIUM_RISK_RATIO = 0.8

    # Recommendation triggers
    LOW_SAVINGS_RATE = 0.10
    INVESTMENT_INCOME_THRESHOLD = 50000
    MAX_RETIREMENT_DELAY_YEARS = 15

    DEBT_STRATEGIES = ('avalanche', 'snowball')
    MAX_PAYOFF_MONTHS = 1200
    CENT = 0.005

    PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    def create_goal(
        self,
        name: str,
        target_amount: float,
        monthly_contribution: float = 0.0,
        target_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> FinancialGoal:
        """New goal with current_amount=0 and status not_started."""
        if target_amount is None or target_amount <= 0:
            raise InvalidParameterError("Goal target amount must be positive", parameter="target_amount", value=target_amount)
        if monthly_contribution < 0:
            raise InvalidParameterError(
                "Monthly contribution cannot be negative",
                parameter="monthly_contribution",
                value=monthly_contribution,
            )

        today = today or date.today()
        goal = FinancialGoal(
            id=str(uuid.uuid4()),
            name=name,
            target_amount=target_amount,
            monthly_contribution=monthly_contribution,
            target_date=target_date,
        )
        return goal.model_copy(update={
            'estimated_completion_date': self._estimated_completion(goal, 0.0, today),
            'risk_level': self._goal_risk(goal, 0.0, today),
        })

    def update_progress(
        self,
        goal: FinancialGoal,
        current_amount: float,
        today: Optional[date] = None,
    ) -> FinancialGoal:
        """
        Return a new goal snapshot for `current_amount`.

        progress = clamp(current / target * 100, 0, 100); status is
        completed at 100, in_progress above zero, else not_started.
        The input goal is left untouched.
        """
        if current_amount is None or current_amount < 0:
            raise InvalidParameterError("Current amount cannot be negative", parameter="current_amount", value=current_amount)

        today = today or date.today()
        progress = min(100.0, max(0.0, current_amount / goal.target_amount * 100))

        if progress >= 100:
            status = 'completed'
        elif current_amount > 0:
            status = 'in_progress'
        else:
            status = 'not_started'

        return goal.model_copy(update={
            'current_amount': current_amount,
            'progress_percentage': progress,
            'status': status,
            'estimated_completion_date': (
                today if status == 'completed' else self._estimated_completion(goal, current_amount, today)
            ),
            'risk_level': 'low' if status == 'completed' else self._goal_risk(goal, current_amount, today),
        })

    def _months_needed(self, goal: FinancialGoal, current_amount: float) -> Optional[int]:
        remaining = goal.target_amount - current_amount
        if remaining <= 0:
            return 0
        if goal.monthly_contribution <= 0:
            return None
        return math.ceil(remaining / goal.monthly_contribution)

    def _estimated_completion(self, goal: FinancialGoal, current_amount: float, today: date) -> Optional[date]:
        months = self._months_needed(goal, current_amount)
        if months is None:
            return None
        return add_months(today, months)

    def _goal_risk(self, goal: FinancialGoal, current_amount: float, today: date) -> str:
        months = self._months_needed(goal, current_amount)
        if months is None:
            return 'high'
        if goal.target_date is None:
            return 'low'

        available = (goal.target_date.year - today.year) * 12 + (goal.target_date.month - today.month)
        if months > available:
            return 'high'
        if months > available * self.MEDIUM_RISK_RATIO:
            return 'medium'
        return 'low'

    # -------------------------------------------------------------------------
    # Retirement
    # -------------------------------------------------------------------------

    def retirement_plan(
        self,
        current_savings: float,
        monthly_contribution: float,
        expected_return: float,
        target_amount: float,
        current_age: int = 30,
        retirement_age: Optional[int] = None,
        years: Optional[int] = None,
        inflation_rate: float = 3.0,
    ) -> RetirementPlan:
        """
        Project retirement savings with monthly compounding.

        Either `retirement_age` or `years` (to retirement) must be given.
        """
        if retirement_age is None and years is None:
            raise InvalidParameterError("Provide retirement_age or years to retirement", parameter="retirement_age")
        years_to_retirement = years if years is not None else retirement_age - current_age
        retirement_age = current_age + years_to_retirement
        if years_to_retirement <= 0:
            raise InvalidParameterError(
                "Retirement must be in the future",
                parameter="years",
                value=years_to_retirement,
            )
        if target_amount <= 0:
            raise InvalidParameterError("Retirement target must be positive", parameter="target_amount", value=target_amount)
        if current_savings < 0 or monthly_contribution < 0:
            raise InvalidParameterError("Savings and contributions cannot be negative", parameter="current_savings")

        months = years_to_retirement * 12
        projected = future_value(current_savings, monthly_contribution, expected_return, months)
        inflation_adjusted = projected / (1 + inflation_rate / 100) ** years_to_retirement
        shortfall = max(0.0, target_amount - projected)
        required = self._required_contribution(current_savings, expected_return, months, target_amount)

        recommendations = []
        if shortfall > 0:
            recommendations.append(
                f"Increase your monthly contribution to ${required:,.2f} "
                f"(an extra ${required - monthly_contribution:,.2f} per month) to reach ${target_amount:,.0f}."
            )
            delay = self._retirement_delay(current_savings, monthly_contribution, expected_return, months, target_amount)
            if delay is not None:
                recommendations.append(
                    f"Alternatively, retiring {delay} years later (age {retirement_age + delay}) closes the gap."
                )
            higher = future_value(current_savings, monthly_contribution, expected_return + 1, months)
            recommendations.append(
                f"Each extra 1% of annual return adds about ${higher - projected:,.0f} by retirement; "
                f"review your investment mix."
            )
        else:
            recommendations.append("You are on track to reach your retirement target.")

        recommendations.append(
            f"In today's dollars your projected savings are worth about ${inflation_adjusted:,.0f} "
            f"at {inflation_rate:.1f}% inflation."
        )

        return RetirementPlan(
            current_age=current_age,
            retirement_age=retirement_age,
            years_to_retirement=years_to_retirement,
            current_savings=current_savings,
            monthly_contribution=monthly_contribution,
            expected_return=expected_return,
            inflation_rate=inflation_rate,
            target_amount=target_amount,
            projected_amount=round(projected, 2),
            inflation_adjusted_amount=round(inflation_adjusted, 2),
            shortfall=round(shortfall, 2),
            required_monthly_contribution=round(required, 2),
            recommendations=recommendations,
        )

    def _required_contribution(self, savings: float, annual_return: float, months: int, target: float) -> float:
        grown_savings = future_value(savings, 0.0, annual_return, months)
        annuity_factor = future_value(0.0, 1.0, annual_return, months)
        if annuity_factor <= 0:
            return 0.0
        return max(0.0, (target - grown_savings) / annuity_factor)

    def _retirement_delay(
        self,
        savings: float,
        contribution: float,
        annual_return: float,
        months: int,
        target: float,
    ) -> Optional[int]:
        for extra_years in range(1, self.MAX_RETIREMENT_DELAY_YEARS + 1):
            if future_value(savings, contribution, annual_return, months + extra_years * 12) >= target:
                return extra_years
        return None

    # -------------------------------------------------------------------------
    # Debt payoff
    # -------------------------------------------------------------------------

    def debt_payoff_plan(
        self,
        debts: Sequence[Union[DebtInput, dict]],
        strategy: str = 'avalanche',
        extra_payment: float = 0.0,
    ) -> DebtPayoffPlan:
        """
        Month-by-month amortization under avalanche or snowball ordering.

        Every month interest accrues, each open debt receives its minimum,
        then the extra payment plus minimums freed by paid-off debts go to
        the open debts in priority order.

        Raises:
            InvalidParameterError: unknown strategy, no debts, negative
            extra payment, or a minimum payment that does not exceed the
            debt's monthly interest.
        """
        if strategy not in self.DEBT_STRATEGIES:
            raise InvalidParameterError(f"Unknown payoff strategy: {strategy}", parameter="strategy", value=strategy)
        if extra_payment < 0:
            raise InvalidParameterError("Extra payment cannot be negative", parameter="extra_payment", value=extra_payment)

        parsed = [d if isinstance(d, DebtInput) else DebtInput(**d) for d in debts]
        open_debts = [d for d in parsed if d.balance > 0]
        if not open_debts:
            raise InvalidParameterError("At least one debt with a positive balance is required", parameter="debts")

        for debt in open_debts:
            monthly_interest = debt.balance * debt.interest_rate / 1200
            if debt.minimum_payment <= monthly_interest:
                raise InvalidParameterError(
                    f"Minimum payment for {debt.name} (${debt.minimum_payment:.2f}) does not cover "
                    f"its monthly interest (${monthly_interest:.2f})",
                    parameter="minimum_payment",
                    value=debt.minimum_payment,
                )

        if strategy == 'avalanche':
            ordered = sorted(open_debts, key=lambda d: (-d.interest_rate, d.balance))
        else:
            ordered = sorted(open_debts, key=lambda d: (d.balance, -d.interest_rate))

        prioritized = [
            PrioritizedDebt(**d.model_dump(), priority=i + 1) for i, d in enumerate(ordered)
        ]
        monthly_budget = sum(d.minimum_payment for d in ordered) + extra_payment

        balances = [d.balance for d in ordered]
        timeline = []
        payoff_order = []
        total_interest = 0.0
        month = 0

        while sum(balances) > self.CENT:
            month += 1
            if month > self.MAX_PAYOFF_MONTHS:
                raise InvalidParameterError("Debt payoff does not complete within 100 years", parameter="debts")

            interest = 0.0
            for i, debt in enumerate(ordered):
                if balances[i] > 0:
                    charge = balances[i] * debt.interest_rate / 1200
                    balances[i] += charge
                    interest += charge

            available = monthly_budget
            for i, debt in enumerate(ordered):
                if balances[i] > 0:
                    payment = min(debt.minimum_payment, balances[i])
                    balances[i] -= payment
                    available -= payment

            for i in range(len(ordered)):
                if available <= 0:
                    break
                if balances[i] > 0:
                    payment = min(available, balances[i])
                    balances[i] -= payment
                    available -= payment

            for i, debt in enumerate(ordered):
                if balances[i] <= self.CENT and debt.name not in payoff_order:
                    balances[i] = 0.0
                    payoff_order.append(debt.name)

            paid = monthly_budget - available
            total_interest += interest
            timeline.append(DebtTimelineEntry(
                month=month,
                remaining_debt=round(sum(balances), 2),
                payment=round(paid, 2),
                interest=round(interest, 2),
                principal=round(paid - interest, 2),
            ))

        return DebtPayoffPlan(
            strategy=strategy,
            debts=prioritized,
            total_debt=round(sum(d.balance for d in ordered), 2),
            extra_payment=extra_payment,
            monthly_payment=round(monthly_budget, 2),
            timeline=timeline,
            total_interest=round(total_interest, 2),
            payoff_months=month,
            payoff_order=payoff_order,
        )

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    def recommendations(self, snapshot: Optional[FinancialSnapshot]) -> List[FinancialRecommendation]:
        """Rule-based recommendations; missing aggregates simply skip their rule."""
        if snapshot is None:
            return []

        recommendations = []

        over_budget = [
            b for b in snapshot.budgets or []
            if b.utilization_percentage is not None and b.utilization_percentage > 100
        ]
        if over_budget:
            names = ", ".join(b.name or b.budget_id or "unnamed budget" for b in over_budget)
            recommendations.append(FinancialRecommendation(
                type='budget',
                priority='high',
                title='Budgets exceeded',
                description=f"You are over budget in: {names}.",
                action_items=[
                    "Review spending in the exceeded budgets",
                    "Adjust allocations or cut discretionary purchases",
                ],
                impact="Prevents further overspending this period",
            ))

        spending = snapshot.spending
        if spending and spending.total_income and spending.total_spent is not None and spending.total_income > 0:
            savings_rate = (spending.total_income - spending.total_spent) / spending.total_income
            if savings_rate < self.LOW_SAVINGS_RATE:
                recommendations.append(FinancialRecommendation(
                    type='savings',
                    priority='high' if savings_rate < 0 else 'medium',
                    title='Increase your savings rate',
                    description=(
                        f"You are saving {savings_rate * 100:.1f}% of your income; "
                        f"aim for at least {self.LOW_SAVINGS_RATE * 100:.0f}%."
                    ),
                    action_items=[
                        "Automate a transfer to savings on payday",
                        "Identify one recurring expense to cancel",
                    ],
                    impact="Builds an emergency cushion",
                ))

        if snapshot.annual_income and snapshot.annual_income > self.INVESTMENT_INCOME_THRESHOLD:
            recommendations.append(FinancialRecommendation(
                type='investment',
                priority='medium',
                title='Put surplus income to work',
                description="Your income supports regular long-term investing.",
                action_items=[
                    "Maximize employer retirement matching",
                    "Consider low-cost index funds for surplus savings",
                ],
                impact="Long-term wealth growth",
            ))

        recommendations.sort(key=lambda r: self.PRIORITY_RANK[r.priority])
        return recommendations
