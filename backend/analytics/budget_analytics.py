"""
Module: budget_analytics.py
Description: Budget performance, variance and forecast reports.

All reports compare a budget's allocations with actual expense
transactions. Percentages against a zero allocation are reported as 0
instead of raising.

Author: Budget Analytics Team
Created: 2025-02-15
"""

import calendar
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from config import AnalyticsSettings, get_settings
from schemas import (
    BudgetAlert,
    BudgetForecastReport,
    BudgetForecastScenario,
    BudgetPerformanceReport,
    BudgetRecord,
    BudgetStatus,
    BudgetVarianceReport,
    CategoryBudgetForecast,
    CategoryPerformance,
    CategoryRecord,
    CategoryVariance,
    DailySpend,
    DateRange,
    RiskFactor,
    TransactionRecord,
    VarianceSummary,
)
from analytics.time_series import validate_date_range


WARNING_UTILIZATION = 90.0
CRITICAL_UTILIZATION = 100.0
HIGH_IMPACT_VARIANCE = 20.0
MEDIUM_IMPACT_VARIANCE = 10.0
ACCELERATION_RATIO = 0.2

SCENARIO_MULTIPLIERS = (
    ('optimistic', 0.9),
    ('realistic', 1.0),
    ('pessimistic', 1.1),
)


def current_month_range(today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the calendar month containing `today`."""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def safe_percentage(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return part / whole * 100


class BudgetAnalyticsReporter:
    """
    Usage:
        reporter = BudgetAnalyticsReporter()
        report = reporter.performance_report(budget, transactions)
    """

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()

    def classify_status(self, spent: float, allocated: float) -> BudgetStatus:
        """over when spent > allocated; under below the tolerance band."""
        if spent > allocated:
            return 'over'
        utilization = safe_percentage(spent, allocated)
        if utilization < 100 - self.settings.budget_tolerance_percentage:
            return 'under'
        return 'on_track'

    # -------------------------------------------------------------------------
    # Performance
    # -------------------------------------------------------------------------

    def performance_report(
        self,
        budget: BudgetRecord,
        transactions: Sequence[TransactionRecord],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        categories: Optional[Sequence[CategoryRecord]] = None,
        today: Optional[date] = None,
    ) -> BudgetPerformanceReport:
        start_date, end_date = self._resolve_range(start_date, end_date, today)
        expenses = self._expenses(transactions, start_date, end_date)
        names = self._names(categories)

        total_allocated = budget.total_allocated
        total_spent = sum(t.amount for t in expenses)
        utilization = safe_percentage(total_spent, total_allocated)
        variance = total_spent - total_allocated

        by_category = self._group_by_category(expenses)
        category_performance = []
        alerts = self._alerts(None, budget.name, utilization)

        for allocation in budget.category_allocations:
            txns = by_category.get(allocation.category_id, [])
            spent = sum(t.amount for t in txns)
            allocated = allocation.allocated_amount
            cat_utilization = safe_percentage(spent, allocated)
            name = names.get(allocation.category_id, allocation.category_id)

            category_performance.append(CategoryPerformance(
                category_id=allocation.category_id,
                category_name=name,
                allocated=round(allocated, 2),
                spent=round(spent, 2),
                remaining=round(allocated - spent, 2),
                utilization_percentage=round(cat_utilization, 2),
                status=self.classify_status(spent, allocated),
                transaction_count=len(txns),
                average_transaction=round(spent / len(txns), 2) if txns else 0.0,
                largest_transaction=round(max((t.amount for t in txns), default=0.0), 2),
            ))
            alerts.extend(self._alerts(allocation.category_id, name, cat_utilization))

        return BudgetPerformanceReport(
            budget_id=budget.id,
            budget_name=budget.name,
            period=DateRange(start=start_date, end=end_date),
            total_allocated=round(total_allocated, 2),
            total_spent=round(total_spent, 2),
            remaining=round(total_allocated - total_spent, 2),
            utilization_percentage=round(utilization, 2),
            variance_amount=round(variance, 2),
            variance_percentage=round(safe_percentage(variance, total_allocated), 2),
            status=self.classify_status(total_spent, total_allocated),
            category_performance=category_performance,
            daily_spending=self._daily_spending(expenses),
            alerts=alerts,
        )

    # -------------------------------------------------------------------------
    # Variance
    # -------------------------------------------------------------------------

    def variance_analysis(
        self,
        budget: BudgetRecord,
        transactions: Sequence[TransactionRecord],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        categories: Optional[Sequence[CategoryRecord]] = None,
        today: Optional[date] = None,
    ) -> BudgetVarianceReport:
        """Favorable (under-spend) vs. unfavorable (over-spend) per category."""
        start_date, end_date = self._resolve_range(start_date, end_date, today)
        by_category = self._group_by_category(self._expenses(transactions, start_date, end_date))
        names = self._names(categories)

        variances = []
        for allocation in budget.category_allocations:
            spent = sum(t.amount for t in by_category.get(allocation.category_id, []))
            variance = spent - allocation.allocated_amount
            percentage = safe_percentage(variance, allocation.allocated_amount)

            if variance < 0:
                variance_type = 'favorable'
            elif variance > 0:
                variance_type = 'unfavorable'
            else:
                variance_type = 'neutral'

            if abs(percentage) >= HIGH_IMPACT_VARIANCE:
                impact = 'high'
            elif abs(percentage) >= MEDIUM_IMPACT_VARIANCE:
                impact = 'medium'
            else:
                impact = 'low'

            variances.append(CategoryVariance(
                category_id=allocation.category_id,
                category_name=names.get(allocation.category_id, allocation.category_id),
                allocated=round(allocation.allocated_amount, 2),
                spent=round(spent, 2),
                variance=round(variance, 2),
                variance_percentage=round(percentage, 2),
                variance_type=variance_type,
                impact=impact,
            ))

        total_variance = sum(v.variance for v in variances)
        return BudgetVarianceReport(
            budget_id=budget.id,
            period=DateRange(start=start_date, end=end_date),
            category_variances=variances,
            summary=VarianceSummary(
                total_variance=round(total_variance, 2),
                total_variance_percentage=round(safe_percentage(total_variance, budget.total_allocated), 2),
                favorable_variances=round(sum(-v.variance for v in variances if v.variance < 0), 2),
                unfavorable_variances=round(sum(v.variance for v in variances if v.variance > 0), 2),
                net_variance=round(total_variance, 2),
            ),
        )

    # -------------------------------------------------------------------------
    # Forecast
    # -------------------------------------------------------------------------

    def forecast(
        self,
        budget: BudgetRecord,
        transactions: Sequence[TransactionRecord],
        as_of: Optional[date] = None,
        categories: Optional[Sequence[CategoryRecord]] = None,
    ) -> BudgetForecastReport:
        """
        Project end-of-period spend from the trailing run-rate.

        The run-rate is the average daily spend over the last
        `budget_velocity_days` days (or fewer, early in the period).
        """
        period_start, period_end = budget.period_start, budget.period_end
        validate_date_range(period_start, period_end)
        as_of = min(max(as_of or date.today(), period_start), period_end)

        expenses = self._expenses(transactions, period_start, as_of)
        names = self._names(categories)

        days_elapsed = (as_of - period_start).days + 1
        days_remaining = (period_end - as_of).days
        velocity_days = min(self.settings.budget_velocity_days, days_elapsed)
        velocity_start = as_of - timedelta(days=velocity_days - 1)

        spent = sum(t.amount for t in expenses)
        velocity = sum(t.amount for t in expenses if t.date >= velocity_start) / velocity_days
        projected = spent + velocity * days_remaining
        allocated = budget.total_allocated

        by_category = self._group_by_category(expenses)
        category_forecasts = []
        for allocation in budget.category_allocations:
            txns = by_category.get(allocation.category_id, [])
            cat_spent = sum(t.amount for t in txns)
            cat_velocity = sum(t.amount for t in txns if t.date >= velocity_start) / velocity_days
            cat_projected = cat_spent + cat_velocity * days_remaining

            category_forecasts.append(CategoryBudgetForecast(
                category_id=allocation.category_id,
                category_name=names.get(allocation.category_id, allocation.category_id),
                allocated=round(allocation.allocated_amount, 2),
                spent_to_date=round(cat_spent, 2),
                projected_spend=round(cat_projected, 2),
                projected_variance=round(cat_projected - allocation.allocated_amount, 2),
                projected_utilization=round(safe_percentage(cat_projected, allocation.allocated_amount), 2),
                status=self.classify_status(cat_projected, allocation.allocated_amount),
            ))

        scenarios = [
            BudgetForecastScenario(
                scenario=name,
                velocity_multiplier=multiplier,
                projected_spend=round(spent + velocity * multiplier * days_remaining, 2),
                projected_variance=round(spent + velocity * multiplier * days_remaining - allocated, 2),
            )
            for name, multiplier in SCENARIO_MULTIPLIERS
        ]

        period_average = spent / days_elapsed
        return BudgetForecastReport(
            budget_id=budget.id,
            as_of=as_of,
            period=DateRange(start=period_start, end=period_end),
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            daily_velocity=round(velocity, 2),
            spent_to_date=round(spent, 2),
            projected_spend=round(projected, 2),
            projected_variance=round(projected - allocated, 2),
            projected_utilization=round(safe_percentage(projected, allocated), 2),
            projected_status=self.classify_status(projected, allocated),
            category_forecasts=category_forecasts,
            scenarios=scenarios,
            risk_factors=self._forecast_risks(projected, allocated, velocity, period_average),
            recommendations=self._forecast_recommendations(
                spent, projected, allocated, days_remaining, category_forecasts
            ),
        )

    def _forecast_risks(
        self,
        projected: float,
        allocated: float,
        velocity: float,
        period_average: float,
    ) -> List[RiskFactor]:
        risks = []
        utilization = safe_percentage(projected, allocated)
        if utilization > CRITICAL_UTILIZATION:
            risks.append(RiskFactor(
                factor="projected_overspend",
                impact="high",
                probability=0.8,
                description=f"At the current pace the budget ends at {utilization:.0f}% of its allocation.",
                mitigation=["Reduce discretionary spending for the rest of the period"],
            ))
        if period_average > 0 and (velocity - period_average) / period_average > ACCELERATION_RATIO:
            risks.append(RiskFactor(
                factor="accelerating_spend",
                impact="medium",
                probability=0.6,
                description=(
                    f"Recent daily spending (${velocity:.2f}) is above the period average "
                    f"(${period_average:.2f})."
                ),
                mitigation=["Check for one-off purchases in the last week"],
            ))
        return risks

    def _forecast_recommendations(
        self,
        spent: float,
        projected: float,
        allocated: float,
        days_remaining: int,
        category_forecasts: List[CategoryBudgetForecast],
    ) -> List[str]:
        recommendations = []
        if projected > allocated and days_remaining > 0:
            allowance = max(0.0, allocated - spent) / days_remaining
            recommendations.append(
                f"Keep daily spending under ${allowance:.2f} to stay within budget."
            )
        for forecast in category_forecasts:
            if forecast.status == 'over':
                recommendations.append(
                    f"Watch {forecast.category_name}: projected at "
                    f"{forecast.projected_utilization:.0f}% of its allocation."
                )
        return recommendations

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _resolve_range(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        today: Optional[date],
    ) -> Tuple[date, date]:
        default_start, default_end = current_month_range(today)
        start_date = start_date or default_start
        end_date = end_date or default_end
        validate_date_range(start_date, end_date)
        return start_date, end_date

    def _expenses(
        self,
        transactions: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
    ) -> List[TransactionRecord]:
        return [
            t for t in transactions
            if t.type == 'expense' and start_date <= t.date <= end_date
        ]

    def _group_by_category(self, transactions: Sequence[TransactionRecord]) -> Dict[str, List[TransactionRecord]]:
        grouped: Dict[str, List[TransactionRecord]] = defaultdict(list)
        for txn in transactions:
            grouped[txn.category_id].append(txn)
        return grouped

    def _names(self, categories: Optional[Sequence[CategoryRecord]]) -> Dict[str, str]:
        return {c.id: c.name for c in categories or []}

    def _daily_spending(self, expenses: Sequence[TransactionRecord]) -> List[DailySpend]:
        daily: Dict[date, float] = defaultdict(float)
        for txn in expenses:
            daily[txn.date] += txn.amount

        result = []
        cumulative = 0.0
        for day in sorted(daily):
            cumulative += daily[day]
            result.append(DailySpend(date=day, amount=round(daily[day], 2), cumulative=round(cumulative, 2)))
        return result

    def _alerts(self, category_id: Optional[str], name: str, utilization: float) -> List[BudgetAlert]:
        if utilization >= CRITICAL_UTILIZATION:
            return [BudgetAlert(
                type='critical',
                category_id=category_id,
                message=f"{name} has used {utilization:.0f}% of its allocation.",
                utilization_percentage=round(utilization, 2),
            )]
        if utilization >= WARNING_UTILIZATION:
            return [BudgetAlert(
                type='warning',
                category_id=category_id,
                message=f"{name} is at {utilization:.0f}% of its allocation.",
                utilization_percentage=round(utilization, 2),
            )]
        return []
