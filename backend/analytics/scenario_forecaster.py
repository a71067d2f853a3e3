"""
Module: scenario_forecaster.py
Description: Optimistic / realistic / pessimistic financial projections.

Three fixed assumption presets are compounded over a planning horizon:
    - generate_scenarios(): annual periods from an income/expense baseline
    - financial_forecast(): monthly periods from trailing history, with
      category sub-forecasts and risk factors
    - cash_flow_prediction(): daily smoothed inflow/outflow with a running
      balance, monthly roll-ups and the same three scenarios

Author: Budget Analytics Team
Created: 2025-02-13
"""

from datetime import date
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from config import AnalyticsSettings, get_settings
from schemas import (
    CashFlowPoint,
    CashFlowPrediction,
    CategoryForecast,
    CategoryRecord,
    DateRange,
    FinancialBaseline,
    FinancialForecast,
    MonthlyCashFlow,
    RiskFactor,
    Scenario,
    ScenarioAssumptions,
    ScenarioProjection,
    TransactionRecord,
)
from analytics.errors import InsufficientDataError, InvalidParameterError
from analytics.pattern_detector import fit_line
from analytics.time_series import days_in_range, distinct_days, records_to_frame, validate_date_range


DAYS_PER_MONTH = 30.4375
SMOOTHING_ALPHA = 0.3
CATEGORY_TREND_THRESHOLD = 0.05  # 5% of the monthly average per month
LOW_SAVINGS_RATE = 0.10
INCOME_VOLATILITY_CV = 0.3
EXPENSE_CONCENTRATION_SHARE = 0.4
INCOME_CONCENTRATION_SHARE = 0.9

# Fixed order: optimistic -> realistic -> pessimistic
SCENARIO_PRESETS = [
    {
        'scenario_type': 'optimistic',
        'name': 'Optimistic Growth',
        'description': 'Strong income growth with contained expenses.',
        'probability': 0.2,
        'income_growth': 5.0,
        'expense_growth': 2.0,
        'inflation_rate': 2.0,
        'investment_return': 8.0,
    },
    {
        'scenario_type': 'realistic',
        'name': 'Steady State',
        'description': 'Income and expenses grow in line with inflation.',
        'probability': 0.6,
        'income_growth': 3.0,
        'expense_growth': 3.0,
        'inflation_rate': 3.0,
        'investment_return': 6.0,
    },
    {
        'scenario_type': 'pessimistic',
        'name': 'Economic Pressure',
        'description': 'Slow income growth while expenses rise faster.',
        'probability': 0.2,
        'income_growth': 1.0,
        'expense_growth': 4.0,
        'inflation_rate': 4.0,
        'investment_return': 3.0,
    },
]


def months_in_range(start: date, end: date) -> List[str]:
    """Calendar months (YYYY-MM) touched by [start, end]."""
    return [p.strftime('%Y-%m') for p in pd.period_range(start, end, freq='M')]


def monthly_rate(annual_percent: float) -> float:
    """Annual percent growth converted to an equivalent monthly rate."""
    return (1 + annual_percent / 100) ** (1 / 12) - 1


class ScenarioForecaster:
    """Scenario-based projections; all methods are pure over their inputs."""

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Annual scenarios
    # -------------------------------------------------------------------------

    def generate_scenarios(self, baseline: FinancialBaseline, years: int) -> List[Scenario]:
        """Exactly three scenarios, one projection per year."""
        if years is None or years < 1:
            raise InvalidParameterError("Planning horizon must be at least one year", parameter="years", value=years)

        return [
            self._project(
                preset,
                baseline.annual_income,
                baseline.annual_expenses,
                baseline.net_worth,
                labels=[f"Year {y}" for y in range(1, years + 1)],
                income_rate=preset['income_growth'] / 100,
                expense_rate=preset['expense_growth'] / 100,
                return_rate=preset['investment_return'] / 100,
            )
            for preset in SCENARIO_PRESETS
        ]

    def monthly_scenarios(
        self,
        monthly_income: float,
        monthly_expenses: float,
        months: List[str],
        net_worth: float = 0.0,
    ) -> List[Scenario]:
        """Same presets over a monthly horizon, using monthly-equivalent rates."""
        return [
            self._project(
                preset,
                monthly_income,
                monthly_expenses,
                net_worth,
                labels=months,
                income_rate=monthly_rate(preset['income_growth']),
                expense_rate=monthly_rate(preset['expense_growth']),
                return_rate=monthly_rate(preset['investment_return']),
            )
            for preset in SCENARIO_PRESETS
        ]

    def _project(
        self,
        preset: Dict,
        income: float,
        expenses: float,
        net_worth: float,
        labels: List[str],
        income_rate: float,
        expense_rate: float,
        return_rate: float,
    ) -> Scenario:
        projections = []
        for period, label in enumerate(labels, start=1):
            income *= 1 + income_rate
            expenses *= 1 + expense_rate
            savings = income - expenses
            net_worth = net_worth * (1 + return_rate) + savings
            projections.append(ScenarioProjection(
                period=period,
                label=label,
                income=round(income, 2),
                expenses=round(expenses, 2),
                savings=round(savings, 2),
                net_worth=round(net_worth, 2),
            ))

        return Scenario(
            scenario_type=preset['scenario_type'],
            name=preset['name'],
            description=preset['description'],
            probability=preset['probability'],
            assumptions=ScenarioAssumptions(
                income_growth=preset['income_growth'],
                expense_growth=preset['expense_growth'],
                inflation_rate=preset['inflation_rate'],
                investment_return=preset['investment_return'],
            ),
            projections=projections,
        )

    # -------------------------------------------------------------------------
    # Monthly financial forecast
    # -------------------------------------------------------------------------

    def financial_forecast(
        self,
        history: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
        categories: Optional[Sequence[CategoryRecord]] = None,
    ) -> FinancialForecast:
        validate_date_range(start_date, end_date)
        self._require_history(history)

        df = records_to_frame(history)
        history_months = self._history_months(df)
        monthly_income = float(df.loc[df['type'] == 'income', 'amount'].sum()) / history_months
        monthly_expenses = float(df.loc[df['type'] == 'expense', 'amount'].sum()) / history_months

        months = months_in_range(start_date, end_date)
        category_forecasts = self._category_forecasts(df, history_months, categories)

        return FinancialForecast(
            period=DateRange(start=start_date, end=end_date),
            base_monthly_income=round(monthly_income, 2),
            base_monthly_expenses=round(monthly_expenses, 2),
            base_monthly_savings=round(monthly_income - monthly_expenses, 2),
            scenarios=self.monthly_scenarios(monthly_income, monthly_expenses, months),
            category_forecasts=category_forecasts,
            risk_factors=self._forecast_risks(df, monthly_income, monthly_expenses, category_forecasts),
            methodology="Trailing monthly averages compounded under three growth scenarios",
        )

    # -------------------------------------------------------------------------
    # Cash flow
    # -------------------------------------------------------------------------

    def cash_flow_prediction(
        self,
        history: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
        current_balance: float = 0.0,
        categories: Optional[Sequence[CategoryRecord]] = None,
    ) -> CashFlowPrediction:
        """
        Daily inflow/outflow forecast with a running balance.

        Weekly inflow and outflow totals are exponentially smoothed
        (alpha=0.3); the smoothed weekly level is spread evenly per day.
        """
        validate_date_range(start_date, end_date)
        self._require_history(history)

        df = records_to_frame(history)
        daily_inflow = self._smoothed_daily(df[df['type'] == 'income'], df)
        daily_outflow = self._smoothed_daily(df[df['type'] == 'expense'], df)

        predictions = []
        balance = current_balance
        for day in days_in_range(start_date, end_date):
            net_flow = daily_inflow - daily_outflow
            balance += net_flow
            predictions.append(CashFlowPoint(
                date=day,
                inflow=round(daily_inflow, 2),
                outflow=round(daily_outflow, 2),
                net_flow=round(net_flow, 2),
                balance=round(balance, 2),
            ))

        history_months = self._history_months(df)
        category_projections = self._category_forecasts(df, history_months, categories)

        return CashFlowPrediction(
            period=DateRange(start=start_date, end=end_date),
            starting_balance=round(current_balance, 2),
            predictions=predictions,
            monthly_projections=self._monthly_cash_flow(predictions),
            category_projections=category_projections,
            scenarios=self.monthly_scenarios(
                daily_inflow * DAYS_PER_MONTH,
                daily_outflow * DAYS_PER_MONTH,
                months_in_range(start_date, end_date),
                net_worth=current_balance,
            ),
            risk_factors=self._cash_flow_risks(df, predictions, daily_inflow, daily_outflow),
            methodology="Exponential smoothing of weekly inflow and outflow totals (alpha=0.3)",
        )

    def _smoothed_daily(self, flows: pd.DataFrame, df: pd.DataFrame) -> float:
        if flows.empty:
            return 0.0
        index = pd.date_range(df['date'].min(), df['date'].max(), freq='D')
        daily = flows.groupby('date')['amount'].sum().reindex(index, fill_value=0.0)
        weekly = daily.resample('7D').sum()
        level = float(weekly.iloc[0])
        for value in weekly.iloc[1:]:
            level = SMOOTHING_ALPHA * float(value) + (1 - SMOOTHING_ALPHA) * level
        return level / 7

    def _monthly_cash_flow(self, predictions: List[CashFlowPoint]) -> List[MonthlyCashFlow]:
        months: Dict[str, Dict[str, float]] = {}
        for point in predictions:
            key = point.date.strftime('%Y-%m')
            month = months.setdefault(key, {'inflow': 0.0, 'outflow': 0.0, 'ending_balance': 0.0})
            month['inflow'] += point.inflow
            month['outflow'] += point.outflow
            month['ending_balance'] = point.balance

        return [
            MonthlyCashFlow(
                month=key,
                inflow=round(values['inflow'], 2),
                outflow=round(values['outflow'], 2),
                net_flow=round(values['inflow'] - values['outflow'], 2),
                ending_balance=round(values['ending_balance'], 2),
            )
            for key, values in months.items()
        ]

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def _require_history(self, history: Sequence[TransactionRecord]) -> None:
        available = distinct_days(history)
        required = self.settings.min_history_days
        if available < required:
            raise InsufficientDataError(
                f"Insufficient historical data for forecast: need at least {required} "
                f"days of data, found {available}",
                required=required,
                available=available,
            )

    def _history_months(self, df: pd.DataFrame) -> float:
        span_days = (df['date'].max() - df['date'].min()).days + 1
        return max(1.0, span_days / DAYS_PER_MONTH)

    def _category_forecasts(
        self,
        df: pd.DataFrame,
        history_months: float,
        categories: Optional[Sequence[CategoryRecord]],
    ) -> List[CategoryForecast]:
        """Average monthly spend per expense category plus a one-month-ahead fit."""
        names = {c.id: c.name for c in categories or []}
        expenses = df[df['type'] == 'expense'].copy()
        if expenses.empty:
            return []

        expenses['month'] = expenses['date'].dt.to_period('M')
        forecasts = []
        for category_id, cat_df in expenses.groupby(expenses['category_id'].fillna('__none__')):
            monthly = cat_df.groupby('month')['amount'].sum()
            current = float(cat_df['amount'].sum()) / history_months
            predicted, direction, confidence = current, 'stable', 0.5

            if len(monthly) >= 2 and current > 0:
                x = np.arange(len(monthly), dtype=float)
                reg = fit_line(x, monthly.to_numpy(dtype=float))
                slope = float(reg.coef_[0])
                predicted = max(0.0, float(reg.predict([[len(monthly)]])[0]))
                if abs(slope) / current > CATEGORY_TREND_THRESHOLD:
                    direction = 'increasing' if slope > 0 else 'decreasing'
                confidence = min(0.9, 0.5 + 0.1 * len(monthly))

            resolved_id = None if category_id == '__none__' else category_id
            forecasts.append(CategoryForecast(
                category_id=resolved_id,
                category_name=names.get(resolved_id, 'Uncategorized'),
                current_monthly=round(current, 2),
                predicted_monthly=round(predicted, 2),
                trend=direction,
                confidence=round(confidence, 2),
            ))

        forecasts.sort(key=lambda f: f.current_monthly, reverse=True)
        return forecasts

    def _forecast_risks(
        self,
        df: pd.DataFrame,
        monthly_income: float,
        monthly_expenses: float,
        category_forecasts: List[CategoryForecast],
    ) -> List[RiskFactor]:
        risks = []

        if monthly_expenses > monthly_income:
            risks.append(RiskFactor(
                factor="negative_cash_flow",
                impact="high",
                probability=0.8,
                description=(
                    f"Monthly expenses (${monthly_expenses:.2f}) exceed income "
                    f"(${monthly_income:.2f})."
                ),
                mitigation=["Cut discretionary categories first", "Look for additional income sources"],
            ))
        elif monthly_income > 0 and (monthly_income - monthly_expenses) / monthly_income < LOW_SAVINGS_RATE:
            risks.append(RiskFactor(
                factor="low_savings_rate",
                impact="medium",
                probability=0.6,
                description="Less than 10% of income is left after expenses.",
                mitigation=["Automate a fixed monthly transfer to savings"],
            ))

        income = df[df['type'] == 'income']
        if not income.empty:
            monthly_income_totals = income.groupby(income['date'].dt.to_period('M'))['amount'].sum()
            if len(monthly_income_totals) >= 2:
                mean = float(monthly_income_totals.mean())
                cv = float(monthly_income_totals.std(ddof=0)) / mean if mean > 0 else 0.0
                if cv > INCOME_VOLATILITY_CV:
                    risks.append(RiskFactor(
                        factor="income_volatility",
                        impact="medium",
                        probability=round(min(0.9, cv), 2),
                        description=f"Monthly income varies by {cv * 100:.0f}% around its average.",
                        mitigation=["Build an emergency fund covering 3-6 months of expenses"],
                    ))

        if monthly_expenses > 0 and category_forecasts:
            top = category_forecasts[0]
            share = top.current_monthly / monthly_expenses
            if share > EXPENSE_CONCENTRATION_SHARE:
                risks.append(RiskFactor(
                    factor="expense_concentration",
                    impact="low",
                    probability=0.4,
                    description=f"{top.category_name} accounts for {share * 100:.0f}% of expenses.",
                    mitigation=[f"Review whether {top.category_name} costs can be reduced"],
                ))

        return risks

    def _cash_flow_risks(
        self,
        df: pd.DataFrame,
        predictions: List[CashFlowPoint],
        daily_inflow: float,
        daily_outflow: float,
    ) -> List[RiskFactor]:
        risks = []

        negative_days = [p for p in predictions if p.balance < 0]
        if negative_days:
            first = negative_days[0]
            risks.append(RiskFactor(
                factor="negative_balance",
                impact="high",
                probability=0.8,
                description=f"Balance is projected to go negative on {first.date.isoformat()}.",
                mitigation=["Delay non-essential purchases", "Move funds from savings before that date"],
            ))

        if daily_outflow > daily_inflow:
            monthly_gap = (daily_outflow - daily_inflow) * DAYS_PER_MONTH
            risks.append(RiskFactor(
                factor="declining_cash_flow",
                impact="medium",
                probability=0.7,
                description=f"Outflows exceed inflows by about ${monthly_gap:.2f} per month.",
                mitigation=["Reduce recurring expenses", "Review subscriptions"],
            ))

        income = df[df['type'] == 'income']
        total_income = float(income['amount'].sum())
        if total_income > 0:
            largest_source = float(income.groupby(income['category_id'].fillna('__none__'))['amount'].sum().max())
            if largest_source / total_income > INCOME_CONCENTRATION_SHARE:
                risks.append(RiskFactor(
                    factor="income_concentration",
                    impact="low",
                    probability=0.3,
                    description="Nearly all income comes from a single source.",
                    mitigation=["Consider diversifying income sources"],
                ))

        return risks
