"""
Module: engine.py
Description: Async facade over the analytics components.

Each coroutine resolves the history window it needs, awaits a single
transaction fetch from the configured source, then hands the records to
the pure, synchronous component that does the work. Errors raised by a
source are logged and re-raised unchanged.

Author: Budget Analytics Team
Created: 2025-02-18

Usage:
    engine = AnalyticsEngine(SQLTransactionSource(), SQLCategorySource(), SQLBudgetSource())
    prediction = asyncio.run(engine.predict_spending(query))
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from config import AnalyticsSettings, get_settings
from schemas import (
    AnomalyDetectionResult,
    BudgetUtilization,
    CashFlowPrediction,
    CategoryRecord,
    DebtInput,
    DebtPayoffPlan,
    FinancialBaseline,
    FinancialForecast,
    FinancialGoal,
    FinancialRecommendation,
    FinancialSnapshot,
    PredictiveInsights,
    PredictiveModel,
    PredictiveQuery,
    RetirementPlan,
    Scenario,
    SpendingPrediction,
    SpendingSnapshot,
    TransactionFilters,
    TransactionRecord,
    TrendAnalysisResult,
)
from analytics.anomaly_detector import AnomalyDetector
from analytics.budget_analytics import BudgetAnalyticsReporter, current_month_range
from analytics.cache import QueryCache, make_key
from analytics.data_sources import BudgetSource, CategorySource, TransactionSource
from analytics.errors import InvalidParameterError
from analytics.financial_planner import FinancialPlanner
from analytics.observability import analysis_context, log_analysis_complete, logger, metrics, timed
from analytics.scenario_forecaster import ScenarioForecaster
from analytics.spending_forecaster import SpendingForecaster
from analytics.time_series import validate_date_range
from analytics.trend_analyzer import TrendAnalyzer


EXPENSE_TYPES = ['expense']
CASH_FLOW_TYPES = ['income', 'expense']
BUDGET_REPORT_TYPES = ('performance', 'variance', 'forecast')
RECOMMENDATION_WINDOW_DAYS = 30
INSIGHTS_HORIZON_DAYS = 30
INSIGHTS_TREND_DAYS = 90


class AnalyticsEngine:
    """One coroutine per analytics capability."""

    def __init__(
        self,
        transactions: TransactionSource,
        categories: Optional[CategorySource] = None,
        budgets: Optional[BudgetSource] = None,
        settings: Optional[AnalyticsSettings] = None,
        cache: Optional[QueryCache] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.transactions = transactions
        self.categories = categories
        self.budgets = budgets
        self.settings = settings or get_settings()
        self.cache = cache
        self.clock = clock

        self.forecaster = SpendingForecaster(self.settings)
        self.anomaly_detector = AnomalyDetector(self.settings)
        self.scenario_forecaster = ScenarioForecaster(self.settings)
        self.trend_analyzer = TrendAnalyzer(self.settings)
        self.budget_reporter = BudgetAnalyticsReporter(self.settings)
        self.planner = FinancialPlanner()

    # =========================================================================
    # Forecasting
    # =========================================================================

    @timed("engine.predict_spending")
    async def predict_spending(self, query: PredictiveQuery) -> SpendingPrediction:
        """Daily spending forecast for [start_date, end_date]."""
        validate_date_range(query.start_date, query.end_date)
        key = make_key("predict_spending", query=query)
        cached = self._cached(key)
        if cached is not None:
            return cached

        history_start, history_end = self._history_window(query.start_date)
        history = await self._fetch(query.user_id, history_start, history_end, query.filters(EXPENSE_TYPES))

        with analysis_context("predict_spending", query.user_id, len(history)):
            prediction = self.forecaster.predict(
                history, query.start_date, query.end_date, history_end=history_end
            )
            log_analysis_complete("predict_spending", {
                "methodology": prediction.methodology,
                "total": f"${prediction.total_predicted_amount:.2f}",
                "confidence": prediction.confidence,
            })
        return self._store(key, prediction)

    @timed("engine.financial_forecast")
    async def get_financial_forecast(self, query: PredictiveQuery) -> FinancialForecast:
        validate_date_range(query.start_date, query.end_date)
        key = make_key("financial_forecast", query=query)
        cached = self._cached(key)
        if cached is not None:
            return cached

        history_start, history_end = self._history_window(query.start_date)
        history = await self._fetch(query.user_id, history_start, history_end, query.filters(CASH_FLOW_TYPES))
        categories = await self._fetch_categories(query.user_id)

        with analysis_context("financial_forecast", query.user_id, len(history)):
            forecast = self.scenario_forecaster.financial_forecast(
                history, query.start_date, query.end_date, categories
            )
            log_analysis_complete("financial_forecast", {
                "monthly_savings": f"${forecast.base_monthly_savings:.2f}",
                "risks": len(forecast.risk_factors),
            })
        return self._store(key, forecast)

    @timed("engine.cash_flow_prediction")
    async def get_cash_flow_prediction(
        self,
        query: PredictiveQuery,
        current_balance: float = 0.0,
    ) -> CashFlowPrediction:
        validate_date_range(query.start_date, query.end_date)
        key = make_key("cash_flow_prediction", query=query, current_balance=current_balance)
        cached = self._cached(key)
        if cached is not None:
            return cached

        history_start, history_end = self._history_window(query.start_date)
        history = await self._fetch(query.user_id, history_start, history_end, query.filters(CASH_FLOW_TYPES))
        categories = await self._fetch_categories(query.user_id)

        with analysis_context("cash_flow_prediction", query.user_id, len(history)):
            prediction = self.scenario_forecaster.cash_flow_prediction(
                history, query.start_date, query.end_date, current_balance, categories
            )
            log_analysis_complete("cash_flow_prediction", {
                "days": len(prediction.predictions),
                "risks": len(prediction.risk_factors),
            })
        return self._store(key, prediction)

    @timed("engine.generate_scenarios")
    async def generate_financial_scenarios(
        self,
        user_id: str,
        years: int,
        baseline: Optional[FinancialBaseline] = None,
    ) -> List[Scenario]:
        """
        Three annual scenarios. Without a baseline, income and expenses
        are the totals over the trailing 12 months.
        """
        if years is None or years < 1:
            raise InvalidParameterError("Planning horizon must be at least one year", parameter="years", value=years)

        if baseline is None:
            today = self.clock()
            history = await self._fetch(
                user_id,
                today - timedelta(days=364),
                today,
                TransactionFilters(transaction_types=CASH_FLOW_TYPES),
            )
            baseline = FinancialBaseline(
                annual_income=sum(t.amount for t in history if t.type == 'income'),
                annual_expenses=sum(t.amount for t in history if t.type == 'expense'),
            )

        with analysis_context("generate_scenarios", user_id, 0):
            scenarios = self.scenario_forecaster.generate_scenarios(baseline, years)
            log_analysis_complete("generate_scenarios", {"years": years, "scenarios": len(scenarios)})
        return scenarios

    @timed("engine.train_model")
    async def train_model(
        self,
        user_id: str,
        model_type: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> PredictiveModel:
        history: List[TransactionRecord] = []
        if model_type in SpendingForecaster.MODEL_TYPES:
            history_start, history_end = self._history_window(self.clock() + timedelta(days=1))
            history = await self._fetch(
                user_id, history_start, history_end, TransactionFilters(transaction_types=EXPENSE_TYPES)
            )

        model = self.forecaster.train_model(user_id, model_type, parameters, history)
        if model.status == "error":
            logger.warning("Model training rejected", model_type=model_type, reason=model.message)
        else:
            logger.info("Model descriptor built", model_type=model_type, status=model.status)
        return model

    # =========================================================================
    # Anomalies & trends
    # =========================================================================

    @timed("engine.detect_anomalies")
    async def detect_anomalies(self, query: PredictiveQuery) -> AnomalyDetectionResult:
        """Score transactions in the window against up to 90 days of prior history."""
        validate_date_range(query.start_date, query.end_date)
        key = make_key("detect_anomalies", query=query)
        cached = self._cached(key)
        if cached is not None:
            return cached

        fetch_start = query.start_date - timedelta(days=self.settings.anomaly_history_days)
        transactions = await self._fetch(query.user_id, fetch_start, query.end_date, query.filters(EXPENSE_TYPES))
        categories = await self._fetch_categories(query.user_id)

        with analysis_context("detect_anomalies", query.user_id, len(transactions)):
            result = self.anomaly_detector.detect(transactions, query.start_date, query.end_date, categories)
            log_analysis_complete("detect_anomalies", {
                "anomalies": result.summary.total_anomalies,
                "scored": result.summary.transactions_scored,
            })
        return self._store(key, result)

    @timed("engine.analyze_trends")
    async def analyze_trends(self, query: PredictiveQuery) -> TrendAnalysisResult:
        validate_date_range(query.start_date, query.end_date)
        key = make_key("analyze_trends", query=query)
        cached = self._cached(key)
        if cached is not None:
            return cached

        transactions = await self._fetch(
            query.user_id, query.start_date, query.end_date, query.filters(EXPENSE_TYPES)
        )
        categories = await self._fetch_categories(query.user_id)

        with analysis_context("analyze_trends", query.user_id, len(transactions)):
            result = self.trend_analyzer.analyze(transactions, query.start_date, query.end_date, categories)
            log_analysis_complete("analyze_trends", {
                "direction": result.overall_trend.direction,
                "insights": len(result.insights),
            })
        return self._store(key, result)

    # =========================================================================
    # Budgets
    # =========================================================================

    @timed("engine.budget_report")
    async def get_budget_report(
        self,
        user_id: str,
        budget_id: str,
        report_type: str = "performance",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        as_of: Optional[date] = None,
    ):
        """
        Performance, variance or forecast report for one budget.

        Performance and variance default to the current calendar month;
        the forecast always covers the budget's own period.
        """
        if report_type not in BUDGET_REPORT_TYPES:
            raise InvalidParameterError(
                f"Unknown budget report type: {report_type}",
                parameter="report_type",
                value=report_type,
            )

        budget = await self._fetch_budget(user_id, budget_id)
        categories = await self._fetch_categories(user_id)
        today = self.clock()

        if report_type == "forecast":
            as_of = as_of or today
            transactions = await self._fetch(
                user_id, budget.period_start, budget.period_end, TransactionFilters(transaction_types=EXPENSE_TYPES)
            )
            with analysis_context("budget_forecast", user_id, len(transactions)):
                report = self.budget_reporter.forecast(budget, transactions, as_of, categories)
                log_analysis_complete("budget_forecast", {"projected_status": report.projected_status})
            return report

        default_start, default_end = current_month_range(today)
        start_date = start_date or default_start
        end_date = end_date or default_end
        validate_date_range(start_date, end_date)

        transactions = await self._fetch(
            user_id, start_date, end_date, TransactionFilters(transaction_types=EXPENSE_TYPES)
        )
        with analysis_context(f"budget_{report_type}", user_id, len(transactions)):
            if report_type == "performance":
                report = self.budget_reporter.performance_report(
                    budget, transactions, start_date, end_date, categories
                )
                log_analysis_complete("budget_performance", {"status": report.status})
            else:
                report = self.budget_reporter.variance_analysis(
                    budget, transactions, start_date, end_date, categories
                )
                log_analysis_complete("budget_variance", {"net_variance": report.summary.net_variance})
        return report

    # =========================================================================
    # Planning
    # =========================================================================

    @timed("engine.create_goal")
    async def create_goal(
        self,
        name: str,
        target_amount: float,
        monthly_contribution: float = 0.0,
        target_date: Optional[date] = None,
    ) -> FinancialGoal:
        return self.planner.create_goal(name, target_amount, monthly_contribution, target_date, today=self.clock())

    @timed("engine.update_goal_progress")
    async def update_goal_progress(self, goal: FinancialGoal, current_amount: float) -> FinancialGoal:
        return self.planner.update_progress(goal, current_amount, today=self.clock())

    @timed("engine.retirement_plan")
    async def create_retirement_plan(self, **params) -> RetirementPlan:
        """Keyword arguments are those of FinancialPlanner.retirement_plan."""
        return self.planner.retirement_plan(**params)

    @timed("engine.debt_payoff_plan")
    async def create_debt_payoff_plan(
        self,
        debts: Sequence[Union[DebtInput, dict]],
        strategy: str = "avalanche",
        extra_payment: float = 0.0,
    ) -> DebtPayoffPlan:
        plan = self.planner.debt_payoff_plan(debts, strategy, extra_payment)
        logger.info(
            "Debt payoff planned",
            strategy=strategy,
            months=plan.payoff_months,
            interest=f"${plan.total_interest:.2f}",
        )
        return plan

    @timed("engine.recommendations")
    async def get_financial_recommendations(
        self,
        user_id: str,
        budget_ids: Optional[Sequence[str]] = None,
        annual_income: Optional[float] = None,
    ) -> List[FinancialRecommendation]:
        """
        Recommendations from the last 30 days of cash flow plus the
        utilization of the given budgets over their own periods.
        """
        today = self.clock()
        budgets = []
        for budget_id in budget_ids or []:
            budget = await self._fetch_budget(user_id, budget_id, required=False)
            if budget is None:
                logger.warning("Budget not found, skipped", budget_id=budget_id)
                continue
            budgets.append(budget)

        window_start = today - timedelta(days=RECOMMENDATION_WINDOW_DAYS - 1)
        fetch_start = min([window_start] + [b.period_start for b in budgets])
        fetch_end = max([today] + [b.period_end for b in budgets])
        transactions = await self._fetch(
            user_id, fetch_start, fetch_end, TransactionFilters(transaction_types=CASH_FLOW_TYPES)
        )

        recent = [t for t in transactions if window_start <= t.date <= today]
        total_income = sum(t.amount for t in recent if t.type == 'income')
        snapshot = FinancialSnapshot(
            spending=SpendingSnapshot(
                total_income=total_income,
                total_spent=sum(t.amount for t in recent if t.type == 'expense'),
            ),
            budgets=[
                BudgetUtilization(
                    budget_id=budget.id,
                    name=budget.name,
                    utilization_percentage=self.budget_reporter.performance_report(
                        budget, transactions, budget.period_start, budget.period_end
                    ).utilization_percentage,
                )
                for budget in budgets
            ],
            annual_income=annual_income if annual_income is not None else total_income * 12,
        )

        recommendations = self.planner.recommendations(snapshot)
        logger.info("Recommendations generated", count=len(recommendations))
        return recommendations

    # =========================================================================
    # Dashboard bundle
    # =========================================================================

    @timed("engine.predictive_insights")
    async def get_predictive_insights(
        self,
        user_id: str,
        horizon_days: int = INSIGHTS_HORIZON_DAYS,
    ) -> PredictiveInsights:
        """Forecast, anomalies, trends and scenarios gathered concurrently."""
        if horizon_days < 1:
            raise InvalidParameterError("Horizon must be at least one day", parameter="horizon_days", value=horizon_days)

        today = self.clock()
        upcoming = PredictiveQuery(
            user_id=user_id,
            start_date=today + timedelta(days=1),
            end_date=today + timedelta(days=horizon_days),
        )
        recent = PredictiveQuery(
            user_id=user_id,
            start_date=today - timedelta(days=RECOMMENDATION_WINDOW_DAYS - 1),
            end_date=today,
        )
        trend_window = PredictiveQuery(
            user_id=user_id,
            start_date=today - timedelta(days=INSIGHTS_TREND_DAYS - 1),
            end_date=today,
        )

        prediction, anomalies, trends, forecast = await asyncio.gather(
            self.predict_spending(upcoming),
            self.detect_anomalies(recent),
            self.analyze_trends(trend_window),
            self.get_financial_forecast(upcoming),
        )

        highlights = [
            f"Expected spending over the next {horizon_days} days: "
            f"${prediction.total_predicted_amount:,.2f} ({prediction.confidence} confidence).",
            trends.overall_trend.description,
        ]
        if anomalies.summary.total_anomalies:
            highlights.append(
                f"{anomalies.summary.total_anomalies} unusual transactions in the last "
                f"{RECOMMENDATION_WINDOW_DAYS} days."
            )
        if forecast.base_monthly_savings < 0:
            highlights.append(
                f"You are spending ${-forecast.base_monthly_savings:,.2f} more than you earn each month."
            )

        return PredictiveInsights(
            user_id=user_id,
            generated_at=datetime.now(timezone.utc),
            spending_prediction=prediction,
            anomalies=anomalies,
            trends=trends,
            forecast=forecast,
            highlights=highlights,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _history_window(self, start_date: date):
        """Lookback window ending the day before `start_date`, capped at today."""
        history_end = min(self.clock(), start_date - timedelta(days=1))
        history_start = history_end - timedelta(days=self.settings.lookback_days - 1)
        return history_start, history_end

    async def _fetch(
        self,
        user_id: str,
        start: date,
        end: date,
        filters: Optional[TransactionFilters] = None,
    ) -> List[TransactionRecord]:
        try:
            return await self.transactions.fetch(user_id, start, end, filters)
        except Exception as e:
            logger.error("Transaction fetch failed", user_id=user_id, error=str(e))
            metrics.increment("engine.fetch_errors", tags={"source": "transactions"})
            raise

    async def _fetch_categories(self, user_id: str) -> List[CategoryRecord]:
        if self.categories is None:
            return []
        try:
            return await self.categories.fetch(user_id)
        except Exception as e:
            logger.error("Category fetch failed", user_id=user_id, error=str(e))
            metrics.increment("engine.fetch_errors", tags={"source": "categories"})
            raise

    async def _fetch_budget(self, user_id: str, budget_id: str, required: bool = True):
        if self.budgets is None:
            raise InvalidParameterError("No budget source configured", parameter="budget_id", value=budget_id)
        try:
            budget = await self.budgets.fetch(user_id, budget_id)
        except Exception as e:
            logger.error("Budget fetch failed", user_id=user_id, error=str(e))
            metrics.increment("engine.fetch_errors", tags={"source": "budgets"})
            raise

        if budget is None and required:
            raise InvalidParameterError(f"Budget not found: {budget_id}", parameter="budget_id", value=budget_id)
        return budget

    def _cached(self, key: str):
        if self.cache is None:
            return None
        return self.cache.get(key)

    def _store(self, key: str, value):
        if self.cache is not None:
            self.cache.set(key, value)
        return value
