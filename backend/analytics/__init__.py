"""Predictive analytics over transactions, budgets and financial plans."""

from .errors import AnalyticsError, InsufficientDataError, InvalidParameterError, UpstreamDataError
from .time_series import TimeSeriesAggregator
from .pattern_detector import PatternDetector
from .model_selector import ModelSelector
from .spending_forecaster import SpendingForecaster
from .anomaly_detector import AnomalyDetector
from .scenario_forecaster import ScenarioForecaster
from .trend_analyzer import TrendAnalyzer
from .budget_analytics import BudgetAnalyticsReporter
from .financial_planner import FinancialPlanner
from .cache import QueryCache
from .engine import AnalyticsEngine

__all__ = [
    "AnalyticsError",
    "InsufficientDataError",
    "InvalidParameterError",
    "UpstreamDataError",
    "TimeSeriesAggregator",
    "PatternDetector",
    "ModelSelector",
    "SpendingForecaster",
    "AnomalyDetector",
    "ScenarioForecaster",
    "TrendAnalyzer",
    "BudgetAnalyticsReporter",
    "FinancialPlanner",
    "QueryCache",
    "AnalyticsEngine",
]
