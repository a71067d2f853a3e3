"""Pydantic schemas for analytics inputs and results."""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Literal


TransactionType = Literal["income", "expense", "transfer"]
Granularity = Literal["day", "week", "month"]
Methodology = Literal["linear_regression", "time_series", "seasonal_decomposition", "hybrid"]
ConfidenceLevel = Literal["low", "medium", "high"]
Priority = Literal["low", "medium", "high"]
Severity = Literal["low", "medium", "high", "critical"]
AnomalyType = Literal["amount", "unusual_category", "spending_spike"]
TrendDirection = Literal["increasing", "decreasing", "stable"]
TrendStrength = Literal["weak", "moderate", "strong"]
ScenarioType = Literal["optimistic", "realistic", "pessimistic"]
GoalStatus = Literal["not_started", "in_progress", "completed"]
BudgetStatus = Literal["over", "under", "on_track"]
DebtStrategy = Literal["avalanche", "snowball"]
ModelStatus = Literal["ready", "training", "error"]


# =============================================================================
# Collaborator records
# =============================================================================

class TransactionRecord(BaseModel):
    id: str
    user_id: Optional[str] = None
    amount: float
    date: date
    type: TransactionType = "expense"
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CategoryRecord(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BudgetAllocationRecord(BaseModel):
    category_id: str
    allocated_amount: float = Field(ge=0)

    model_config = ConfigDict(from_attributes=True)


class BudgetRecord(BaseModel):
    id: str
    name: str
    user_id: Optional[str] = None
    total_amount: Optional[float] = None
    period_start: date
    period_end: date
    category_allocations: List[BudgetAllocationRecord] = []

    @property
    def total_allocated(self) -> float:
        """Explicit budget total, else the sum of category allocations."""
        if self.total_amount is not None:
            return self.total_amount
        return sum(a.allocated_amount for a in self.category_allocations)


class TransactionFilters(BaseModel):
    transaction_types: Optional[List[TransactionType]] = None
    categories: Optional[List[str]] = None
    accounts: Optional[List[str]] = None


# =============================================================================
# Queries
# =============================================================================

class DateRange(BaseModel):
    start: date
    end: date


class PredictiveQuery(BaseModel):
    user_id: str
    start_date: date
    end_date: date
    categories: Optional[List[str]] = None
    transaction_types: Optional[List[TransactionType]] = None
    accounts: Optional[List[str]] = None

    def filters(self, default_types: Optional[List[str]] = None) -> TransactionFilters:
        return TransactionFilters(
            transaction_types=self.transaction_types or default_types,
            categories=self.categories,
            accounts=self.accounts,
        )


# =============================================================================
# Time series & forecasting
# =============================================================================

class TimeSeriesPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    amount: float
    count: int


class PatternSignals(BaseModel):
    has_trend: bool
    has_seasonality: bool
    trend_score: float  # relative slope / threshold
    seasonality_score: float  # weekday amplitude / threshold
    slope: float = 0.0
    mean_amount: float = 0.0


class PredictionFactor(BaseModel):
    factor: str
    impact: float
    weight: float


class PredictionPoint(BaseModel):
    date: date
    predicted_amount: float
    confidence: float = Field(ge=0, le=1)
    factors: List[PredictionFactor] = []


class ForecastAccuracy(BaseModel):
    historical_accuracy: float
    r_squared: float
    mean_absolute_error: float
    data_points: int


class RiskFactor(BaseModel):
    factor: str
    impact: Priority
    probability: float
    description: str
    mitigation: List[str] = []


class SpendingPrediction(BaseModel):
    period: DateRange
    predictions: List[PredictionPoint]
    total_predicted_amount: float
    average_daily_prediction: float
    confidence: ConfidenceLevel
    methodology: Methodology
    accuracy: ForecastAccuracy
    risk_factors: List[RiskFactor] = []
    has_trend: bool = False
    has_seasonality: bool = False


class ModelPerformance(BaseModel):
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0


class PredictiveModel(BaseModel):
    """Configuration descriptor with a retrospective fit summary."""
    id: str
    name: str
    type: str
    algorithm: str
    parameters: Dict[str, Any] = {}
    performance: ModelPerformance
    status: ModelStatus
    last_trained: datetime
    message: Optional[str] = None


# =============================================================================
# Anomalies
# =============================================================================

class AnomalyRecord(BaseModel):
    id: str
    type: AnomalyType
    severity: Severity
    expected_value: float
    actual_value: float
    deviation: float
    deviation_percentage: float
    confidence: float = Field(ge=0, le=1)
    explanation: str
    transaction_id: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    transaction_date: Optional[date] = None
    z_score: float = 0.0
    recommendations: List[str] = []


class AnomalySummary(BaseModel):
    total_anomalies: int
    by_severity: Dict[str, int]
    by_type: Dict[str, int]
    average_confidence: float
    detection_accuracy: float
    transactions_scored: int


class AnomalyDetectionResult(BaseModel):
    period: DateRange
    anomalies: List[AnomalyRecord]
    summary: AnomalySummary


# =============================================================================
# Trends
# =============================================================================

class TrendSummary(BaseModel):
    direction: TrendDirection
    strength: TrendStrength
    confidence: float = Field(ge=0, le=1)
    description: str
    slope: float = 0.0
    r_squared: float = 0.0


class CategoryTrend(BaseModel):
    category_id: Optional[str]
    category_name: str
    trend: TrendSummary
    data_points: List[TimeSeriesPoint]
    next_period_prediction: float
    trend_continuation: Literal["continuing", "reversing", "stabilizing"]


class WeeklyPattern(BaseModel):
    day_of_week: str
    average_amount: float
    frequency: int
    trend: TrendDirection


class MonthlyPattern(BaseModel):
    month: str  # YYYY-MM
    total_amount: float
    average_daily_amount: float
    trend: TrendDirection


class SeasonalPattern(BaseModel):
    has_seasonality: bool
    peak_months: List[str] = []
    low_months: List[str] = []
    strength: float = 0.0


class SpendingPatterns(BaseModel):
    weekly: List[WeeklyPattern]
    monthly: List[MonthlyPattern]
    seasonal: SeasonalPattern


class TrendInsight(BaseModel):
    type: str
    priority: Priority
    message: str
    recommendations: List[str] = []


class TrendAnalysisResult(BaseModel):
    period: DateRange
    overall_trend: TrendSummary
    category_trends: List[CategoryTrend]
    spending_patterns: SpendingPatterns
    insights: List[TrendInsight]


# =============================================================================
# Scenarios, forecasts & cash flow
# =============================================================================

class FinancialBaseline(BaseModel):
    annual_income: float = 0.0
    annual_expenses: float = 0.0
    net_worth: float = 0.0


class ScenarioAssumptions(BaseModel):
    income_growth: float  # percent
    expense_growth: float  # percent
    inflation_rate: float = 0.0
    investment_return: float = 0.0


class ScenarioProjection(BaseModel):
    period: int
    label: str = ""
    income: float
    expenses: float
    savings: float
    net_worth: float


class Scenario(BaseModel):
    scenario_type: ScenarioType
    name: str
    description: str
    probability: float
    assumptions: ScenarioAssumptions
    projections: List[ScenarioProjection]


class CategoryForecast(BaseModel):
    category_id: Optional[str]
    category_name: str
    current_monthly: float
    predicted_monthly: float
    trend: TrendDirection
    confidence: float = Field(ge=0, le=1)


class FinancialForecast(BaseModel):
    period: DateRange
    base_monthly_income: float
    base_monthly_expenses: float
    base_monthly_savings: float
    scenarios: List[Scenario]
    category_forecasts: List[CategoryForecast]
    risk_factors: List[RiskFactor]
    methodology: str


class CashFlowPoint(BaseModel):
    date: date
    inflow: float
    outflow: float
    net_flow: float
    balance: float


class MonthlyCashFlow(BaseModel):
    month: str
    inflow: float
    outflow: float
    net_flow: float
    ending_balance: float


class CashFlowPrediction(BaseModel):
    period: DateRange
    starting_balance: float
    predictions: List[CashFlowPoint]
    monthly_projections: List[MonthlyCashFlow]
    category_projections: List[CategoryForecast]
    scenarios: List[Scenario]
    risk_factors: List[RiskFactor]
    methodology: str


# =============================================================================
# Budget analytics
# =============================================================================

class BudgetAlert(BaseModel):
    type: Literal["warning", "critical"]
    category_id: Optional[str] = None
    message: str
    utilization_percentage: float


class CategoryPerformance(BaseModel):
    category_id: str
    category_name: str
    allocated: float
    spent: float
    remaining: float
    utilization_percentage: float
    status: BudgetStatus
    transaction_count: int
    average_transaction: float
    largest_transaction: float


class DailySpend(BaseModel):
    date: date
    amount: float
    cumulative: float


class BudgetPerformanceReport(BaseModel):
    budget_id: str
    budget_name: str
    period: DateRange
    total_allocated: float
    total_spent: float
    remaining: float
    utilization_percentage: float
    variance_amount: float
    variance_percentage: float
    status: BudgetStatus
    category_performance: List[CategoryPerformance]
    daily_spending: List[DailySpend]
    alerts: List[BudgetAlert]


class CategoryVariance(BaseModel):
    category_id: str
    category_name: str
    allocated: float
    spent: float
    variance: float
    variance_percentage: float
    variance_type: Literal["favorable", "unfavorable", "neutral"]
    impact: Priority


class VarianceSummary(BaseModel):
    total_variance: float
    total_variance_percentage: float
    favorable_variances: float
    unfavorable_variances: float
    net_variance: float


class BudgetVarianceReport(BaseModel):
    budget_id: str
    period: DateRange
    category_variances: List[CategoryVariance]
    summary: VarianceSummary


class CategoryBudgetForecast(BaseModel):
    category_id: str
    category_name: str
    allocated: float
    spent_to_date: float
    projected_spend: float
    projected_variance: float
    projected_utilization: float
    status: BudgetStatus


class BudgetForecastScenario(BaseModel):
    scenario: ScenarioType
    velocity_multiplier: float
    projected_spend: float
    projected_variance: float


class BudgetForecastReport(BaseModel):
    budget_id: str
    as_of: date
    period: DateRange
    days_elapsed: int
    days_remaining: int
    daily_velocity: float
    spent_to_date: float
    projected_spend: float
    projected_variance: float
    projected_utilization: float
    projected_status: BudgetStatus
    category_forecasts: List[CategoryBudgetForecast]
    scenarios: List[BudgetForecastScenario]
    risk_factors: List[RiskFactor]
    recommendations: List[str]
    methodology: str = "trailing_velocity"


# =============================================================================
# Planning
# =============================================================================

class FinancialGoal(BaseModel):
    id: str
    name: str
    target_amount: float = Field(gt=0)
    current_amount: float = Field(default=0.0, ge=0)
    monthly_contribution: float = Field(default=0.0, ge=0)
    target_date: Optional[date] = None
    status: GoalStatus = "not_started"
    progress_percentage: float = Field(default=0.0, ge=0, le=100)
    estimated_completion_date: Optional[date] = None
    risk_level: Priority = "low"


class RetirementPlan(BaseModel):
    current_age: int
    retirement_age: int
    years_to_retirement: int
    current_savings: float
    monthly_contribution: float
    expected_return: float  # percent
    inflation_rate: float  # percent
    target_amount: float
    projected_amount: float
    inflation_adjusted_amount: float
    shortfall: float
    required_monthly_contribution: float
    recommendations: List[str] = []


class DebtInput(BaseModel):
    name: str
    balance: float = Field(ge=0)
    interest_rate: float = Field(ge=0)  # annual percent
    minimum_payment: float = Field(ge=0)


class PrioritizedDebt(DebtInput):
    priority: int


class DebtTimelineEntry(BaseModel):
    month: int
    remaining_debt: float
    payment: float
    interest: float
    principal: float


class DebtPayoffPlan(BaseModel):
    strategy: DebtStrategy
    debts: List[PrioritizedDebt]
    total_debt: float
    extra_payment: float
    monthly_payment: float
    timeline: List[DebtTimelineEntry]
    total_interest: float
    payoff_months: int
    payoff_order: List[str]


class SpendingSnapshot(BaseModel):
    total_income: Optional[float] = None
    total_spent: Optional[float] = None


class BudgetUtilization(BaseModel):
    budget_id: Optional[str] = None
    name: Optional[str] = None
    utilization_percentage: Optional[float] = None


class FinancialSnapshot(BaseModel):
    spending: Optional[SpendingSnapshot] = None
    budgets: Optional[List[BudgetUtilization]] = None
    annual_income: Optional[float] = None


class FinancialRecommendation(BaseModel):
    type: Literal["budget", "savings", "investment"]
    priority: Priority
    title: str
    description: str
    action_items: List[str] = []
    impact: str = ""


# =============================================================================
# Combined dashboard bundle
# =============================================================================

class PredictiveInsights(BaseModel):
    user_id: str
    generated_at: datetime
    spending_prediction: SpendingPrediction
    anomalies: AnomalyDetectionResult
    trends: TrendAnalysisResult
    forecast: FinancialForecast
    highlights: List[str] = []
