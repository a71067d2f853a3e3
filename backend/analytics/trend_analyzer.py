"""
Module: trend_analyzer.py
Description: Directional spending trends and weekly/monthly patterns.

Produces:
    - an overall TrendSummary from the regression slope of daily spend
    - one CategoryTrend per category with a one-step-ahead forecast
    - weekday and month pattern summaries plus a best-effort seasonal
      classification
    - prioritized textual insights

Author: Budget Analytics Team
Created: 2025-02-14
"""

import calendar
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence

import numpy as np

from config import AnalyticsSettings, get_settings
from schemas import (
    CategoryRecord,
    CategoryTrend,
    DateRange,
    MonthlyPattern,
    SeasonalPattern,
    SpendingPatterns,
    TimeSeriesPoint,
    TransactionRecord,
    TrendAnalysisResult,
    TrendInsight,
    TrendSummary,
    WeeklyPattern,
)
from analytics.errors import InsufficientDataError
from analytics.pattern_detector import fit_line
from analytics.time_series import TimeSeriesAggregator, amounts, day_offsets, validate_date_range


STABLE_SLOPE_THRESHOLD = 0.002  # |slope| / mean per day
STRONG_R_SQUARED = 0.7
MODERATE_R_SQUARED = 0.4
CONFIDENCE_FULL_DAYS = 30
PATTERN_CHANGE_THRESHOLD = 0.1
SEASONAL_CV_THRESHOLD = 0.2
MAX_CATEGORY_INSIGHTS = 3

WEEKDAY_NAMES = list(calendar.day_name)
PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}


def change_label(current: float, previous: float) -> str:
    if previous <= 0:
        return 'stable'
    change = (current - previous) / previous
    if change > PATTERN_CHANGE_THRESHOLD:
        return 'increasing'
    if change < -PATTERN_CHANGE_THRESHOLD:
        return 'decreasing'
    return 'stable'


class TrendAnalyzer:
    """
    Linear-regression trend analysis over a sparse daily series.

    Usage:
        analyzer = TrendAnalyzer()
        result = analyzer.analyze(transactions, start, end, categories)
    """

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()
        self.aggregator = TimeSeriesAggregator()

    def analyze(
        self,
        transactions: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
        categories: Optional[Sequence[CategoryRecord]] = None,
    ) -> TrendAnalysisResult:
        """
        Raises:
            InsufficientDataError: fewer than trend_min_days days with spending.
        """
        validate_date_range(start_date, end_date)
        records = [t for t in transactions if start_date <= t.date <= end_date]
        series = self.aggregator.daily(records)

        required = self.settings.trend_min_days
        if len(series) < required:
            raise InsufficientDataError(
                f"Insufficient data for trend analysis: need at least {required} days of data, "
                f"found {len(series)}",
                required=required,
                available=len(series),
            )

        names = {c.id: c.name for c in categories or []}
        overall = self.summarize_trend(series, "Overall spending")
        category_trends = self._category_trends(records, names)
        seasonal = self._seasonal_pattern(records)

        return TrendAnalysisResult(
            period=DateRange(start=start_date, end=end_date),
            overall_trend=overall,
            category_trends=category_trends,
            spending_patterns=SpendingPatterns(
                weekly=self._weekly_patterns(series),
                monthly=self._monthly_patterns(records, start_date, end_date),
                seasonal=seasonal,
            ),
            insights=self._generate_insights(overall, category_trends, seasonal),
        )

    def summarize_trend(self, series: Sequence[TimeSeriesPoint], label: str) -> TrendSummary:
        y = amounts(series)
        if len(y) < 2:
            return TrendSummary(
                direction='stable',
                strength='weak',
                confidence=0.0,
                description=f"{label}: not enough data points to determine a trend.",
            )

        x = day_offsets(series)
        reg = fit_line(x, y)
        slope = float(reg.coef_[0])
        r_squared = float(np.clip(reg.score(x.reshape(-1, 1), y), 0.0, 1.0))
        mean = float(y.mean())

        relative = abs(slope) / mean if mean > 0 else 0.0
        if relative < STABLE_SLOPE_THRESHOLD:
            direction = 'stable'
        else:
            direction = 'increasing' if slope > 0 else 'decreasing'

        if r_squared > STRONG_R_SQUARED:
            strength = 'strong'
        elif r_squared > MODERATE_R_SQUARED:
            strength = 'moderate'
        else:
            strength = 'weak'

        confidence = r_squared * min(1.0, len(y) / CONFIDENCE_FULL_DAYS)

        if direction == 'stable':
            description = f"{label} is stable at around ${mean:.2f} per active day."
        else:
            description = (
                f"{label} shows a {strength} {direction} trend of ${abs(slope):.2f} per day "
                f"(R² {r_squared:.2f})."
            )

        return TrendSummary(
            direction=direction,
            strength=strength,
            confidence=round(float(np.clip(confidence, 0.0, 1.0)), 4),
            description=description,
            slope=round(slope, 4),
            r_squared=round(r_squared, 4),
        )

    # -------------------------------------------------------------------------
    # Category trends
    # -------------------------------------------------------------------------

    def _category_trends(
        self,
        records: Sequence[TransactionRecord],
        names: Dict[str, str],
    ) -> List[CategoryTrend]:
        by_category: Dict[Optional[str], List[TransactionRecord]] = defaultdict(list)
        for record in records:
            by_category[record.category_id].append(record)

        trends = []
        for category_id, category_records in by_category.items():
            name = names.get(category_id, 'Uncategorized')
            series = self.aggregator.daily(category_records)
            summary = self.summarize_trend(series, name)

            y = amounts(series)
            if len(y) >= 2:
                x = day_offsets(series)
                reg = fit_line(x, y)
                next_value = float(reg.predict([[x[-1] + 1]])[0])
            else:
                next_value = float(y[-1])

            trends.append(CategoryTrend(
                category_id=category_id,
                category_name=name,
                trend=summary,
                data_points=series,
                next_period_prediction=round(max(0.0, next_value), 2),
                trend_continuation=self._continuation(series, summary),
            ))

        trends.sort(key=lambda t: (t.category_name, t.category_id or ''))
        return trends

    def _continuation(self, series: Sequence[TimeSeriesPoint], summary: TrendSummary) -> str:
        """Compare the recent half's slope with the full-window trend."""
        if summary.direction == 'stable':
            return 'stabilizing'
        recent = list(series[len(series) // 2:])
        if len(recent) < 2:
            return 'continuing'
        recent_slope = float(fit_line(day_offsets(recent), amounts(recent)).coef_[0])
        if recent_slope == 0 or (recent_slope > 0) == (summary.slope > 0):
            return 'continuing'
        return 'reversing'

    # -------------------------------------------------------------------------
    # Spending patterns
    # -------------------------------------------------------------------------

    def _weekly_patterns(self, series: Sequence[TimeSeriesPoint]) -> List[WeeklyPattern]:
        by_weekday: Dict[int, List[TimeSeriesPoint]] = defaultdict(list)
        for point in series:
            by_weekday[point.date.weekday()].append(point)

        patterns = []
        for weekday, name in enumerate(WEEKDAY_NAMES):
            points = by_weekday.get(weekday, [])
            values = [p.amount for p in points]
            half = len(values) // 2
            trend = 'stable'
            if half >= 1:
                trend = change_label(float(np.mean(values[half:])), float(np.mean(values[:half])))
            patterns.append(WeeklyPattern(
                day_of_week=name,
                average_amount=round(float(np.mean(values)), 2) if values else 0.0,
                frequency=sum(p.count for p in points),
                trend=trend,
            ))
        return patterns

    def _monthly_patterns(
        self,
        records: Sequence[TransactionRecord],
        start_date: date,
        end_date: date,
    ) -> List[MonthlyPattern]:
        months = self.aggregator.aggregate(records, 'month')
        patterns = []
        previous_total = None
        for point in months:
            month_start = point.date
            last_day = calendar.monthrange(month_start.year, month_start.month)[1]
            first = max(month_start, start_date)
            last = min(month_start.replace(day=last_day), end_date)
            days = max(1, (last - first).days + 1)

            patterns.append(MonthlyPattern(
                month=month_start.strftime('%Y-%m'),
                total_amount=round(point.amount, 2),
                average_daily_amount=round(point.amount / days, 2),
                trend='stable' if previous_total is None else change_label(point.amount, previous_total),
            ))
            previous_total = point.amount
        return patterns

    def _seasonal_pattern(self, records: Sequence[TransactionRecord]) -> SeasonalPattern:
        months = self.aggregator.aggregate(records, 'month')
        if len(months) < 2:
            return SeasonalPattern(has_seasonality=False)

        totals = amounts(months)
        mean = float(totals.mean())
        if mean <= 0:
            return SeasonalPattern(has_seasonality=False)

        cv = float(totals.std()) / mean
        if cv <= SEASONAL_CV_THRESHOLD:
            return SeasonalPattern(has_seasonality=False, strength=round(cv, 4))

        return SeasonalPattern(
            has_seasonality=True,
            peak_months=[
                calendar.month_name[p.date.month] for p in months
                if p.amount > mean * (1 + SEASONAL_CV_THRESHOLD)
            ],
            low_months=[
                calendar.month_name[p.date.month] for p in months
                if p.amount < mean * (1 - SEASONAL_CV_THRESHOLD)
            ],
            strength=round(min(1.0, cv), 4),
        )

    # -------------------------------------------------------------------------
    # Insights
    # -------------------------------------------------------------------------

    def _generate_insights(
        self,
        overall: TrendSummary,
        category_trends: List[CategoryTrend],
        seasonal: SeasonalPattern,
    ) -> List[TrendInsight]:
        insights = []

        if overall.direction == 'increasing' and overall.strength != 'weak':
            insights.append(TrendInsight(
                type='spending_trend',
                priority='high' if overall.strength == 'strong' else 'medium',
                message=f"Spending shows a {overall.strength} increasing trend.",
                recommendations=[
                    "Review recent purchases for new recurring costs",
                    "Set a daily spending cap for discretionary categories",
                ],
            ))
        elif overall.direction == 'decreasing' and overall.strength != 'weak':
            insights.append(TrendInsight(
                type='spending_trend',
                priority='low',
                message=f"Spending shows a {overall.strength} decreasing trend. Keep it up.",
                recommendations=["Move the money you are saving into a savings goal"],
            ))

        rising = [
            t for t in category_trends
            if t.trend.direction == 'increasing' and t.trend.strength == 'strong'
        ]
        rising.sort(key=lambda t: t.trend.slope, reverse=True)
        for trend in rising[:MAX_CATEGORY_INSIGHTS]:
            insights.append(TrendInsight(
                type='category_trend',
                priority='medium',
                message=(
                    f"{trend.category_name} spending is rising by about "
                    f"${trend.trend.slope:.2f} per day; next expected ${trend.next_period_prediction:.2f}."
                ),
                recommendations=[f"Set a budget limit for {trend.category_name}"],
            ))

        if seasonal.has_seasonality:
            peaks = ", ".join(seasonal.peak_months) or "some months"
            insights.append(TrendInsight(
                type='seasonal',
                priority='low',
                message=f"Spending varies by month and peaks in {peaks}.",
                recommendations=["Set aside money ahead of high-spending months"],
            ))

        insights.sort(key=lambda i: PRIORITY_RANK[i.priority])
        return insights
