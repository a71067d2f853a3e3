"""
Module: anomaly_detector.py
Description: Statistical anomaly detection over a user's transactions.

Detection Methods:
    1. StatisticalAmountDetector: hybrid z-score / IQR rule per transaction,
       against a trailing time window (falls back to the whole fetched
       history when the window holds too few transactions)
    2. CategoryShiftDetector: category average in the window vs. its
       pre-window history
    3. SpendingSpikeDetector: runs of consecutive high-spend days

Severity is derived from how far |z| exceeds the threshold:
    ratio >= 2.0 critical, >= 1.6 high, >= 1.2 medium, else low.
A transaction flagged by the IQR rule alone is always low.

Author: Budget Analytics Team
Created: 2025-02-12
"""

from collections import Counter
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config import AnalyticsSettings, get_settings
from schemas import (
    AnomalyDetectionResult,
    AnomalyRecord,
    AnomalySummary,
    CategoryRecord,
    DateRange,
    TransactionRecord,
)
from analytics.observability import log_anomaly_detected
from analytics.time_series import records_to_frame, validate_date_range


# =============================================================================
# Detection Constants
# =============================================================================

MAX_ZSCORE = 10.0
MIN_REFERENCE_POINTS = 3
MIN_RELATIVE_SPREAD = 0.05  # std / IQR floor as a share of the center
MAX_CONFIDENCE = 0.95

SEVERITY_RATIOS = (
    ('critical', 2.0),
    ('high', 1.6),
    ('medium', 1.2),
)
SEVERITY_RANK = {'critical': 0, 'high': 1, 'medium': 2, 'low': 3}

# Category shift thresholds
CATEGORY_SHIFT_RATIO = 0.5  # 50% change in average transaction
CATEGORY_SHIFT_HIGH_RATIO = 1.0
MIN_CATEGORY_HISTORY = 5

# Spending spike thresholds
SPIKE_STD_MULTIPLIER = 1.5
SPIKE_MIN_CONSECUTIVE_DAYS = 3
SPIKE_HIGH_DAYS = 5


def severity_for_ratio(ratio: float) -> str:
    """Map |z| / threshold to a severity label."""
    for label, minimum in SEVERITY_RATIOS:
        if ratio >= minimum:
            return label
    return 'low'


def deviation_percentage(actual: float, expected: float) -> float:
    if expected == 0:
        return 0.0
    return (actual - expected) / expected * 100


# =============================================================================
# Statistical Amount Detector (z-score + IQR)
# =============================================================================

class StatisticalAmountDetector:
    """
    Scores each in-window transaction against its reference set.

    Reference set: other transactions of the same type dated within the
    trailing window (default 7 days). When that set has fewer than
    `anomaly_min_transactions`, every other same-type transaction in the
    fetched history is used instead.

    The standard deviation and IQR are floored at 5% of the center, so a
    perfectly flat history still yields finite, bounded scores.
    """

    def __init__(self, settings: AnalyticsSettings):
        self.settings = settings

    def detect(
        self,
        transactions: Sequence[TransactionRecord],
        window_start: date,
        window_end: date,
    ) -> Tuple[List[Dict], int, int]:
        """
        Returns:
            (detections, transactions_scored, rule_agreements)
        """
        df = records_to_frame(transactions)
        detections = []
        scored = 0
        agreements = 0
        if df.empty:
            return detections, scored, agreements

        window = timedelta(days=self.settings.anomaly_window_days)
        start_ts, end_ts = pd.Timestamp(window_start), pd.Timestamp(window_end)

        for txn_type, type_df in df.groupby('type'):
            amounts = type_df['amount'].to_numpy(dtype=float)
            dates = type_df['date'].to_numpy()
            positions = np.arange(len(type_df))

            for pos, row in enumerate(type_df.itertuples(index=False)):
                if row.date < start_ts or row.date > end_ts:
                    continue

                others = positions != pos
                trailing = others & (dates >= np.datetime64(row.date - window)) & (dates <= np.datetime64(row.date))
                used_window = trailing.sum() >= self.settings.anomaly_min_transactions
                reference = amounts[trailing] if used_window else amounts[others]
                if len(reference) < MIN_REFERENCE_POINTS:
                    continue

                result = self._score(row.amount, reference)
                scored += 1
                if result['z_fired'] == result['iqr_fired']:
                    agreements += 1
                if not (result['z_fired'] or result['iqr_fired']):
                    continue

                detections.append({
                    'type': 'amount',
                    'transaction_id': row.id,
                    'category_id': row.category_id,
                    'date': row.date.date(),
                    'transaction_type': txn_type,
                    'used_window': bool(used_window),
                    **result,
                })

        return detections, scored, agreements

    def _score(self, actual: float, reference: np.ndarray) -> Dict:
        threshold = self.settings.anomaly_z_threshold

        mean = float(np.mean(reference))
        std = max(float(np.std(reference)), MIN_RELATIVE_SPREAD * abs(mean))
        z_score = float(np.clip((actual - mean) / std, -MAX_ZSCORE, MAX_ZSCORE)) if std > 0 else 0.0

        q1, median, q3 = np.percentile(reference, [25, 50, 75])
        iqr = max(float(q3 - q1), MIN_RELATIVE_SPREAD * abs(float(median)))
        k = self.settings.anomaly_iqr_multiplier
        lower, upper = q1 - k * iqr, q3 + k * iqr

        z_fired = abs(z_score) > threshold
        iqr_fired = bool(actual < lower or actual > upper)

        ratio = abs(z_score) / threshold
        severity = severity_for_ratio(ratio) if z_fired else 'low'

        return {
            'expected': mean,
            'actual': float(actual),
            'z_score': z_score,
            'z_fired': z_fired,
            'iqr_fired': iqr_fired,
            'severity': severity,
            'confidence': min(MAX_CONFIDENCE, abs(z_score) / (2 * threshold)),
        }


# =============================================================================
# Category Shift Detector
# =============================================================================

class CategoryShiftDetector:
    """
    Detects categories whose average transaction moved sharply.

    Compares the average expense per category inside the window with
    the same category's pre-window history (needs 5+ prior transactions).
    """

    def detect(
        self,
        transactions: Sequence[TransactionRecord],
        window_start: date,
        window_end: date,
    ) -> List[Dict]:
        df = records_to_frame([t for t in transactions if t.type == 'expense' and t.category_id])
        if df.empty:
            return []

        start_ts, end_ts = pd.Timestamp(window_start), pd.Timestamp(window_end)
        history = df[df['date'] < start_ts]
        current = df[(df['date'] >= start_ts) & (df['date'] <= end_ts)]

        detections = []
        for category_id, cat_df in current.groupby('category_id'):
            past = history[history['category_id'] == category_id]['amount']
            if len(past) < MIN_CATEGORY_HISTORY:
                continue

            expected = float(past.mean())
            if expected <= 0:
                continue

            actual = float(cat_df['amount'].mean())
            change = (actual - expected) / expected
            if abs(change) <= CATEGORY_SHIFT_RATIO:
                continue

            std = float(past.std(ddof=0))
            z_score = float(np.clip((actual - expected) / std, -MAX_ZSCORE, MAX_ZSCORE)) if std > 0 else 0.0
            largest = cat_df.loc[cat_df['amount'].idxmax()]

            detections.append({
                'type': 'unusual_category',
                'transaction_id': largest['id'],
                'category_id': category_id,
                'date': largest['date'].date(),
                'expected': expected,
                'actual': actual,
                'z_score': z_score,
                'change': change,
                'count': len(cat_df),
                'severity': 'high' if abs(change) > CATEGORY_SHIFT_HIGH_RATIO else 'medium',
                'confidence': min(0.9, abs(change) / 2),
            })

        return detections


# =============================================================================
# Spending Spike Detector
# =============================================================================

class SpendingSpikeDetector:
    """
    Detects runs of 3+ consecutive days with daily spend above
    mean + 1.5 std of the window's daily totals.
    """

    def detect(
        self,
        transactions: Sequence[TransactionRecord],
        window_start: date,
        window_end: date,
    ) -> List[Dict]:
        df = records_to_frame([t for t in transactions if t.type == 'expense'])
        if df.empty:
            return []

        start_ts, end_ts = pd.Timestamp(window_start), pd.Timestamp(window_end)
        in_window = df[(df['date'] >= start_ts) & (df['date'] <= end_ts)]
        daily = (
            in_window.groupby(in_window['date'].dt.normalize())['amount'].sum()
            .reindex(pd.date_range(start_ts, end_ts, freq='D'), fill_value=0.0)
        )
        if len(daily) < SPIKE_MIN_CONSECUTIVE_DAYS:
            return []

        mean = float(daily.mean())
        std = float(daily.std(ddof=0))
        if std <= 0:
            return []

        above = (daily > mean + SPIKE_STD_MULTIPLIER * std).to_numpy()
        detections = []
        run_start = None
        for i, flag in enumerate(list(above) + [False]):
            if flag and run_start is None:
                run_start = i
            elif not flag and run_start is not None:
                length = i - run_start
                if length >= SPIKE_MIN_CONSECUTIVE_DAYS:
                    detections.append(self._build(daily.iloc[run_start:i], mean, std, in_window))
                run_start = None

        return detections

    def _build(self, run: pd.Series, mean: float, std: float, in_window: pd.DataFrame) -> Dict:
        run_days = len(run)
        first_day = run.index[0]
        day_txns = in_window[in_window['date'].dt.normalize() == first_day]
        z_score = float(np.clip((run.mean() - mean) / std, -MAX_ZSCORE, MAX_ZSCORE))
        return {
            'type': 'spending_spike',
            'transaction_id': day_txns.iloc[0]['id'] if not day_txns.empty else None,
            'category_id': None,
            'date': first_day.date(),
            'expected': mean * run_days,
            'actual': float(run.sum()),
            'z_score': z_score,
            'days': run_days,
            'severity': 'high' if run_days >= SPIKE_HIGH_DAYS else 'medium',
            'confidence': min(0.9, 0.5 + 0.1 * run_days),
        }


# =============================================================================
# Anomaly Detector (orchestrator)
# =============================================================================

class AnomalyDetector:
    """
    Runs all detectors over pre-fetched transactions and assembles the
    result: anomaly records sorted by severity, plus a summary.
    """

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or get_settings()
        self.amount_detector = StatisticalAmountDetector(self.settings)
        self.category_detector = CategoryShiftDetector()
        self.spike_detector = SpendingSpikeDetector()

    def detect(
        self,
        transactions: Sequence[TransactionRecord],
        window_start: date,
        window_end: date,
        categories: Optional[Sequence[CategoryRecord]] = None,
    ) -> AnomalyDetectionResult:
        """
        Score transactions dated in [window_start, window_end].

        Transactions before window_start are used only as history.
        """
        validate_date_range(window_start, window_end)
        category_map = {c.id: c.name for c in categories or []}

        amount_detections, scored, agreements = self.amount_detector.detect(
            transactions, window_start, window_end
        )
        detections = (
            amount_detections
            + self.category_detector.detect(transactions, window_start, window_end)
            + self.spike_detector.detect(transactions, window_start, window_end)
        )

        anomalies = [self._to_record(d, category_map) for d in detections]
        anomalies.sort(key=lambda a: (SEVERITY_RANK[a.severity], -a.confidence, a.id))

        for anomaly in anomalies:
            if anomaly.severity in ('high', 'critical'):
                log_anomaly_detected(anomaly.severity, anomaly.actual_value)

        return AnomalyDetectionResult(
            period=DateRange(start=window_start, end=window_end),
            anomalies=anomalies,
            summary=self._summarize(anomalies, scored, agreements),
        )

    def _to_record(self, detection: Dict, category_map: Dict[str, str]) -> AnomalyRecord:
        expected = detection['expected']
        actual = detection['actual']
        category_name = category_map.get(detection['category_id'], 'Uncategorized')
        key = detection['transaction_id'] or detection['date'].isoformat()

        return AnomalyRecord(
            id=f"{detection['type']}-{key}",
            type=detection['type'],
            severity=detection['severity'],
            expected_value=round(expected, 2),
            actual_value=round(actual, 2),
            deviation=round(actual - expected, 2),
            deviation_percentage=round(deviation_percentage(actual, expected), 2),
            confidence=round(detection['confidence'], 4),
            explanation=self._generate_explanation(detection, category_name),
            transaction_id=detection['transaction_id'],
            category_id=detection['category_id'],
            category_name=category_name,
            transaction_date=detection['date'],
            z_score=round(detection['z_score'], 2),
            recommendations=self._recommendations(detection),
        )

    def _generate_explanation(self, detection: Dict, category: str) -> str:
        expected = detection['expected']
        actual = detection['actual']
        z_score = detection['z_score']

        if detection['type'] == 'unusual_category':
            direction = "up" if detection['change'] > 0 else "down"
            return (
                f"Average {category} transaction is ${actual:.2f}, {direction} "
                f"{abs(detection['change']) * 100:.0f}% from your usual ${expected:.2f} "
                f"({abs(z_score):.1f} standard deviations)."
            )

        if detection['type'] == 'spending_spike':
            return (
                f"Spending stayed high for {detection['days']} consecutive days starting "
                f"{detection['date'].isoformat()}: ${actual:.2f} against a typical "
                f"${expected:.2f} ({z_score:.1f} standard deviations above your daily average)."
            )

        noun = "deposit" if detection['transaction_type'] == 'income' else "purchase"
        direction = "above" if z_score >= 0 else "below"
        baseline = (
            f"the surrounding {self.settings.anomaly_window_days} days"
            if detection['used_window'] else "your recent history"
        )
        text = (
            f"This ${actual:.2f} {category} {noun} is {abs(z_score):.1f} standard deviations "
            f"{direction} the typical ${expected:.2f} for {baseline}."
        )
        if expected > 0 and actual >= 2 * expected:
            text += f" That is about {actual / expected:.0f}x what you normally spend."
        elif not detection['z_fired']:
            text += " It falls outside your usual interquartile range."
        return text

    def _recommendations(self, detection: Dict) -> List[str]:
        if detection['type'] == 'spending_spike':
            return ["Review purchases made during this period", "Consider a short spending pause"]
        if detection['type'] == 'unusual_category':
            return ["Check whether this category's spending change is expected"]

        recommendations = []
        if detection['severity'] in ('high', 'critical'):
            recommendations.append("Verify this transaction is legitimate")
            recommendations.append("Check for duplicate or unauthorized charges")
        if detection['actual'] > detection['expected']:
            recommendations.append("Confirm this purchase was planned")
        return recommendations

    def _summarize(self, anomalies: List[AnomalyRecord], scored: int, agreements: int) -> AnomalySummary:
        by_severity = {label: 0 for label in ('low', 'medium', 'high', 'critical')}
        by_severity.update(Counter(a.severity for a in anomalies))
        average_confidence = float(np.mean([a.confidence for a in anomalies])) if anomalies else 0.0

        return AnomalySummary(
            total_anomalies=len(anomalies),
            by_severity=by_severity,
            by_type=dict(Counter(a.type for a in anomalies)),
            average_confidence=round(average_confidence, 4),
            detection_accuracy=round(agreements / scored, 4) if scored else 0.0,
            transactions_scored=scored,
        )
