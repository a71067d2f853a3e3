"""
Module: time_series.py
Description: Groups raw transaction records into per-period buckets.

Buckets carry the summed amount and the record count. Days without
transactions are only synthesized when a dense series is requested;
forecasting asks for dense daily series, trend analysis works sparse.

Author: Budget Analytics Team
Created: 2025-02-10
"""

from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from schemas import TimeSeriesPoint, TransactionFilters, TransactionRecord
from analytics.errors import InvalidParameterError


FREQUENCIES = {
    'day': 'D',
    'week': 'W-MON',
    'month': 'MS',
}


# =============================================================================
# Record helpers
# =============================================================================

def validate_date_range(start: date, end: date) -> None:
    """Raise InvalidParameterError when end precedes start."""
    if start is None or end is None:
        raise InvalidParameterError("Both start and end dates are required", parameter="date_range")
    if end < start:
        raise InvalidParameterError(
            f"End date {end.isoformat()} is before start date {start.isoformat()}",
            parameter="date_range",
            value=(start.isoformat(), end.isoformat()),
        )


def days_in_range(start: date, end: date) -> List[date]:
    """Every calendar day in [start, end], inclusive."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def filter_records(
    records: Iterable[TransactionRecord],
    filters: Optional[TransactionFilters] = None,
) -> List[TransactionRecord]:
    """Apply type/category/account filters; None means no restriction."""
    if filters is None:
        return list(records)

    types = set(filters.transaction_types) if filters.transaction_types else None
    categories = set(filters.categories) if filters.categories else None
    accounts = set(filters.accounts) if filters.accounts else None

    return [
        r for r in records
        if (types is None or r.type in types)
        and (categories is None or r.category_id in categories)
        and (accounts is None or r.account_id in accounts)
    ]


def distinct_days(records: Iterable[TransactionRecord]) -> int:
    return len({r.date for r in records})


def records_to_frame(records: Sequence[TransactionRecord]) -> pd.DataFrame:
    """Build a date-sorted DataFrame; ties are broken by id for determinism."""
    columns = ['id', 'date', 'amount', 'type', 'category_id', 'account_id']
    data = [
        {
            'id': r.id,
            'date': pd.Timestamp(r.date),
            'amount': float(r.amount),
            'type': r.type,
            'category_id': r.category_id,
            'account_id': r.account_id,
        }
        for r in records
    ]
    df = pd.DataFrame(data, columns=columns)
    if df.empty:
        return df
    return df.sort_values(['date', 'id'], kind='mergesort').reset_index(drop=True)


def amounts(series: Sequence[TimeSeriesPoint]) -> np.ndarray:
    return np.array([p.amount for p in series], dtype=float)


def day_offsets(series: Sequence[TimeSeriesPoint]) -> np.ndarray:
    """Days elapsed since the first point, usable as a regression index."""
    if not series:
        return np.array([], dtype=float)
    first = series[0].date
    return np.array([(p.date - first).days for p in series], dtype=float)


# =============================================================================
# Aggregator
# =============================================================================

class TimeSeriesAggregator:
    """
    Buckets transactions by day, week (Monday start) or month.

    The output is a date-ordered list of immutable TimeSeriesPoint
    values and does not depend on input order.
    """

    def aggregate(
        self,
        records: Sequence[TransactionRecord],
        granularity: str = 'day',
        dense: bool = False,
        end: Optional[date] = None,
    ) -> List[TimeSeriesPoint]:
        """
        With `dense`, empty buckets are zero-filled from the first bucket up to
        the last one, or up to the bucket holding `end` when that is later.
        """
        if granularity not in FREQUENCIES:
            raise InvalidParameterError(
                f"Unsupported granularity: {granularity}",
                parameter="granularity",
                value=granularity,
            )

        df = records_to_frame(records)
        if df.empty:
            return []

        df['bucket'] = self._bucket(df['date'], granularity)
        grouped = (
            df.groupby('bucket')
            .agg(amount=('amount', 'sum'), count=('amount', 'size'))
            .sort_index()
        )

        if dense:
            last = grouped.index.max()
            if end is not None:
                last = max(last, self._bucket(pd.Series([pd.Timestamp(end)]), granularity).iloc[0])
            full_index = pd.date_range(grouped.index.min(), last, freq=FREQUENCIES[granularity])
            grouped = grouped.reindex(full_index, fill_value=0)

        return [
            TimeSeriesPoint(
                date=bucket.date(),
                amount=round(float(row['amount']), 2),
                count=int(row['count']),
            )
            for bucket, row in grouped.iterrows()
        ]

    def daily(
        self,
        records: Sequence[TransactionRecord],
        dense: bool = False,
        end: Optional[date] = None,
    ) -> List[TimeSeriesPoint]:
        return self.aggregate(records, 'day', dense=dense, end=end)

    def _bucket(self, dates: pd.Series, granularity: str) -> pd.Series:
        dates = dates.dt.normalize()
        if granularity == 'week':
            return dates - pd.to_timedelta(dates.dt.weekday, unit='D')
        if granularity == 'month':
            return dates.dt.to_period('M').dt.to_timestamp()
        return dates
