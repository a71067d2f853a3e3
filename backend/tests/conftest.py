"""
Pytest configuration and shared fixtures for Budget Analytics tests.

This file is automatically loaded by pytest and provides:
    - Record factories (transactions, categories, budgets)
    - Calibrated daily series used across forecasting and pattern tests
    - Database fixtures (in-memory SQLite)
    - Common assertion helpers

Author: Budget Analytics Team
"""

import pytest
import sys
from pathlib import Path
from datetime import date, timedelta
from typing import Iterable, List

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import AnalyticsSettings
from schemas import (
    BudgetAllocationRecord,
    BudgetRecord,
    CategoryRecord,
    TransactionRecord,
)


# Monday; keeps weekday-dependent series deterministic
BASE_DATE = date(2025, 1, 6)


# =============================================================================
# Record Factories
# =============================================================================

def make_transaction(
    id: str,
    amount: float,
    day: date,
    type: str = "expense",
    category_id: str = "groceries",
    user_id: str = "user-1",
    account_id: str = "checking",
) -> TransactionRecord:
    return TransactionRecord(
        id=id,
        user_id=user_id,
        amount=amount,
        date=day,
        type=type,
        category_id=category_id,
        account_id=account_id,
    )


def daily_transactions(
    values: Iterable[float],
    start: date = BASE_DATE,
    prefix: str = "t",
    type: str = "expense",
    category_id: str = "groceries",
) -> List[TransactionRecord]:
    """One transaction per day starting at `start`."""
    return [
        make_transaction(f"{prefix}{i:03d}", amount, start + timedelta(days=i), type, category_id)
        for i, amount in enumerate(values)
    ]


def weekly_pattern_values(weeks: int, weekday: float = 50.0, weekend: float = 200.0) -> List[float]:
    """Mon-Fri at `weekday`, Sat-Sun at `weekend`, starting on a Monday."""
    return [weekend if i % 7 >= 5 else weekday for i in range(weeks * 7)]


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Default settings, independent of the environment."""
    return AnalyticsSettings()


# =============================================================================
# Category & Budget Fixtures
# =============================================================================

@pytest.fixture
def categories():
    return [
        CategoryRecord(id="groceries", name="Groceries"),
        CategoryRecord(id="dining", name="Dining"),
        CategoryRecord(id="rent", name="Rent"),
        CategoryRecord(id="salary", name="Salary"),
    ]


@pytest.fixture
def sample_budget():
    """January budget: 4000 across groceries, dining and rent."""
    return BudgetRecord(
        id="budget-jan",
        name="January",
        user_id="user-1",
        period_start=date(2025, 1, 1),
        period_end=date(2025, 1, 31),
        category_allocations=[
            BudgetAllocationRecord(category_id="groceries", allocated_amount=1000.0),
            BudgetAllocationRecord(category_id="dining", allocated_amount=1000.0),
            BudgetAllocationRecord(category_id="rent", allocated_amount=2000.0),
        ],
    )


# =============================================================================
# Transaction Fixtures
# =============================================================================

@pytest.fixture
def constant_history():
    """60 days at $100/day."""
    return daily_transactions([100.0] * 60)


@pytest.fixture
def trending_history():
    """60 days rising by $5/day."""
    return daily_transactions([100.0 + 5 * i for i in range(60)])


@pytest.fixture
def seasonal_history():
    """Nine weeks of cheap weekdays and expensive weekends."""
    return daily_transactions(weekly_pattern_values(9))


@pytest.fixture
def cash_flow_history():
    """90 days of $80/day expenses plus a $4000 salary every 30 days."""
    records = daily_transactions([80.0] * 90)
    for i in range(3):
        records.append(make_transaction(
            f"salary{i}", 4000.0, BASE_DATE + timedelta(days=30 * i), type="income", category_id="salary"
        ))
    return records


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def sqlite_session_factory():
    """Fresh in-memory SQLite database with all tables created."""
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool
    from sqlalchemy import create_engine

    from database import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


# =============================================================================
# Test Utilities
# =============================================================================

def assert_valid_severity(severity: str) -> None:
    """Assert that severity is valid."""
    assert severity in ["low", "medium", "high", "critical"], f"Invalid severity: {severity}"


def assert_valid_confidence(confidence: float) -> None:
    """Assert that confidence is in valid range."""
    assert 0 <= confidence <= 1, f"Invalid confidence: {confidence}"
