"""
Module: data_sources.py
Description: Collaborator interfaces that supply transactions, categories
and budgets to the analytics engine.

Two implementations ship here:
    - InMemory* sources, backed by plain lists (callers and tests)
    - SQL* sources, backed by the SQLAlchemy models in models.py

Failures inside the SQL sources surface as UpstreamDataError with the
original exception chained.

Author: Budget Analytics Team
Created: 2025-02-17
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal
from models import Budget, Category, Transaction
from schemas import (
    BudgetAllocationRecord,
    BudgetRecord,
    CategoryRecord,
    TransactionFilters,
    TransactionRecord,
)
from analytics.errors import UpstreamDataError
from analytics.observability import logger
from analytics.time_series import filter_records


# =============================================================================
# Interfaces
# =============================================================================

class TransactionSource(ABC):
    @abstractmethod
    async def fetch(
        self,
        user_id: str,
        start: date,
        end: date,
        filters: Optional[TransactionFilters] = None,
    ) -> List[TransactionRecord]:
        """Transactions for `user_id` dated within [start, end]."""


class CategorySource(ABC):
    @abstractmethod
    async def fetch(self, user_id: str) -> List[CategoryRecord]:
        ...


class BudgetSource(ABC):
    @abstractmethod
    async def fetch(self, user_id: str, budget_id: str) -> Optional[BudgetRecord]:
        """The budget, or None when it does not exist for this user."""


# =============================================================================
# In-memory sources
# =============================================================================

class InMemoryTransactionSource(TransactionSource):
    """Serves a fixed list of records; records without user_id match any user."""

    def __init__(self, transactions: Iterable[TransactionRecord] = ()):
        self.transactions = list(transactions)
        self.calls = 0

    async def fetch(self, user_id, start, end, filters=None):
        self.calls += 1
        matching = [
            t for t in self.transactions
            if (t.user_id is None or t.user_id == user_id) and start <= t.date <= end
        ]
        return filter_records(matching, filters)


class InMemoryCategorySource(CategorySource):
    def __init__(self, categories: Iterable[CategoryRecord] = ()):
        self.categories = list(categories)

    async def fetch(self, user_id):
        return list(self.categories)


class InMemoryBudgetSource(BudgetSource):
    def __init__(self, budgets: Iterable[BudgetRecord] = ()):
        self.budgets = {b.id: b for b in budgets}

    async def fetch(self, user_id, budget_id):
        budget = self.budgets.get(budget_id)
        if budget is None or (budget.user_id is not None and budget.user_id != user_id):
            return None
        return budget


# =============================================================================
# SQLAlchemy sources
# =============================================================================

class _SQLSource:
    """Shared session handling for the SQL sources."""

    source_name = "sql"

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _run(self, query: Callable[[Session], object]):
        db = self.session_factory()
        try:
            return query(db)
        except SQLAlchemyError as e:
            logger.error(f"{self.source_name} query failed", error=str(e))
            raise UpstreamDataError(f"Failed to load {self.source_name}: {e}", source=self.source_name) from e
        finally:
            db.close()


class SQLTransactionSource(_SQLSource, TransactionSource):
    source_name = "transactions"

    async def fetch(self, user_id, start, end, filters=None):
        def query(db: Session) -> List[TransactionRecord]:
            q = db.query(Transaction).filter(
                Transaction.user_id == user_id,
                Transaction.date >= start,
                Transaction.date <= end,
            )
            if filters is not None:
                if filters.transaction_types:
                    q = q.filter(Transaction.type.in_(filters.transaction_types))
                if filters.categories:
                    q = q.filter(Transaction.category_id.in_(filters.categories))
                if filters.accounts:
                    q = q.filter(Transaction.account_id.in_(filters.accounts))
            rows = q.order_by(Transaction.date, Transaction.id).all()
            return [TransactionRecord.model_validate(row) for row in rows]

        return self._run(query)


class SQLCategorySource(_SQLSource, CategorySource):
    source_name = "categories"

    async def fetch(self, user_id):
        def query(db: Session) -> List[CategoryRecord]:
            rows = db.query(Category).filter(Category.user_id == user_id).order_by(Category.name).all()
            return [CategoryRecord.model_validate(row) for row in rows]

        return self._run(query)


class SQLBudgetSource(_SQLSource, BudgetSource):
    source_name = "budgets"

    async def fetch(self, user_id, budget_id):
        def query(db: Session) -> Optional[BudgetRecord]:
            budget = db.query(Budget).filter(
                Budget.id == budget_id,
                Budget.user_id == user_id,
            ).first()
            if budget is None:
                return None
            return BudgetRecord(
                id=budget.id,
                name=budget.name,
                user_id=budget.user_id,
                total_amount=budget.total_amount,
                period_start=budget.period_start,
                period_end=budget.period_end,
                category_allocations=[
                    BudgetAllocationRecord(category_id=a.category_id, allocated_amount=a.allocated_amount)
                    for a in budget.allocations
                ],
            )

        return self._run(query)
