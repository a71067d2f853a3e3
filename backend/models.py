"""
SQLAlchemy ORM models for the budget analytics store.

Includes:
    - Category (per-user, optional parent)
    - Transaction (income/expense/transfer records)
    - Budget, BudgetAllocation (per-category allocations)

The analytics engine only reads these tables, through the SQL sources
in analytics.data_sources.

Author: Budget Analytics Team
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship
from database import Base


class Category(Base):
    """User-defined spending category."""
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    parent_id = Column(String, ForeignKey("categories.id"))

    transactions = relationship("Transaction", back_populates="category")


class Transaction(Base):
    """Core transaction data."""
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    account_id = Column(String)
    category_id = Column(String, ForeignKey("categories.id"))
    date = Column(Date, nullable=False)
    amount = Column(Float, nullable=False)  # always positive; direction is in `type`
    type = Column(String, nullable=False, default="expense")  # 'income'|'expense'|'transfer'
    description = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)

    category = relationship("Category", back_populates="transactions")

    __table_args__ = (
        Index('ix_transactions_user_date', 'user_id', 'date'),
    )


class Budget(Base):
    """A spending plan over a fixed period."""
    __tablename__ = "budgets"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    total_amount = Column(Float)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    allocations = relationship(
        "BudgetAllocation", back_populates="budget", cascade="all, delete-orphan"
    )


class BudgetAllocation(Base):
    """Amount allocated to one category within a budget."""
    __tablename__ = "budget_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    budget_id = Column(String, ForeignKey("budgets.id"), nullable=False)
    category_id = Column(String, ForeignKey("categories.id"), nullable=False)
    allocated_amount = Column(Float, nullable=False)

    budget = relationship("Budget", back_populates="allocations")
