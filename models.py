from datetime import date, datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


SAVINGS_GOAL_CATEGORY = "Savings Goal"


class TransactionType(IntEnum):
    expense = 1
    income = 2
    savings = 3


class RecurrencePattern(str, Enum):
    once = "once"
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class SavingsOperation(str, Enum):
    allocate = "allocate"
    withdraw = "withdraw"


RECURRENCE_PATTERN_ENUM = SAEnum(
    RecurrencePattern,
    name="recurrencepattern",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

MONEY = Numeric(14, 2, asdecimal=True)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        CheckConstraint("type_id IN (1, 2, 3)", name="ck_transactions_type_id"),
    )


class ScheduledTransaction(Base, TimestampMixin):
    __tablename__ = "scheduled_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    recurrence_pattern: Mapped[RecurrencePattern] = mapped_column(
        RECURRENCE_PATTERN_ENUM, nullable=False, default=RecurrencePattern.once
    )
    recurrence_interval: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    next_execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Day of month monthly/yearly schedules snap back to after a short month.
    anchor_day: Mapped[Optional[int]] = mapped_column(Integer)
    recurrence_end_date: Mapped[Optional[date]] = mapped_column(Date)
    last_executed_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    executions: Mapped[list["ScheduledTransactionExecution"]] = relationship(
        "ScheduledTransactionExecution",
        back_populates="scheduled_transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_scheduled_user_next", "user_id", "next_execution_date"),
        CheckConstraint("recurrence_interval > 0", name="ck_scheduled_interval_positive"),
        CheckConstraint("amount >= 0", name="ck_scheduled_amount_positive"),
        CheckConstraint("type_id IN (1, 2, 3)", name="ck_scheduled_type_id"),
    )


class ScheduledTransactionExecution(Base, TimestampMixin):
    __tablename__ = "scheduled_transaction_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scheduled_transaction_id: Mapped[int] = mapped_column(
        ForeignKey("scheduled_transactions.id", ondelete="CASCADE"), nullable=False
    )
    execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )

    scheduled_transaction: Mapped["ScheduledTransaction"] = relationship(
        "ScheduledTransaction", back_populates="executions"
    )

    __table_args__ = (
        UniqueConstraint(
            "scheduled_transaction_id",
            "execution_date",
            name="uq_scheduled_execution_date",
        ),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    goal_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        Index("ix_savings_goals_user", "user_id"),
        CheckConstraint("current_amount >= 0", name="ck_goal_current_positive"),
        CheckConstraint("target_amount >= 0", name="ck_goal_target_positive"),
    )
