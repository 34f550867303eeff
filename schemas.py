import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator

from models import RecurrencePattern, SavingsOperation


TypeId = Literal[1, 2, 3]


class TransactionMetadataIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    operation: Optional[SavingsOperation] = None
    source: Optional[str] = None
    scheduled_transaction_id: Optional[int] = None
    goal_id: Optional[int] = None


class TransactionIn(BaseModel):
    description: Optional[str] = Field(default=None, max_length=200)
    amount: Decimal
    typeId: TypeId
    category: str = Field(..., min_length=1, max_length=100)
    date: date
    metadata: Optional[TransactionMetadataIn] = None


class ScheduledTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    typeId: TypeId
    scheduled_date: date
    recurrence_pattern: RecurrencePattern = RecurrencePattern.once
    recurrence_interval: int = Field(default=1, gt=0)
    recurrence_end_date: Optional[date] = None

    @model_validator(mode="after")
    def _end_after_start(self) -> "ScheduledTransactionIn":
        if self.recurrence_end_date and self.recurrence_end_date < self.scheduled_date:
            raise ValueError("recurrence_end_date must not precede scheduled_date")
        return self


class ScheduledTransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    typeId: Optional[TypeId] = None
    scheduled_date: Optional[date] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_interval: Optional[int] = Field(default=None, gt=0)
    recurrence_end_date: Optional[date] = None
    is_active: Optional[bool] = None


class SavingsGoalIn(BaseModel):
    goal_name: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., ge=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: Optional[date] = None


class GoalMovementIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    date: Optional[dt.date] = None


# JSON numbers on the wire, matching the jsonable_encoder-rendered endpoints
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class AvailableBalanceOut(BaseModel):
    balance: Money
    totalBalance: Money
    allocatedSavings: Money


class MonthlyBalanceOut(BaseModel):
    balance: Money


class HistoryPointOut(BaseModel):
    month: str
    balance: Money
