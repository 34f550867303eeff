from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from codec import FieldCodec
from errors import ConfigurationError, UpstreamFetchError
from models import (
    RecurrencePattern,
    SavingsGoal,
    SavingsOperation,
    ScheduledTransaction,
    Transaction,
)


logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
SAVINGS_GOALS = "savings_goals"
SCHEDULED_TRANSACTIONS = "scheduled_transactions"


@dataclass(frozen=True)
class TransactionMetadata:
    operation: Optional[SavingsOperation] = None
    source: Optional[str] = None
    scheduled_transaction_id: Optional[int] = None
    goal_id: Optional[int] = None


@dataclass(frozen=True)
class TransactionRecord:
    id: Optional[int]
    user_id: str
    amount: Decimal
    type_id: int
    category: str
    date: date
    description: Optional[str] = None
    metadata: Optional[TransactionMetadata] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "description": self.description,
            "amount": self.amount,
            "typeId": self.type_id,
            "category": self.category,
            "date": self.date.isoformat(),
            "metadata": metadata_to_dict(self.metadata),
        }


@dataclass(frozen=True)
class ScheduledRecord:
    id: Optional[int]
    user_id: str
    amount: Decimal
    type_id: int
    category: str
    recurrence_pattern: RecurrencePattern
    next_execution_date: date
    recurrence_interval: int = 1
    recurrence_end_date: Optional[date] = None
    description: Optional[str] = None
    is_active: bool = True
    anchor_day: Optional[int] = None


@dataclass(frozen=True)
class SavingsGoalRecord:
    id: Optional[int]
    user_id: str
    goal_name: str
    target_amount: Decimal
    current_amount: Decimal
    target_date: Optional[date] = None


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_metadata(raw: Any) -> Optional[TransactionMetadata]:
    """Normalize metadata stored as JSON text, a mapping, or nothing."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, TransactionMetadata):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError("Transaction metadata is not valid JSON") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Transaction metadata must be a JSON object")

    operation = raw.get("operation")
    try:
        parsed_operation = SavingsOperation(operation) if operation else None
    except ValueError:
        parsed_operation = None
    scheduled_id = raw.get("scheduled_transaction_id")
    goal_id = raw.get("goal_id")
    return TransactionMetadata(
        operation=parsed_operation,
        source=raw.get("source"),
        scheduled_transaction_id=int(scheduled_id) if scheduled_id is not None else None,
        goal_id=int(goal_id) if goal_id is not None else None,
    )


def metadata_to_dict(meta: Optional[TransactionMetadata]) -> Optional[dict[str, Any]]:
    if meta is None:
        return None
    payload: dict[str, Any] = {}
    if meta.operation is not None:
        payload["operation"] = meta.operation.value
    if meta.source is not None:
        payload["source"] = meta.source
    if meta.scheduled_transaction_id is not None:
        payload["scheduled_transaction_id"] = meta.scheduled_transaction_id
    if meta.goal_id is not None:
        payload["goal_id"] = meta.goal_id
    return payload


def dump_metadata(meta: Optional[TransactionMetadata]) -> Optional[str]:
    payload = metadata_to_dict(meta)
    return json.dumps(payload, sort_keys=True) if payload is not None else None


def parse_pattern(value: Any) -> RecurrencePattern:
    try:
        return RecurrencePattern(value)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown recurrence pattern: {value!r}") from exc


def transaction_record(row: Mapping[str, Any]) -> TransactionRecord:
    return TransactionRecord(
        id=row.get("id"),
        user_id=str(row["user_id"]),
        amount=to_decimal(row.get("amount")),
        type_id=int(row["type_id"]),
        category=row.get("category") or "",
        date=row["date"],
        description=row.get("description"),
        metadata=parse_metadata(row.get("metadata_json")),
    )


def scheduled_record(row: Mapping[str, Any]) -> ScheduledRecord:
    return ScheduledRecord(
        id=row.get("id"),
        user_id=str(row["user_id"]),
        amount=to_decimal(row.get("amount")),
        type_id=int(row["type_id"]),
        category=row.get("category") or "",
        recurrence_pattern=parse_pattern(row["recurrence_pattern"]),
        next_execution_date=row["next_execution_date"],
        recurrence_interval=int(row.get("recurrence_interval") or 1),
        recurrence_end_date=row.get("recurrence_end_date"),
        description=row.get("description"),
        is_active=bool(row.get("is_active", True)),
        anchor_day=row.get("anchor_day"),
    )


def savings_goal_record(row: Mapping[str, Any]) -> SavingsGoalRecord:
    return SavingsGoalRecord(
        id=row.get("id"),
        user_id=str(row["user_id"]),
        goal_name=row.get("goal_name") or "",
        target_amount=to_decimal(row.get("target_amount")),
        current_amount=to_decimal(row.get("current_amount")),
        target_date=row.get("target_date"),
    )


class Store(Protocol):
    def select_by_user(self, table: str, user_id: str, **filters: Any) -> list: ...


class SqlStore:
    """Store backed by a SQLAlchemy session; rows come back decoded and typed."""

    _tables = {
        TRANSACTIONS: (Transaction, transaction_record),
        SAVINGS_GOALS: (SavingsGoal, savings_goal_record),
        SCHEDULED_TRANSACTIONS: (ScheduledTransaction, scheduled_record),
    }

    def __init__(self, session: Session, codec: Optional[FieldCodec] = None) -> None:
        self.session = session
        self.codec = codec or FieldCodec()

    def select_by_user(self, table: str, user_id: str, **filters: Any) -> list:
        try:
            model, to_record = self._tables[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

        stmt = select(model).where(model.user_id == user_id)
        if table == TRANSACTIONS:
            if filters.get("date_from") is not None:
                stmt = stmt.where(Transaction.date >= filters["date_from"])
            if filters.get("date_to") is not None:
                stmt = stmt.where(Transaction.date <= filters["date_to"])
            stmt = stmt.order_by(Transaction.date, Transaction.id)
        elif table == SCHEDULED_TRANSACTIONS:
            if filters.get("active_only", True):
                stmt = stmt.where(ScheduledTransaction.is_active.is_(True))
            stmt = stmt.order_by(ScheduledTransaction.next_execution_date)
        else:
            stmt = stmt.order_by(SavingsGoal.target_date, SavingsGoal.id)

        try:
            rows = self.session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(f"store_select_failed: table={table} user={user_id}")
            raise UpstreamFetchError(f"Failed to fetch {table}") from exc

        return [self.to_record(table, row) for row in rows]

    def to_record(self, table: str, row: Any):
        _model, to_record = self._tables[table]
        return to_record(self.codec.decode_row(table, _row_dict(row)))


def _row_dict(row: Any) -> dict[str, Any]:
    return {
        attr.key: getattr(row, attr.key)
        for attr in row.__mapper__.column_attrs
    }
