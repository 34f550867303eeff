from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence

from classifier import ClassificationMode, signed_delta
from errors import ValidationError
from models import TransactionType
from recurrence import Occurrence, project_occurrences
from store import ScheduledRecord, TransactionRecord


ZERO = Decimal("0")


@dataclass(frozen=True)
class DailyBalanceEntry:
    date: date
    balance: Decimal
    income: Decimal
    expenses: Decimal
    is_negative: bool
    is_past: bool
    is_today: bool
    is_future: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "balance": self.balance,
            "income": self.income,
            "expenses": self.expenses,
            "isNegative": self.is_negative,
            "isPast": self.is_past,
            "isToday": self.is_today,
            "isFuture": self.is_future,
        }


@dataclass
class CalendarResult:
    opening_balance: Decimal
    daily_balances: dict[date, DailyBalanceEntry] = field(default_factory=dict)
    past_transactions: list[TransactionRecord] = field(default_factory=list)
    scheduled_occurrences: list[Occurrence] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "dailyBalances": {
                day.isoformat(): entry.as_dict()
                for day, entry in self.daily_balances.items()
            },
            "pastTransactions": [txn.as_dict() for txn in self.past_transactions],
            "scheduledOccurrences": [occ.as_dict() for occ in self.scheduled_occurrences],
        }


def _daterange(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _sum_amount(items: Iterable[Any], kind: TransactionType) -> Decimal:
    return sum((item.amount for item in items if item.type_id == kind), ZERO)


def assemble_calendar(
    past_transactions: Sequence[TransactionRecord],
    scheduled_defs: Sequence[ScheduledRecord],
    start: date,
    end: date,
    *,
    today: date,
    mode: ClassificationMode = ClassificationMode.historical,
) -> CalendarResult:
    """Per-day running balance for ``start..end`` inclusive.

    The opening balance covers every actual transaction dated before
    ``start`` and every scheduled occurrence projected from the earliest
    transaction date (or ``start``) up to the day before ``start``. ``today``
    only drives the past/today/future flags.
    """
    if start > end:
        raise ValidationError(
            "start_date must not be after end_date", fields=["start_date", "end_date"]
        )

    transactions = sorted(past_transactions, key=lambda t: (t.date, t.id or 0))
    earliest = min(transactions[0].date, start) if transactions else start

    before_window: list[Occurrence] = []
    in_window: list[Occurrence] = []
    for definition in scheduled_defs:
        if earliest < start:
            before_window.extend(
                project_occurrences(definition, earliest, start - timedelta(days=1))
            )
        in_window.extend(project_occurrences(definition, start, end))
    in_window.sort(key=lambda o: (o.execution_date, o.source_scheduled_id or 0))

    opening = ZERO
    by_day: dict[date, list[Any]] = defaultdict(list)
    window_transactions: list[TransactionRecord] = []
    for txn in transactions:
        if txn.date < start:
            opening += signed_delta(txn, mode)
        elif txn.date <= end:
            by_day[txn.date].append(txn)
            window_transactions.append(txn)
    for occ in before_window:
        opening += signed_delta(occ, mode)
    for occ in in_window:
        by_day[occ.execution_date].append(occ)

    result = CalendarResult(
        opening_balance=opening,
        past_transactions=window_transactions,
        scheduled_occurrences=in_window,
    )
    running = opening
    for day in _daterange(start, end):
        items = by_day.get(day, [])
        running += sum((signed_delta(item, mode) for item in items), ZERO)
        result.daily_balances[day] = DailyBalanceEntry(
            date=day,
            balance=running,
            income=_sum_amount(items, TransactionType.income),
            expenses=_sum_amount(items, TransactionType.expense),
            is_negative=running < 0,
            is_past=day < today,
            is_today=day == today,
            is_future=day > today,
        )
    return result
