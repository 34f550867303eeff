from datetime import date
from decimal import Decimal

import pytest

from cashflow import assemble_calendar
from errors import ValidationError
from models import RecurrencePattern
from store import ScheduledRecord, TransactionRecord


def make_txn(txn_id, day, amount, type_id):
    return TransactionRecord(
        id=txn_id,
        user_id="u1",
        amount=Decimal(amount),
        type_id=type_id,
        category="General",
        date=day,
    )


def make_scheduled(sched_id, anchor, amount, type_id, pattern):
    return ScheduledRecord(
        id=sched_id,
        user_id="u1",
        amount=Decimal(amount),
        type_id=type_id,
        category="Bills",
        recurrence_pattern=pattern,
        next_execution_date=anchor,
    )


def test_calendar_merges_actuals_and_projections() -> None:
    past = [
        make_txn(1, date(2024, 1, 1), "1000", 2),
        make_txn(2, date(2024, 1, 5), "300", 1),
    ]
    defs = [make_scheduled(1, date(2024, 1, 8), "50", 1, RecurrencePattern.weekly)]

    result = assemble_calendar(
        past, defs, date(2024, 1, 3), date(2024, 1, 10), today=date(2024, 1, 5)
    )

    balances = [entry.balance for entry in result.daily_balances.values()]
    assert result.opening_balance == Decimal("1000")
    assert balances == [Decimal(v) for v in ("1000", "1000", "700", "700", "700", "650", "650", "650")]

    jan5 = result.daily_balances[date(2024, 1, 5)]
    assert jan5.expenses == Decimal("300")
    assert jan5.is_today and not jan5.is_past and not jan5.is_future
    assert result.daily_balances[date(2024, 1, 4)].is_past
    jan8 = result.daily_balances[date(2024, 1, 8)]
    assert jan8.is_future
    assert jan8.expenses == Decimal("50")
    assert [occ.execution_date for occ in result.scheduled_occurrences] == [date(2024, 1, 8)]
    assert [txn.id for txn in result.past_transactions] == [2]


def test_every_day_in_window_is_present() -> None:
    result = assemble_calendar(
        [], [], date(2024, 2, 27), date(2024, 3, 2), today=date(2024, 1, 1)
    )

    assert list(result.daily_balances) == [
        date(2024, 2, 27),
        date(2024, 2, 28),
        date(2024, 2, 29),
        date(2024, 3, 1),
        date(2024, 3, 2),
    ]
    assert all(entry.balance == 0 for entry in result.daily_balances.values())


def test_balance_changes_only_by_that_days_items() -> None:
    past = [make_txn(1, date(2024, 1, 2), "40", 2), make_txn(2, date(2024, 1, 4), "15", 1)]
    defs = [make_scheduled(1, date(2024, 1, 3), "10", 2, RecurrencePattern.daily)]

    result = assemble_calendar(
        past, defs, date(2024, 1, 1), date(2024, 1, 6), today=date(2024, 1, 1)
    )

    previous = result.opening_balance
    for entry in result.daily_balances.values():
        assert entry.balance - previous == entry.income - entry.expenses
        previous = entry.balance


def test_occurrences_before_window_feed_opening_balance() -> None:
    past = [make_txn(1, date(2024, 1, 1), "200", 2)]
    defs = [
        make_scheduled(1, date(2024, 1, 5), "10", 2, RecurrencePattern.once),
        make_scheduled(2, date(2024, 1, 15), "100", 2, RecurrencePattern.once),
    ]

    result = assemble_calendar(
        past, defs, date(2024, 1, 10), date(2024, 1, 15), today=date(2024, 1, 1)
    )

    assert result.opening_balance == Decimal("210")
    assert result.daily_balances[date(2024, 1, 14)].balance == Decimal("210")
    assert result.daily_balances[date(2024, 1, 15)].balance == Decimal("310")


def test_without_transactions_projection_starts_at_window() -> None:
    defs = [make_scheduled(1, date(2024, 1, 2), "50", 2, RecurrencePattern.once)]

    result = assemble_calendar(
        [], defs, date(2024, 1, 5), date(2024, 1, 6), today=date(2024, 1, 5)
    )

    assert result.opening_balance == Decimal("0")
    assert result.daily_balances[date(2024, 1, 6)].balance == Decimal("0")


def test_negative_days_are_flagged() -> None:
    past = [make_txn(1, date(2024, 1, 2), "25", 1)]

    result = assemble_calendar(
        past, [], date(2024, 1, 1), date(2024, 1, 2), today=date(2024, 1, 1)
    )

    assert not result.daily_balances[date(2024, 1, 1)].is_negative
    assert result.daily_balances[date(2024, 1, 2)].is_negative


def test_start_after_end_is_rejected() -> None:
    with pytest.raises(ValidationError):
        assemble_calendar([], [], date(2024, 1, 10), date(2024, 1, 1), today=date(2024, 1, 1))


def test_as_dict_shape() -> None:
    past = [make_txn(1, date(2024, 1, 1), "5", 2)]

    payload = assemble_calendar(
        past, [], date(2024, 1, 1), date(2024, 1, 1), today=date(2024, 1, 1)
    ).as_dict()

    assert set(payload) == {"dailyBalances", "pastTransactions", "scheduledOccurrences"}
    day = payload["dailyBalances"]["2024-01-01"]
    assert set(day) == {
        "date",
        "balance",
        "income",
        "expenses",
        "isNegative",
        "isPast",
        "isToday",
        "isFuture",
    }
    assert payload["pastTransactions"][0]["typeId"] == 2
