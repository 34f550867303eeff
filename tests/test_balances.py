from datetime import date
from decimal import Decimal

from balances import accumulate, accumulate_running, month_key, monthly_history
from classifier import ClassificationMode
from store import TransactionRecord


def make_txn(day, amount, type_id):
    return TransactionRecord(
        id=None,
        user_id="u1",
        amount=Decimal(amount),
        type_id=type_id,
        category="General",
        date=day,
    )


def test_accumulate_is_repeatable_and_order_free() -> None:
    items = [
        make_txn(date(2024, 1, 5), "300", 1),
        make_txn(date(2024, 1, 1), "1000", 2),
    ]

    first = accumulate(items)
    second = accumulate(list(reversed(items)))

    assert first == second == Decimal("700")


def test_accumulate_empty_is_zero() -> None:
    assert accumulate([], ClassificationMode.available_balance) == Decimal("0")


def test_running_balance_collapses_same_day() -> None:
    items = [
        make_txn(date(2024, 1, 2), "50", 1),
        make_txn(date(2024, 1, 1), "100", 2),
        make_txn(date(2024, 1, 2), "20", 2),
    ]

    assert accumulate_running(items) == [
        (date(2024, 1, 1), Decimal("100")),
        (date(2024, 1, 2), Decimal("70")),
    ]


def test_history_single_month() -> None:
    items = [
        make_txn(date(2024, 1, 1), "1000", 2),
        make_txn(date(2024, 1, 5), "300", 1),
    ]

    assert monthly_history(items) == [{"month": "2024/01", "balance": Decimal("700")}]


def test_history_carries_running_balance_across_months() -> None:
    items = [
        make_txn(date(2023, 12, 20), "200", 2),
        make_txn(date(2024, 1, 1), "1000", 2),
        make_txn(date(2024, 1, 15), "300", 1),
        make_txn(date(2024, 3, 2), "50", 1),
    ]

    history = monthly_history(items)

    assert [point["month"] for point in history] == ["2023/12", "2024/01", "2024/03"]
    assert [point["balance"] for point in history] == [
        Decimal("200"),
        Decimal("900"),
        Decimal("850"),
    ]


def test_month_key_is_zero_padded() -> None:
    assert month_key(date(2024, 3, 9)) == "2024/03"
