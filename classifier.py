"""Sign conventions for transactions feeding a balance.

Two modes exist because the available-balance figure and the historical
views (monthly, history, calendar) treat savings rows differently:

* ``AVAILABLE_BALANCE`` separates goal allocations (money leaves the
  available balance) from goal withdrawals (money comes back). Withdrawal
  rows store a negative amount and are subtracted, which adds ``|amount|``.
* ``HISTORICAL`` counts every savings row at face value.

Both are kept on purpose until product confirms which one is intended
everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from errors import ConfigurationError
from models import SAVINGS_GOAL_CATEGORY, SavingsOperation, TransactionType


class ClassificationMode(str, Enum):
    available_balance = "available_balance"
    historical = "historical"


class Bucket(str, Enum):
    income = "income"
    expense = "expense"
    savings_allocation = "savings_allocation"
    savings_withdrawal = "savings_withdrawal"
    savings_regular = "savings_regular"


@dataclass(frozen=True)
class Classification:
    signed_delta: Decimal
    bucket: Bucket


def _operation(item: Any) -> Optional[SavingsOperation]:
    meta = getattr(item, "metadata", None)
    if meta is None:
        return None
    return meta.operation


def savings_bucket(item: Any) -> Bucket:
    operation = _operation(item)
    if operation == SavingsOperation.allocate:
        return Bucket.savings_allocation
    if operation == SavingsOperation.withdraw:
        return Bucket.savings_withdrawal
    if item.category == SAVINGS_GOAL_CATEGORY:
        if item.amount > 0:
            return Bucket.savings_allocation
        if item.amount < 0:
            return Bucket.savings_withdrawal
    return Bucket.savings_regular


def classify(
    item: Any, mode: ClassificationMode = ClassificationMode.historical
) -> Classification:
    """Classify a transaction or projected occurrence.

    ``item`` needs ``type_id``, ``amount`` and ``category``; ``metadata`` is
    optional (occurrences have none).
    """
    amount = item.amount
    try:
        kind = TransactionType(item.type_id)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown transaction type id: {item.type_id!r}") from exc

    if kind == TransactionType.income:
        return Classification(amount, Bucket.income)
    if kind == TransactionType.expense:
        return Classification(-amount, Bucket.expense)

    bucket = savings_bucket(item)
    if mode == ClassificationMode.historical:
        return Classification(amount, bucket)
    if bucket in (Bucket.savings_allocation, Bucket.savings_withdrawal):
        return Classification(-amount, bucket)
    return Classification(amount, bucket)


def signed_delta(
    item: Any, mode: ClassificationMode = ClassificationMode.historical
) -> Decimal:
    return classify(item, mode).signed_delta
