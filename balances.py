from __future__ import annotations

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from classifier import ClassificationMode, signed_delta


def accumulate(
    items: Iterable[Any], mode: ClassificationMode = ClassificationMode.historical
) -> Decimal:
    total = Decimal("0")
    for item in items:
        total += signed_delta(item, mode)
    return total


def accumulate_running(
    items: Iterable[Any], mode: ClassificationMode = ClassificationMode.historical
) -> list[tuple[date, Decimal]]:
    """Running balance after each distinct date, oldest first.

    Same-day items are summed into one point.
    """
    per_day: "OrderedDict[date, Decimal]" = OrderedDict()
    for item in sorted(items, key=lambda t: t.date):
        per_day[item.date] = per_day.get(item.date, Decimal("0")) + signed_delta(
            item, mode
        )

    points: list[tuple[date, Decimal]] = []
    running = Decimal("0")
    for day, change in per_day.items():
        running += change
        points.append((day, running))
    return points


def month_key(day: date) -> str:
    return f"{day.year}/{day.month:02d}"


def monthly_history(
    items: Iterable[Any], mode: ClassificationMode = ClassificationMode.historical
) -> list[dict[str, object]]:
    history: "OrderedDict[str, Decimal]" = OrderedDict()
    for day, running in accumulate_running(items, mode):
        history[month_key(day)] = running
    return [{"month": month, "balance": balance} for month, balance in history.items()]
