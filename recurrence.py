from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ConfigurationError
from models import RecurrencePattern
from store import ScheduledRecord, parse_pattern


@dataclass(frozen=True)
class Occurrence:
    execution_date: date
    amount: Decimal
    type_id: int
    category: str
    description: Optional[str]
    source_scheduled_id: Optional[int]

    # Occurrences never carry savings metadata.
    metadata = None

    @property
    def date(self) -> date:
        return self.execution_date

    def as_dict(self) -> dict[str, object]:
        return {
            "execution_date": self.execution_date.isoformat(),
            "amount": self.amount,
            "typeId": self.type_id,
            "category": self.category,
            "description": self.description,
            "source_scheduled_id": self.source_scheduled_id,
        }


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


def _period_days(pattern: RecurrencePattern) -> Optional[int]:
    if pattern == RecurrencePattern.daily:
        return 1
    if pattern == RecurrencePattern.weekly:
        return 7
    return None


def _period_months(pattern: RecurrencePattern) -> int:
    if pattern == RecurrencePattern.monthly:
        return 1
    if pattern == RecurrencePattern.yearly:
        return 12
    raise ConfigurationError(f"Pattern {pattern.value!r} has no month period")


def nth_occurrence(
    anchor: date,
    pattern: RecurrencePattern,
    interval: int,
    index: int,
    anchor_day: Optional[int] = None,
) -> date:
    """Date of the ``index``-th repetition, computed from the anchor.

    Monthly and yearly steps keep ``anchor_day`` (default: the anchor's day)
    and clamp to the last day of shorter months, so a 31st anchor never
    drifts to the 28th. Index 0 is always the anchor itself.
    """
    if index == 0:
        return anchor
    days = _period_days(pattern)
    if days is not None:
        return anchor + timedelta(days=days * interval * index)
    return add_months(
        anchor, _period_months(pattern) * interval * index, desired_day=anchor_day
    )


def _first_index_on_or_after(
    anchor: date,
    pattern: RecurrencePattern,
    interval: int,
    target: date,
    anchor_day: Optional[int] = None,
) -> int:
    if target <= anchor:
        return 0
    days = _period_days(pattern)
    if days is not None:
        step = days * interval
        return -(-(target - anchor).days // step)

    step = _period_months(pattern) * interval
    months_apart = (target.year - anchor.year) * 12 + (target.month - anchor.month)
    index = months_apart // step
    while nth_occurrence(anchor, pattern, interval, index, anchor_day) < target:
        index += 1
    return index


def _validated(pattern, interval: int) -> tuple[RecurrencePattern, int]:
    pattern = parse_pattern(pattern)
    if interval is None or int(interval) < 1:
        raise ConfigurationError(f"Recurrence interval must be positive, got {interval!r}")
    return pattern, int(interval)


def next_execution_date(
    current: date,
    pattern: RecurrencePattern,
    interval: int = 1,
    *,
    anchor_day: Optional[int] = None,
) -> date:
    pattern, interval = _validated(pattern, interval)
    if pattern == RecurrencePattern.once:
        raise ConfigurationError("One-time schedules have no next execution")
    days = _period_days(pattern)
    if days is not None:
        return current + timedelta(days=days * interval)
    return add_months(
        current, _period_months(pattern) * interval, desired_day=anchor_day
    )


def project_occurrences(
    scheduled: ScheduledRecord, window_start: date, window_end: date
) -> list[Occurrence]:
    if not scheduled.is_active or window_start > window_end:
        return []

    pattern, interval = _validated(
        scheduled.recurrence_pattern, scheduled.recurrence_interval
    )
    anchor = scheduled.next_execution_date

    def occurrence(on: date) -> Occurrence:
        return Occurrence(
            execution_date=on,
            amount=scheduled.amount,
            type_id=scheduled.type_id,
            category=scheduled.category,
            description=scheduled.description,
            source_scheduled_id=scheduled.id,
        )

    if pattern == RecurrencePattern.once:
        if window_start <= anchor <= window_end:
            return [occurrence(anchor)]
        return []

    limit = window_end
    if scheduled.recurrence_end_date and scheduled.recurrence_end_date < limit:
        limit = scheduled.recurrence_end_date

    occurrences: list[Occurrence] = []
    anchor_day = scheduled.anchor_day
    index = _first_index_on_or_after(
        anchor, pattern, interval, window_start, anchor_day
    )
    current = nth_occurrence(anchor, pattern, interval, index, anchor_day)
    while current <= limit:
        occurrences.append(occurrence(current))
        index += 1
        current = nth_occurrence(anchor, pattern, interval, index, anchor_day)
    return occurrences
