from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from errors import ValidationError


MIN_YEAR = 2000
MAX_YEAR = 2100


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(month: Union[int, str], year: Union[int, str]) -> Period:
    bad: list[str] = []
    try:
        month_num = int(month)
    except (TypeError, ValueError):
        month_num = None
    try:
        year_num = int(year)
    except (TypeError, ValueError):
        year_num = None

    if month_num is None or not 1 <= month_num <= 12:
        bad.append("month")
    if year_num is None or not MIN_YEAR <= year_num <= MAX_YEAR:
        bad.append("year")
    if bad:
        raise ValidationError(
            f"Invalid month ({month}) or year ({year}) parameter", fields=bad
        )

    first = date(year_num, month_num, 1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period(f"{year_num:04d}-{month_num:02d}", first, next_month - date.resolution)


def _parse_day(value: Optional[Union[str, date]], name: str) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError(f"{name} is required", fields=[name])
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO date", fields=[name]) from exc


def resolve_range(
    start: Optional[Union[str, date]], end: Optional[Union[str, date]]
) -> Period:
    start_date = _parse_day(start, "start_date")
    end_date = _parse_day(end, "end_date")
    if start_date > end_date:
        raise ValidationError(
            "start_date must not be after end_date", fields=["start_date", "end_date"]
        )
    return Period("custom", start_date, end_date)
