"""Recurrence patterns and the calendar arithmetic behind them.

All arithmetic is done on calendar dates.  Months and years are never treated
as fixed-length spans of days.

Weekdays are numbered the way users pick them in the calendar UI:
0 = Sunday through 6 = Saturday.
"""

from __future__ import annotations

import calendar as cal
from datetime import date, timedelta
from typing import Annotated, Iterator, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigurationError


# Dates beyond this are never generated while scanning for matches.
SCAN_HORIZON = date(9000, 12, 31)


def _normalized(values: List[int], low: int, high: int, name: str) -> List[int]:
    for value in values:
        if not low <= value <= high:
            raise ValueError(f"{name} values must be between {low} and {high}")
    return sorted(set(values))


class _Pattern(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class NoRecurrence(_Pattern):
    type: Literal["none"] = "none"


class _Repeating(_Pattern):
    interval: int = Field(default=1, gt=0)
    end_date: Optional[date] = None
    count: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _single_bound(self):
        if self.end_date is not None and self.count is not None:
            raise ValueError("end_date and count cannot both be set")
        return self


class DailyRecurrence(_Repeating):
    type: Literal["daily"] = "daily"


class WeeklyRecurrence(_Repeating):
    type: Literal["weekly"] = "weekly"
    days_of_week: List[int] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def _check_days_of_week(cls, v: List[int]) -> List[int]:
        return _normalized(v, 0, 6, "days_of_week")


class MonthlyRecurrence(_Repeating):
    type: Literal["monthly"] = "monthly"
    days_of_month: List[int] = Field(default_factory=list)
    days_of_week: List[int] = Field(default_factory=list)
    by_set_pos: List[int] = Field(default_factory=list)

    @field_validator("days_of_month")
    @classmethod
    def _check_days_of_month(cls, v: List[int]) -> List[int]:
        return _normalized(v, 1, 31, "days_of_month")

    @field_validator("days_of_week")
    @classmethod
    def _check_days_of_week(cls, v: List[int]) -> List[int]:
        return _normalized(v, 0, 6, "days_of_week")

    @field_validator("by_set_pos")
    @classmethod
    def _check_by_set_pos(cls, v: List[int]) -> List[int]:
        if 0 in v:
            raise ValueError("by_set_pos values must be non-zero")
        return _normalized(v, -5, 5, "by_set_pos")

    @model_validator(mode="after")
    def _weekday_rule_complete(self):
        if bool(self.days_of_week) != bool(self.by_set_pos):
            raise ValueError("days_of_week and by_set_pos must be given together")
        return self


class YearlyRecurrence(_Repeating):
    type: Literal["yearly"] = "yearly"
    months_of_year: List[int] = Field(default_factory=list)

    @field_validator("months_of_year")
    @classmethod
    def _check_months_of_year(cls, v: List[int]) -> List[int]:
        return _normalized(v, 1, 12, "months_of_year")


RecurrencePattern = Annotated[
    Union[
        NoRecurrence,
        DailyRecurrence,
        WeeklyRecurrence,
        MonthlyRecurrence,
        YearlyRecurrence,
    ],
    Field(discriminator="type"),
]

_pattern_adapter: TypeAdapter = TypeAdapter(RecurrencePattern)


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def parse_recurrence(data) -> RecurrencePattern:
    """Build a validated pattern from ``data``.

    ``None`` means a one-off assignment.  Raises :class:`ConfigurationError`
    for malformed input.
    """
    if data is None:
        return NoRecurrence()
    if isinstance(data, _Pattern):
        data = data.model_dump()
    try:
        return _pattern_adapter.validate_python(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid recurrence pattern: {describe_validation_error(exc)}"
        ) from exc


def day_of_week(day: date) -> int:
    """Return the weekday of ``day`` with 0 = Sunday."""
    return (day.weekday() + 1) % 7


def week_of_month(day: date) -> int:
    """Return ``ceil(day / 7)``: 1 for days 1-7, 2 for days 8-14, ..."""
    return (day.day + 6) // 7


def week_of_month_from_end(day: date) -> int:
    """Return -1 for the last seven days of the month, -2 for the seven before, ..."""
    days_in_month = cal.monthrange(day.year, day.month)[1]
    return -((days_in_month - day.day) // 7 + 1)


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def matches_pattern(pattern: RecurrencePattern, anchor: date, day: date) -> bool:
    """Return ``True`` if ``day`` matches ``pattern`` measured from ``anchor``.

    Bounds (series dates, ``end_date`` and ``count``) are not considered here.
    """
    if isinstance(pattern, NoRecurrence):
        return day == anchor

    if isinstance(pattern, DailyRecurrence):
        diff = (day - anchor).days
        return diff >= 0 and diff % pattern.interval == 0

    if isinstance(pattern, WeeklyRecurrence):
        weeks = (day - anchor).days // 7
        if weeks < 0 or weeks % pattern.interval:
            return False
        if pattern.days_of_week:
            return day_of_week(day) in pattern.days_of_week
        return day.weekday() == anchor.weekday()

    if isinstance(pattern, MonthlyRecurrence):
        months = months_between(anchor, day)
        if months < 0 or months % pattern.interval:
            return False
        if pattern.days_of_month:
            return day.day in pattern.days_of_month
        if pattern.days_of_week and pattern.by_set_pos:
            return day_of_week(day) in pattern.days_of_week and (
                week_of_month(day) in pattern.by_set_pos
                or week_of_month_from_end(day) in pattern.by_set_pos
            )
        return day.day == anchor.day

    if isinstance(pattern, YearlyRecurrence):
        years = day.year - anchor.year
        if years < 0 or years % pattern.interval:
            return False
        months = pattern.months_of_year or [anchor.month]
        return day.month in months and day.day == anchor.day

    return False


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _first_period(pattern: RecurrencePattern, anchor: date, start: date) -> int:
    """Return the first period index whose days can reach ``start``."""
    if start <= anchor:
        return 0
    if isinstance(pattern, DailyRecurrence):
        raw = (start - anchor).days
    elif isinstance(pattern, WeeklyRecurrence):
        raw = (start - anchor).days // 7
    elif isinstance(pattern, MonthlyRecurrence):
        raw = months_between(anchor, start)
    else:
        raw = start.year - anchor.year
    interval = pattern.interval
    return -(-raw // interval) * interval


def _period_days(
    pattern: RecurrencePattern, anchor: date, period: int
) -> Optional[List[date]]:
    """Return candidate days of ``period`` or ``None`` past the scan horizon."""
    if isinstance(pattern, DailyRecurrence):
        if (SCAN_HORIZON - anchor).days < period:
            return None
        return [anchor + timedelta(days=period)]
    if isinstance(pattern, WeeklyRecurrence):
        if (SCAN_HORIZON - anchor).days < period * 7:
            return None
        first = anchor + timedelta(weeks=period)
        return [first + timedelta(days=i) for i in range(7)]
    if isinstance(pattern, MonthlyRecurrence):
        year, month = _shift_month(anchor.year, anchor.month, period)
        if year > SCAN_HORIZON.year:
            return None
        days_in_month = cal.monthrange(year, month)[1]
        if pattern.days_of_month:
            candidates = pattern.days_of_month
        elif pattern.days_of_week:
            candidates = range(1, days_in_month + 1)
        else:
            candidates = [anchor.day]
        return [date(year, month, d) for d in candidates if d <= days_in_month]
    year = anchor.year + period
    if year > SCAN_HORIZON.year:
        return None
    months = pattern.months_of_year or [anchor.month]
    return [
        date(year, m, anchor.day)
        for m in months
        if anchor.day <= cal.monthrange(year, m)[1]
    ]


def scan_limit(pattern: RecurrencePattern, anchor: date) -> date:
    """Return the last day worth scanning for an otherwise unbounded pattern.

    The Gregorian calendar repeats every 400 years, so a pattern that has not
    matched within ``400 * interval`` years never will.
    """
    interval = getattr(pattern, "interval", 1)
    return date(min(anchor.year + 400 * interval, SCAN_HORIZON.year), 12, 31)


def iter_pattern_dates(
    pattern: RecurrencePattern,
    anchor: date,
    start: date,
    until: Optional[date] = None,
) -> Iterator[date]:
    """Yield the days in ``[start, until]`` matching ``pattern``, ascending.

    Walks whole periods (day, week, month or year) so the cost is bounded by
    the number of periods in the window, not by the number of days.
    """
    if until is None or until > SCAN_HORIZON:
        until = SCAN_HORIZON
    if start > until:
        return
    if isinstance(pattern, NoRecurrence):
        if start <= anchor <= until:
            yield anchor
        return

    period = _first_period(pattern, anchor, start)
    while True:
        days = _period_days(pattern, anchor, period)
        if days is None:
            return
        for day in days:
            if day > until:
                return
            if day >= start and matches_pattern(pattern, anchor, day):
                yield day
        period += pattern.interval
