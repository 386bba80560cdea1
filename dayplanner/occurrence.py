"""Decide whether a series occurs on a given calendar day."""

from __future__ import annotations

from datetime import date, timedelta
from itertools import islice
from typing import Optional

from .recurrence import SCAN_HORIZON, iter_pattern_dates, matches_pattern, scan_limit
from .series import ExceptionAction, Series


def _bounded_until(series: Series) -> Optional[date]:
    bounds = [
        d
        for d in (series.end_date, getattr(series.recurrence, "end_date", None))
        if d is not None
    ]
    return min(bounds) if bounds else None


def recurrence_limit(series: Series) -> Optional[date]:
    """Return the last day the series' own recurrence allows, if bounded.

    This folds ``recurrence.end_date`` and ``recurrence.count`` into a single
    date.  ``count`` is measured from ``start_date``; deleted occurrences still
    use up their ordinal.
    """
    pattern = series.recurrence
    limit = getattr(pattern, "end_date", None)
    count = getattr(pattern, "count", None)
    if count:
        nth = _nth_match(series, count)
        if nth is not None:
            limit = nth
    return limit


def _shift_years(day: date, years: int) -> Optional[date]:
    if day.year + years > date.max.year:
        return None
    return day.replace(year=day.year + years)


def _nth_match(series: Series, n: int) -> Optional[date]:
    """Return the ``n``-th pattern match on or after ``start_date``.

    A pattern repeats every ``400 * interval`` years (the Gregorian cycle),
    so one cycle is scanned and later matches are found by shifting whole
    cycles.  Returns ``None`` when a series bound or the pattern itself
    runs out of matches first.
    """
    pattern = series.recurrence
    start = series.start_date
    cycle_years = 400 * pattern.interval
    cycle_start = _shift_years(start, cycle_years)
    cycle_end = SCAN_HORIZON if cycle_start is None else cycle_start - timedelta(days=1)
    bound = _bounded_until(series)
    until = cycle_end if bound is None else min(bound, cycle_end)

    matches = list(
        islice(iter_pattern_dates(pattern, series.anchor, start, until), n)
    )
    if len(matches) == n:
        return matches[-1]
    if not matches or until < cycle_end:
        return None
    if cycle_end >= SCAN_HORIZON:
        # The cycle does not fit below the scan horizon; stop counting there.
        return SCAN_HORIZON
    cycles, index = divmod(n - 1, len(matches))
    return _shift_years(matches[index], cycles * cycle_years) or date.max


def occurs(
    series: Series,
    day: date,
    limit: Optional[date],
    honor_exceptions: bool = True,
) -> bool:
    """Evaluate ``series`` on ``day`` given a precomputed :func:`recurrence_limit`."""
    if day < series.start_date:
        return False
    if series.end_date is not None and day > series.end_date:
        return False
    if honor_exceptions:
        exc = series.exceptions.get(day)
        if exc is not None and exc.action == ExceptionAction.Delete:
            return False
    if limit is not None and day > limit:
        return False
    return matches_pattern(series.recurrence, series.anchor, day)


def is_occurrence(series: Series, day: date) -> bool:
    return occurs(series, day, recurrence_limit(series))


def is_scheduled_date(series: Series, day: date) -> bool:
    """Like :func:`is_occurrence` but disregarding any exception on ``day``."""
    return occurs(series, day, recurrence_limit(series), honor_exceptions=False)


def count_before(series: Series, day: date) -> int:
    """Number of pattern matches from ``start_date`` up to the day before ``day``."""
    if day <= series.start_date:
        return 0
    until = day - timedelta(days=1)
    return sum(
        1 for _ in iter_pattern_dates(series.recurrence, series.anchor, series.start_date, until)
    )


def next_occurrence(series: Series, after: date) -> Optional[date]:
    """Return the first occurrence strictly after ``after``, or ``None``."""
    if after >= SCAN_HORIZON:
        return None
    limit = recurrence_limit(series)
    until = _bounded_until(series)
    if limit is not None and (until is None or limit < until):
        until = limit
    if until is None:
        until = scan_limit(series.recurrence, series.anchor)
    start = max(series.start_date, after + timedelta(days=1))
    for day in iter_pattern_dates(series.recurrence, series.anchor, start, until):
        if occurs(series, day, limit):
            return day
    return None
