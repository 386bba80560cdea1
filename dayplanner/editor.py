"""Compute the next state of a series for "this / this and future / all" edits.

Nothing here touches storage.  Every function takes the current state of a
series and returns new objects; committing them (atomically, and only if the
series has not changed in the meantime) is up to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, Union

from .errors import ConfigurationError, NotFoundError
from .occurrence import count_before, is_scheduled_date
from .recurrence import RecurrencePattern, parse_recurrence
from .series import ExceptionAction, Series, build_exception, new_series_id
from .time_utils import day_before


class EditType(str, Enum):
    This = "this"
    ThisAndFuture = "thisAndFuture"
    All = "all"


@dataclass(frozen=True)
class Delete:
    pass


@dataclass(frozen=True)
class Retemplate:
    template_id: int


@dataclass(frozen=True)
class Reschedule:
    recurrence: RecurrencePattern
    template_id: Optional[int] = None


Mutation = Union[Delete, Retemplate, Reschedule]


@dataclass
class EditResult:
    updated: Series
    successor: Optional[Series] = None


def apply_edit(
    series: Series,
    edit_type: EditType,
    original_date: date,
    mutation: Mutation,
    reason: Optional[str] = None,
    new_id: Callable[[], str] = new_series_id,
) -> EditResult:
    """Apply ``mutation`` to ``series`` starting from the occurrence on ``original_date``.

    ``original_date`` must be a day the series is scheduled on.  An exception
    already recorded for that day is disregarded for this check so that
    repeating a single-occurrence edit replaces it instead of failing.

    Raises :class:`NotFoundError` when the series is inactive or does not
    occur on ``original_date``, and :class:`ConfigurationError` for a
    mutation that makes no sense for ``edit_type``.
    """
    edit_type = EditType(edit_type)
    if not series.is_active:
        raise NotFoundError(f"Series {series.id} is not active")
    if not is_scheduled_date(series, original_date):
        raise NotFoundError(
            f"Series {series.id} has no occurrence on {original_date.isoformat()}"
        )

    if edit_type == EditType.This:
        return EditResult(updated=_edit_one(series, original_date, mutation, reason))
    if edit_type == EditType.ThisAndFuture and original_date != series.start_date:
        return _split(series, original_date, mutation, new_id)
    return EditResult(updated=_edit_all(series, mutation))


def restore_occurrence(series: Series, original_date: date) -> Series:
    """Drop the exception recorded for ``original_date``."""
    if original_date not in series.exceptions:
        raise NotFoundError(
            f"Series {series.id} has no exception on {original_date.isoformat()}"
        )
    updated = series.model_copy(deep=True)
    del updated.exceptions[original_date]
    return updated


def _edit_one(
    series: Series, day: date, mutation: Mutation, reason: Optional[str]
) -> Series:
    if isinstance(mutation, Delete):
        exc = build_exception(
            original_date=day, action=ExceptionAction.Delete, reason=reason
        )
    elif isinstance(mutation, Retemplate):
        exc = build_exception(
            original_date=day,
            action=ExceptionAction.Modify,
            modified_template_id=mutation.template_id,
            reason=reason,
        )
    else:
        raise ConfigurationError(
            "The recurrence can only change for all or future occurrences"
        )
    updated = series.model_copy(deep=True)
    updated.exceptions[day] = exc
    return updated


def _edit_all(series: Series, mutation: Mutation) -> Series:
    updated = series.model_copy(deep=True)
    if isinstance(mutation, Delete):
        updated.is_active = False
    elif isinstance(mutation, Retemplate):
        updated.template_id = mutation.template_id
    else:
        updated.recurrence = parse_recurrence(mutation.recurrence)
        updated.anchor_date = None
        if mutation.template_id is not None:
            updated.template_id = mutation.template_id
    return updated


def _successor_pattern(series: Series, day: date) -> RecurrencePattern:
    pattern = series.recurrence
    count = getattr(pattern, "count", None)
    if not count:
        return pattern
    return pattern.model_copy(update={"count": count - count_before(series, day)})


def _split(
    series: Series, day: date, mutation: Mutation, new_id: Callable[[], str]
) -> EditResult:
    updated = series.model_copy(deep=True)
    moved = {d: exc for d, exc in updated.exceptions.items() if d >= day}
    updated.exceptions = {d: exc for d, exc in updated.exceptions.items() if d < day}
    cutoff = day_before(day)
    if updated.end_date is None or cutoff < updated.end_date:
        updated.end_date = cutoff

    if isinstance(mutation, Delete):
        return EditResult(updated=updated)

    if isinstance(mutation, Retemplate):
        template_id = mutation.template_id
        recurrence = _successor_pattern(series, day)
        anchor = series.anchor
    else:
        template_id = (
            series.template_id if mutation.template_id is None else mutation.template_id
        )
        recurrence = parse_recurrence(mutation.recurrence)
        anchor = None

    successor = Series(
        id=new_id(),
        template_id=template_id,
        owner=series.owner,
        start_date=day,
        end_date=series.end_date,
        anchor_date=anchor if anchor != day else None,
        recurrence=recurrence,
        notes=series.notes,
        exceptions=moved,
        previous_series=series.id,
    )
    updated.next_series = successor.id
    return EditResult(updated=updated, successor=successor)
