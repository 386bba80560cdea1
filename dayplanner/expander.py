from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, List, Mapping, Optional

from sqlmodel import Field, SQLModel

from .occurrence import occurs, recurrence_limit
from .recurrence import RecurrencePattern
from .series import ExceptionAction, Series
from .templates import TemplateSnapshot


class ScheduledTemplate(SQLModel):
    series_id: str
    day: date
    template_id: int
    modified: bool = False
    notes: str = ""
    recurrence: RecurrencePattern
    template: Optional[TemplateSnapshot] = None


class ScheduledDay(SQLModel):
    day: date
    entries: List[ScheduledTemplate] = Field(default_factory=list)


def schedule_order(series: Series) -> tuple[date, str]:
    """Sort key for entries of different series on the same day."""
    return (series.start_date, series.id)


def _entry(
    series: Series,
    day: date,
    templates: Optional[Mapping[int, TemplateSnapshot]],
) -> ScheduledTemplate:
    template_id = series.template_id
    modified = False
    exc = series.exceptions.get(day)
    if exc is not None and exc.action == ExceptionAction.Modify:
        template_id = exc.modified_template_id
        modified = True
    return ScheduledTemplate(
        series_id=series.id,
        day=day,
        template_id=template_id,
        modified=modified,
        notes=series.notes,
        recurrence=series.recurrence,
        template=templates.get(template_id) if templates is not None else None,
    )


def expand(
    series_list: Iterable[Series],
    range_start: date,
    range_end: date,
    templates: Optional[Mapping[int, TemplateSnapshot]] = None,
    include_empty: bool = False,
) -> List[ScheduledDay]:
    """Expand active series over ``[range_start, range_end]``.

    Days are returned in ascending order.  Days without entries are left out
    unless ``include_empty`` is set.  Entries on the same day follow
    :func:`schedule_order`.
    """
    if range_start > range_end:
        return []
    active = sorted((s for s in series_list if s.is_active), key=schedule_order)
    limits = {s.id: recurrence_limit(s) for s in active}

    days: List[ScheduledDay] = []
    for offset in range((range_end - range_start).days + 1):
        day = range_start + timedelta(days=offset)
        entries = [
            _entry(s, day, templates) for s in active if occurs(s, day, limits[s.id])
        ]
        if entries or include_empty:
            days.append(ScheduledDay(day=day, entries=entries))
    return days


def schedule_for(
    series_list: Iterable[Series],
    day: date,
    templates: Optional[Mapping[int, TemplateSnapshot]] = None,
) -> ScheduledDay:
    """Return the entries scheduled on a single ``day``."""
    return expand(series_list, day, day, templates, include_empty=True)[0]
