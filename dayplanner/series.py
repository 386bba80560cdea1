from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import ValidationError, model_validator
from sqlmodel import Field, SQLModel

from .errors import ConfigurationError
from .recurrence import RecurrencePattern, describe_validation_error, parse_recurrence


def new_series_id() -> str:
    return uuid4().hex


class ExceptionAction(str, Enum):
    Delete = "delete"
    Modify = "modify"


class SeriesException(SQLModel):
    """Override for a single occurrence of a series."""

    original_date: date
    action: ExceptionAction
    modified_template_id: Optional[int] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _template_matches_action(self):
        if self.action == ExceptionAction.Modify and self.modified_template_id is None:
            raise ValueError("modify exceptions require modified_template_id")
        if self.action == ExceptionAction.Delete and self.modified_template_id is not None:
            raise ValueError("delete exceptions cannot carry a template")
        return self


class Series(SQLModel):
    """A day template assigned to a start date with a recurrence pattern.

    ``anchor_date`` is the day period arithmetic is measured from.  It is only
    set on successors created by splitting a series, which must keep producing
    the occurrences of the series they were split from.
    """

    id: str = Field(default_factory=new_series_id)
    template_id: int
    owner: str
    start_date: date
    end_date: Optional[date] = None
    anchor_date: Optional[date] = None
    recurrence: RecurrencePattern
    notes: str = ""
    exceptions: dict[date, SeriesException] = Field(default_factory=dict)
    is_active: bool = True
    previous_series: Optional[str] = None
    next_series: Optional[str] = None
    version: int = 0

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.anchor_date is not None and self.anchor_date > self.start_date:
            raise ValueError("anchor_date must not be after start_date")
        for day, exc in self.exceptions.items():
            if exc.original_date != day:
                raise ValueError(f"exception for {day} is keyed under the wrong date")
        return self

    @property
    def anchor(self) -> date:
        return self.anchor_date or self.start_date


def build_exception(**fields) -> SeriesException:
    try:
        return SeriesException.model_validate(fields)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid exception: {describe_validation_error(exc)}"
        ) from exc


def build_series(**fields) -> Series:
    """Create a validated :class:`Series`.

    A missing recurrence means a one-off assignment.  Raises
    :class:`ConfigurationError` when the pattern or the series is malformed.
    """
    fields["recurrence"] = parse_recurrence(fields.get("recurrence"))
    try:
        return Series.model_validate(fields)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid series: {describe_validation_error(exc)}"
        ) from exc
