from __future__ import annotations

import re
from typing import List, Optional

from pydantic import ValidationError, field_validator, model_validator
from sqlmodel import Field, SQLModel

from .errors import ConfigurationError
from .recurrence import describe_validation_error


TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def _check_time(value: str) -> str:
    if not TIME_RE.fullmatch(value):
        raise ValueError("times must use 24-hour HH:MM format")
    return value


class TimeBlock(SQLModel):
    activity: str
    block_name: Optional[str] = None
    start_time: str
    end_time: str
    notes: str = ""
    order: int = 0

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def _ends_after_start(self):
        # HH:MM strings compare in chronological order
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class TemplateSnapshot(SQLModel):
    """Read-only view of a day template used to populate schedule entries."""

    id: Optional[int] = None
    owner: str
    name: str
    description: str = ""
    start_time: str = "06:00"
    tags: List[str] = Field(default_factory=list)
    time_blocks: List[TimeBlock] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("start_time")
    @classmethod
    def _valid_start(cls, v: str) -> str:
        return _check_time(v)


def build_template(**fields) -> TemplateSnapshot:
    try:
        snapshot = TemplateSnapshot.model_validate(fields)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid template: {describe_validation_error(exc)}"
        ) from exc
    snapshot.time_blocks = sorted(
        snapshot.time_blocks, key=lambda b: (b.order, b.start_time)
    )
    return snapshot
