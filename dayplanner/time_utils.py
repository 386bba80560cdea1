from __future__ import annotations

import os
from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo


def _configured_tz() -> tzinfo:
    """Return the timezone configured for the application."""
    tz_name = os.getenv("DAYPLANNER_TZ")
    if tz_name:
        return ZoneInfo(tz_name)
    system_tz = datetime.now().astimezone().tzinfo
    return system_tz if system_tz is not None else ZoneInfo("UTC")


def get_now() -> datetime:
    """Return the current time in the configured timezone.

    Uses the ``DAYPLANNER_TZ`` environment variable if set, otherwise
    defaults to the system timezone.
    """
    return datetime.now(_configured_tz())


def get_today() -> date:
    """Return today's calendar date in the configured timezone."""
    return get_now().date()


def ensure_tz(dt: datetime | None) -> datetime | None:
    """Ensure ``dt`` is timezone-aware using the configured timezone."""
    if dt is None:
        return None

    tz = _configured_tz()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    if dt.tzinfo == tz:
        return dt
    return dt.astimezone(tz)


def to_calendar_date(dt: datetime) -> date:
    """Return the calendar day ``dt`` falls on in the configured timezone."""
    return ensure_tz(dt).date()


def parse_date(value: str) -> date:
    """Parse a calendar date.

    ``value`` is normally ``YYYY-MM-DD``.  A full ISO datetime is accepted too:
    it is converted into the timezone configured via ``DAYPLANNER_TZ`` and
    truncated to its calendar day, so an instant near midnight lands on the
    same day the user saw.
    """
    value = value.strip()
    if len(value) == 10:
        return date.fromisoformat(value)
    return to_calendar_date(datetime.fromisoformat(value))


def day_before(day: date) -> date:
    return day - timedelta(days=1)
