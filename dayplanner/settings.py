from __future__ import annotations

from sqlmodel import Field, Session, SQLModel


DEFAULT_MAX_RANGE_DAYS = 366
MIN_RANGE_DAYS = 1
MAX_RANGE_DAYS = 3660


class Setting(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: int


class SettingsStore:
    """CRUD helper for :class:`Setting` objects."""

    def __init__(self, engine):
        self.engine = engine

    def get_max_range_days(self) -> int:
        with Session(self.engine) as session:
            setting = session.get(Setting, "max_range_days")
            if not setting:
                setting = Setting(key="max_range_days", value=DEFAULT_MAX_RANGE_DAYS)
                session.add(setting)
                session.commit()
                return DEFAULT_MAX_RANGE_DAYS

            # Clamp values written before the limits existed so a single
            # request cannot expand an unbounded range.
            clamped = min(max(setting.value, MIN_RANGE_DAYS), MAX_RANGE_DAYS)
            if clamped != setting.value:
                setting.value = clamped
                session.add(setting)
                session.commit()

            return clamped

    def set_max_range_days(self, days: int) -> int:
        days = min(max(days, MIN_RANGE_DAYS), MAX_RANGE_DAYS)
        with Session(self.engine) as session:
            setting = session.get(Setting, "max_range_days")
            if setting:
                setting.value = days
            else:
                setting = Setting(key="max_range_days", value=days)
            session.add(setting)
            session.commit()
        return days
