from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import JSON, Column, ForeignKey, String, delete, or_, text
from sqlalchemy.exc import OperationalError
from sqlmodel import Field, Session, SQLModel, col, select

from .editor import EditResult
from .errors import ConflictError, NotFoundError
from .recurrence import parse_recurrence
from .series import ExceptionAction, Series, SeriesException
from .templates import TemplateSnapshot, TimeBlock
from .time_utils import ensure_tz, get_now


logger = logging.getLogger(__name__)


class DayTemplate(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner: str = Field(index=True)
    name: str
    description: str = ""
    start_time: str = "06:00"
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    time_blocks: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def snapshot(self) -> TemplateSnapshot:
        return TemplateSnapshot(
            id=self.id,
            owner=self.owner,
            name=self.name,
            description=self.description,
            start_time=self.start_time,
            tags=list(self.tags or []),
            time_blocks=[TimeBlock.model_validate(b) for b in self.time_blocks or []],
        )


class PlannedDay(SQLModel, table=True):
    """Database representation of a :class:`Series`."""

    id: str = Field(primary_key=True)
    template_id: int = Field(foreign_key="daytemplate.id")
    owner: str = Field(index=True)
    start_date: date = Field(index=True)
    end_date: Optional[date] = None
    anchor_date: Optional[date] = None
    recurrence: dict = Field(default_factory=dict, sa_column=Column(JSON))
    notes: str = ""
    is_active: bool = True
    previous_series: Optional[str] = None
    next_series: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlannedDayException(SQLModel, table=True):
    series_id: str = Field(
        sa_column=Column(
            String, ForeignKey("plannedday.id", ondelete="CASCADE"), primary_key=True
        )
    )
    original_date: date = Field(primary_key=True)
    action: str
    modified_template_id: Optional[int] = None
    reason: Optional[str] = None


def _touch(row, created: bool = False) -> None:
    now = get_now()
    if created:
        row.created_at = now
    row.updated_at = now


def _to_series(row: PlannedDay, exc_rows: Iterable[PlannedDayException]) -> Series:
    exceptions = {
        e.original_date: SeriesException(
            original_date=e.original_date,
            action=ExceptionAction(e.action),
            modified_template_id=e.modified_template_id,
            reason=e.reason,
        )
        for e in exc_rows
    }
    return Series(
        id=row.id,
        template_id=row.template_id,
        owner=row.owner,
        start_date=row.start_date,
        end_date=row.end_date,
        anchor_date=row.anchor_date,
        recurrence=parse_recurrence(row.recurrence),
        notes=row.notes,
        exceptions=exceptions,
        is_active=row.is_active,
        previous_series=row.previous_series,
        next_series=row.next_series,
        version=row.version,
    )


def _copy_into(row: PlannedDay, series: Series) -> None:
    row.template_id = series.template_id
    row.owner = series.owner
    row.start_date = series.start_date
    row.end_date = series.end_date
    row.anchor_date = series.anchor_date
    row.recurrence = series.recurrence.model_dump(mode="json")
    row.notes = series.notes
    row.is_active = series.is_active
    row.previous_series = series.previous_series
    row.next_series = series.next_series


def _store_exceptions(session: Session, series: Series) -> None:
    session.exec(
        delete(PlannedDayException).where(PlannedDayException.series_id == series.id)
    )
    for exc in series.exceptions.values():
        session.add(
            PlannedDayException(
                series_id=series.id,
                original_date=exc.original_date,
                action=exc.action.value,
                modified_template_id=exc.modified_template_id,
                reason=exc.reason,
            )
        )


def _load_exceptions(
    session: Session, series_ids: List[str]
) -> Dict[str, List[PlannedDayException]]:
    by_series: Dict[str, List[PlannedDayException]] = {sid: [] for sid in series_ids}
    if not series_ids:
        return by_series
    rows = session.exec(
        select(PlannedDayException).where(
            col(PlannedDayException.series_id).in_(series_ids)
        )
    ).all()
    for row in rows:
        by_series[row.series_id].append(row)
    return by_series


def _template_in_use(session: Session, template_id: int) -> bool:
    series = session.exec(
        select(PlannedDay.id).where(
            PlannedDay.template_id == template_id,
            col(PlannedDay.is_active).is_(True),
        )
    ).first()
    if series is not None:
        return True
    modified = session.exec(
        select(PlannedDayException.series_id)
        .join(PlannedDay, col(PlannedDayException.series_id) == col(PlannedDay.id))
        .where(
            PlannedDayException.action == ExceptionAction.Modify.value,
            PlannedDayException.modified_template_id == template_id,
            col(PlannedDay.is_active).is_(True),
        )
    ).first()
    return modified is not None


class SeriesStore:
    """Persistence for :class:`Series` with optimistic version checks.

    ``version`` on a stored series counts writes.  :meth:`save` and
    :meth:`commit_edit` refuse to write a series whose ``version`` no longer
    matches the stored one, so two edits computed from the same read cannot
    both be applied.
    """

    def __init__(self, engine):
        self.engine = engine

    def _insert(self, session: Session, series: Series) -> Series:
        if session.get(PlannedDay, series.id):
            raise ConflictError(f"Series {series.id} already exists")
        row = PlannedDay(id=series.id)
        _copy_into(row, series)
        row.version = 1
        _touch(row, created=True)
        session.add(row)
        _store_exceptions(session, series)
        return series.model_copy(update={"version": 1})

    def _update(self, session: Session, series: Series) -> Series:
        row = session.get(PlannedDay, series.id)
        if not row:
            raise NotFoundError(f"Series {series.id} not found")
        if row.version != series.version:
            logger.warning(
                "Stale write to series %s (stored version %s, edit based on %s)",
                series.id,
                row.version,
                series.version,
            )
            raise ConflictError(f"Series {series.id} was modified concurrently")
        _copy_into(row, series)
        row.version += 1
        version = row.version
        _touch(row)
        session.add(row)
        _store_exceptions(session, series)
        return series.model_copy(update={"version": version})

    def create(self, series: Series) -> Series:
        with Session(self.engine) as session:
            stored = self._insert(session, series)
            session.commit()
        logger.info("Created series %s for %s", stored.id, stored.owner)
        return stored

    def get(self, series_id: str) -> Optional[Series]:
        with Session(self.engine) as session:
            row = session.get(PlannedDay, series_id)
            if not row:
                return None
            excs = _load_exceptions(session, [row.id])
            return _to_series(row, excs[row.id])

    def list_overlapping(
        self, owner: str, start: date, end: date, include_inactive: bool = False
    ) -> List[Series]:
        """Return the owner's series whose date span intersects ``[start, end]``."""
        with Session(self.engine) as session:
            stmt = select(PlannedDay).where(
                PlannedDay.owner == owner,
                PlannedDay.start_date <= end,
                or_(col(PlannedDay.end_date).is_(None), col(PlannedDay.end_date) >= start),
            )
            if not include_inactive:
                stmt = stmt.where(col(PlannedDay.is_active).is_(True))
            stmt = stmt.order_by(col(PlannedDay.created_at), col(PlannedDay.id))
            rows = session.exec(stmt).all()
            excs = _load_exceptions(session, [row.id for row in rows])
            return [_to_series(row, excs[row.id]) for row in rows]

    def save(self, series: Series) -> Series:
        with Session(self.engine) as session:
            stored = self._update(session, series)
            session.commit()
        return stored

    def commit_edit(self, result: EditResult) -> EditResult:
        """Write both halves of an edit in a single transaction."""
        with Session(self.engine) as session:
            updated = self._update(session, result.updated)
            successor = None
            if result.successor is not None:
                successor = self._insert(session, result.successor)
            session.commit()
        if successor is not None:
            logger.info(
                "Split series %s at %s into %s",
                updated.id,
                successor.start_date.isoformat(),
                successor.id,
            )
        return EditResult(updated=updated, successor=successor)

    def deactivate(self, series_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(PlannedDay, series_id)
            if not row:
                return False
            if row.is_active:
                row.is_active = False
                row.version += 1
                _touch(row)
                session.add(row)
                session.commit()
                logger.info("Deactivated series %s", series_id)
            return True

    def last_modified(self, series_id: str) -> Optional[datetime]:
        with Session(self.engine) as session:
            row = session.get(PlannedDay, series_id)
            return ensure_tz(row.updated_at) if row else None


class TemplateStore:
    """CRUD helper for :class:`DayTemplate` objects."""

    def __init__(self, engine):
        self.engine = engine

    def create(self, snapshot: TemplateSnapshot) -> TemplateSnapshot:
        row = DayTemplate(
            owner=snapshot.owner,
            name=snapshot.name,
            description=snapshot.description,
            start_time=snapshot.start_time,
            tags=list(snapshot.tags),
            time_blocks=[b.model_dump() for b in snapshot.time_blocks],
        )
        _touch(row, created=True)
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.snapshot()

    def get(
        self, template_id: int, include_deleted: bool = False
    ) -> Optional[TemplateSnapshot]:
        with Session(self.engine) as session:
            row = session.get(DayTemplate, template_id)
            if not row or not (row.is_active or include_deleted):
                return None
            return row.snapshot()

    def list_templates(self, owner: str) -> List[TemplateSnapshot]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(DayTemplate)
                .where(DayTemplate.owner == owner, col(DayTemplate.is_active).is_(True))
                .order_by(DayTemplate.name)
            ).all()
            return [row.snapshot() for row in rows]

    def update(self, snapshot: TemplateSnapshot) -> TemplateSnapshot:
        with Session(self.engine) as session:
            row = session.get(DayTemplate, snapshot.id)
            if not row or not row.is_active:
                raise NotFoundError(f"Template {snapshot.id} not found")
            row.name = snapshot.name
            row.description = snapshot.description
            row.start_time = snapshot.start_time
            row.tags = list(snapshot.tags)
            row.time_blocks = [b.model_dump() for b in snapshot.time_blocks]
            _touch(row)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.snapshot()

    def delete(self, template_id: int) -> bool:
        """Retire a template so it can no longer be assigned.

        The row is kept because deactivated series still point at it.  Raises
        :class:`ConflictError` while an active series uses the template,
        either directly or through a modified occurrence.
        """
        with Session(self.engine) as session:
            row = session.get(DayTemplate, template_id)
            if not row or not row.is_active:
                return False
            if _template_in_use(session, template_id):
                raise ConflictError(
                    f"Template {template_id} is still used by a planned day"
                )
            row.is_active = False
            _touch(row)
            session.add(row)
            session.commit()
        logger.info("Deleted template %s", template_id)
        return True

    def lookup(self, template_ids: Iterable[int]) -> Dict[int, TemplateSnapshot]:
        ids = sorted(set(template_ids))
        if not ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(DayTemplate).where(col(DayTemplate.id).in_(ids))
            ).all()
            return {row.id: row.snapshot() for row in rows}


def init_db(engine) -> None:
    """Create tables on first run and verify the schema revision."""

    db_path = Path(engine.url.database)
    first_run = not db_path.exists()

    cfg = Config(str(Path(__file__).resolve().parent.parent / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", str(engine.url))
    if first_run:
        SQLModel.metadata.create_all(engine)
        command.stamp(cfg, "head")

    script = ScriptDirectory.from_config(cfg)
    head = script.get_current_head()
    with engine.connect() as conn:
        try:
            row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
        except OperationalError as exc:
            raise RuntimeError(
                "Database schema is missing Alembic version information. "
                "Run 'uv run alembic upgrade head' before starting the server."
            ) from exc
    if not row or row[0] != head:
        raise RuntimeError(
            "Database schema is out of date. Run 'uv run alembic upgrade head' "
            "before starting the server."
        )
