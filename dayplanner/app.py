from datetime import date
import json
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from pydantic_core import to_jsonable_python
from sqlalchemy import event
from sqlmodel import create_engine

from .editor import (
    Delete,
    EditType,
    Reschedule,
    Retemplate,
    apply_edit,
    restore_occurrence,
)
from .errors import ConfigurationError, ConflictError, NotFoundError
from .expander import expand, schedule_for
from .occurrence import is_occurrence, next_occurrence
from .recurrence import parse_recurrence
from .series import Series, build_series
from .settings import SettingsStore
from .store import SeriesStore, TemplateStore, init_db
from .templates import build_template
from .time_utils import get_today, parse_date


db_path = os.getenv("DAYPLANNER_DB", "dayplanner.db")
engine = create_engine(
    f"sqlite:///{db_path}",
    connect_args={"check_same_thread": False},
    json_serializer=lambda obj: json.dumps(obj, default=to_jsonable_python),
)


@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


init_db(engine)
series_store = SeriesStore(engine)
template_store = TemplateStore(engine)
settings_store = SettingsStore(engine)

app = FastAPI()

logger = logging.getLogger(__name__)


@app.exception_handler(ConfigurationError)
async def handle_configuration_error(request: Request, exc: ConfigurationError):
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse({"error": str(exc)}, status_code=404)


@app.exception_handler(ConflictError)
async def handle_conflict(request: Request, exc: ConflictError):
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    if exc.status_code == 400:
        logger.warning("Bad request %s %s: %s", request.method, request.url.path, exc.detail)
        return JSONResponse({"error": exc.detail}, status_code=400)
    return await http_exception_handler(request, exc)


def require_owner(request: Request) -> str:
    owner = request.headers.get("x-user", "").strip()
    if not owner:
        raise HTTPException(status_code=401, detail="X-User header required")
    return owner


def _parse_day(value, field: str) -> date:
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    try:
        return parse_date(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be a date (YYYY-MM-DD)")


def _optional_day(value, field: str) -> date | None:
    return _parse_day(value, field) if value else None


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _template_id(data: dict, field: str = "template_id") -> int:
    try:
        return int(data[field])
    except KeyError:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")


def require_template(owner: str, template_id: int):
    template = template_store.get(template_id)
    if not template or template.owner != owner:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def require_series(owner: str, series_id: str) -> Series:
    series = series_store.get(series_id)
    if not series or series.owner != owner:
        raise HTTPException(status_code=404, detail="Planned day not found")
    return series


def series_json(series: Series) -> dict:
    data = series.model_dump(mode="json", exclude={"exceptions"})
    data["exceptions"] = [
        series.exceptions[d].model_dump(mode="json") for d in sorted(series.exceptions)
    ]
    return data


def _templates_for(series_list):
    ids = {s.template_id for s in series_list}
    for s in series_list:
        ids.update(
            e.modified_template_id
            for e in s.exceptions.values()
            if e.modified_template_id is not None
        )
    return template_store.lookup(ids)


@app.post("/templates")
async def create_template(request: Request):
    owner = require_owner(request)
    data = await _json_body(request)
    template = build_template(
        owner=owner,
        name=data.get("name", ""),
        description=(data.get("description") or "").strip(),
        start_time=data.get("start_time", "06:00"),
        tags=data.get("tags", []),
        time_blocks=data.get("time_blocks", []),
    )
    stored = template_store.create(template)
    return JSONResponse(stored.model_dump(mode="json"), status_code=201)


@app.get("/templates")
async def list_templates(request: Request):
    owner = require_owner(request)
    return JSONResponse(
        [t.model_dump(mode="json") for t in template_store.list_templates(owner)]
    )


@app.get("/templates/{template_id}")
async def get_template(request: Request, template_id: int):
    owner = require_owner(request)
    return JSONResponse(require_template(owner, template_id).model_dump(mode="json"))


@app.put("/templates/{template_id}")
async def update_template(request: Request, template_id: int):
    owner = require_owner(request)
    template = require_template(owner, template_id)
    data = await _json_body(request)
    fields = template.model_dump()
    for key in ("name", "description", "start_time", "tags", "time_blocks"):
        if key in data:
            fields[key] = data[key]
    fields["description"] = (fields["description"] or "").strip()
    stored = template_store.update(build_template(**fields))
    return JSONResponse(stored.model_dump(mode="json"))


@app.delete("/templates/{template_id}")
async def delete_template(request: Request, template_id: int):
    owner = require_owner(request)
    require_template(owner, template_id)
    template_store.delete(template_id)
    return JSONResponse({"message": "Template deleted successfully"})


@app.post("/calendar/assign-template")
async def assign_template(request: Request):
    owner = require_owner(request)
    data = await _json_body(request)
    template_id = _template_id(data)
    require_template(owner, template_id)
    series = build_series(
        template_id=template_id,
        owner=owner,
        start_date=_parse_day(data.get("start_date"), "start_date"),
        end_date=_optional_day(data.get("end_date"), "end_date"),
        recurrence=data.get("recurrence"),
        notes=(data.get("notes") or "").strip(),
    )
    stored = series_store.create(series)
    return JSONResponse(series_json(stored), status_code=201)


@app.get("/calendar")
async def get_planned_days(request: Request, start: str | None = None, end: str | None = None):
    owner = require_owner(request)
    range_start = _parse_day(start, "start")
    range_end = _parse_day(end, "end")
    if range_start > range_end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    max_days = settings_store.get_max_range_days()
    if (range_end - range_start).days + 1 > max_days:
        raise HTTPException(
            status_code=400, detail=f"Date range cannot exceed {max_days} days"
        )
    series_list = series_store.list_overlapping(owner, range_start, range_end)
    days = expand(series_list, range_start, range_end, _templates_for(series_list))
    return JSONResponse(
        {
            "date_range": {"start": range_start.isoformat(), "end": range_end.isoformat()},
            "scheduled_days": [d.model_dump(mode="json") for d in days],
            "total_days": len(days),
        }
    )


def _day_response(owner: str, day: date) -> JSONResponse:
    series_list = series_store.list_overlapping(owner, day, day)
    scheduled = schedule_for(series_list, day, _templates_for(series_list))
    return JSONResponse(
        {
            "date": day.isoformat(),
            "templates": [e.model_dump(mode="json") for e in scheduled.entries],
        }
    )


@app.get("/calendar/today")
async def get_planned_today(request: Request):
    owner = require_owner(request)
    return _day_response(owner, get_today())


@app.get("/calendar/{day}")
async def get_planned_days_by_date(request: Request, day: str):
    owner = require_owner(request)
    return _day_response(owner, _parse_day(day, "date"))


@app.get("/calendar/planned/{series_id}")
async def get_planned_day(request: Request, series_id: str, after: str | None = None):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    after_day = _parse_day(after, "after") if after else get_today()
    data = series_json(series)
    upcoming = next_occurrence(series, after_day)
    data["next_occurrence"] = upcoming.isoformat() if upcoming else None
    updated_at = series_store.last_modified(series.id)
    data["updated_at"] = updated_at.isoformat() if updated_at else None
    return JSONResponse(data)


@app.get("/calendar/planned/{series_id}/occurs/{day}")
async def check_occurrence(request: Request, series_id: str, day: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    target = _parse_day(day, "date")
    return JSONResponse(
        {"date": target.isoformat(), "occurs": is_occurrence(series, target)}
    )


@app.put("/calendar/planned/{series_id}")
async def update_planned_day(request: Request, series_id: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    data = await _json_body(request)
    fields = series.model_dump(exclude={"recurrence"})
    fields["recurrence"] = series.recurrence
    if "end_date" in data:
        fields["end_date"] = _optional_day(data["end_date"], "end_date")
    if "notes" in data:
        fields["notes"] = (data["notes"] or "").strip()
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise HTTPException(status_code=400, detail="is_active must be true or false")
        fields["is_active"] = data["is_active"]
    stored = series_store.save(build_series(**fields))
    return JSONResponse(series_json(stored))


@app.delete("/calendar/planned/{series_id}")
async def delete_planned_day(request: Request, series_id: str):
    owner = require_owner(request)
    require_series(owner, series_id)
    series_store.deactivate(series_id)
    return JSONResponse({"message": "Planned day deleted successfully"})


@app.post("/calendar/planned/{series_id}/exception")
async def add_exception(request: Request, series_id: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    data = await _json_body(request)
    original_date = _parse_day(data.get("original_date"), "original_date")
    action = data.get("action")
    if action == "delete":
        mutation = Delete()
    elif action == "modify":
        template_id = _template_id(data, "modified_template_id")
        require_template(owner, template_id)
        mutation = Retemplate(template_id)
    else:
        raise HTTPException(status_code=400, detail="action must be 'delete' or 'modify'")
    result = apply_edit(
        series,
        EditType.This,
        original_date,
        mutation,
        reason=(data.get("reason") or "").strip() or None,
    )
    stored = series_store.save(result.updated)
    return JSONResponse(series_json(stored))


@app.delete("/calendar/planned/{series_id}/exception/{day}")
async def remove_exception(request: Request, series_id: str, day: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    updated = restore_occurrence(series, _parse_day(day, "date"))
    stored = series_store.save(updated)
    return JSONResponse(series_json(stored))


def _edit_type(data: dict) -> EditType:
    try:
        return EditType(data.get("edit_type"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid edit type")


def _edit_response(result, message: str) -> JSONResponse:
    resp = {
        "message": message,
        "updated": series_json(result.updated),
    }
    if result.successor is not None:
        resp["successor"] = series_json(result.successor)
    return JSONResponse(resp)


@app.put("/calendar/planned/{series_id}/edit-recurring")
async def edit_recurring(request: Request, series_id: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    data = await _json_body(request)
    edit_type = _edit_type(data)
    original_date = _parse_day(data.get("original_date"), "original_date")
    template_id = None
    if data.get("template_id") is not None:
        template_id = _template_id(data)
        require_template(owner, template_id)
    if data.get("recurrence") is not None:
        mutation = Reschedule(parse_recurrence(data["recurrence"]), template_id)
    elif template_id is not None:
        mutation = Retemplate(template_id)
    else:
        raise HTTPException(status_code=400, detail="template_id or recurrence required")
    result = apply_edit(
        series,
        edit_type,
        original_date,
        mutation,
        reason=(data.get("reason") or "").strip() or None,
    )
    return _edit_response(
        series_store.commit_edit(result), "Recurring event updated successfully"
    )


@app.delete("/calendar/planned/{series_id}/delete-recurring")
async def delete_recurring(request: Request, series_id: str):
    owner = require_owner(request)
    series = require_series(owner, series_id)
    data = await _json_body(request)
    edit_type = _edit_type(data)
    original_date = _parse_day(data.get("original_date"), "original_date")
    result = apply_edit(
        series,
        edit_type,
        original_date,
        Delete(),
        reason=(data.get("reason") or "").strip() or None,
    )
    return _edit_response(
        series_store.commit_edit(result), "Recurring event deleted successfully"
    )


@app.get("/system/max_range_days")
async def get_max_range_days(request: Request):
    require_owner(request)
    return JSONResponse({"max_range_days": settings_store.get_max_range_days()})


@app.post("/system/max_range_days")
async def set_max_range_days(request: Request):
    require_owner(request)
    data = await _json_body(request)
    try:
        days = int(data.get("max_range_days"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="max_range_days must be an integer")
    return JSONResponse({"max_range_days": settings_store.set_max_range_days(days)})
