import importlib
import sys
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))


def setup_app(tmp_path, monkeypatch):
    db_file = tmp_path / "test.db"
    monkeypatch.setenv("DAYPLANNER_DB", str(db_file))
    monkeypatch.setenv("DAYPLANNER_TZ", "UTC")
    if "dayplanner.app" in sys.modules:
        del sys.modules["dayplanner.app"]
    app_module = importlib.import_module("dayplanner.app")
    client = TestClient(app_module.app, headers={"X-User": "alice"})
    return app_module, client


def create_template(client, name="Workday"):
    resp = client.post("/templates", json={"name": name})
    assert resp.status_code == 201
    return resp.json()["id"]


def assign(client, template_id, recurrence):
    resp = client.post(
        "/calendar/assign-template",
        json={"template_id": template_id, "start_date": "2024-01-01", "recurrence": recurrence},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def scheduled(client, start, end):
    resp = client.get(f"/calendar?start={start}&end={end}")
    return [
        (d["day"], e["series_id"], e["template_id"])
        for d in resp.json()["scheduled_days"]
        for e in d["entries"]
    ]


def test_exception_add_and_restore(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    template_id = create_template(client)
    series = assign(client, template_id, recurrence={"type": "daily", "interval": 3})
    url = f"/calendar/planned/{series['id']}/exception"

    for _ in range(2):
        resp = client.post(
            url, json={"original_date": "2024-01-04", "action": "delete", "reason": "trip"}
        )
        assert resp.status_code == 200
    assert resp.json()["exceptions"] == [
        {
            "original_date": "2024-01-04",
            "action": "delete",
            "modified_template_id": None,
            "reason": "trip",
        }
    ]
    assert [d for d, _, _ in scheduled(client, "2024-01-01", "2024-01-07")] == [
        "2024-01-01",
        "2024-01-07",
    ]

    resp = client.delete(f"{url}/2024-01-04")
    assert resp.status_code == 200
    assert resp.json()["exceptions"] == []
    assert len(scheduled(client, "2024-01-01", "2024-01-07")) == 3

    assert client.delete(f"{url}/2024-01-04").status_code == 404


def test_modify_exception_substitutes_template(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    workday = create_template(client)
    holiday = create_template(client, "Holiday")
    series = assign(client, workday, recurrence={"type": "daily", "interval": 3})

    resp = client.post(
        f"/calendar/planned/{series['id']}/exception",
        json={"original_date": "2024-01-07", "action": "modify", "modified_template_id": holiday},
    )
    assert resp.status_code == 200

    entry = client.get("/calendar/2024-01-07").json()["templates"][0]
    assert entry["series_id"] == series["id"]
    assert entry["template_id"] == holiday
    assert entry["modified"] is True
    assert entry["template"]["name"] == "Holiday"


def test_exception_needs_an_occurrence(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    template_id = create_template(client)
    series = assign(client, template_id, recurrence={"type": "daily", "interval": 3})
    url = f"/calendar/planned/{series['id']}/exception"

    resp = client.post(url, json={"original_date": "2024-01-05", "action": "delete"})
    assert resp.status_code == 404
    assert "error" in resp.json()

    resp = client.post(url, json={"original_date": "2024-01-04", "action": "skip"})
    assert resp.status_code == 400


def test_edit_this_and_future_splits(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    workday = create_template(client)
    holiday = create_template(client, "Holiday")
    series = assign(client, workday, recurrence={"type": "daily", "interval": 3})

    resp = client.put(
        f"/calendar/planned/{series['id']}/edit-recurring",
        json={"edit_type": "thisAndFuture", "original_date": "2024-01-07", "template_id": holiday},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["updated"]["end_date"] == "2024-01-06"
    successor = data["successor"]
    assert successor["start_date"] == "2024-01-07"
    assert successor["previous_series"] == series["id"]
    assert data["updated"]["next_series"] == successor["id"]
    assert scheduled(client, "2024-01-01", "2024-01-13") == [
        ("2024-01-01", series["id"], workday),
        ("2024-01-04", series["id"], workday),
        ("2024-01-07", successor["id"], holiday),
        ("2024-01-10", successor["id"], holiday),
        ("2024-01-13", successor["id"], holiday),
    ]


def test_edit_all_reschedules(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    template_id = create_template(client)
    series = assign(client, template_id, recurrence={"type": "daily", "interval": 3})

    resp = client.put(
        f"/calendar/planned/{series['id']}/edit-recurring",
        json={
            "edit_type": "all",
            "original_date": "2024-01-04",
            "recurrence": {"type": "weekly", "days_of_week": [1, 3]},
        },
    )

    assert resp.status_code == 200
    assert "successor" not in resp.json()
    assert [d for d, _, _ in scheduled(client, "2024-01-01", "2024-01-10")] == [
        "2024-01-01",
        "2024-01-03",
        "2024-01-08",
        "2024-01-10",
    ]


def test_edit_recurring_rejects_bad_requests(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    template_id = create_template(client)
    series = assign(client, template_id, recurrence={"type": "daily", "interval": 3})
    url = f"/calendar/planned/{series['id']}/edit-recurring"

    resp = client.put(url, json={"edit_type": "some", "original_date": "2024-01-04", "template_id": template_id})
    assert resp.status_code == 400
    resp = client.put(url, json={"edit_type": "all", "original_date": "2024-01-04"})
    assert resp.status_code == 400
    resp = client.put(
        url,
        json={"edit_type": "this", "original_date": "2024-01-04", "recurrence": {"type": "daily"}},
    )
    assert resp.status_code == 400
    resp = client.put(
        url,
        json={"edit_type": "all", "original_date": "2024-01-04", "recurrence": {"type": "hourly"}},
    )
    assert resp.status_code == 400


def test_delete_recurring(tmp_path, monkeypatch):
    app_module, client = setup_app(tmp_path, monkeypatch)
    template_id = create_template(client)
    series = assign(client, template_id, recurrence={"type": "daily", "interval": 3})
    url = f"/calendar/planned/{series['id']}/delete-recurring"

    resp = client.request(
        "DELETE", url, json={"edit_type": "thisAndFuture", "original_date": "2024-01-07"}
    )
    assert resp.status_code == 200
    assert "successor" not in resp.json()
    assert [d for d, _, _ in scheduled(client, "2024-01-01", "2024-01-13")] == [
        "2024-01-01",
        "2024-01-04",
    ]

    resp = client.request(
        "DELETE", url, json={"edit_type": "all", "original_date": "2024-01-04"}
    )
    assert resp.status_code == 200
    assert resp.json()["updated"]["is_active"] is False
    assert scheduled(client, "2024-01-01", "2024-01-13") == []

    resp = client.request(
        "DELETE", url, json={"edit_type": "all", "original_date": "2024-01-04"}
    )
    assert resp.status_code == 404
