from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from shiftdesk.core.errors import TransientIOError
from shiftdesk.main import app

client = TestClient(app)


def _token(employee_id: int) -> str:
    resp = client.post("/auth/token", json={"employee_id": employee_id})
    assert resp.status_code == 200, f"token request failed: {resp.status_code} {resp.text}"
    return resp.json()["access_token"]


def _auth_headers(employee_id: int) -> dict:
    return {"Authorization": f"Bearer {_token(employee_id)}"}


def _add_entry(admin_headers, employee_id, start, end=None, revenue="0"):
    body = {"employee_id": employee_id, "start_time": start.isoformat(), "revenue": revenue}
    if end is not None:
        body["end_time"] = end.isoformat()
    r = client.post("/time_entries", headers=admin_headers, json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_empty_window_returns_empty_aggregates(profile_factory):
    headers = _auth_headers(profile_factory("Admin", role="admin").id)

    r = client.get("/aggregates", headers=headers, params={"window": "today"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["per_employee"] == []
    assert body["totals"]["hours"] == 0
    assert Decimal(body["totals"]["revenue"]) == 0
    assert body["totals"]["shifts"] == 0
    assert body["totals"]["workdays"] == 0


def test_active_filter_returns_only_live_employee(profile_factory):
    alice = profile_factory("Alice")
    bob = profile_factory("Bob")
    headers = _auth_headers(profile_factory("Admin", role="admin").id)
    now = datetime.now(timezone.utc)

    _add_entry(headers, alice.id, now - timedelta(hours=2))
    _add_entry(headers, bob.id, now - timedelta(hours=6), now - timedelta(hours=2), revenue="100")

    r = client.get("/aggregates", headers=headers, params={"window": "last7Days", "status": "active"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert [s["employee_id"] for s in body["per_employee"]] == [alice.id]
    assert body["per_employee"][0]["is_live"] is True
    assert body["totals"]["live_shifts"] == 1


def test_totals_and_sorting(profile_factory):
    alice = profile_factory("Alice")
    bob = profile_factory("bob")
    headers = _auth_headers(profile_factory("Admin", role="admin").id)
    start = datetime.now(timezone.utc) - timedelta(days=1)

    _add_entry(headers, alice.id, start, start + timedelta(hours=8), revenue="500000")
    _add_entry(headers, bob.id, start + timedelta(hours=9), start + timedelta(hours=11), revenue="700000")

    r = client.get("/aggregates", headers=headers, params={"window": "last7Days"})
    body = r.json()
    assert body["sort_key"] == "revenue" and body["sort_dir"] == "desc"
    assert [s["name"] for s in body["per_employee"]] == ["bob", "Alice"]
    assert body["totals"]["hours"] == 10.0
    assert Decimal(body["totals"]["revenue"]) == Decimal("1200000")
    assert body["totals"]["shifts"] == 2

    r = client.get("/aggregates", headers=headers, params={"window": "last7Days", "sort": "hours"})
    assert [s["name"] for s in r.json()["per_employee"]] == ["Alice", "bob"]

    r = client.get("/aggregates", headers=headers, params={"window": "last7Days", "sort": "name", "direction": "desc"})
    assert [s["name"] for s in r.json()["per_employee"]] == ["bob", "Alice"]


def test_include_idle_lists_every_profile(profile_factory):
    profile_factory("Alice")
    profile_factory("Bob")
    headers = _auth_headers(profile_factory("Admin", role="admin").id)

    r = client.get("/aggregates", headers=headers, params={"window": "today", "include_idle": "true"})
    assert r.status_code == 200
    assert sorted(s["name"] for s in r.json()["per_employee"]) == ["Admin", "Alice", "Bob"]
    assert all(s["shifts"] == 0 for s in r.json()["per_employee"])


def test_employee_sees_only_own_aggregates(profile_factory):
    alice = profile_factory("Alice")
    bob = profile_factory("Bob")
    client.post("/time_entries/start", headers=_auth_headers(alice.id), json={})
    client.post("/time_entries/start", headers=_auth_headers(bob.id), json={})

    r = client.get("/aggregates", headers=_auth_headers(alice.id), params={"window": "last7Days"})
    assert r.status_code == 200
    assert [s["employee_id"] for s in r.json()["per_employee"]] == [alice.id]


@pytest.mark.parametrize(
    "params",
    [
        {"window": "customMonth"},
        {"window": "customMonth", "month": 13, "year": 2026},
        {"window": "fortnight"},
        {"status": "paused"},
    ],
)
def test_invalid_query_parameters_are_422(profile_factory, params):
    headers = _auth_headers(profile_factory().id)
    r = client.get("/aggregates", headers=headers, params=params)
    assert r.status_code == 422


def test_custom_month_window(profile_factory):
    headers = _auth_headers(profile_factory("Admin", role="admin").id)
    r = client.get("/aggregates", headers=headers, params={"window": "customMonth", "month": 2, "year": 2026})
    assert r.status_code == 200
    window = r.json()["window"]
    assert datetime.fromisoformat(window["start"].replace("Z", "+00:00")) == datetime(
        2026, 1, 31, 17, 0, tzinfo=timezone.utc
    )


def test_activity_snapshot(profile_factory):
    alice = profile_factory("Alice")
    bob = profile_factory("Bob")
    entry = client.post("/time_entries/start", headers=_auth_headers(alice.id), json={}).json()
    client.post("/time_entries/start", headers=_auth_headers(bob.id), json={})

    r = client.get("/aggregates/activity", headers=_auth_headers(alice.id))
    assert r.status_code == 200
    body = r.json()
    assert body["live_shifts"] == 2
    assert body["active_entry_id"] == entry["id"]
    assert body["month_hours"] >= 0


def test_store_outage_is_reported_as_sync_failure(profile_factory, monkeypatch):
    headers = _auth_headers(profile_factory("Admin", role="admin").id)
    service = app.state.shift_service

    def unavailable(*args, **kwargs):
        raise TransientIOError("Ledger unavailable during list")

    monkeypatch.setattr(service.ledger, "list", unavailable)
    monkeypatch.setattr(service, "_sleep", lambda _s: None)

    r = client.get("/aggregates", headers=headers)
    assert r.status_code == 503
    assert r.json()["sync_failed"] is True


def test_live_websocket_sends_snapshot_and_toggles_sort(profile_factory):
    alice = profile_factory("Alice")
    admin = profile_factory("Admin", role="admin")
    client.post("/time_entries/start", headers=_auth_headers(alice.id), json={})

    with client.websocket_connect(f"/aggregates/live?token={_token(admin.id)}&window=last7Days") as ws:
        snapshot = ws.receive_json()
        assert snapshot["sync_failed"] is False
        assert [s["employee_id"] for s in snapshot["per_employee"]] == [alice.id]
        assert snapshot["totals"]["live_shifts"] == 1

        ws.send_text('{"sort": "name"}')
        resorted = ws.receive_json()
        assert resorted["sort_key"] == "name"
        assert resorted["sort_dir"] == "asc"


def test_live_websocket_rejects_missing_token():
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/aggregates/live") as ws:
            ws.receive_json()
