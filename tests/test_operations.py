from datetime import datetime, timedelta, timezone

import pytest

import app.main
from app.src import cleaner
from app.src.db import DriverLocation, User
from app.src.metrics import RequestMetrics
from conftest import FakeStore, authHeader


@pytest.fixture
def stop(route_factory, stop_factory, driver):
    route = route_factory(driver_id=driver.id)
    return stop_factory(route_id=route.id, sequence=1)


def test_driver_reports_a_location(client, driver, stop, fake_redis, session):
    response = client.post(
        "/api/driver/location",
        headers=authHeader(driver),
        data={
            "stop_id": stop.id,
            "route_id": stop.route_id,
            "latitude": 40.7128,
            "longitude": -74.006,
            "accuracy": 5,
        },
    )
    assert response.status_code == 201
    assert response.json()["driver_id"] == driver.id

    user = session.get(User, driver.id)
    assert (user.last_latitude, user.last_longitude) == (40.7128, -74.006)
    assert user.last_location_at is not None
    assert [channel for channel, _ in fake_redis.published] == [
        "dispatch:driver-location"
    ]


def test_location_route_must_match_the_stop(client, driver, stop, route_factory):
    other = route_factory(driver_id=driver.id)
    response = client.post(
        "/api/driver/location",
        headers=authHeader(driver),
        data={"stop_id": stop.id, "route_id": other.id, "latitude": 1, "longitude": 1},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidAssociation"


def test_out_of_range_coordinates_are_rejected(client, driver, stop):
    response = client.post(
        "/api/driver/location",
        headers=authHeader(driver),
        data={
            "stop_id": stop.id,
            "route_id": stop.route_id,
            "latitude": 91,
            "longitude": 0,
        },
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "RequestValidationError"


def test_admin_sees_latest_positions_or_history(
    client, admin, user_factory, location_factory
):
    first, second = user_factory(), user_factory()
    now = datetime.now(timezone.utc)
    for minutes in (10, 5, 1):
        location_factory(driver_id=first.id, timestamp=now - timedelta(minutes=minutes))
    last = location_factory(driver_id=second.id)
    header = authHeader(admin)

    response = client.get("/api/admin/location", headers=header)
    latest = {l["driver_id"]: l for l in response.json()}
    assert sorted(latest) == sorted([first.id, second.id])
    assert latest[second.id]["id"] == last.id

    response = client.get(
        "/api/admin/location",
        headers=header,
        params={"latest": False, "driver_id": first.id},
    )
    assert len(response.json()) == 3


def test_cleaner_removes_old_locations(session, location_factory, driver):
    now = datetime.now(timezone.utc)
    location_factory(driver_id=driver.id, timestamp=now - timedelta(days=120))
    recent = location_factory(driver_id=driver.id, timestamp=now - timedelta(days=2))

    assert cleaner.removeOldLocations(session, retentionDays=90) == 1
    assert [l.id for l in session.query(DriverLocation).all()] == [recent.id]


def test_request_metrics_summary():
    metrics = RequestMetrics(FakeStore())
    metrics.record("get", "/api/admin/route", 10, 200)
    metrics.record("GET", "/api/admin/route", 30, 500)
    metrics.record("POST", "/api/auth/token", 5, 201)
    summary = {(m["method"], m["path"]): m for m in metrics.summary()}
    assert summary[("GET", "/api/admin/route")] == {
        "method": "GET",
        "path": "/api/admin/route",
        "count": 2,
        "average_ms": 20.0,
        "errors": 1,
    }
    assert summary[("POST", "/api/auth/token")]["errors"] == 0


def test_requests_are_measured(client, monkeypatch, admin):
    monkeypatch.setattr(app.main, "METRICS_ENABLED", True)
    header = authHeader(admin)
    client.get("/api/admin/route", headers=header)
    response = client.get("/api/admin/metrics", headers=header)
    assert response.status_code == 200
    paths = {m["path"]: m["count"] for m in response.json()}
    assert paths["/api/admin/route"] == 1


def test_csrf_protection(client, monkeypatch, admin):
    monkeypatch.setattr(app.main, "CSRF_ENABLED", True)
    header = authHeader(admin)
    form = {"route_number": "R-200", "date": "2026-10-19"}

    response = client.post("/api/admin/route", headers=header, data=form)
    assert response.status_code == 403
    assert response.headers["X-Error"] == "InvalidCSRFToken"

    response = client.get("/api/auth/csrf", headers=header)
    token = response.json()["csrf_token"]
    assert len(token) == 64

    header.update({"X-User-Id": str(admin.id), "X-CSRF-Token": token})
    response = client.post("/api/admin/route", headers=header, data=form)
    assert response.status_code == 201


def test_login_needs_no_csrf_token(client, monkeypatch, driver):
    monkeypatch.setattr(app.main, "CSRF_ENABLED", True)
    response = client.post(
        "/api/auth/token", data={"username": "john", "password": "password"}
    )
    assert response.status_code == 201


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"
