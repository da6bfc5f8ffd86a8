from datetime import datetime, timedelta, timezone

import pytest
import requests

from app.src import attendance
from app.src.enums import AttendanceAction
from conftest import authHeader


class FakeResponse:
    def __init__(self, data):
        self.data = data

    def raise_for_status(self):
        pass

    def json(self):
        return self.data


@pytest.fixture
def attendance_enabled(monkeypatch):
    monkeypatch.setattr(attendance, "ATTENDANCE_ENABLED", True)


def unreachable(*args, **kwargs):
    raise requests.ConnectionError("attendance service down")


def status(isClockedIn: bool) -> attendance.AttendanceStatus:
    return attendance.AttendanceStatus(
        is_clocked_in=isClockedIn,
        last_checked=datetime.now(timezone.utc),
        source=attendance.SOURCE_SERVICE,
    )


@pytest.mark.parametrize(
    "mode, allowed, action",
    [
        ("permissive", True, None),
        ("warning", True, AttendanceAction.CLOCK_IN),
        ("strict", False, AttendanceAction.CLOCK_IN),
        ("unknown", True, None),
    ],
)
def test_enforcement_modes_for_a_driver_not_clocked_in(mode, allowed, action):
    decision = attendance.decide(status(False), mode)
    assert decision.allowed is allowed
    assert decision.action == action
    assert decision.message


def test_clocked_in_driver_is_always_allowed():
    for mode in ("permissive", "warning", "strict"):
        assert attendance.decide(status(True), mode).allowed


def test_disabled_service_allows_everybody(session, driver):
    result = attendance.checkAttendanceStatus(session, session.merge(driver))
    assert result.is_clocked_in
    assert result.source == attendance.SOURCE_FALLBACK


def test_service_answer_is_cached(monkeypatch, attendance_enabled, session, driver):
    calls = []

    def post(*args, **kwargs):
        calls.append(kwargs["json"])
        return FakeResponse({"isClockedIn": True, "clockInTime": "2026-10-19T07:00:00Z"})

    monkeypatch.setattr(attendance.requests, "post", post)
    user = session.merge(driver)

    first = attendance.checkAttendanceStatus(session, user)
    assert first.source == attendance.SOURCE_SERVICE
    assert first.clock_in_time == datetime(2026, 10, 19, 7, tzinfo=timezone.utc)

    second = attendance.checkAttendanceStatus(session, user)
    assert second.source == attendance.SOURCE_CACHE
    assert len(calls) == 1

    attendance.checkAttendanceStatus(session, user, refresh=True)
    assert len(calls) == 2


def test_stale_cache_is_used_when_the_service_fails(
    monkeypatch, attendance_enabled, session, driver
):
    monkeypatch.setattr(attendance.requests, "post", unreachable)
    user = session.merge(driver)
    user.cached_clock_in_status = False
    user.cached_clock_in_status_at = datetime.now(timezone.utc) - timedelta(days=1)
    session.commit()

    result = attendance.checkAttendanceStatus(session, user)
    assert result.source == attendance.SOURCE_FALLBACK
    assert result.is_clocked_in is False


@pytest.mark.parametrize("fallback, expected", [("permissive", True), ("strict", False)])
def test_fallback_mode_without_cache(
    monkeypatch, attendance_enabled, session, driver, fallback, expected
):
    monkeypatch.setattr(attendance.requests, "post", unreachable)
    monkeypatch.setattr(attendance, "ATTENDANCE_FALLBACK_MODE", fallback)
    result = attendance.checkAttendanceStatus(session, session.merge(driver))
    assert result.is_clocked_in is expected


def test_strict_enforcement_blocks_routes(
    client, monkeypatch, attendance_enabled, driver
):
    monkeypatch.setattr(attendance.requests, "post", unreachable)
    monkeypatch.setattr(attendance, "ATTENDANCE_FALLBACK_MODE", "strict")
    monkeypatch.setattr(attendance, "ATTENDANCE_ENFORCEMENT_MODE", "strict")
    header = authHeader(driver)

    response = client.get("/api/driver/route", headers=header)
    assert response.status_code == 403
    assert response.headers["X-Error"] == "AttendanceRequired"

    response = client.get("/api/driver/attendance/status", headers=header)
    assert response.status_code == 200
    body = response.json()
    assert body["allowed"] is False
    assert body["action"] == AttendanceAction.CLOCK_IN


def test_admin_checks_a_driver(client, admin, driver):
    response = client.get(
        "/api/admin/attendance/status",
        headers=authHeader(admin),
        params={"driver_id": driver.id},
    )
    assert response.status_code == 200
    assert response.json()["driver_id"] == driver.id

    response = client.get(
        "/api/admin/attendance/status",
        headers=authHeader(admin),
        params={"driver_id": admin.id},
    )
    assert response.status_code == 404
