from datetime import date

import pytest

from app.src.db import Route, Stop
from app.src.enums import RouteStatus, StopStatus
from conftest import authHeader


@pytest.fixture
def route(route_factory, stop_factory):
    route = route_factory()
    stop_factory(route_id=route.id, sequence=1, status=StopStatus.COMPLETED)
    stop_factory(route_id=route.id, sequence=2)
    return route


def test_admin_creates_a_route_for_a_driver(client, admin, driver):
    response = client.post(
        "/api/admin/route",
        headers=authHeader(admin),
        data={"route_number": "R-100", "date": "2026-10-19", "driver_id": driver.id},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == RouteStatus.PENDING
    assert body["driver_id"] == driver.id


def test_route_owner_must_be_a_driver(client, admin):
    response = client.post(
        "/api/admin/route",
        headers=authHeader(admin),
        data={"route_number": "R-100", "date": "2026-10-19", "driver_id": admin.id},
    )
    assert response.status_code == 404
    assert response.headers["X-Error"] == "UnknownValue"


def test_driver_cannot_use_the_admin_api(client, driver):
    response = client.get("/api/admin/route", headers=authHeader(driver))
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NoPermission"


def test_route_status_transition_is_validated(client, admin, route, fake_redis):
    header = authHeader(admin)
    response = client.patch(
        "/api/admin/route",
        headers=header,
        data={"id": route.id, "status": RouteStatus.COMPLETED},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidStateTransition"

    response = client.patch(
        "/api/admin/route",
        headers=header,
        data={"id": route.id, "status": RouteStatus.CANCELLED},
    )
    assert response.status_code == 200
    assert response.json()["status"] == RouteStatus.CANCELLED
    assert len(fake_redis.published) == 1


def test_admin_unassigns_the_driver(client, admin, driver, route_factory, session):
    route = route_factory(driver_id=driver.id)
    header = authHeader(admin)

    response = client.patch(
        "/api/admin/route",
        headers=header,
        data={"id": route.id, "driver_id": driver.id, "unassign_driver": True},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidValue"

    response = client.patch(
        "/api/admin/route",
        headers=header,
        data={"id": route.id, "unassign_driver": True},
    )
    assert response.status_code == 200
    assert response.json()["driver_id"] is None
    assert session.get(Route, route.id).driver_id is None

    response = client.get("/api/driver/route", headers=authHeader(driver))
    assert response.json() == []


def test_only_super_admin_deletes_routes(client, admin, route):
    response = client.request(
        "DELETE", "/api/admin/route", headers=authHeader(admin), data={"id": route.id}
    )
    assert response.status_code == 403


def test_route_with_completed_stops_needs_force(client, super_admin, route, session):
    header = authHeader(super_admin)
    response = client.request(
        "DELETE", "/api/admin/route", headers=header, data={"id": route.id}
    )
    assert response.status_code == 409
    assert response.headers["X-Error"] == "CompletedStopsInRoute"
    assert session.get(Route, route.id).is_deleted is False

    response = client.request(
        "DELETE",
        "/api/admin/route",
        headers=header,
        data={"id": route.id, "force": True},
    )
    assert response.status_code == 204
    session.expire_all()
    assert session.get(Route, route.id).is_deleted is True
    stops = session.query(Stop).filter(Stop.route_id == route.id).all()
    assert len(stops) == 2
    assert all(s.is_deleted for s in stops)

    response = client.get(
        "/api/admin/route/stop", headers=header, params={"route_id": route.id}
    )
    assert response.json() == []


def test_deleting_an_unknown_route(client, super_admin):
    response = client.request(
        "DELETE", "/api/admin/route", headers=authHeader(super_admin), data={"id": 404}
    )
    assert response.status_code == 404


def test_driver_sees_owned_and_name_matched_routes(
    client, driver, route_factory, stop_factory
):
    owned = route_factory(driver_id=driver.id)
    hinted = route_factory()
    stop_factory(route_id=hinted.id, sequence=1, driver_name_from_upload="JOHN CARTER")
    other = route_factory()
    stop_factory(route_id=other.id, sequence=1, driver_name_from_upload="Maria")

    response = client.get("/api/driver/route", headers=authHeader(driver))
    assert response.status_code == 200
    assert sorted(r["id"] for r in response.json()) == sorted([owned.id, hinted.id])


def test_driver_completes_a_finished_route(client, driver, route_factory, stop_factory):
    route = route_factory(driver_id=driver.id, status=RouteStatus.IN_PROGRESS)
    stop_factory(route_id=route.id, sequence=1, status=StopStatus.COMPLETED)
    open_stop = stop_factory(route_id=route.id, sequence=2, status=StopStatus.ARRIVED)
    header = authHeader(driver)

    response = client.patch("/api/driver/route", headers=header, data={"id": route.id})
    assert response.status_code == 400

    client.patch(
        "/api/driver/route/stop",
        headers=header,
        data={"id": open_stop.id, "status": StopStatus.FAILED},
    )
    response = client.patch("/api/driver/route", headers=header, data={"id": route.id})
    assert response.status_code == 200
    assert response.json()["status"] == RouteStatus.COMPLETED


def test_driver_cannot_complete_an_unassigned_route(client, driver, route_factory):
    route = route_factory(date=date(2026, 1, 1))
    response = client.patch(
        "/api/driver/route", headers=authHeader(driver), data={"id": route.id}
    )
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NotAssigned"
