import json

import pytest

from app.src.db import StopNote
from conftest import authHeader


@pytest.fixture
def stop(route_factory, stop_factory, driver):
    route = route_factory(driver_id=driver.id)
    return stop_factory(route_id=route.id, sequence=1)


def leaveNote(client, admin, stop, text="Gate code 4411"):
    return client.post(
        "/api/admin/route/stop/note",
        headers=authHeader(admin),
        data={"stop_id": stop.id, "note": text},
    )


def test_note_is_announced_to_the_driver(client, admin, driver, stop, fake_redis):
    response = leaveNote(client, admin, stop)
    assert response.status_code == 201
    body = response.json()
    assert body["admin_id"] == admin.id
    assert body["read_by_driver"] is False

    [(channel, message)] = fake_redis.published
    assert channel == "dispatch:stop-note"
    message = json.loads(message)
    assert (message["note_id"], message["driver_id"]) == (body["id"], driver.id)


def test_note_needs_a_stop(client, admin):
    response = client.post(
        "/api/admin/route/stop/note",
        headers=authHeader(admin),
        data={"stop_id": 9999, "note": "Call ahead"},
    )
    assert response.status_code == 404


def test_driver_reading_marks_notes_read(client, admin, driver, stop, session):
    noteId = leaveNote(client, admin, stop).json()["id"]
    header = authHeader(driver)

    response = client.get(
        "/api/driver/route/stop/note", headers=header, params={"stop_id": stop.id}
    )
    assert response.status_code == 200
    [note] = response.json()
    assert note["read_by_driver"] is True
    assert note["read_by_driver_at"] is not None

    response = client.get(
        "/api/admin/route/stop/note",
        headers=authHeader(admin),
        params={"read_by_driver": False},
    )
    assert response.json() == []

    response = client.patch(
        "/api/admin/route/stop/note",
        headers=authHeader(admin),
        data={"id": noteId, "note": "Gate code changed to 5522"},
    )
    assert response.status_code == 200
    assert response.json()["read_by_driver"] is False
    assert session.get(StopNote, noteId).read_by_driver_at is None


def test_other_drivers_cannot_read_the_notes(client, admin, stop, user_factory):
    leaveNote(client, admin, stop)
    stranger = user_factory()
    response = client.get(
        "/api/driver/route/stop/note",
        headers=authHeader(stranger),
        params={"stop_id": stop.id},
    )
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NotAssigned"


def test_deleted_note_is_hidden(client, admin, driver, stop):
    noteId = leaveNote(client, admin, stop).json()["id"]
    response = client.request(
        "DELETE",
        "/api/admin/route/stop/note",
        headers=authHeader(admin),
        data={"id": noteId},
    )
    assert response.status_code == 204

    response = client.get(
        "/api/driver/route/stop/note",
        headers=authHeader(driver),
        params={"stop_id": stop.id},
    )
    assert response.json() == []
