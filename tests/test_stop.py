import json

import pytest

from app.src.constants import STOP_IMAGES
from app.src.db import Customer, Payment, Stop
from app.src.enums import PaymentMethod, RouteStatus, StopStatus
from conftest import authHeader, jpegBytes


@pytest.fixture
def route(route_factory, driver):
    return route_factory(driver_id=driver.id)


@pytest.fixture
def arrived_stop(stop_factory, route):
    return stop_factory(route_id=route.id, sequence=1, status=StopStatus.ARRIVED)


def test_stops_are_appended_and_customers_found_by_name(
    client, admin, route_factory, customer_factory, driver, session
):
    route = route_factory()
    existing = customer_factory(name="Hilltop Cafe", address="88 Summit Road")
    header = authHeader(admin)

    first = client.post(
        "/api/admin/route/stop",
        headers=header,
        data={"route_id": route.id, "customer_name": "Hilltop Cafe"},
    )
    assert first.status_code == 201
    assert first.json()["sequence"] == 1
    assert first.json()["customer_id"] == existing.id
    assert first.json()["address"] == "88 Summit Road"

    second = client.post(
        "/api/admin/route/stop",
        headers=header,
        data={
            "route_id": route.id,
            "customer_name": "Brand New Deli",
            "driver_id": driver.id,
            "amount": "42.50",
        },
    )
    assert second.status_code == 201
    assert second.json()["sequence"] == 2
    assert second.json()["driver_name_from_upload"] == "John Carter"
    assert session.query(Customer).filter(Customer.name == "Brand New Deli").count() == 1


def test_customer_name_with_email_is_rejected(client, admin, route):
    response = client.post(
        "/api/admin/route/stop",
        headers=authHeader(admin),
        data={"route_id": route.id, "customer_name": "Deli orders@deli.com"},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "EmailInCustomerName"


def test_admin_sequence_edit_rejects_duplicates(client, admin, route, stop_factory):
    stop_factory(route_id=route.id, sequence=1)
    second = stop_factory(route_id=route.id, sequence=2)
    response = client.patch(
        "/api/admin/route/stop",
        headers=authHeader(admin),
        data={"id": second.id, "sequence": 1},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "DuplicateSequence"


def test_admin_reorders_stops(client, admin, route, stop_factory):
    stops = [stop_factory(route_id=route.id, sequence=i) for i in (1, 2, 3)]
    order = [stops[2].id, stops[0].id, stops[1].id]
    response = client.patch(
        "/api/admin/route/stop/order",
        headers=authHeader(admin),
        data={"route_id": route.id, "stop_ids": order},
    )
    assert response.status_code == 200
    assert [s["id"] for s in response.json()] == order
    assert [s["sequence"] for s in response.json()] == [1, 2, 3]


def test_driver_walks_a_stop_through_its_lifecycle(
    client, driver, route, stop_factory, fake_redis, session
):
    first = stop_factory(route_id=route.id, sequence=1)
    second = stop_factory(route_id=route.id, sequence=2)
    header = authHeader(driver)

    for status in (StopStatus.ON_THE_WAY, StopStatus.ARRIVED, StopStatus.COMPLETED):
        response = client.patch(
            "/api/driver/route/stop",
            headers=header,
            data={"id": first.id, "status": status},
        )
        assert response.status_code == 200
        assert response.json()["status"] == status

    assert session.get(Stop, second.id).status == StopStatus.ON_THE_WAY
    channels = [channel for channel, _ in fake_redis.published]
    assert channels.count("dispatch:route-status") == 1
    assert channels.count("dispatch:stop-status") == 4

    response = client.get(
        "/api/driver/route/stop/status", headers=header, params={"id": first.id}
    )
    assert response.json()["completed_at"] is not None


def test_driver_cannot_skip_statuses(client, driver, route, stop_factory):
    stop = stop_factory(route_id=route.id, sequence=1)
    response = client.patch(
        "/api/driver/route/stop",
        headers=authHeader(driver),
        data={"id": stop.id, "status": StopStatus.COMPLETED},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidStateTransition"


def test_failure_reason_only_for_failed_stops(client, driver, route, stop_factory):
    stop = stop_factory(route_id=route.id, sequence=1)
    header = authHeader(driver)
    response = client.patch(
        "/api/driver/route/stop",
        headers=header,
        data={"id": stop.id, "failure_reason": "Closed"},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidSideData"

    response = client.patch(
        "/api/driver/route/stop",
        headers=header,
        data={"id": stop.id, "status": StopStatus.FAILED, "failure_reason": "Closed"},
    )
    assert response.status_code == 200
    assert response.json()["failure_reason"] == "Closed"


def test_unassigned_driver_is_refused(client, user_factory, arrived_stop):
    other = user_factory(username="maria", full_name="Maria Lopez")
    response = client.get(
        "/api/driver/route/stop/status",
        headers=authHeader(other),
        params={"id": arrived_stop.id},
    )
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NotAssigned"


def test_itemized_payment_replaces_previous_payment(
    client, driver, arrived_stop, session
):
    header = authHeader(driver)
    payments = [
        {"amount": "20.00", "method": PaymentMethod.CASH},
        {"amount": "30.50", "method": PaymentMethod.CHECK, "notes": "No. 1021"},
    ]
    response = client.patch(
        "/api/driver/route/stop/payment",
        headers=header,
        data={"id": arrived_stop.id, "payments": json.dumps(payments)},
    )
    assert response.status_code == 200
    body = response.json()
    assert float(body["driver_payment_amount"]) == 50.5
    assert body["driver_payment_methods"] == PaymentMethod.CASH | PaymentMethod.CHECK
    assert len(body["payments"]) == 2

    response = client.patch(
        "/api/driver/route/stop/payment",
        headers=header,
        data={
            "id": arrived_stop.id,
            "amount": "10.00",
            "methods": [PaymentMethod.CREDIT_CARD],
        },
    )
    assert response.status_code == 200
    assert response.json()["payments"] == []
    assert session.query(Payment).count() == 0


@pytest.mark.parametrize(
    "payments",
    ["not json", "[]", '[{"amount": -5, "method": 1}]'],
)
def test_invalid_payments_are_rejected(client, driver, arrived_stop, payments):
    response = client.patch(
        "/api/driver/route/stop/payment",
        headers=authHeader(driver),
        data={"id": arrived_stop.id, "payments": payments},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidPayment"


def test_payment_needs_an_arrived_stop(client, driver, route, stop_factory):
    stop = stop_factory(route_id=route.id, sequence=1, status=StopStatus.ON_THE_WAY)
    response = client.patch(
        "/api/driver/route/stop/payment",
        headers=authHeader(driver),
        data={"id": stop.id, "amount": "10.00", "methods": [PaymentMethod.CASH]},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidSideData"


def test_proof_images(client, driver, admin, arrived_stop, fake_minio):
    header = authHeader(driver)
    files = [
        ("files", ("a.jpg", jpegBytes(), "image/jpeg")),
        ("files", ("b.jpg", jpegBytes(), "image/jpeg")),
    ]
    response = client.post(
        "/api/driver/route/stop/image",
        headers=header,
        data={"id": arrived_stop.id},
        files=files,
    )
    assert response.status_code == 201
    names = sorted(fake_minio.buckets[STOP_IMAGES])
    assert len(names) == 2
    assert all(n.startswith(f"invoice_{arrived_stop.id}_") for n in names)

    response = client.get(
        "/api/admin/route/stop/image/file",
        headers=authHeader(admin),
        params={"id": arrived_stop.id, "name": names[0]},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"

    response = client.request(
        "DELETE", "/api/driver/route/stop/image", headers=header, data={"id": arrived_stop.id}
    )
    assert response.status_code == 204
    assert fake_minio.buckets[STOP_IMAGES] == {}


def test_non_image_upload_is_rejected(client, driver, arrived_stop):
    response = client.post(
        "/api/driver/route/stop/image",
        headers=authHeader(driver),
        data={"id": arrived_stop.id},
        files=[("files", ("a.jpg", b"plain text", "image/jpeg"))],
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidImage"


def test_route_listing_reflects_stop_progress(client, admin, route, stop_factory):
    stop_factory(route_id=route.id, sequence=1)
    response = client.get(
        "/api/admin/route", headers=authHeader(admin), params={"id": route.id}
    )
    assert response.json()[0]["status"] == RouteStatus.PENDING
