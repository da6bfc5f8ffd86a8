import pytest

from app.src.db import Product, Stop, StopReturn
from conftest import authHeader


@pytest.fixture
def stop(route_factory, stop_factory, driver):
    route = route_factory(driver_id=driver.id)
    return stop_factory(route_id=route.id, sequence=1)


def test_admin_manages_the_catalogue(client, admin):
    header = authHeader(admin)
    response = client.post(
        "/api/admin/product",
        headers=header,
        data={"name": "Rye loaf", "sku": "BRD-002", "description": "Dark rye"},
    )
    assert response.status_code == 201
    productId = response.json()["id"]

    response = client.post(
        "/api/admin/product",
        headers=header,
        data={"name": "Another rye", "sku": "BRD-002"},
    )
    assert response.status_code == 409
    assert response.headers["X-Error"] == "UniqueViolation"

    response = client.patch(
        "/api/admin/product",
        headers=header,
        data={"id": productId, "name": "Light rye", "unit": "each"},
    )
    assert response.status_code == 200
    assert (response.json()["name"], response.json()["unit"]) == ("Light rye", "each")

    response = client.request(
        "DELETE", "/api/admin/product", headers=header, data={"id": productId}
    )
    assert response.status_code == 204
    response = client.get("/api/admin/product", headers=header)
    assert response.json() == []


def test_catalogue_search_ignores_case(client, admin, product_factory):
    product_factory(name="Whole milk", sku="DRY-004")
    product_factory(name="Butter", sku="DRY-010", description="Salted, made from milk")
    product_factory(name="Eggs", sku="EGG-012")

    response = client.get(
        "/api/admin/product", headers=authHeader(admin), params={"search": "MILK"}
    )
    assert [p["name"] for p in response.json()] == ["Butter", "Whole milk"]

    response = client.get(
        "/api/admin/product", headers=authHeader(admin), params={"search": "egg-0"}
    )
    assert [p["sku"] for p in response.json()] == ["EGG-012"]


def test_sku_is_reusable_after_delete(client, admin, product_factory):
    product_factory(sku="OLD-1", is_deleted=True)
    response = client.post(
        "/api/admin/product",
        headers=authHeader(admin),
        data={"name": "Replacement", "sku": "OLD-1"},
    )
    assert response.status_code == 201


def test_batch_delete_counts_deleted_products(client, admin, product_factory, session):
    first, second = product_factory(), product_factory()
    gone = product_factory(is_deleted=True)
    kept = product_factory()

    response = client.request(
        "DELETE",
        "/api/admin/product/batch",
        headers=authHeader(admin),
        data={"id_list": [first.id, second.id, gone.id, 9999]},
    )
    assert response.status_code == 200
    assert response.json() == {"deleted": 2}
    remaining = session.query(Product).filter(Product.is_deleted == False).all()
    assert [p.id for p in remaining] == [kept.id]


def test_driver_searches_products(client, driver, product_factory):
    product_factory(name="Sourdough loaf", sku="BRD-001")
    product_factory(name="Sourdough roll", sku="BRD-003", is_deleted=True)
    product_factory(name="Eggs", sku="EGG-012")

    response = client.get(
        "/api/driver/product/search",
        headers=authHeader(driver),
        params={"term": "sourdough"},
    )
    assert response.status_code == 200
    assert [p["sku"] for p in response.json()] == ["BRD-001"]


def test_driver_records_a_product_return(
    client, admin, driver, stop, product_factory, session
):
    product = product_factory(name="Whole milk")
    response = client.post(
        "/api/driver/route/stop/return",
        headers=authHeader(driver),
        data={
            "stop_id": stop.id,
            "route_id": stop.route_id,
            "product_id": product.id,
            "quantity": 2,
        },
    )
    assert response.status_code == 201
    body = response.json()
    assert body["product_description"] == "Whole milk"
    assert body["reason_code"] == "Driver return"
    assert body["driver_id"] == driver.id
    assert session.get(Stop, stop.id).return_flag is True

    response = client.get(
        "/api/admin/route/stop/return",
        headers=authHeader(admin),
        params={"stop_id": stop.id},
    )
    assert [r["id"] for r in response.json()] == [body["id"]]


def test_return_needs_a_product_or_an_order_item(client, driver, stop):
    header = authHeader(driver)
    response = client.post(
        "/api/driver/route/stop/return",
        headers=header,
        data={"stop_id": stop.id, "quantity": 1},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "MissingParameter"

    response = client.post(
        "/api/driver/route/stop/return",
        headers=header,
        data={"stop_id": stop.id, "product_id": 9999, "quantity": 1},
    )
    assert response.status_code == 404
    assert response.headers["X-Error"] == "UnknownValue"

    response = client.post(
        "/api/driver/route/stop/return",
        headers=header,
        data={"stop_id": stop.id, "order_item_identifier": "LINE-7", "quantity": 0},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "RequestValidationError"


def test_return_route_must_match_the_stop(client, driver, stop, route_factory):
    other = route_factory(driver_id=driver.id)
    response = client.post(
        "/api/driver/route/stop/return",
        headers=authHeader(driver),
        data={
            "stop_id": stop.id,
            "route_id": other.id,
            "order_item_identifier": "LINE-7",
            "quantity": 1,
        },
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidAssociation"


def test_return_needs_an_assigned_stop(client, driver, route_factory, stop_factory):
    stop = stop_factory(route_id=route_factory().id, sequence=1)
    response = client.post(
        "/api/driver/route/stop/return",
        headers=authHeader(driver),
        data={"stop_id": stop.id, "order_item_identifier": "LINE-7", "quantity": 1},
    )
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NotAssigned"


def test_driver_completes_return_details(
    client, driver, stop, stop_factory, session
):
    header = authHeader(driver)
    other = stop_factory(route_id=stop.route_id, sequence=2)
    ids = []
    for target in (stop, other):
        response = client.post(
            "/api/driver/route/stop/return",
            headers=header,
            data={
                "stop_id": target.id,
                "order_item_identifier": f"LINE-{target.id}",
                "quantity": 3,
                "reason_code": "Damaged",
            },
        )
        ids.append(response.json()["id"])

    response = client.patch(
        "/api/driver/route/stop/return",
        headers=header,
        data={"id": ids[0], "warehouse_location": "Bay 4", "vendor_credit_number": "VC-9"},
    )
    assert response.status_code == 200
    assert response.json()["warehouse_location"] == "Bay 4"
    assert session.get(StopReturn, ids[0]).vendor_credit_number == "VC-9"

    response = client.get(
        "/api/driver/route/stop/return",
        headers=header,
        params={"route_id": stop.route_id},
    )
    assert [r["id"] for r in response.json()] == ids

    response = client.get("/api/driver/route/stop/return", headers=header)
    assert response.status_code == 400
    assert response.headers["X-Error"] == "MissingParameter"


def test_admin_corrects_and_deletes_a_return(client, admin, driver, stop, session):
    response = client.post(
        "/api/driver/route/stop/return",
        headers=authHeader(driver),
        data={"stop_id": stop.id, "order_item_identifier": "LINE-1", "quantity": 5},
    )
    returnId = response.json()["id"]
    header = authHeader(admin)

    response = client.patch(
        "/api/admin/route/stop/return",
        headers=header,
        data={"id": returnId, "quantity": 4, "reason_code": "Short dated"},
    )
    assert response.status_code == 200
    assert (response.json()["quantity"], response.json()["reason_code"]) == (
        4,
        "Short dated",
    )

    response = client.request(
        "DELETE", "/api/admin/route/stop/return", headers=header, data={"id": returnId}
    )
    assert response.status_code == 204
    assert session.get(StopReturn, returnId).is_deleted is True
    response = client.get("/api/admin/route/stop/return", headers=header)
    assert response.json() == []
