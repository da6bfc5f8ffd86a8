from app.src.db import Customer, User, VehicleAssignment
from app.src.enums import UserRole, VehicleStatus
from conftest import authHeader

def test_admin_creates_drivers_only(client, admin, super_admin):
    form = {"username": "lena", "password": "password1", "full_name": "Lena Ortiz"}
    response = client.post("/api/admin/account", headers=authHeader(admin), data=form)
    assert response.status_code == 201
    assert response.json()["role"] == UserRole.DRIVER
    assert "password" not in response.json()

    form = {"username": "opsadmin", "password": "password1", "role": UserRole.ADMIN}
    response = client.post("/api/admin/account", headers=authHeader(admin), data=form)
    assert response.status_code == 403

    response = client.post(
        "/api/admin/account", headers=authHeader(super_admin), data=form
    )
    assert response.status_code == 201
    assert response.json()["role"] == UserRole.ADMIN

def test_admin_cannot_manage_other_admins(
    client, admin, super_admin, user_factory, session
):
    other = user_factory(username="opsadmin", role=UserRole.ADMIN)
    header = authHeader(admin)

    response = client.patch(
        "/api/admin/account",
        headers=header,
        data={"id": other.id, "full_name": "Renamed"},
    )
    assert response.status_code == 403
    assert response.headers["X-Error"] == "NoPermission"

    response = client.request(
        "DELETE", "/api/admin/account", headers=header, data={"id": other.id}
    )
    assert response.status_code == 403
    assert session.get(User, other.id).is_deleted is False

    response = client.request(
        "DELETE",
        "/api/admin/account",
        headers=authHeader(super_admin),
        data={"id": other.id},
    )
    assert response.status_code == 204
    session.expire_all()
    assert session.get(User, other.id).is_deleted is True


def test_duplicate_username_is_rejected(client, admin, driver):
    response = client.post(
        "/api/admin/account",
        headers=authHeader(admin),
        data={"username": "john", "password": "password1"},
    )
    assert response.status_code == 409

def test_driver_reads_own_profile(client, driver):
    response = client.get("/api/driver/account", headers=authHeader(driver))
    assert response.status_code == 200
    assert response.json()["username"] == "john"
    assert response.json()["full_name"] == "John Carter"

def test_merge_endpoint(client, admin, customer_factory, route_factory, stop_factory, session):
    first = customer_factory(name="Bay Bakery", address="1 Pier Road")
    second = customer_factory(name="Bay Bakery", address=None)
    route = route_factory()
    stop_factory(route_id=route.id, sequence=1, customer_id=second.id)
    header = authHeader(admin)

    response = client.get("/api/admin/customer/duplicate", headers=header)
    assert response.json() == [{"name": "Bay Bakery", "count": 2}]

    form = {"name": "Bay Bakery", "dry_run": True}
    response = client.post("/api/admin/customer/merge", headers=header, data=form)
    assert response.status_code == 200
    assert response.json()["primary_id"] == first.id
    assert response.json()["stops_moved"] == 1
    assert session.get(Customer, second.id).is_deleted is False

    form["dry_run"] = False
    response = client.post("/api/admin/customer/merge", headers=header, data=form)
    body = response.json()
    assert (body["stops_moved"], body["duplicates_removed"]) == (1, 1)
    session.expire_all()
    assert session.get(Customer, second.id).is_deleted is True

    response = client.get("/api/admin/customer/duplicate", headers=header)
    assert response.json() == []

def test_inactive_vehicle_cannot_be_assigned(client, admin, driver, vehicle_factory):
    vehicle = vehicle_factory(status=VehicleStatus.MAINTENANCE)
    response = client.post(
        "/api/admin/vehicle/assignment",
        headers=authHeader(admin),
        data={"vehicle_id": vehicle.id, "driver_id": driver.id},
    )
    assert response.status_code == 412
    assert response.headers["X-Error"] == "InactiveResource"

def test_new_assignment_ends_the_previous_one(
    client, admin, driver, vehicle_factory, session
):
    first, second = vehicle_factory(), vehicle_factory()
    header = authHeader(admin)
    ids = []
    for vehicle in (first, second):
        response = client.post(
            "/api/admin/vehicle/assignment",
            headers=header,
            data={"vehicle_id": vehicle.id, "driver_id": driver.id},
        )
        assert response.status_code == 201
        ids.append(response.json()["id"])

    assert session.get(VehicleAssignment, ids[0]).is_active is False
    assert session.get(VehicleAssignment, ids[1]).is_active is True

    response = client.get("/api/driver/vehicle/assignment", headers=authHeader(driver))
    assert [a["vehicle_id"] for a in response.json()] == [second.id]

def test_retiring_a_vehicle_ends_its_assignments(
    client, admin, driver, vehicle_factory, session
):
    vehicle = vehicle_factory()
    header = authHeader(admin)
    response = client.post(
        "/api/admin/vehicle/assignment",
        headers=header,
        data={"vehicle_id": vehicle.id, "driver_id": driver.id},
    )
    assignmentId = response.json()["id"]

    response = client.patch(
        "/api/admin/vehicle",
        headers=header,
        data={"id": vehicle.id, "status": VehicleStatus.RETIRED},
    )
    assert response.status_code == 200
    assert response.json()["status"] == VehicleStatus.RETIRED
    assert session.get(VehicleAssignment, assignmentId).is_active is False
