import argparse
from http import HTTPStatus
from requests import post
from datetime import date

from app.src import argon2
from app.src.enums import UserRole
from app.src.minio import createBucket, deleteBucket
from app.src.constants import CUSTOMER_DOCUMENTS, STOP_IMAGES, SYSTEM_DOCUMENTS
from app.src.urls import (
    URL_TOKEN,
    URL_ACCOUNT,
    URL_CUSTOMER,
    URL_PRODUCT,
    URL_ROUTE,
    URL_STOP,
    URL_VEHICLE,
    URL_VEHICLE_ASSIGNMENT,
)
from app.src.db import User, sessionMaker, engine, ORMbase

BUCKETS = (STOP_IMAGES, SYSTEM_DOCUMENTS, CUSTOMER_DOCUMENTS)


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    session = sessionMaker()
    ORMbase.metadata.drop_all(engine)
    session.commit()
    print("* All tables deleted")
    for bucket in BUCKETS:
        deleteBucket(bucket)
    print("* All buckets deleted")
    session.close()


def createTables():
    session = sessionMaker()
    ORMbase.metadata.create_all(engine)
    session.commit()
    print("* All tables created")
    for bucket in BUCKETS:
        createBucket(bucket)
    print("* All buckets created")
    session.close()


def initDB():
    session = sessionMaker()
    password = argon2.makePassword("password")
    admin = User(
        username="admin",
        password=password,
        role=UserRole.SUPER_ADMIN,
        full_name="Dispatch admin",
    )
    driver = User(
        username="driver",
        password=password,
        role=UserRole.DRIVER,
        full_name="Dispatch driver",
    )
    session.add_all([admin, driver])
    session.commit()
    print("* Initialization completed")
    session.close()


def POST(URL: str, header: dict = {}, status_code: int = HTTPStatus.CREATED, **kwargs):
    response = post(URL, headers=header, **kwargs)
    if response.status_code != status_code:
        assert response.status_code == status_code, response.text
    return response


def testDB():
    # Base URL
    BASE_URL = "http://127.0.0.1:8080/api"

    # Create admin token
    credentials = {"username": "admin", "password": "password"}
    response = POST((BASE_URL + "/auth" + URL_TOKEN), data=credentials)
    print("* Created token for admin")
    accessToken = {"Authorization": f"Bearer {response.json()['access_token']}"}
    ADMIN_URL = BASE_URL + "/admin"

    # Create driver accounts
    driver = POST(
        (ADMIN_URL + URL_ACCOUNT),
        header=accessToken,
        data={
            "username": "john",
            "password": "password",
            "full_name": "John Carter",
        },
    )
    POST(
        (ADMIN_URL + URL_ACCOUNT),
        header=accessToken,
        data={
            "username": "maria",
            "password": "password",
            "full_name": "Maria Lopez",
        },
    )
    print("* Created driver accounts")

    # Create customers
    customers = []
    for name, address in (
        ("Corner Market", "12 Harbor Street"),
        ("Green Grocers", "4 Mill Lane"),
        ("Hilltop Cafe", "88 Summit Road"),
    ):
        customer = POST(
            (ADMIN_URL + URL_CUSTOMER),
            header=accessToken,
            data={"name": name, "address": address},
        )
        customers.append(customer.json())
    print("* Created customers")

    # Create a route owned by a driver
    route = POST(
        (ADMIN_URL + URL_ROUTE),
        header=accessToken,
        data={
            "route_number": "R-100",
            "date": date.today().isoformat(),
            "driver_id": driver.json()["id"],
        },
    )
    print("* Created route")

    # Stops, the last one reaches another driver by name
    for customer in customers[:2]:
        POST(
            (ADMIN_URL + URL_STOP),
            header=accessToken,
            data={
                "route_id": route.json()["id"],
                "customer_id": customer["id"],
                "order_number": f"ORD-{customer['id']}",
                "amount": "125.50",
            },
        )
    POST(
        (ADMIN_URL + URL_STOP),
        header=accessToken,
        data={
            "route_id": route.json()["id"],
            "customer_name": customers[2]["name"],
            "order_number": f"ORD-{customers[2]['id']}",
            "is_cod": True,
        },
    )
    print("* Created stops")

    # Vehicle
    vehicle = POST(
        (ADMIN_URL + URL_VEHICLE),
        header=accessToken,
        data={"vehicle_number": "VAN-01", "make": "Ford", "model": "Transit"},
    )
    POST(
        (ADMIN_URL + URL_VEHICLE_ASSIGNMENT),
        header=accessToken,
        data={
            "vehicle_id": vehicle.json()["id"],
            "driver_id": driver.json()["id"],
            "route_id": route.json()["id"],
        },
    )
    print("* Assigned vehicle")

    # Product catalogue
    for name, sku, unit in (
        ("Sourdough loaf", "BRD-001", "each"),
        ("Whole milk 4L", "DRY-004", "jug"),
        ("Free range eggs", "EGG-012", "dozen"),
    ):
        POST(
            (ADMIN_URL + URL_PRODUCT),
            header=accessToken,
            data={"name": name, "sku": sku, "unit": unit},
        )
    print("* Created products")


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="add test data")
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB()
    if args.rm:
        removeTables()
