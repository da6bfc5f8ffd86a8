import os

# Configure the server for an in-memory database before the app is imported
os.environ["DB_URL"] = "sqlite://"
os.environ["OPENOBSERVE_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ["CSRF_ENABLED"] = "false"
os.environ["ATTENDANCE_ENABLED"] = "false"

from datetime import date, datetime, timezone
from decimal import Decimal
from io import BytesIO

import factory
import pytest
from factory.alchemy import SQLAlchemyModelFactory
from factory.declarations import LazyFunction, Sequence, SubFactory
from fastapi.testclient import TestClient

from app.main import app
from app.src import argon2, events, minio
from app.src import redis as redisModule
from app.src.csrf import csrfTokens
from app.src.db import (
    Customer,
    DriverLocation,
    ORMbase,
    Product,
    Route,
    Stop,
    SystemDocument,
    User,
    Vehicle,
    engine,
    sessionMaker,
)
from app.src.enums import RouteStatus, StopStatus, UserRole, VehicleStatus
from app.src.jwt import createToken
from app.src.metrics import requestMetrics
from app.src.schemas import Identity

PASSWORD = "password"
PASSWORD_HASH = argon2.makePassword(PASSWORD)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
class BaseFactory(SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session_factory = sessionMaker
        sqlalchemy_session_persistence = "commit"


class UserFactory(BaseFactory):
    class Meta:
        model = User

    username = Sequence(lambda n: f"driver{n}")
    password = PASSWORD_HASH
    role = UserRole.DRIVER
    full_name = factory.Faker("name")
    is_deleted = False


class CustomerFactory(BaseFactory):
    class Meta:
        model = Customer

    name = factory.Faker("company")
    address = factory.Faker("street_address")
    is_deleted = False


class RouteFactory(BaseFactory):
    class Meta:
        model = Route

    route_number = Sequence(lambda n: f"R-{n:03d}")
    date = LazyFunction(date.today)
    status = RouteStatus.PENDING
    driver_id = None
    is_deleted = False


class StopFactory(BaseFactory):
    class Meta:
        model = Stop

    route_id = factory.LazyAttribute(lambda o: RouteFactory().id)
    customer_id = None
    sequence = Sequence(lambda n: n + 1)
    status = StopStatus.PENDING
    address = factory.Faker("street_address")
    order_number = Sequence(lambda n: f"ORD-{n}")
    amount = Decimal("100.00")
    driver_payment_methods = 0
    is_cod = False
    payment_flag_not_paid = False
    return_flag = False
    is_deleted = False


class SystemDocumentFactory(BaseFactory):
    class Meta:
        model = SystemDocument

    title = factory.Faker("sentence", nb_words=3)
    file_name = "handbook.pdf"
    file_type = "application/pdf"
    file_size = 4
    version = "1.0"
    is_required = True
    is_active = True
    is_deleted = False


class VehicleFactory(BaseFactory):
    class Meta:
        model = Vehicle

    vehicle_number = Sequence(lambda n: f"VAN-{n:02d}")
    make = "Ford"
    model = "Transit"
    status = VehicleStatus.ACTIVE
    is_deleted = False


class ProductFactory(BaseFactory):
    class Meta:
        model = Product

    name = factory.Faker("word")
    sku = Sequence(lambda n: f"SKU-{n:04d}")
    unit = "case"
    is_deleted = False


class DriverLocationFactory(BaseFactory):
    class Meta:
        model = DriverLocation

    driver_id = factory.LazyAttribute(lambda o: UserFactory().id)
    stop_id = 0
    route_id = 0
    latitude = 40.7128
    longitude = -74.006
    timestamp = LazyFunction(lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# In-process replacements for Redis and MinIO
# ---------------------------------------------------------------------------
class FakeLock:
    def __init__(self, name):
        self.name = name
        self.held = False

    def acquire(self, blocking=True, blocking_timeout=None):
        self.held = True
        return True

    def locked(self):
        return self.held

    def owned(self):
        return self.held

    def release(self):
        self.held = False


class FakeRedis:
    def __init__(self):
        self.published = []
        self.locks = []

    def lock(self, name, timeout=None):
        lock = FakeLock(name)
        self.locks.append(lock)
        return lock

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


class FakeStore:
    """Dictionary backed key-value store, expiry is ignored."""

    def __init__(self):
        self.values = {}
        self.hashes = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ttl):
        self.values[key] = value

    def delete(self, key):
        self.values.pop(key, None)

    def incrementFields(self, key, amounts, ttl):
        fields = self.hashes.setdefault(key, {})
        for field, amount in amounts.items():
            fields[field] = str(float(fields.get(field, 0)) + amount)

    def fields(self, key):
        return dict(self.hashes.get(key, {}))

    def keys(self, prefix):
        return sorted(k for k in self.hashes if k.startswith(prefix))


class FakeObject:
    def __init__(self, name, data):
        self.object_name = name
        self.data = data

    def read(self):
        return self.data

    def close(self):
        pass

    def release_conn(self):
        pass


class FakeMinio:
    def __init__(self):
        self.buckets = {}

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets[bucket] = {}

    def remove_bucket(self, bucket):
        self.buckets.pop(bucket)

    def put_object(self, bucket, name, data, length, content_type=None):
        self.buckets.setdefault(bucket, {})[name] = data.read(length)

    def get_object(self, bucket, name):
        return FakeObject(name, self.buckets[bucket][name])

    def remove_object(self, bucket, name):
        self.buckets.get(bucket, {}).pop(name, None)

    def list_objects(self, bucket, prefix="", recursive=False):
        objects = self.buckets.get(bucket, {})
        return [FakeObject(n, d) for n, d in objects.items() if n.startswith(prefix)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def database():
    ORMbase.metadata.create_all(engine)
    yield
    ORMbase.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redisModule, "redisClient", fake)
    monkeypatch.setattr(events, "redisClient", fake)
    return fake


@pytest.fixture(autouse=True)
def fake_store(monkeypatch):
    store = FakeStore()
    monkeypatch.setattr(csrfTokens, "store", store)
    monkeypatch.setattr(requestMetrics, "store", store)
    return store


@pytest.fixture(autouse=True)
def fake_minio(monkeypatch):
    fake = FakeMinio()
    monkeypatch.setattr(minio, "client", fake)
    return fake


@pytest.fixture
def session():
    with sessionMaker() as session:
        yield session


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user_factory():
    return UserFactory


@pytest.fixture
def customer_factory():
    return CustomerFactory


@pytest.fixture
def route_factory():
    return RouteFactory


@pytest.fixture
def stop_factory():
    return StopFactory


@pytest.fixture
def system_document_factory():
    return SystemDocumentFactory


@pytest.fixture
def vehicle_factory():
    return VehicleFactory


@pytest.fixture
def location_factory():
    return DriverLocationFactory


@pytest.fixture
def product_factory():
    return ProductFactory


@pytest.fixture
def super_admin(user_factory):
    return user_factory(username="root", role=UserRole.SUPER_ADMIN)


@pytest.fixture
def admin(user_factory):
    return user_factory(username="dispatcher", role=UserRole.ADMIN)


@pytest.fixture
def driver(user_factory):
    return user_factory(username="john", full_name="John Carter")


def authHeader(user: User) -> dict:
    identity = Identity(id=user.id, username=user.username, role=user.role)
    token, _ = createToken(identity)
    return {"Authorization": f"Bearer {token}"}


def jpegBytes() -> bytes:
    from PIL import Image

    with BytesIO() as buffer:
        Image.new("RGB", (8, 8), "red").save(buffer, "JPEG")
        return buffer.getvalue()
