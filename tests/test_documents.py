from datetime import date, datetime, timezone

from app.api import safety_declaration, system_document
from app.src.constants import CUSTOMER_DOCUMENTS, SYSTEM_DOCUMENTS
from app.src.db import DocumentAcknowledgment, SafetyDeclaration
from app.src.enums import DeclarationType
from app.src.functions import insertIfAbsent
from conftest import authHeader

DECLARATION = {
    "vehicle_inspected": True,
    "safety_equipment": True,
    "route_understood": True,
    "emergency_procedures": True,
    "company_policies": True,
}


def test_admin_uploads_and_driver_downloads_a_document(
    client, admin, driver, fake_minio
):
    response = client.post(
        "/api/admin/system/document",
        headers=authHeader(admin),
        data={"title": "Driver handbook", "is_required": True},
        files={"file": ("handbook.pdf", b"%PDF", "application/pdf")},
    )
    assert response.status_code == 201
    document = response.json()
    assert document["file_size"] == 4
    assert fake_minio.buckets[SYSTEM_DOCUMENTS][str(document["id"])] == b"%PDF"

    response = client.get(
        "/api/driver/system/document/file",
        headers=authHeader(driver),
        params={"id": document["id"]},
    )
    assert response.status_code == 200
    assert response.content == b"%PDF"


def test_pending_documents_until_acknowledged(
    client, driver, system_document_factory, session
):
    required = system_document_factory(is_required=True)
    system_document_factory(is_required=False)
    system_document_factory(is_required=True, is_active=False)
    header = authHeader(driver)

    response = client.get("/api/driver/system/document/pending", headers=header)
    assert [d["id"] for d in response.json()] == [required.id]

    for _ in range(2):
        response = client.post(
            "/api/driver/system/document/acknowledgment",
            headers=header,
            data={"document_id": required.id},
        )
        assert response.status_code == 201
    assert session.query(DocumentAcknowledgment).count() == 1

    response = client.get("/api/driver/system/document/pending", headers=header)
    assert response.json() == []
    response = client.get("/api/driver/system/document", headers=header)
    acknowledged = {d["id"]: d["acknowledged"] for d in response.json()}
    assert acknowledged[required.id] is True


def test_inactive_document_cannot_be_acknowledged(
    client, driver, system_document_factory
):
    document = system_document_factory(is_active=False)
    response = client.post(
        "/api/driver/system/document/acknowledgment",
        headers=authHeader(driver),
        data={"document_id": document.id},
    )
    assert response.status_code == 412
    assert response.headers["X-Error"] == "InactiveResource"


def test_expired_document_is_hidden(client, driver, system_document_factory):
    system_document_factory(expires_on=date(2000, 1, 1))
    response = client.get("/api/driver/system/document", headers=authHeader(driver))
    assert response.json() == []


def test_safety_declaration_is_stored_once_per_day(client, driver, session):
    header = authHeader(driver)
    first = client.post("/api/driver/safety/declaration", headers=header, data=DECLARATION)
    second = client.post("/api/driver/safety/declaration", headers=header, data=DECLARATION)
    assert first.status_code == 201
    assert second.json()["id"] == first.json()["id"]
    assert first.json()["declaration_type"] == DeclarationType.DAILY
    assert first.json()["signature"] == "john"
    assert session.query(SafetyDeclaration).count() == 1


def test_route_declaration_needs_an_assigned_route(
    client, driver, route_factory, session
):
    header = authHeader(driver)
    owned = route_factory(driver_id=driver.id)
    other = route_factory()

    response = client.post(
        "/api/driver/safety/declaration",
        headers=header,
        data=dict(DECLARATION, route_id=other.id),
    )
    assert response.status_code == 403

    response = client.post(
        "/api/driver/safety/declaration",
        headers=header,
        data=dict(DECLARATION, route_id=owned.id, signature="J. Carter"),
    )
    assert response.status_code == 201
    assert response.json()["declaration_type"] == DeclarationType.ROUTE
    assert response.json()["signature"] == "J. Carter"


def test_incomplete_declaration_is_rejected(client, driver):
    response = client.post(
        "/api/driver/safety/declaration",
        headers=authHeader(driver),
        data=dict(DECLARATION, company_policies=False),
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "IncompleteDeclaration"


def test_customer_documents_reach_the_assigned_driver(
    client, admin, driver, customer_factory, route_factory, stop_factory, fake_minio
):
    customer = customer_factory()
    route = route_factory(driver_id=driver.id)
    stop = stop_factory(route_id=route.id, sequence=1, customer_id=customer.id)

    response = client.post(
        "/api/admin/customer/document",
        headers=authHeader(admin),
        data={"customer_id": customer.id, "title": "Delivery instructions"},
        files={"file": ("notes.txt", b"Use the back door", "text/plain")},
    )
    assert response.status_code == 201
    document = response.json()
    assert str(document["id"]) in fake_minio.buckets[CUSTOMER_DOCUMENTS]

    header = authHeader(driver)
    response = client.get(
        "/api/driver/customer/document", headers=header, params={"stop_id": stop.id}
    )
    assert [d["id"] for d in response.json()] == [document["id"]]

    response = client.get(
        "/api/driver/customer/document/file",
        headers=header,
        params={"id": document["id"], "stop_id": stop.id},
    )
    assert response.content == b"Use the back door"


def test_customer_document_stop_must_belong_to_the_customer(
    client, admin, customer_factory, route_factory, stop_factory
):
    customer = customer_factory()
    stop = stop_factory(route_id=route_factory().id, sequence=1)
    response = client.post(
        "/api/admin/customer/document",
        headers=authHeader(admin),
        data={"customer_id": customer.id, "stop_id": stop.id, "title": "Invoice"},
        files={"file": ("invoice.pdf", b"%PDF", "application/pdf")},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidAssociation"


def missedOnce(monkeypatch, module, name):
    """Make the first lookup miss, as when a concurrent request inserts in between."""
    original = getattr(module, name)
    calls = []

    def lookup(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return original(*args, **kwargs)

    monkeypatch.setattr(module, name, lookup)
    return calls


def test_concurrent_acknowledgment_keeps_one_row(
    client, monkeypatch, driver, system_document_factory, session
):
    document = system_document_factory(is_required=True)
    header = authHeader(driver)
    form = {"document_id": document.id}
    first = client.post(
        "/api/driver/system/document/acknowledgment", headers=header, data=form
    )
    assert first.status_code == 201

    calls = missedOnce(monkeypatch, system_document, "findAcknowledgment")
    second = client.post(
        "/api/driver/system/document/acknowledgment", headers=header, data=form
    )
    assert second.status_code == 201
    assert len(calls) == 2
    assert second.json()["id"] == first.json()["id"]
    assert session.query(DocumentAcknowledgment).count() == 1


def test_concurrent_declaration_keeps_one_row(client, monkeypatch, driver, session):
    header = authHeader(driver)
    first = client.post("/api/driver/safety/declaration", headers=header, data=DECLARATION)
    assert first.status_code == 201

    calls = missedOnce(monkeypatch, safety_declaration, "findDeclaration")
    second = client.post(
        "/api/driver/safety/declaration", headers=header, data=DECLARATION
    )
    assert second.status_code == 201
    assert len(calls) == 2
    assert second.json()["id"] == first.json()["id"]
    assert session.query(SafetyDeclaration).count() == 1


def test_insert_if_absent_reports_the_existing_row(session, driver):
    today = date.today()

    def declaration():
        return SafetyDeclaration(
            driver_id=driver.id,
            declared_on=today,
            signature="john",
            acknowledged_at=datetime.now(timezone.utc),
            **{field: True for field in DECLARATION},
        )

    stored, created = insertIfAbsent(session, declaration(), lambda: None)
    assert created is True

    lookups = iter([None, stored])
    row, created = insertIfAbsent(session, declaration(), lambda: next(lookups))
    assert created is False
    assert row.id == stored.id
    assert session.query(SafetyDeclaration).count() == 1
