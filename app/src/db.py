from sqlalchemy import (
    TEXT,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.src.constants import (
    DB_URL,
    PSQL_DB_DRIVER,
    PSQL_DB_HOST,
    PSQL_DB_PASSWORD,
    PSQL_DB_NAME,
    PSQL_DB_PORT,
    PSQL_DB_USERNAME,
)
from app.src.enums import (
    DeclarationType,
    DocumentCategory,
    PaymentMethod,
    RouteStatus,
    StopStatus,
    UserRole,
    VehicleStatus,
)


# Global DBMS variables
if DB_URL:
    dbURL = DB_URL
else:
    dbURL = f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}"
if dbURL.startswith("sqlite"):
    engine = create_engine(
        url=dbURL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(url=dbURL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()

# Partial index predicates, one per supported dialect
NOT_DELETED = {
    "sqlite_where": text("is_deleted = 0"),
    "postgresql_where": text("is_deleted = false"),
}
WITHOUT_ROUTE = {
    "sqlite_where": text("route_id IS NULL"),
    "postgresql_where": text("route_id IS NULL"),
}


# ----------------------------------- Accounts ------------------------------------------------#
class User(ORMbase):
    """
    Represents a person who signs in to the dispatch system, either a driver
    working through the mobile client or an administrator using the back office.

    Accounts are never removed from the table. Deleting an account sets the
    `is_deleted` flag, after which the account can no longer sign in and is
    excluded from every listing.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the user.

        username (String(32)):
            Unique username used for login.
            It should start with an alphabet (uppercase or lowercase).
            May include hyphen (-), period (.), at symbol (@), and underscore (_).
            Must not be null and unique.

        password (TEXT):
            Argon2 hash of the password. Plaintext is never stored.

        role (Integer):
            Mapped from the `UserRole` enum. Defaults to `UserRole.DRIVER`.

        full_name (TEXT):
            Display name. Also used to match legacy driver names on stops.

        phone_number (TEXT), email_id (TEXT):
            Optional contact details.

        is_deleted (Boolean):
            Soft delete flag. Defaults to False.

        cached_clock_in_status (Boolean), cached_clock_in_at (DateTime),
        cached_clock_in_status_at (DateTime):
            Last answer received from the attendance service and the time it was fetched.

        last_latitude (Float), last_longitude (Float), last_location_at (DateTime):
            Most recent position reported by the driver.

        updated_on (DateTime):
            Timestamp automatically updated whenever the user is modified.

        created_on (DateTime):
            Timestamp of when the account was created.
    """

    __tablename__ = "user"

    id = Column(Integer, primary_key=True)
    username = Column(String(32), nullable=False, unique=True)
    password = Column(TEXT, nullable=False)
    role = Column(Integer, nullable=False, default=UserRole.DRIVER)
    full_name = Column(TEXT)
    # Contact details
    phone_number = Column(TEXT)
    email_id = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Attendance cache
    cached_clock_in_status = Column(Boolean)
    cached_clock_in_at = Column(DateTime(timezone=True))
    cached_clock_in_status_at = Column(DateTime(timezone=True))
    # Last known location
    last_latitude = Column(Float)
    last_longitude = Column(Float)
    last_location_at = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Customers -----------------------------------------------#
class Customer(ORMbase):
    """
    Represents a delivery customer.

    Customers with the same name are considered duplicates and can be merged,
    in which case one primary record survives and the others are soft deleted.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the customer.

        name (TEXT):
            Customer name. Must not contain an email address.

        address (TEXT):
            Delivery address.

        contact_info (TEXT), email_id (TEXT):
            Optional contact details.

        preferences (TEXT):
            Free text delivery preferences.

        group_code (TEXT):
            Optional grouping code shared by related customers.

        is_deleted (Boolean):
            Soft delete flag. Defaults to False.

        updated_on (DateTime), created_on (DateTime):
            Audit timestamps.
    """

    __tablename__ = "customer"

    id = Column(Integer, primary_key=True)
    name = Column(TEXT, nullable=False, index=True)
    address = Column(TEXT)
    contact_info = Column(TEXT)
    email_id = Column(TEXT)
    preferences = Column(TEXT)
    group_code = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class CustomerDocument(ORMbase):
    """
    Metadata of a file attached to a customer, optionally tied to a stop.
    The file content is stored in the `customer-documents` MinIO bucket
    under the document id.
    """

    __tablename__ = "customer_document"

    id = Column(Integer, primary_key=True)
    customer_id = Column(
        Integer, ForeignKey("customer.id", ondelete="CASCADE"), nullable=False
    )
    stop_id = Column(Integer, ForeignKey("stop.id", ondelete="SET NULL"))
    title = Column(TEXT, nullable=False)
    description = Column(TEXT)
    file_name = Column(TEXT, nullable=False)
    file_type = Column(TEXT, nullable=False)
    file_size = Column(Integer, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"))
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Routes and stops ----------------------------------------#
class Route(ORMbase):
    """
    Represents a delivery route for a given date.

    A route owns an ordered set of stops. It may be owned directly by a driver
    through `driver_id`; otherwise drivers reach it through the legacy driver
    names stored on its stops.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the route.

        route_number (String(64)):
            Human readable route number, e.g. the number printed on the load sheet.

        date (Date):
            Delivery date of the route.

        status (Integer):
            Mapped from the `RouteStatus` enum. Defaults to `RouteStatus.PENDING`.
            Moves to IN_PROGRESS when the first stop is started and to COMPLETED
            when every stop reached a terminal status.

        driver_id (Integer):
            Optional foreign key to the driver directly owning the route.

        notes (TEXT):
            Free text notes for the route.

        is_deleted (Boolean):
            Soft delete flag. Deleting a route also soft deletes its stops.

        updated_on (DateTime), created_on (DateTime):
            Audit timestamps.
    """

    __tablename__ = "route"

    id = Column(Integer, primary_key=True)
    route_number = Column(String(64), nullable=False)
    date = Column(Date, nullable=False, index=True)
    status = Column(Integer, nullable=False, default=RouteStatus.PENDING)
    driver_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), index=True)
    notes = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Stop(ORMbase):
    """
    Represents a single customer visit within a route.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the stop.

        route_id (Integer):
            Foreign key referencing the route owning the stop.

        customer_id (Integer):
            Optional foreign key referencing the customer being visited.

        sequence (Integer):
            Position of the stop within the route, starting at 1.
            Unique among the non deleted stops of a route.

        status (Integer):
            Mapped from the `StopStatus` enum. Defaults to `StopStatus.PENDING`.

        address (TEXT):
            Delivery address for this visit.

        customer_name_from_upload (TEXT), driver_name_from_upload (TEXT):
            Names as they appeared on the uploaded load sheet.
            The driver name is used to resolve the assigned driver when the
            route has no direct owner.

        order_number (TEXT), invoice_number (TEXT):
            References printed on the paperwork.

        initial_driver_notes (TEXT), driver_notes (TEXT), admin_notes (TEXT):
            Notes written by the dispatcher and by the driver.

        failure_reason (TEXT):
            Reason recorded when the stop is set to FAILED.

        amount (Numeric):
            Amount due on the invoice.

        driver_payment_amount (Numeric), driver_payment_methods (Integer):
            Payment collected by the driver. Methods are a `PaymentMethod` flag set.

        is_cod (Boolean), payment_flag_not_paid (Boolean), return_flag (Boolean):
            Payment and return flags.

        on_the_way_at (DateTime), arrived_at (DateTime), completed_at (DateTime):
            Timestamps recorded by the status transitions.

        is_deleted (Boolean):
            Soft delete flag.

        updated_on (DateTime), created_on (DateTime):
            Audit timestamps.
    """

    __tablename__ = "stop"
    __table_args__ = (
        Index(
            "ix_stop_route_sequence_active",
            "route_id",
            "sequence",
            unique=True,
            **NOT_DELETED,
        ),
    )

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer,
        ForeignKey("route.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id = Column(Integer, ForeignKey("customer.id", ondelete="SET NULL"))
    sequence = Column(Integer, nullable=False)
    status = Column(Integer, nullable=False, default=StopStatus.PENDING)
    address = Column(TEXT)
    customer_name_from_upload = Column(TEXT)
    driver_name_from_upload = Column(TEXT)
    order_number = Column(TEXT)
    invoice_number = Column(TEXT)
    # Notes
    initial_driver_notes = Column(TEXT)
    driver_notes = Column(TEXT)
    admin_notes = Column(TEXT)
    failure_reason = Column(TEXT)
    # Payment
    amount = Column(Numeric(10, 2))
    driver_payment_amount = Column(Numeric(10, 2))
    driver_payment_methods = Column(Integer, nullable=False, default=0)
    is_cod = Column(Boolean, nullable=False, default=False)
    payment_flag_not_paid = Column(Boolean, nullable=False, default=False)
    return_flag = Column(Boolean, nullable=False, default=False)
    # Status timestamps
    on_the_way_at = Column(DateTime(timezone=True))
    arrived_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Payment(ORMbase):
    """
    An itemized payment collected at a stop. Each payment submission replaces
    the previous entries of the stop.
    """

    __tablename__ = "payment"

    id = Column(Integer, primary_key=True)
    stop_id = Column(
        Integer,
        ForeignKey("stop.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(Integer, nullable=False, default=PaymentMethod.CASH)
    notes = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class StopNote(ORMbase):
    """
    A note an administrator leaves on a stop for the driver.

    Columns:
        id (Integer):
            Primary key.

        stop_id (Integer):
            Foreign key referencing the stop.

        admin_id (Integer):
            Foreign key referencing the administrator who wrote the note.

        note (TEXT):
            Text of the note.

        read_by_driver (Boolean):
            Set once the driver has fetched the note.

        read_by_driver_at (DateTime):
            When the driver first fetched the note.

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "stop_note"

    id = Column(Integer, primary_key=True)
    stop_id = Column(
        Integer,
        ForeignKey("stop.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    admin_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"))
    note = Column(TEXT, nullable=False)
    read_by_driver = Column(Boolean, nullable=False, default=False)
    read_by_driver_at = Column(DateTime(timezone=True))
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Products & returns --------------------------------------#
class Product(ORMbase):
    """
    Represents a catalogue product that drivers can pick when recording returns.

    Columns:
        id (Integer):
            Primary key.

        name (String(128)):
            Display name.

        sku (String(64)):
            Stock keeping unit. Unique among products that are not deleted.

        description (TEXT):
            Free text description.

        unit (String(32)):
            Unit of measure, for example "case" or "kg".

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "product"
    __table_args__ = (Index("ix_product_sku", "sku", unique=True, **NOT_DELETED),)

    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False)
    sku = Column(String(64), nullable=False)
    description = Column(TEXT)
    unit = Column(String(32))
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class StopReturn(ORMbase):
    """
    Goods taken back by the driver at a stop.

    Columns:
        id (Integer):
            Primary key.

        stop_id (Integer):
            Foreign key referencing the stop.

        product_id (Integer):
            Optional foreign key referencing the returned product.
            Cleared when the product row is removed.

        driver_id (Integer):
            Driver who recorded the return.

        order_item_identifier (TEXT), product_description (TEXT):
            Identify the returned line when no product is linked.

        quantity (Integer):
            Returned quantity, always positive.

        reason_code (TEXT):
            Why the goods came back.

        warehouse_location (TEXT), vendor_credit_number (TEXT):
            Filled in once the goods are back at the warehouse.

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "stop_return"

    id = Column(Integer, primary_key=True)
    stop_id = Column(
        Integer,
        ForeignKey("stop.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, ForeignKey("product.id", ondelete="SET NULL"))
    driver_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"))
    order_item_identifier = Column(TEXT)
    product_description = Column(TEXT)
    quantity = Column(Integer, nullable=False)
    reason_code = Column(TEXT, nullable=False)
    warehouse_location = Column(TEXT)
    vendor_credit_number = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Safety & documents --------------------------------------#
class SafetyDeclaration(ORMbase):
    """
    Represents the safety declaration a driver signs before driving.

    A declaration is stored at most once per (driver, route). Declarations
    without a route are stored at most once per (driver, declaration type, day).

    Columns:
        id (Integer):
            Primary key.

        driver_id (Integer):
            Foreign key referencing the declaring driver.

        route_id (Integer):
            Optional foreign key referencing the route the declaration covers.

        declaration_type (Integer):
            Mapped from the `DeclarationType` enum. Defaults to DAILY.

        declared_on (Date):
            Day of the declaration.

        vehicle_inspected, safety_equipment, route_understood,
        emergency_procedures, company_policies (Boolean):
            The five acknowledgments. All of them must be true.

        signature (TEXT):
            Typed signature. Defaults to the driver's username.

        ip_address (TEXT), user_agent (TEXT), acknowledged_at (DateTime):
            Audit details of the signing request.

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "safety_declaration"
    __table_args__ = (
        UniqueConstraint("driver_id", "route_id"),
        Index(
            "ix_safety_declaration_daily",
            "driver_id",
            "declaration_type",
            "declared_on",
            unique=True,
            **WITHOUT_ROUTE,
        ),
    )

    id = Column(Integer, primary_key=True)
    driver_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(Integer, ForeignKey("route.id", ondelete="CASCADE"))
    declaration_type = Column(Integer, nullable=False, default=DeclarationType.DAILY)
    declared_on = Column(Date, nullable=False)
    vehicle_inspected = Column(Boolean, nullable=False)
    safety_equipment = Column(Boolean, nullable=False)
    route_understood = Column(Boolean, nullable=False)
    emergency_procedures = Column(Boolean, nullable=False)
    company_policies = Column(Boolean, nullable=False)
    signature = Column(TEXT, nullable=False)
    # Audit
    ip_address = Column(TEXT)
    user_agent = Column(TEXT)
    acknowledged_at = Column(DateTime(timezone=True), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class SystemDocument(ORMbase):
    """
    Represents a company document distributed to drivers (policies, procedures, training).

    Active required documents must be acknowledged by every driver.
    The file content is stored in the `system-documents` MinIO bucket under the document id.

    Columns:
        id (Integer):
            Primary key.

        title (TEXT), description (TEXT):
            Display details.

        category (Integer):
            Mapped from the `DocumentCategory` enum.

        document_type (TEXT):
            Free form document type, e.g. HANDBOOK or FORM.

        file_name (TEXT), file_type (TEXT), file_size (Integer):
            Details of the stored file.

        version (TEXT):
            Version label of the document.

        is_required (Boolean):
            Whether drivers must acknowledge the document.

        is_active (Boolean):
            Inactive documents are hidden from drivers and cannot be acknowledged.

        uploaded_by (Integer):
            Foreign key referencing the uploading administrator.

        effective_on (Date), expires_on (Date):
            Optional validity window.

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "system_document"

    id = Column(Integer, primary_key=True)
    title = Column(TEXT, nullable=False)
    description = Column(TEXT)
    category = Column(Integer, nullable=False, default=DocumentCategory.OTHER)
    document_type = Column(TEXT)
    file_name = Column(TEXT, nullable=False)
    file_type = Column(TEXT, nullable=False)
    file_size = Column(Integer, nullable=False)
    version = Column(String(32), nullable=False, default="1.0")
    is_required = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    uploaded_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"))
    effective_on = Column(Date)
    expires_on = Column(Date)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class DocumentAcknowledgment(ORMbase):
    """
    Records that a driver has read a system document, optionally in the context of a route.
    Stored at most once per (document, driver, route).
    """

    __tablename__ = "document_acknowledgment"
    __table_args__ = (
        UniqueConstraint("document_id", "driver_id", "route_id"),
        Index(
            "ix_document_acknowledgment_without_route",
            "document_id",
            "driver_id",
            unique=True,
            **WITHOUT_ROUTE,
        ),
    )

    id = Column(Integer, primary_key=True)
    document_id = Column(
        Integer,
        ForeignKey("system_document.id", ondelete="CASCADE"),
        nullable=False,
    )
    driver_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    route_id = Column(Integer, ForeignKey("route.id", ondelete="CASCADE"))
    ip_address = Column(TEXT)
    user_agent = Column(TEXT)
    acknowledged_at = Column(DateTime(timezone=True), nullable=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Vehicles ------------------------------------------------#
class Vehicle(ORMbase):
    """
    Represents a delivery vehicle.

    Columns:
        id (Integer):
            Primary key.

        vehicle_number (String(32)):
            Fleet number of the vehicle. Must be unique.

        make (TEXT), model (TEXT), year (Integer):
            Manufacturer details.

        license_plate (TEXT), vin (TEXT):
            Registration details.

        fuel_type (TEXT):
            Free form fuel type.

        status (Integer):
            Mapped from the `VehicleStatus` enum. Defaults to ACTIVE.
            Only active vehicles can be assigned.

        notes (TEXT):
            Free text notes.

        is_deleted (Boolean):
            Soft delete flag.
    """

    __tablename__ = "vehicle"

    id = Column(Integer, primary_key=True)
    vehicle_number = Column(String(32), nullable=False, unique=True)
    make = Column(TEXT)
    model = Column(TEXT)
    year = Column(Integer)
    license_plate = Column(TEXT)
    vin = Column(TEXT)
    fuel_type = Column(TEXT)
    status = Column(Integer, nullable=False, default=VehicleStatus.ACTIVE)
    notes = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class VehicleAssignment(ORMbase):
    """
    Links a vehicle to a driver, optionally for a specific route.
    A vehicle and a driver each have at most one active assignment.
    """

    __tablename__ = "vehicle_assignment"

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(
        Integer,
        ForeignKey("vehicle.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    driver_id = Column(
        Integer,
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    route_id = Column(Integer, ForeignKey("route.id", ondelete="SET NULL"))
    assigned_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"))
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(TEXT)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Tracking ------------------------------------------------#
class DriverLocation(ORMbase):
    """
    A position reported by a driver while working a stop.
    Append only, rows are never updated and are purged by the cleaner after
    the retention period.
    """

    __tablename__ = "driver_location"
    __table_args__ = (Index("ix_driver_location_driver_time", "driver_id", "timestamp"),)

    id = Column(Integer, primary_key=True)
    driver_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    stop_id = Column(Integer, ForeignKey("stop.id", ondelete="CASCADE"), nullable=False)
    route_id = Column(
        Integer, ForeignKey("route.id", ondelete="CASCADE"), nullable=False
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=func.now())
