from datetime import datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Customer, Route, Stop, User, sessionMaker
from app.src import events, exceptions, validators, getters
from app.src.enums import OrderIn, StopStatus, UserRole
from app.src.loggers import logEvent
from app.src.redis import acquireLock, releaseLock
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.delivery import sequence
from app.src.delivery.assignment import assignedStopClause
from app.src.delivery.stop_status import applyStopStatus
from app.src.urls import (
    URL_STOP,
    URL_STOP_GROUP,
    URL_STOP_ORDER,
    URL_STOP_RENUMBER,
    URL_STOP_STATUS,
)

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class StopSchema(BaseModel):
    id: int
    route_id: int
    customer_id: Optional[int]
    sequence: int
    status: int
    address: Optional[str]
    customer_name_from_upload: Optional[str]
    driver_name_from_upload: Optional[str]
    order_number: Optional[str]
    invoice_number: Optional[str]
    initial_driver_notes: Optional[str]
    driver_notes: Optional[str]
    admin_notes: Optional[str]
    failure_reason: Optional[str]
    amount: Optional[Decimal]
    driver_payment_amount: Optional[Decimal]
    driver_payment_methods: int
    is_cod: bool
    payment_flag_not_paid: bool
    return_flag: bool
    on_the_way_at: Optional[datetime]
    arrived_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


class StopGroupSchema(BaseModel):
    driver: str
    stops: List[StopSchema]


class StopStatusSchema(BaseModel):
    id: int
    route_id: int
    status: int
    on_the_way_at: Optional[datetime]
    arrived_at: Optional[datetime]
    completed_at: Optional[datetime]


## Input Forms
class CreateForm(BaseModel):
    route_id: int = Field(Form())
    customer_id: int | None = Field(Form(default=None))
    customer_name: str | None = Field(Form(min_length=1, max_length=256, default=None))
    driver_id: int | None = Field(Form(default=None))
    address: str | None = Field(Form(max_length=1024, default=None))
    order_number: str | None = Field(Form(max_length=64, default=None))
    invoice_number: str | None = Field(Form(max_length=64, default=None))
    amount: Decimal | None = Field(Form(ge=0, max_digits=10, decimal_places=2, default=None))
    is_cod: bool = Field(Form(default=False))
    payment_flag_not_paid: bool = Field(Form(default=False))
    return_flag: bool = Field(Form(default=False))
    initial_driver_notes: str | None = Field(Form(max_length=4096, default=None))
    admin_notes: str | None = Field(Form(max_length=4096, default=None))


class UpdateFormForAD(BaseModel):
    id: int = Field(Form())
    customer_id: int | None = Field(Form(default=None))
    sequence: int | None = Field(Form(default=None))
    status: StopStatus | None = Field(
        Form(description=enumStr(StopStatus), default=None)
    )
    driver_name_from_upload: str | None = Field(Form(max_length=64, default=None))
    address: str | None = Field(Form(max_length=1024, default=None))
    order_number: str | None = Field(Form(max_length=64, default=None))
    invoice_number: str | None = Field(Form(max_length=64, default=None))
    amount: Decimal | None = Field(Form(ge=0, max_digits=10, decimal_places=2, default=None))
    is_cod: bool | None = Field(Form(default=None))
    payment_flag_not_paid: bool | None = Field(Form(default=None))
    return_flag: bool | None = Field(Form(default=None))
    initial_driver_notes: str | None = Field(Form(max_length=4096, default=None))
    admin_notes: str | None = Field(Form(max_length=4096, default=None))


class UpdateFormForDR(BaseModel):
    id: int = Field(Form())
    status: StopStatus | None = Field(
        Form(description=enumStr(StopStatus), default=None)
    )
    driver_notes: str | None = Field(Form(max_length=4096, default=None))
    failure_reason: str | None = Field(Form(max_length=1024, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class OrderForm(BaseModel):
    route_id: int = Field(Form())
    stop_ids: List[int] = Field(Form(min_length=1))


class RenumberForm(BaseModel):
    route_id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    sequence = 1
    id = 2
    updated_on = 3
    created_on = 4


class QueryParamsForDR(BaseModel):
    route_id: int | None = Field(Query(default=None))
    status: StopStatus | None = Field(
        Query(default=None, description=enumStr(StopStatus))
    )
    status_list: List[StopStatus] | None = Field(
        Query(default=None, description=enumStr(StopStatus))
    )
    order_number: str | None = Field(Query(default=None))
    invoice_number: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(
        Query(default=OrderBy.sequence, description=enumStr(OrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=100, gt=0, le=500))


class QueryParamsForAD(QueryParamsForDR):
    customer_id: int | None = Field(Query(default=None))
    driver_name_from_upload: str | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))


class GroupParams(BaseModel):
    route_id: int = Field(Query())


class StatusParams(BaseModel):
    id: int = Field(Query())


# Functions
def searchStop(
    session: Session, qParam: QueryParamsForDR | QueryParamsForAD, driver: User = None
) -> List[Stop]:
    query = (
        session.query(Stop)
        .join(Route, Route.id == Stop.route_id)
        .filter(Stop.is_deleted == False)
        .filter(Route.is_deleted == False)
    )

    # Filters
    if driver is not None:
        query = query.filter(assignedStopClause(driver))
    if qParam.route_id is not None:
        query = query.filter(Stop.route_id == qParam.route_id)
    if qParam.status is not None:
        query = query.filter(Stop.status == qParam.status)
    if qParam.status_list is not None:
        query = query.filter(Stop.status.in_(qParam.status_list))
    if qParam.order_number is not None:
        query = query.filter(Stop.order_number == qParam.order_number)
    if qParam.invoice_number is not None:
        query = query.filter(Stop.invoice_number == qParam.invoice_number)
    if getattr(qParam, "customer_id", None) is not None:
        query = query.filter(Stop.customer_id == qParam.customer_id)
    if getattr(qParam, "driver_name_from_upload", None) is not None:
        query = query.filter(
            Stop.driver_name_from_upload.ilike(f"%{qParam.driver_name_from_upload}%")
        )
    # id based filters
    if qParam.id is not None:
        query = query.filter(Stop.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Stop.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Stop.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Stop.id.in_(qParam.id_list))
    # created_on based filters
    if getattr(qParam, "created_on_ge", None) is not None:
        query = query.filter(Stop.created_on >= qParam.created_on_ge)
    if getattr(qParam, "created_on_le", None) is not None:
        query = query.filter(Stop.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Stop, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc(), Stop.id.asc())
    else:
        query = query.order_by(orderingAttribute.desc(), Stop.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def findOrCreateCustomer(session: Session, name: str, address: str | None) -> Customer:
    """Newest non deleted customer with exactly this name, created when missing."""
    validators.customerName(name)
    customer = (
        session.query(Customer)
        .filter(Customer.name == name)
        .filter(Customer.is_deleted == False)
        .order_by(Customer.created_on.desc(), Customer.id.desc())
        .first()
    )
    if customer is None:
        customer = Customer(name=name, address=address)
        session.add(customer)
        session.flush()
    return customer


def activeCustomer(session: Session, customer_id: int) -> Customer:
    customer = (
        session.query(Customer)
        .filter(Customer.id == customer_id)
        .filter(Customer.is_deleted == False)
        .first()
    )
    if customer is None:
        raise exceptions.UnknownValue(Stop.customer_id)
    return customer


def driverNameHint(session: Session, driver_id: int) -> str:
    driver = getters.user(session, driver_id)
    if driver is None or driver.role != UserRole.DRIVER:
        raise exceptions.UnknownValue(Route.driver_id)
    return driver.full_name or driver.username


def driversOf(session: Session, route: Route) -> dict[int, User]:
    if route.driver_id is None:
        return {}
    driver = getters.user(session, route.driver_id)
    return {} if driver is None else {driver.id: driver}


## API endpoints [Admin]
@route_admin.post(
    URL_STOP,
    tags=["Stop"],
    response_model=StopSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(Stop.route_id),
            exceptions.EmailInCustomerName(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Append a stop to a route, after the stop with the highest sequence.
    The customer is given by ID, or by name in which case the newest customer
    with exactly that name is used and a new customer is created when none exists.
    When a driver is given, the driver's name is stored as the stop's driver name
    so that the stop reaches that driver.
    Log the stop creation activity with the associated token.
    """,
)
async def create_stop(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        lock = acquireLock(Route.__tablename__, fParam.route_id)
        route = getters.route(session, fParam.route_id)
        if route is None:
            raise exceptions.UnknownValue(Stop.route_id)

        customerName = fParam.customer_name
        if fParam.customer_id is not None:
            customer = activeCustomer(session, fParam.customer_id)
            customerName = customerName or customer.name
        elif fParam.customer_name is not None:
            customer = findOrCreateCustomer(session, fParam.customer_name, fParam.address)
        else:
            customer = None
        driverName = None
        if fParam.driver_id is not None:
            driverName = driverNameHint(session, fParam.driver_id)

        stop = Stop(
            route_id=route.id,
            customer_id=customer.id if customer else None,
            sequence=sequence.nextSequence(getters.routeStops(session, route.id)),
            address=fParam.address or (customer.address if customer else None),
            customer_name_from_upload=customerName,
            driver_name_from_upload=driverName,
            order_number=fParam.order_number,
            invoice_number=fParam.invoice_number,
            amount=fParam.amount,
            is_cod=fParam.is_cod,
            payment_flag_not_paid=fParam.payment_flag_not_paid,
            return_flag=fParam.return_flag,
            initial_driver_notes=fParam.initial_driver_notes,
            admin_notes=fParam.admin_notes,
        )
        session.add(stop)
        session.commit()
        session.refresh(stop)

        stopData = jsonable_encoder(stop)
        logEvent(identity, request_info, stopData)
        return stopData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_admin.patch(
    URL_STOP,
    tags=["Stop"],
    response_model=StopSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.UnknownValue(Stop.customer_id),
            exceptions.InvalidValue(Stop.sequence),
            exceptions.DuplicateSequence(),
            exceptions.InvalidStateTransition(Stop.status),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Update an existing stop by ID.
    A new sequence must be positive and not used by another stop of the route.
    Status changes follow the stop lifecycle, administrators may additionally
    reset any stop back to PENDING. The route status follows the stop changes
    and every change is broadcast to the dispatch dashboards.
    Log the stop update activity with the associated token.
    """,
)
async def update_stop(
    fParam: UpdateFormForAD = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, fParam.id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        lock = acquireLock(Route.__tablename__, stop.route_id)
        route = getters.route(session, stop.route_id)

        if fParam.customer_id is not None:
            activeCustomer(session, fParam.customer_id)
        if fParam.sequence is not None and fParam.sequence != stop.sequence:
            stops = getters.routeStops(session, route.id)
            sequence.validateSequenceChange(stops, stop, fParam.sequence)
        updateIfChanged(
            stop,
            fParam,
            [
                Stop.customer_id.key,
                Stop.sequence.key,
                Stop.driver_name_from_upload.key,
                Stop.address.key,
                Stop.order_number.key,
                Stop.invoice_number.key,
                Stop.amount.key,
                Stop.is_cod.key,
                Stop.payment_flag_not_paid.key,
                Stop.return_flag.key,
                Stop.initial_driver_notes.key,
                Stop.admin_notes.key,
            ],
        )
        statusEvents = []
        if fParam.status is not None:
            statusEvents = applyStopStatus(
                session, route, stop, fParam.status, override=True
            )

        haveUpdates = session.is_modified(stop) or bool(statusEvents)
        if haveUpdates:
            session.commit()
            session.refresh(stop)
            events.emitStatusEvents(statusEvents)

        stopData = jsonable_encoder(stop)
        if haveUpdates:
            logEvent(identity, request_info, stopData)
        return stopData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_admin.delete(
    URL_STOP,
    tags=["Stop"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a stop by ID.
    The sequences of the remaining stops are kept, use the renumber endpoint to compact them.
    """,
)
async def delete_stop(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, fParam.id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        stop.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(stop))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_STOP,
    tags=["Stop"],
    response_model=list[StopSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the stops that are not deleted and belong to routes that are not deleted.
    Ordered by sequence unless requested otherwise.
    """,
)
async def fetch_stops(qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchStop(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_STOP_GROUP,
    tags=["Stop"],
    response_model=list[StopGroupSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Fetch the stops of a route grouped by the driver they reach.
    The driver is the route's own driver, else the driver name stored on the stop.
    Stops without any driver are grouped under an empty name.
    """,
)
async def fetch_stop_groups(qParam: GroupParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        route = getters.route(session, qParam.route_id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        stops = getters.routeStops(session, route.id)
        groups = sequence.groupByDriver(route, stops, driversOf(session, route))
        return [{"driver": name, "stops": items} for name, items in groups.items()]
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_STOP_ORDER,
    tags=["Stop"],
    response_model=list[StopSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InvalidSequenceOrder(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Reorder the stops of a route.
    `stop_ids` must list every stop of the route exactly once, the stops
    receive the sequences 1..n in that order.
    """,
)
async def reorder_stops(
    fParam: OrderForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        lock = acquireLock(Route.__tablename__, fParam.route_id)
        route = getters.route(session, fParam.route_id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        stops = sequence.reorder(
            session, getters.routeStops(session, route.id), fParam.stop_ids
        )
        session.commit()
        for stop in stops:
            session.refresh(stop)

        logEvent(
            identity,
            request_info,
            {"route_id": route.id, "stop_ids": [s.id for s in stops]},
        )
        return stops
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_admin.patch(
    URL_STOP_RENUMBER,
    tags=["Stop"],
    response_model=list[StopSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Compact the sequences of a route to 1..n keeping the current order.
    """,
)
async def renumber_stops(
    fParam: RenumberForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        lock = acquireLock(Route.__tablename__, fParam.route_id)
        route = getters.route(session, fParam.route_id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        stops = sequence.renumber(session, getters.routeStops(session, route.id))
        session.commit()
        for stop in stops:
            session.refresh(stop)

        logEvent(
            identity,
            request_info,
            {"route_id": route.id, "stop_ids": [s.id for s in stops]},
        )
        return stops
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_STOP,
    tags=["Stop"],
    response_model=list[StopSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the stops assigned to the signed in driver, ordered by sequence.
    """,
)
async def fetch_assigned_stops(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        return searchStop(session, qParam, driver)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.patch(
    URL_STOP,
    tags=["Stop"],
    response_model=StopSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidStateTransition(Stop.status),
            exceptions.InvalidSideData(Stop.failure_reason),
        ]
    ),
    description="""
    Update the status or the notes of an assigned stop.

    Allowed status transitions:
        PENDING → ON_THE_WAY → ARRIVED → COMPLETED
        PENDING | ON_THE_WAY | ARRIVED → FAILED

    A failure reason is only accepted for a FAILED stop.
    Completing a stop sends the next pending stop on the way, completing the
    last open stop completes the route. Every change is broadcast.
    """,
)
async def update_assigned_stop(
    fParam: UpdateFormForDR = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        route, stop = validators.stopAccess(driver, fParam.id, session)
        newStatus = fParam.status if fParam.status is not None else stop.status
        if fParam.failure_reason is not None and newStatus != StopStatus.FAILED:
            raise exceptions.InvalidSideData(Stop.failure_reason)

        statusEvents = []
        if fParam.status is not None:
            statusEvents = applyStopStatus(session, route, stop, fParam.status)
        updateIfChanged(
            stop, fParam, [Stop.driver_notes.key, Stop.failure_reason.key]
        )

        haveUpdates = session.is_modified(stop) or bool(statusEvents)
        if haveUpdates:
            session.commit()
            session.refresh(stop)
            events.emitStatusEvents(statusEvents)

        stopData = jsonable_encoder(stop)
        if haveUpdates:
            logEvent(identity, request_info, stopData)
        return stopData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_STOP_STATUS,
    tags=["Stop"],
    response_model=StopStatusSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Fetch the current status of an assigned stop with its status timestamps.
    """,
)
async def fetch_stop_status(qParam: StatusParams = Depends(), bearer=Depends(bearer_driver)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, qParam.id, session)
        return stop
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
