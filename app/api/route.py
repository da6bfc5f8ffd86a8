import datetime as dt
from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Route, Stop, User, sessionMaker
from app.src import attendance, events, exceptions, validators, getters
from app.src.enums import OrderIn, RouteStatus, StopStatus, UserRole
from app.src.loggers import logEvent
from app.src.redis import acquireLock, releaseLock
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.delivery.assignment import assignedRouteClause
from app.src.delivery.stop_status import TERMINAL_STATUSES
from app.src.urls import URL_ROUTE

route_admin = APIRouter()
route_driver = APIRouter()

ROUTE_STATUS_TRANSITION = {
    RouteStatus.PENDING: [RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED],
    RouteStatus.IN_PROGRESS: [
        RouteStatus.PENDING,
        RouteStatus.COMPLETED,
        RouteStatus.CANCELLED,
    ],
    RouteStatus.COMPLETED: [RouteStatus.IN_PROGRESS],
    RouteStatus.CANCELLED: [RouteStatus.PENDING],
}


## Output Schema
class RouteSchema(BaseModel):
    id: int
    route_number: str
    date: dt.date
    status: int
    driver_id: Optional[int]
    notes: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    route_number: str = Field(Form(min_length=1, max_length=64))
    date: dt.date = Field(Form())
    driver_id: int | None = Field(Form(default=None))
    notes: str | None = Field(Form(max_length=4096, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    route_number: str | None = Field(Form(min_length=1, max_length=64, default=None))
    date: dt.date | None = Field(Form(default=None))
    driver_id: int | None = Field(Form(default=None))
    unassign_driver: bool = Field(Form(default=False))
    notes: str | None = Field(Form(max_length=4096, default=None))
    status: RouteStatus | None = Field(
        Form(description=enumStr(RouteStatus), default=None)
    )


class DeleteForm(BaseModel):
    id: int = Field(Form())
    force: bool = Field(Form(default=False))


class CompleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    date = 2
    route_number = 3
    updated_on = 4
    created_on = 5


class QueryParamsForDR(BaseModel):
    route_number: str | None = Field(Query(default=None))
    status: RouteStatus | None = Field(
        Query(default=None, description=enumStr(RouteStatus))
    )
    status_list: List[RouteStatus] | None = Field(
        Query(default=None, description=enumStr(RouteStatus))
    )
    # date based
    date: dt.date | None = Field(Query(default=None))
    date_ge: dt.date | None = Field(Query(default=None))
    date_le: dt.date | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # updated_on based
    updated_on_ge: datetime | None = Field(Query(default=None))
    updated_on_le: datetime | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.date, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class QueryParamsForAD(QueryParamsForDR):
    driver_id: int | None = Field(Query(default=None))


# Functions
def searchRoute(
    session: Session, qParam: QueryParamsForDR | QueryParamsForAD, driver: User = None
) -> List[Route]:
    query = session.query(Route).filter(Route.is_deleted == False)

    # Filters
    if driver is not None:
        query = query.filter(assignedRouteClause(driver))
    if getattr(qParam, "driver_id", None) is not None:
        query = query.filter(Route.driver_id == qParam.driver_id)
    if qParam.route_number is not None:
        query = query.filter(Route.route_number.ilike(f"%{qParam.route_number}%"))
    if qParam.status is not None:
        query = query.filter(Route.status == qParam.status)
    if qParam.status_list is not None:
        query = query.filter(Route.status.in_(qParam.status_list))
    # date based filters
    if qParam.date is not None:
        query = query.filter(Route.date == qParam.date)
    if qParam.date_ge is not None:
        query = query.filter(Route.date >= qParam.date_ge)
    if qParam.date_le is not None:
        query = query.filter(Route.date <= qParam.date_le)
    # id based filters
    if qParam.id is not None:
        query = query.filter(Route.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Route.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Route.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Route.id.in_(qParam.id_list))
    # updated_on based filters
    if qParam.updated_on_ge is not None:
        query = query.filter(Route.updated_on >= qParam.updated_on_ge)
    if qParam.updated_on_le is not None:
        query = query.filter(Route.updated_on <= qParam.updated_on_le)
    # created_on based filters
    if qParam.created_on_ge is not None:
        query = query.filter(Route.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Route.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Route, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc(), Route.id.asc())
    else:
        query = query.order_by(orderingAttribute.desc(), Route.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def driverAccount(session: Session, driver_id: int) -> User:
    driver = getters.user(session, driver_id)
    if driver is None or driver.role != UserRole.DRIVER:
        raise exceptions.UnknownValue(Route.driver_id)
    return driver


def deleteRoute(session: Session, route: Route, force: bool) -> int:
    """
    Soft delete a route and every non deleted stop of it.

    Returns:
        int: Number of stops deleted with the route.

    Raises:
        exceptions.CompletedStopsInRoute: If completed stops exist and `force` is not set.
    """
    stops = getters.routeStops(session, route.id)
    completed = [s for s in stops if s.status == StopStatus.COMPLETED]
    if completed and not force:
        raise exceptions.CompletedStopsInRoute(len(completed))
    route.is_deleted = True
    for stop in stops:
        stop.is_deleted = True
    return len(stops)


## API endpoints [Admin]
@route_admin.post(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(Route.driver_id),
        ]
    ),
    description="""
    Create a new route for a date.
    The route is created in PENDING status.
    A driver can be set as the direct owner of the route.
    Log the route creation activity with the associated token.
    """,
)
async def create_route(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        if fParam.driver_id is not None:
            driverAccount(session, fParam.driver_id)
        route = Route(
            route_number=fParam.route_number,
            date=fParam.date,
            driver_id=fParam.driver_id,
            notes=fParam.notes,
        )
        session.add(route)
        session.commit()
        session.refresh(route)

        routeData = jsonable_encoder(route)
        logEvent(identity, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.UnknownValue(Route.driver_id),
            exceptions.InvalidValue(Route.driver_id),
            exceptions.InvalidStateTransition(Route.status),
        ]
    ),
    description="""
    Update an existing route by ID.
    Set unassign_driver to remove the assigned driver, it cannot be combined with driver_id.
    Status changes are broadcast to the dispatch dashboards.
    Log the route update activity with the associated token.

    Allowed status transitions:
        PENDING → IN_PROGRESS
        PENDING ↔ CANCELLED
        IN_PROGRESS → PENDING
        IN_PROGRESS ↔ COMPLETED
        IN_PROGRESS → CANCELLED
    """,
)
async def update_route(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        route = getters.route(session, fParam.id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        if fParam.unassign_driver and fParam.driver_id is not None:
            raise exceptions.InvalidValue(Route.driver_id)
        if fParam.driver_id is not None:
            driverAccount(session, fParam.driver_id)
        statusChanged = fParam.status is not None and fParam.status != route.status
        if statusChanged:
            validators.stateTransition(
                ROUTE_STATUS_TRANSITION, route.status, fParam.status, Route.status
            )

        updateIfChanged(
            route,
            fParam,
            [
                Route.route_number.key,
                Route.date.key,
                Route.driver_id.key,
                Route.notes.key,
                Route.status.key,
            ],
        )
        if fParam.unassign_driver:
            route.driver_id = None
        haveUpdates = session.is_modified(route)
        if haveUpdates:
            session.commit()
            session.refresh(route)
            if statusChanged:
                events.emitRouteStatusUpdate(route.id, route.status)

        routeData = jsonable_encoder(route)
        if haveUpdates:
            logEvent(identity, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ROUTE,
    tags=["Route"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.CompletedStopsInRoute(1),
        ]
    ),
    description="""
    Soft delete a route by ID together with all of its stops.
    Only a super administrator can delete routes.
    A route having completed stops is only deleted when `force` is set.
    Log the deletion with the number of stops deleted.
    """,
)
async def delete_route(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.SUPER_ADMIN_ROLES)

        lock = acquireLock(Route.__tablename__, fParam.id)
        route = getters.route(session, fParam.id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        deletedStops = deleteRoute(session, route, fParam.force)
        session.commit()

        routeData = jsonable_encoder(route)
        logEvent(identity, request_info, dict(routeData, deleted_stops=deletedStops))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()


@route_admin.get(
    URL_ROUTE,
    tags=["Route"],
    response_model=list[RouteSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the routes that are not deleted.
    Filter by route number (partial match), driver, status, date range and ID ranges.
    Supports sorting and pagination.
    """,
)
async def fetch_routes(qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchRoute(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_ROUTE,
    tags=["Route"],
    response_model=list[RouteSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.AttendanceRequired(),
        ]
    ),
    description="""
    Fetch the routes assigned to the signed in driver.
    A route is assigned when the driver owns it directly or when one of its
    stops carries the driver's username or full name.
    With strict attendance enforcement the driver must be clocked in.
    """,
)
async def fetch_assigned_routes(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        decision = attendance.checkDriverAccess(session, driver)
        if not decision.allowed:
            raise exceptions.AttendanceRequired()
        return searchRoute(session, qParam, driver)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.patch(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidStateTransition(Route.status),
        ]
    ),
    description="""
    Mark an assigned route as completed.
    Every stop of the route must be COMPLETED or FAILED.
    """,
)
async def complete_route(
    fParam: CompleteForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        route = validators.routeAccess(driver, fParam.id, session)
        stops = getters.routeStops(session, route.id)
        if any(s.status not in TERMINAL_STATUSES for s in stops):
            raise exceptions.InvalidStateTransition(Route.status)
        if route.status != RouteStatus.COMPLETED:
            validators.stateTransition(
                ROUTE_STATUS_TRANSITION,
                route.status,
                RouteStatus.COMPLETED,
                Route.status,
            )
            route.status = RouteStatus.COMPLETED
            session.commit()
            session.refresh(route)
            events.emitRouteStatusUpdate(route.id, route.status)
            logEvent(identity, request_info, jsonable_encoder(route))
        return route
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
