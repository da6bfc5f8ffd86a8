from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import DriverLocation, sessionMaker
from app.src import events, exceptions, validators, getters
from app.src.enums import OrderIn
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses
from app.src.urls import URL_LOCATION

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class LocationSchema(BaseModel):
    id: int
    driver_id: int
    stop_id: int
    route_id: int
    latitude: float
    longitude: float
    accuracy: Optional[float]
    timestamp: datetime


## Input Forms
class CreateForm(BaseModel):
    stop_id: int = Field(Form())
    route_id: int = Field(Form())
    latitude: float = Field(Form(ge=-90, le=90))
    longitude: float = Field(Form(ge=-180, le=180))
    accuracy: float | None = Field(Form(ge=0, default=None))


## Query Parameters
class QueryParams(BaseModel):
    latest: bool = Field(
        Query(default=True, description="Only the last position of each driver")
    )
    driver_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    stop_id: int | None = Field(Query(default=None))
    # timestamp based
    timestamp_ge: datetime | None = Field(Query(default=None))
    timestamp_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=100, gt=0, le=1000))


# Functions
def searchLocation(session: Session, qParam: QueryParams) -> List[DriverLocation]:
    query = session.query(DriverLocation)

    # Filters
    if qParam.driver_id is not None:
        query = query.filter(DriverLocation.driver_id == qParam.driver_id)
    if qParam.route_id is not None:
        query = query.filter(DriverLocation.route_id == qParam.route_id)
    if qParam.stop_id is not None:
        query = query.filter(DriverLocation.stop_id == qParam.stop_id)
    if qParam.timestamp_ge is not None:
        query = query.filter(DriverLocation.timestamp >= qParam.timestamp_ge)
    if qParam.timestamp_le is not None:
        query = query.filter(DriverLocation.timestamp <= qParam.timestamp_le)
    if qParam.latest:
        lastIds = session.query(func.max(DriverLocation.id)).group_by(
            DriverLocation.driver_id
        )
        if qParam.driver_id is not None:
            lastIds = lastIds.filter(DriverLocation.driver_id == qParam.driver_id)
        query = query.filter(DriverLocation.id.in_(lastIds))

    # Ordering
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(DriverLocation.timestamp.asc(), DriverLocation.id.asc())
    else:
        query = query.order_by(DriverLocation.timestamp.desc(), DriverLocation.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Admin]
@route_admin.get(
    URL_LOCATION,
    tags=["Location"],
    response_model=list[LocationSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the positions reported by the drivers.
    By default only the last position of each driver is returned,
    set `latest` to false for the full history.
    """,
)
async def fetch_locations(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchLocation(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.post(
    URL_LOCATION,
    tags=["Location"],
    response_model=LocationSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidAssociation(DriverLocation.stop_id, DriverLocation.route_id),
        ]
    ),
    description="""
    Report the current position of the driver while working an assigned stop.
    The stop must belong to the given route.
    The position is stored, becomes the driver's last known location and is
    broadcast to the dispatch dashboards.
    """,
)
async def create_location(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        route, stop = validators.stopAccess(driver, fParam.stop_id, session)
        if route.id != fParam.route_id:
            raise exceptions.InvalidAssociation(
                DriverLocation.stop_id, DriverLocation.route_id
            )

        now = datetime.now(timezone.utc)
        location = DriverLocation(
            driver_id=driver.id,
            stop_id=stop.id,
            route_id=route.id,
            latitude=fParam.latitude,
            longitude=fParam.longitude,
            accuracy=fParam.accuracy,
            timestamp=now,
        )
        session.add(location)
        driver.last_latitude = fParam.latitude
        driver.last_longitude = fParam.longitude
        driver.last_location_at = now
        session.commit()
        session.refresh(location)

        events.emitDriverLocationUpdate(
            driver.id,
            route.id,
            stop.id,
            location.latitude,
            location.longitude,
            location.accuracy,
        )
        locationData = jsonable_encoder(location)
        logEvent(identity, request_info, locationData)
        return locationData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
