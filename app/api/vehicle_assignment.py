from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Vehicle, VehicleAssignment, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import OrderIn, UserRole, VehicleStatus
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.urls import URL_VEHICLE_ASSIGNMENT

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class VehicleAssignmentSchema(BaseModel):
    id: int
    vehicle_id: int
    driver_id: int
    route_id: Optional[int]
    assigned_by: Optional[int]
    is_active: bool
    notes: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    vehicle_id: int = Field(Form())
    driver_id: int = Field(Form())
    route_id: int | None = Field(Form(default=None))
    notes: str | None = Field(Form(max_length=4096, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    is_active: bool | None = Field(Form(default=None))
    notes: str | None = Field(Form(max_length=4096, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class QueryParamsForDR(BaseModel):
    route_id: int | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=True))
    # Ordering
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class QueryParamsForAD(QueryParamsForDR):
    vehicle_id: int | None = Field(Query(default=None))
    driver_id: int | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))


# Functions
def searchVehicleAssignment(
    session: Session, qParam: QueryParamsForDR | QueryParamsForAD, driver_id: int = None
) -> List[VehicleAssignment]:
    query = session.query(VehicleAssignment).filter(VehicleAssignment.is_deleted == False)

    # Filters
    if driver_id is None:
        driver_id = getattr(qParam, "driver_id", None)
    if driver_id is not None:
        query = query.filter(VehicleAssignment.driver_id == driver_id)
    if getattr(qParam, "vehicle_id", None) is not None:
        query = query.filter(VehicleAssignment.vehicle_id == qParam.vehicle_id)
    if qParam.route_id is not None:
        query = query.filter(VehicleAssignment.route_id == qParam.route_id)
    if qParam.is_active is not None:
        query = query.filter(VehicleAssignment.is_active == qParam.is_active)

    # Ordering
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(VehicleAssignment.id.asc())
    else:
        query = query.order_by(VehicleAssignment.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def endActiveAssignments(session: Session, vehicle_id: int, driver_id: int) -> int:
    """Deactivate the active assignments of the vehicle and of the driver."""
    return (
        session.query(VehicleAssignment)
        .filter(VehicleAssignment.is_active == True)
        .filter(
            or_(
                VehicleAssignment.vehicle_id == vehicle_id,
                VehicleAssignment.driver_id == driver_id,
            )
        )
        .update({VehicleAssignment.is_active: False}, synchronize_session=False)
    )


def assignment(session: Session, id: int) -> VehicleAssignment | None:
    return (
        session.query(VehicleAssignment)
        .filter(VehicleAssignment.id == id)
        .filter(VehicleAssignment.is_deleted == False)
        .first()
    )


## API endpoints [Admin]
@route_admin.post(
    URL_VEHICLE_ASSIGNMENT,
    tags=["Vehicle Assignment"],
    response_model=VehicleAssignmentSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(VehicleAssignment.vehicle_id),
            exceptions.InactiveResource(Vehicle),
        ]
    ),
    description="""
    Assign an active vehicle to a driver, optionally for a route.
    The previous active assignments of the vehicle and of the driver are ended.
    """,
)
async def create_vehicle_assignment(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        vehicle = (
            session.query(Vehicle)
            .filter(Vehicle.id == fParam.vehicle_id)
            .filter(Vehicle.is_deleted == False)
            .first()
        )
        if vehicle is None:
            raise exceptions.UnknownValue(VehicleAssignment.vehicle_id)
        if vehicle.status != VehicleStatus.ACTIVE:
            raise exceptions.InactiveResource(Vehicle)
        driver = getters.user(session, fParam.driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            raise exceptions.UnknownValue(VehicleAssignment.driver_id)
        if fParam.route_id is not None and getters.route(session, fParam.route_id) is None:
            raise exceptions.UnknownValue(VehicleAssignment.route_id)

        endActiveAssignments(session, vehicle.id, driver.id)
        target = VehicleAssignment(
            vehicle_id=vehicle.id,
            driver_id=driver.id,
            route_id=fParam.route_id,
            assigned_by=identity.id,
            is_active=True,
            notes=fParam.notes,
        )
        session.add(target)
        session.commit()
        session.refresh(target)

        assignmentData = jsonable_encoder(target)
        logEvent(identity, request_info, assignmentData)
        return assignmentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_VEHICLE_ASSIGNMENT,
    tags=["Vehicle Assignment"],
    response_model=VehicleAssignmentSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Update the notes of an assignment or end it.
    Reactivating an assignment ends the other active assignments of its vehicle and driver.
    """,
)
async def update_vehicle_assignment(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = assignment(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        if fParam.is_active and not target.is_active:
            endActiveAssignments(session, target.vehicle_id, target.driver_id)
        updateIfChanged(
            target,
            fParam,
            [VehicleAssignment.is_active.key, VehicleAssignment.notes.key],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            session.commit()
            session.refresh(target)

        assignmentData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, assignmentData)
        return assignmentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_VEHICLE_ASSIGNMENT,
    tags=["Vehicle Assignment"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete an assignment by ID.
    """,
)
async def delete_vehicle_assignment(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = assignment(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        target.is_active = False
        target.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(target))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_VEHICLE_ASSIGNMENT,
    tags=["Vehicle Assignment"],
    response_model=list[VehicleAssignmentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the vehicle assignments that are not deleted.
    """,
)
async def fetch_vehicle_assignments(
    qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchVehicleAssignment(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_VEHICLE_ASSIGNMENT,
    tags=["Vehicle Assignment"],
    response_model=list[VehicleAssignmentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the vehicle assignments of the signed in driver, the active ones by default.
    """,
)
async def fetch_own_vehicle_assignments(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)

        return searchVehicleAssignment(session, qParam, identity.id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
