from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin
from app.src.db import Vehicle, VehicleAssignment, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import OrderIn, VehicleStatus
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.urls import URL_VEHICLE

route_admin = APIRouter()


## Output Schema
class VehicleSchema(BaseModel):
    id: int
    vehicle_number: str
    make: Optional[str]
    model: Optional[str]
    year: Optional[int]
    license_plate: Optional[str]
    vin: Optional[str]
    fuel_type: Optional[str]
    status: int
    notes: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    vehicle_number: str = Field(Form(min_length=1, max_length=32))
    make: str | None = Field(Form(max_length=64, default=None))
    model: str | None = Field(Form(max_length=64, default=None))
    year: int | None = Field(Form(ge=1900, le=2100, default=None))
    license_plate: str | None = Field(Form(max_length=32, default=None))
    vin: str | None = Field(Form(max_length=32, default=None))
    fuel_type: str | None = Field(Form(max_length=32, default=None))
    status: VehicleStatus = Field(
        Form(description=enumStr(VehicleStatus), default=VehicleStatus.ACTIVE)
    )
    notes: str | None = Field(Form(max_length=4096, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    vehicle_number: str | None = Field(Form(min_length=1, max_length=32, default=None))
    make: str | None = Field(Form(max_length=64, default=None))
    model: str | None = Field(Form(max_length=64, default=None))
    year: int | None = Field(Form(ge=1900, le=2100, default=None))
    license_plate: str | None = Field(Form(max_length=32, default=None))
    vin: str | None = Field(Form(max_length=32, default=None))
    fuel_type: str | None = Field(Form(max_length=32, default=None))
    status: VehicleStatus | None = Field(
        Form(description=enumStr(VehicleStatus), default=None)
    )
    notes: str | None = Field(Form(max_length=4096, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    vehicle_number = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    vehicle_number: str | None = Field(Query(default=None))
    license_plate: str | None = Field(Query(default=None))
    status: VehicleStatus | None = Field(
        Query(default=None, description=enumStr(VehicleStatus))
    )
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


# Functions
def searchVehicle(session: Session, qParam: QueryParams) -> List[Vehicle]:
    query = session.query(Vehicle).filter(Vehicle.is_deleted == False)

    # Filters
    if qParam.vehicle_number is not None:
        query = query.filter(Vehicle.vehicle_number.ilike(f"%{qParam.vehicle_number}%"))
    if qParam.license_plate is not None:
        query = query.filter(Vehicle.license_plate.ilike(f"%{qParam.license_plate}%"))
    if qParam.status is not None:
        query = query.filter(Vehicle.status == qParam.status)
    # id based filters
    if qParam.id is not None:
        query = query.filter(Vehicle.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Vehicle.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(Vehicle, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def vehicle(session: Session, id: int) -> Vehicle | None:
    return (
        session.query(Vehicle)
        .filter(Vehicle.id == id)
        .filter(Vehicle.is_deleted == False)
        .first()
    )


def releaseVehicle(session: Session, vehicle: Vehicle) -> int:
    """Deactivate the active assignments of a vehicle."""
    return (
        session.query(VehicleAssignment)
        .filter(VehicleAssignment.vehicle_id == vehicle.id)
        .filter(VehicleAssignment.is_active == True)
        .update({VehicleAssignment.is_active: False}, synchronize_session=False)
    )


## API endpoints [Admin]
@route_admin.post(
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UniqueViolation("vehicle_number"),
        ]
    ),
    description="""
    Register a new vehicle. The vehicle number must be unique.
    """,
)
async def create_vehicle(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = Vehicle(
            vehicle_number=fParam.vehicle_number,
            make=fParam.make,
            model=fParam.model,
            year=fParam.year,
            license_plate=fParam.license_plate,
            vin=fParam.vin,
            fuel_type=fParam.fuel_type,
            status=fParam.status,
            notes=fParam.notes,
        )
        session.add(target)
        session.commit()
        session.refresh(target)

        vehicleData = jsonable_encoder(target)
        logEvent(identity, request_info, vehicleData)
        return vehicleData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.UniqueViolation("vehicle_number"),
        ]
    ),
    description="""
    Update an existing vehicle by ID.
    Moving a vehicle out of ACTIVE ends its active assignments.
    """,
)
async def update_vehicle(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = vehicle(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        updateIfChanged(
            target,
            fParam,
            [
                Vehicle.vehicle_number.key,
                Vehicle.make.key,
                Vehicle.model.key,
                Vehicle.year.key,
                Vehicle.license_plate.key,
                Vehicle.vin.key,
                Vehicle.fuel_type.key,
                Vehicle.status.key,
                Vehicle.notes.key,
            ],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            if target.status != VehicleStatus.ACTIVE:
                releaseVehicle(session, target)
            session.commit()
            session.refresh(target)

        vehicleData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, vehicleData)
        return vehicleData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_VEHICLE,
    tags=["Vehicle"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a vehicle by ID. Its active assignments are ended.
    """,
)
async def delete_vehicle(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = vehicle(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        releaseVehicle(session, target)
        target.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(target))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=list[VehicleSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the vehicles that are not deleted.
    """,
)
async def fetch_vehicles(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchVehicle(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
