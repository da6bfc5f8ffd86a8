from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Product, Route, Stop, StopReturn, sessionMaker
from app.src import exceptions, validators, getters
from app.src.delivery.assignment import assignedStopClause
from app.src.enums import OrderIn
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.urls import URL_STOP_RETURN

route_admin = APIRouter()
route_driver = APIRouter()

DEFAULT_REASON = "Driver return"


## Output Schema
class StopReturnSchema(BaseModel):
    id: int
    stop_id: int
    product_id: Optional[int]
    driver_id: Optional[int]
    order_item_identifier: Optional[str]
    product_description: Optional[str]
    quantity: int
    reason_code: str
    warehouse_location: Optional[str]
    vendor_credit_number: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    stop_id: int = Field(Form())
    route_id: int | None = Field(Form(default=None))
    product_id: int | None = Field(Form(default=None))
    order_item_identifier: str | None = Field(Form(max_length=128, default=None))
    product_description: str | None = Field(Form(max_length=1024, default=None))
    quantity: int = Field(Form(gt=0))
    reason_code: str = Field(Form(min_length=1, max_length=128, default=DEFAULT_REASON))


class DriverUpdateForm(BaseModel):
    id: int = Field(Form())
    warehouse_location: str | None = Field(Form(max_length=128, default=None))
    vendor_credit_number: str | None = Field(Form(max_length=128, default=None))


class AdminUpdateForm(DriverUpdateForm):
    quantity: int | None = Field(Form(gt=0, default=None))
    reason_code: str | None = Field(Form(min_length=1, max_length=128, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    stop_id = 2
    updated_on = 3
    created_on = 4


class DriverQueryParams(BaseModel):
    stop_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))


class QueryParams(BaseModel):
    stop_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    product_id: int | None = Field(Query(default=None))
    driver_id: int | None = Field(Query(default=None))
    reason_code: str | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


# Functions
def activeReturns(session: Session):
    return (
        session.query(StopReturn)
        .join(Stop, Stop.id == StopReturn.stop_id)
        .join(Route, Route.id == Stop.route_id)
        .filter(StopReturn.is_deleted == False)
        .filter(Stop.is_deleted == False)
        .filter(Route.is_deleted == False)
    )


def searchReturn(session: Session, qParam: QueryParams) -> List[StopReturn]:
    query = activeReturns(session)

    # Filters
    if qParam.stop_id is not None:
        query = query.filter(StopReturn.stop_id == qParam.stop_id)
    if qParam.route_id is not None:
        query = query.filter(Stop.route_id == qParam.route_id)
    if qParam.product_id is not None:
        query = query.filter(StopReturn.product_id == qParam.product_id)
    if qParam.driver_id is not None:
        query = query.filter(StopReturn.driver_id == qParam.driver_id)
    if qParam.reason_code is not None:
        query = query.filter(StopReturn.reason_code == qParam.reason_code)

    # Ordering
    orderingAttribute = getattr(StopReturn, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def stopReturn(session: Session, id: int) -> StopReturn | None:
    return activeReturns(session).filter(StopReturn.id == id).first()


## API endpoints [Admin]
@route_admin.patch(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    response_model=StopReturnSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Correct a recorded return by ID.
    """,
)
async def update_return(
    fParam: AdminUpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = stopReturn(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        updateIfChanged(
            target,
            fParam,
            [
                StopReturn.quantity.key,
                StopReturn.reason_code.key,
                StopReturn.warehouse_location.key,
                StopReturn.vendor_credit_number.key,
            ],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            session.commit()
            session.refresh(target)

        returnData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, returnData)
        return returnData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a recorded return by ID.
    """,
)
async def delete_return(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = stopReturn(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        target.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(target))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    response_model=list[StopReturnSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the recorded returns, filtered by stop, route, product or driver.
    """,
)
async def fetch_returns(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchReturn(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.post(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    response_model=StopReturnSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidAssociation(Route.id, Stop.route_id),
            exceptions.UnknownValue(StopReturn.product_id),
            exceptions.MissingParameter(StopReturn.order_item_identifier),
        ]
    ),
    description="""
    Record goods taken back at an assigned stop, one line per request.
    The line is identified by a catalogue product or by an order item identifier.
    When a route is given it must be the route of the stop.
    The stop is flagged as having returns.
    """,
)
async def create_return(
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
        if fParam.route_id is not None and fParam.route_id != route.id:
            raise exceptions.InvalidAssociation(Route.id, Stop.route_id)
        description = fParam.product_description
        if fParam.product_id is not None:
            product = (
                session.query(Product)
                .filter(Product.id == fParam.product_id)
                .filter(Product.is_deleted == False)
                .first()
            )
            if product is None:
                raise exceptions.UnknownValue(StopReturn.product_id)
            description = description or product.name
        elif not fParam.order_item_identifier:
            raise exceptions.MissingParameter(StopReturn.order_item_identifier)

        target = StopReturn(
            stop_id=stop.id,
            product_id=fParam.product_id,
            driver_id=driver.id,
            order_item_identifier=fParam.order_item_identifier,
            product_description=description,
            quantity=fParam.quantity,
            reason_code=fParam.reason_code,
        )
        session.add(target)
        stop.return_flag = True
        session.commit()
        session.refresh(target)

        returnData = jsonable_encoder(target)
        logEvent(identity, request_info, returnData)
        return returnData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.patch(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    response_model=StopReturnSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Record where a returned line was put away and the vendor credit issued for it.
    """,
)
async def update_own_return(
    fParam: DriverUpdateForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        target = stopReturn(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        validators.stopAccess(driver, target.stop_id, session)
        updateIfChanged(
            target,
            fParam,
            [StopReturn.warehouse_location.key, StopReturn.vendor_credit_number.key],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            session.commit()
            session.refresh(target)

        returnData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, returnData)
        return returnData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_STOP_RETURN,
    tags=["Stop Return"],
    response_model=list[StopReturnSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.MissingParameter(StopReturn.stop_id),
        ]
    ),
    description="""
    Fetch the returns recorded at an assigned stop, or at every assigned stop of a route.
    """,
)
async def fetch_own_returns(
    qParam: DriverQueryParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        query = activeReturns(session)
        if qParam.stop_id is not None:
            validators.stopAccess(driver, qParam.stop_id, session)
            query = query.filter(StopReturn.stop_id == qParam.stop_id)
        elif qParam.route_id is not None:
            validators.routeAccess(driver, qParam.route_id, session)
            query = query.filter(Stop.route_id == qParam.route_id).filter(
                assignedStopClause(driver)
            )
        else:
            raise exceptions.MissingParameter(StopReturn.stop_id)
        return query.order_by(StopReturn.id.asc()).all()
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
