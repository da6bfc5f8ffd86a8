from datetime import date, datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import SafetyDeclaration, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import DeclarationType, OrderIn
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, insertIfAbsent
from app.src.urls import URL_SAFETY_DECLARATION

route_admin = APIRouter()
route_driver = APIRouter()

DECLARATION_FIELDS = (
    SafetyDeclaration.vehicle_inspected.key,
    SafetyDeclaration.safety_equipment.key,
    SafetyDeclaration.route_understood.key,
    SafetyDeclaration.emergency_procedures.key,
    SafetyDeclaration.company_policies.key,
)


## Output Schema
class SafetyDeclarationSchema(BaseModel):
    id: int
    driver_id: int
    route_id: Optional[int]
    declaration_type: int
    declared_on: date
    vehicle_inspected: bool
    safety_equipment: bool
    route_understood: bool
    emergency_procedures: bool
    company_policies: bool
    signature: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    acknowledged_at: datetime
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    route_id: int | None = Field(Form(default=None))
    declaration_type: DeclarationType | None = Field(
        Form(description=enumStr(DeclarationType), default=None)
    )
    vehicle_inspected: bool = Field(Form(default=False))
    safety_equipment: bool = Field(Form(default=False))
    route_understood: bool = Field(Form(default=False))
    emergency_procedures: bool = Field(Form(default=False))
    company_policies: bool = Field(Form(default=False))
    signature: str | None = Field(Form(max_length=256, default=None))


## Query Parameters
class QueryParamsForDR(BaseModel):
    route_id: int | None = Field(Query(default=None))
    declaration_type: DeclarationType | None = Field(
        Query(default=None, description=enumStr(DeclarationType))
    )
    declared_on_ge: date | None = Field(Query(default=None))
    declared_on_le: date | None = Field(Query(default=None))
    # Ordering
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class QueryParamsForAD(QueryParamsForDR):
    driver_id: int | None = Field(Query(default=None))


# Functions
def searchSafetyDeclaration(
    session: Session, qParam: QueryParamsForDR | QueryParamsForAD, driver_id: int = None
) -> List[SafetyDeclaration]:
    query = session.query(SafetyDeclaration).filter(SafetyDeclaration.is_deleted == False)

    # Filters
    if driver_id is None:
        driver_id = getattr(qParam, "driver_id", None)
    if driver_id is not None:
        query = query.filter(SafetyDeclaration.driver_id == driver_id)
    if qParam.route_id is not None:
        query = query.filter(SafetyDeclaration.route_id == qParam.route_id)
    if qParam.declaration_type is not None:
        query = query.filter(SafetyDeclaration.declaration_type == qParam.declaration_type)
    if qParam.declared_on_ge is not None:
        query = query.filter(SafetyDeclaration.declared_on >= qParam.declared_on_ge)
    if qParam.declared_on_le is not None:
        query = query.filter(SafetyDeclaration.declared_on <= qParam.declared_on_le)

    # Ordering
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(SafetyDeclaration.id.asc())
    else:
        query = query.order_by(SafetyDeclaration.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def findDeclaration(
    session: Session,
    driver_id: int,
    route_id: int | None,
    declarationType: int,
    declaredOn: date,
) -> SafetyDeclaration | None:
    """
    A declaration for a route is unique per (driver, route). Without a route
    it is unique per (driver, declaration type, day).
    """
    query = session.query(SafetyDeclaration).filter(
        SafetyDeclaration.driver_id == driver_id
    )
    if route_id is not None:
        query = query.filter(SafetyDeclaration.route_id == route_id)
    else:
        query = (
            query.filter(SafetyDeclaration.route_id == None)
            .filter(SafetyDeclaration.declaration_type == declarationType)
            .filter(SafetyDeclaration.declared_on == declaredOn)
        )
    return query.first()


## API endpoints [Admin]
@route_admin.get(
    URL_SAFETY_DECLARATION,
    tags=["Safety Declaration"],
    response_model=list[SafetyDeclarationSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the safety declarations of the drivers.
    Filter by driver, route, declaration type and day range.
    """,
)
async def fetch_safety_declarations(
    qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchSafetyDeclaration(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.post(
    URL_SAFETY_DECLARATION,
    tags=["Safety Declaration"],
    response_model=SafetyDeclarationSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.IncompleteDeclaration(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Sign the safety declaration, for an assigned route or for the day.
    Every one of the five acknowledgments must be confirmed.
    The signature defaults to the driver's username.
    Signing again for the same route, or for the same day without a route,
    returns the existing declaration.
    """,
)
async def create_safety_declaration(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        if not all(getattr(fParam, field) for field in DECLARATION_FIELDS):
            raise exceptions.IncompleteDeclaration()
        if fParam.route_id is not None:
            validators.routeAccess(driver, fParam.route_id, session)
        declarationType = fParam.declaration_type
        if declarationType is None:
            declarationType = (
                DeclarationType.DAILY if fParam.route_id is None else DeclarationType.ROUTE
            )

        now = datetime.now(timezone.utc)
        declaration, created = insertIfAbsent(
            session,
            SafetyDeclaration(
                driver_id=driver.id,
                route_id=fParam.route_id,
                declaration_type=declarationType,
                declared_on=now.date(),
                vehicle_inspected=True,
                safety_equipment=True,
                route_understood=True,
                emergency_procedures=True,
                company_policies=True,
                signature=fParam.signature or driver.username,
                ip_address=request_info.ip_address,
                user_agent=request_info.user_agent,
                acknowledged_at=now,
            ),
            lambda: findDeclaration(
                session, driver.id, fParam.route_id, declarationType, now.date()
            ),
        )

        declarationData = jsonable_encoder(declaration)
        if created:
            logEvent(identity, request_info, declarationData)
        return declarationData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_SAFETY_DECLARATION,
    tags=["Safety Declaration"],
    response_model=list[SafetyDeclarationSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the safety declarations of the signed in driver.
    """,
)
async def fetch_own_safety_declarations(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)

        return searchSafetyDeclaration(session, qParam, identity.id)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
