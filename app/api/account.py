from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.constants import REGEX_PASSWORD, REGEX_USERNAME
from app.src.db import User, sessionMaker
from app.src import argon2, exceptions, validators, getters
from app.src.enums import OrderIn, UserRole
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.urls import URL_ACCOUNT

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class AccountSchema(BaseModel):
    id: int
    username: str
    role: int
    full_name: Optional[str]
    phone_number: Optional[str]
    email_id: Optional[str]
    last_latitude: Optional[float]
    last_longitude: Optional[float]
    last_location_at: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    username: str = Field(Form(min_length=4, max_length=32, pattern=REGEX_USERNAME))
    password: str = Field(Form(min_length=8, max_length=32, pattern=REGEX_PASSWORD))
    role: UserRole = Field(Form(description=enumStr(UserRole), default=UserRole.DRIVER))
    full_name: str | None = Field(Form(max_length=64, default=None))
    phone_number: str | None = Field(Form(max_length=32, default=None))
    email_id: str | None = Field(Form(max_length=256, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    password: str | None = Field(
        Form(min_length=8, max_length=32, pattern=REGEX_PASSWORD, default=None)
    )
    role: UserRole | None = Field(Form(description=enumStr(UserRole), default=None))
    full_name: str | None = Field(Form(max_length=64, default=None))
    phone_number: str | None = Field(Form(max_length=32, default=None))
    email_id: str | None = Field(Form(max_length=256, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    username = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    username: str | None = Field(Query(default=None))
    full_name: str | None = Field(Query(default=None))
    role: UserRole | None = Field(Query(default=None, description=enumStr(UserRole)))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


# Functions
def searchAccount(session: Session, qParam: QueryParams) -> List[User]:
    query = session.query(User).filter(User.is_deleted == False)

    # Filters
    if qParam.username is not None:
        query = query.filter(User.username.ilike(f"%{qParam.username}%"))
    if qParam.full_name is not None:
        query = query.filter(User.full_name.ilike(f"%{qParam.full_name}%"))
    if qParam.role is not None:
        query = query.filter(User.role == qParam.role)
    # id based filters
    if qParam.id is not None:
        query = query.filter(User.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(User.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(User.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(User.id.in_(qParam.id_list))
    # created_on based filters
    if qParam.created_on_ge is not None:
        query = query.filter(User.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(User.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(User, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


## API endpoints [Admin]
@route_admin.post(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UniqueViolation("username"),
        ]
    ),
    description="""
    Create a new user account.
    Administrators can create driver accounts.
    Only a super administrator can create administrator accounts.
    The password is stored as an Argon2 hash.
    Log the account creation activity with the associated token.
    """,
)
async def create_account(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.manageAccount(identity, fParam.role)

        user = User(
            username=fParam.username,
            password=argon2.makePassword(fParam.password),
            role=fParam.role,
            full_name=fParam.full_name,
            phone_number=fParam.phone_number,
            email_id=fParam.email_id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        logEvent(identity, request_info, userData)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Update an existing account by ID.
    Administrators can update driver accounts.
    Only a super administrator can update administrator accounts or promote a driver.
    Log the account update activity with the associated token.
    """,
)
async def update_account(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        user = getters.user(session, fParam.id)
        if user is None:
            raise exceptions.InvalidIdentifier()
        validators.manageAccount(identity, user.role)
        if fParam.role is not None:
            validators.manageAccount(identity, fParam.role)

        updateIfChanged(
            user,
            fParam,
            [
                User.role.key,
                User.full_name.key,
                User.phone_number.key,
                User.email_id.key,
            ],
        )
        if fParam.password is not None:
            user.password = argon2.makePassword(fParam.password)

        haveUpdates = session.is_modified(user)
        if haveUpdates:
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password"})
        if haveUpdates:
            logEvent(identity, request_info, userData)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_ACCOUNT,
    tags=["Account"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete an account by ID.
    A deleted account can no longer sign in and its tokens stop working.
    Administrators cannot delete their own account.
    """,
)
async def delete_account(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        user = getters.user(session, fParam.id)
        if user is None:
            raise exceptions.InvalidIdentifier()
        if user.id == identity.id:
            raise exceptions.NoPermission()
        validators.manageAccount(identity, user.role)

        user.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(user, exclude={"password"}))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=list[AccountSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the accounts that are not deleted.
    Filter by username or full name (partial match), role and ID ranges.
    Supports sorting and pagination.
    """,
)
async def fetch_accounts(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchAccount(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the profile of the signed in driver.
    """,
)
async def fetch_own_account(bearer=Depends(bearer_driver)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)

        return validators.activeUser(identity, session)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
