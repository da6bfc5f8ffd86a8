from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin
from app.src.db import Customer, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import MergePolicy, OrderIn
from app.src.loggers import logEvent
from app.src.redis import acquireLock, releaseLock
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.delivery import merge
from app.src.urls import URL_CUSTOMER, URL_CUSTOMER_DUPLICATE, URL_CUSTOMER_MERGE

route_admin = APIRouter()


## Output Schema
class CustomerSchema(BaseModel):
    id: int
    name: str
    address: Optional[str]
    contact_info: Optional[str]
    email_id: Optional[str]
    preferences: Optional[str]
    group_code: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


class DuplicateSchema(BaseModel):
    name: str
    count: int


class MergeSchema(BaseModel):
    name: str
    dry_run: bool
    primary_id: Optional[int]
    duplicate_ids: List[int]
    stops_moved: int
    documents_moved: int
    duplicates_removed: int


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=1, max_length=256))
    address: str | None = Field(Form(max_length=1024, default=None))
    contact_info: str | None = Field(Form(max_length=256, default=None))
    email_id: str | None = Field(Form(max_length=256, default=None))
    preferences: str | None = Field(Form(max_length=4096, default=None))
    group_code: str | None = Field(Form(max_length=64, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=1, max_length=256, default=None))
    address: str | None = Field(Form(max_length=1024, default=None))
    contact_info: str | None = Field(Form(max_length=256, default=None))
    email_id: str | None = Field(Form(max_length=256, default=None))
    preferences: str | None = Field(Form(max_length=4096, default=None))
    group_code: str | None = Field(Form(max_length=64, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class MergeForm(BaseModel):
    name: str = Field(Form(min_length=1, max_length=256))
    dry_run: bool = Field(Form(default=False))
    policy: MergePolicy = Field(
        Form(description=enumStr(MergePolicy), default=MergePolicy.ADDRESS_FIRST)
    )


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    name = 2
    updated_on = 3
    created_on = 4


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    address: str | None = Field(Query(default=None))
    group_code: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_ge: int | None = Field(Query(default=None))
    id_le: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.name, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


# Functions
def searchCustomer(session: Session, qParam: QueryParams) -> List[Customer]:
    query = session.query(Customer).filter(Customer.is_deleted == False)

    # Filters
    if qParam.name is not None:
        query = query.filter(Customer.name.ilike(f"%{qParam.name}%"))
    if qParam.address is not None:
        query = query.filter(Customer.address.ilike(f"%{qParam.address}%"))
    if qParam.group_code is not None:
        query = query.filter(Customer.group_code == qParam.group_code)
    # id based filters
    if qParam.id is not None:
        query = query.filter(Customer.id == qParam.id)
    if qParam.id_ge is not None:
        query = query.filter(Customer.id >= qParam.id_ge)
    if qParam.id_le is not None:
        query = query.filter(Customer.id <= qParam.id_le)
    if qParam.id_list is not None:
        query = query.filter(Customer.id.in_(qParam.id_list))
    # created_on based filters
    if qParam.created_on_ge is not None:
        query = query.filter(Customer.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Customer.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Customer, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc(), Customer.id.asc())
    else:
        query = query.order_by(orderingAttribute.desc(), Customer.id.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def customer(session: Session, id: int) -> Customer | None:
    return (
        session.query(Customer)
        .filter(Customer.id == id)
        .filter(Customer.is_deleted == False)
        .first()
    )


## API endpoints [Admin]
@route_admin.post(
    URL_CUSTOMER,
    tags=["Customer"],
    response_model=CustomerSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.EmailInCustomerName(),
        ]
    ),
    description="""
    Create a new customer.
    The name must not contain an email address, use `email_id` for it.
    Log the customer creation activity with the associated token.
    """,
)
async def create_customer(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)
        validators.customerName(fParam.name)

        customer = Customer(
            name=fParam.name,
            address=fParam.address,
            contact_info=fParam.contact_info,
            email_id=fParam.email_id,
            preferences=fParam.preferences,
            group_code=fParam.group_code,
        )
        session.add(customer)
        session.commit()
        session.refresh(customer)

        customerData = jsonable_encoder(customer)
        logEvent(identity, request_info, customerData)
        return customerData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_CUSTOMER,
    tags=["Customer"],
    response_model=CustomerSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.EmailInCustomerName(),
        ]
    ),
    description="""
    Update an existing customer by ID.
    Log the customer update activity with the associated token.
    """,
)
async def update_customer(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = customer(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        if fParam.name is not None:
            validators.customerName(fParam.name)

        updateIfChanged(
            target,
            fParam,
            [
                Customer.name.key,
                Customer.address.key,
                Customer.contact_info.key,
                Customer.email_id.key,
                Customer.preferences.key,
                Customer.group_code.key,
            ],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            session.commit()
            session.refresh(target)

        customerData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, customerData)
        return customerData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_CUSTOMER,
    tags=["Customer"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a customer by ID. Stops keep their reference to the customer.
    """,
)
async def delete_customer(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = customer(session, fParam.id)
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
    URL_CUSTOMER,
    tags=["Customer"],
    response_model=list[CustomerSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the customers that are not deleted.
    Filter by name or address (partial match), group code and ID ranges.
    Supports sorting and pagination.
    """,
)
async def fetch_customers(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchCustomer(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_CUSTOMER_DUPLICATE,
    tags=["Customer"],
    response_model=list[DuplicateSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    List the names shared by more than one customer, with the number of customers.
    """,
)
async def fetch_duplicate_customers(bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        groups = merge.duplicateGroups(session)
        return [{"name": name, "count": count} for name, count in groups]
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.post(
    URL_CUSTOMER_MERGE,
    tags=["Customer"],
    response_model=MergeSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.LockAcquireTimeout(),
        ]
    ),
    description="""
    Merge the customers sharing exactly the given name.
    One primary customer is kept according to the policy, the stops and documents
    of the others move to it and the others are soft deleted.

    Policies:
        ADDRESS_FIRST: the most recent customer having an address
        OLDEST: the oldest customer
        MOST_STOPS: the customer with the most stops

    With `dry_run` nothing is written and the counts that would move are returned.
    Merging a name without duplicates moves nothing.
    """,
)
async def merge_customers(
    fParam: MergeForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    lock = None
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        lock = acquireLock(Customer.__tablename__)
        plan = merge.planMerge(session, fParam.name, fParam.policy)
        mergeData = {
            "name": fParam.name,
            "dry_run": fParam.dry_run,
            "primary_id": plan.primary.id if plan.primary else None,
            "duplicate_ids": plan.duplicateIds,
            "stops_moved": plan.stops_to_move,
            "documents_moved": plan.documents_to_move,
            "duplicates_removed": len(plan.duplicates),
        }
        if fParam.dry_run:
            return mergeData

        result = merge.executeMerge(session, plan)
        session.commit()
        mergeData.update(
            stops_moved=result.stops_moved,
            documents_moved=result.documents_moved,
            duplicates_removed=result.duplicates_removed,
        )
        if result.duplicates_removed:
            logEvent(identity, request_info, mergeData)
        return mergeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        releaseLock(lock)
        session.close()
