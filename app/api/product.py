from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Product, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import OrderIn
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses, updateIfChanged
from app.src.urls import URL_PRODUCT, URL_PRODUCT_BATCH, URL_PRODUCT_SEARCH

route_admin = APIRouter()
route_driver = APIRouter()

SEARCH_LIMIT = 20


## Output Schema
class ProductSchema(BaseModel):
    id: int
    name: str
    sku: str
    description: Optional[str]
    unit: Optional[str]
    updated_on: Optional[datetime]
    created_on: datetime


class BatchDeleteSchema(BaseModel):
    deleted: int


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=1, max_length=128))
    sku: str = Field(Form(min_length=1, max_length=64))
    description: str | None = Field(Form(max_length=4096, default=None))
    unit: str | None = Field(Form(max_length=32, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=1, max_length=128, default=None))
    sku: str | None = Field(Form(min_length=1, max_length=64, default=None))
    description: str | None = Field(Form(max_length=4096, default=None))
    unit: str | None = Field(Form(max_length=32, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class BatchDeleteForm(BaseModel):
    id_list: List[int] = Field(Form(min_length=1))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    name = 2
    sku = 3
    updated_on = 4
    created_on = 5


class QueryParams(BaseModel):
    search: str | None = Field(Query(default=None, max_length=128))
    sku: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.name, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.ASC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class SearchParams(BaseModel):
    term: str = Field(Query(min_length=1, max_length=128))


# Functions
def searchClause(term: str):
    pattern = f"%{term.strip()}%"
    return or_(
        Product.name.ilike(pattern),
        Product.sku.ilike(pattern),
        Product.description.ilike(pattern),
    )


def searchProduct(session: Session, qParam: QueryParams) -> List[Product]:
    query = session.query(Product).filter(Product.is_deleted == False)

    # Filters
    if qParam.search is not None:
        query = query.filter(searchClause(qParam.search))
    if qParam.sku is not None:
        query = query.filter(Product.sku == qParam.sku)
    # id based filters
    if qParam.id is not None:
        query = query.filter(Product.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Product.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(Product, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def product(session: Session, id: int) -> Product | None:
    return (
        session.query(Product)
        .filter(Product.id == id)
        .filter(Product.is_deleted == False)
        .first()
    )


## API endpoints [Admin]
@route_admin.post(
    URL_PRODUCT,
    tags=["Product"],
    response_model=ProductSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UniqueViolation("sku"),
        ]
    ),
    description="""
    Add a product to the catalogue. The SKU must be unique among the products
    that are not deleted.
    """,
)
async def create_product(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = Product(
            name=fParam.name.strip(),
            sku=fParam.sku.strip(),
            description=fParam.description,
            unit=fParam.unit,
        )
        session.add(target)
        session.commit()
        session.refresh(target)

        productData = jsonable_encoder(target)
        logEvent(identity, request_info, productData)
        return productData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_PRODUCT,
    tags=["Product"],
    response_model=ProductSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.UniqueViolation("sku"),
        ]
    ),
    description="""
    Update an existing product by ID.
    """,
)
async def update_product(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = product(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        updateIfChanged(
            target,
            fParam,
            [
                Product.name.key,
                Product.sku.key,
                Product.description.key,
                Product.unit.key,
            ],
        )
        haveUpdates = session.is_modified(target)
        if haveUpdates:
            session.commit()
            session.refresh(target)

        productData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, productData)
        return productData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_PRODUCT,
    tags=["Product"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a product by ID. Recorded returns keep their product link.
    """,
)
async def delete_product(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = product(session, fParam.id)
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


@route_admin.delete(
    URL_PRODUCT_BATCH,
    tags=["Product"],
    response_model=BatchDeleteSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Soft delete several products at once.
    Unknown or already deleted IDs are skipped, the response tells how many
    products were deleted.
    """,
)
async def delete_products(
    fParam: BatchDeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        deleted = (
            session.query(Product)
            .filter(Product.id.in_(fParam.id_list))
            .filter(Product.is_deleted == False)
            .update({Product.is_deleted: True}, synchronize_session=False)
        )
        session.commit()
        if deleted:
            logEvent(
                identity, request_info, {"id_list": fParam.id_list, "deleted": deleted}
            )
        return BatchDeleteSchema(deleted=deleted)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_PRODUCT,
    tags=["Product"],
    response_model=list[ProductSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the products that are not deleted.
    The search term matches name, SKU and description, ignoring case.
    """,
)
async def fetch_products(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchProduct(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_PRODUCT_SEARCH,
    tags=["Product"],
    response_model=list[ProductSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Look up products while recording a return.
    Returns at most 20 products ordered by name.
    """,
)
async def search_products(
    qParam: SearchParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)

        return (
            session.query(Product)
            .filter(Product.is_deleted == False)
            .filter(searchClause(qParam.term))
            .order_by(Product.name.asc())
            .limit(SEARCH_LIMIT)
            .all()
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
