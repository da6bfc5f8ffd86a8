from io import BytesIO
from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form, UploadFile, File
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.constants import CUSTOMER_DOCUMENTS, MAX_DOCUMENT_SIZE
from app.src.db import Customer, CustomerDocument, Stop, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import OrderIn
from app.src.loggers import logEvent
from app.src.minio import downloadFile, uploadFile
from app.src.functions import enumStr, fuseExceptionResponses
from app.src.urls import URL_CUSTOMER_DOCUMENT, URL_CUSTOMER_DOCUMENT_FILE

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class CustomerDocumentSchema(BaseModel):
    id: int
    customer_id: int
    stop_id: Optional[int]
    title: str
    description: Optional[str]
    file_name: str
    file_type: str
    file_size: int
    uploaded_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    customer_id: int = Field(Form())
    stop_id: int | None = Field(Form(default=None))
    title: str = Field(Form(min_length=1, max_length=256))
    description: str | None = Field(Form(max_length=4096, default=None))
    file: UploadFile = Field(File())


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    title = 2
    created_on = 3


class QueryParamsForAD(BaseModel):
    customer_id: int | None = Field(Query(default=None))
    stop_id: int | None = Field(Query(default=None))
    title: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class QueryParamsForDR(BaseModel):
    stop_id: int = Field(Query())


class FileQueryParamsForAD(BaseModel):
    id: int = Field(Query())


class FileQueryParamsForDR(BaseModel):
    id: int = Field(Query())
    stop_id: int = Field(Query())


# Functions
def searchCustomerDocument(session: Session, qParam: QueryParamsForAD) -> List[CustomerDocument]:
    query = session.query(CustomerDocument).filter(CustomerDocument.is_deleted == False)

    # Filters
    if qParam.customer_id is not None:
        query = query.filter(CustomerDocument.customer_id == qParam.customer_id)
    if qParam.stop_id is not None:
        query = query.filter(CustomerDocument.stop_id == qParam.stop_id)
    if qParam.title is not None:
        query = query.filter(CustomerDocument.title.ilike(f"%{qParam.title}%"))
    # id based filters
    if qParam.id is not None:
        query = query.filter(CustomerDocument.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(CustomerDocument.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(CustomerDocument, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def stopDocumentsQuery(session: Session, stop: Stop):
    """Documents of the stop itself and of the stop's customer."""
    clauses = [CustomerDocument.stop_id == stop.id]
    if stop.customer_id is not None:
        clauses.append(CustomerDocument.customer_id == stop.customer_id)
    return (
        session.query(CustomerDocument)
        .filter(CustomerDocument.is_deleted == False)
        .filter(or_(*clauses))
    )


def documentResponse(document: CustomerDocument) -> StreamingResponse:
    fileBytes = downloadFile(CUSTOMER_DOCUMENTS, str(document.id))
    return StreamingResponse(
        BytesIO(fileBytes),
        media_type=document.file_type,
        headers={"Content-Disposition": f"file_name={document.file_name}"},
    )


## API endpoints [Admin]
@route_admin.post(
    URL_CUSTOMER_DOCUMENT,
    tags=["Customer Document"],
    response_model=CustomerDocumentSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.UnknownValue(CustomerDocument.customer_id),
            exceptions.InvalidAssociation(
                CustomerDocument.stop_id, CustomerDocument.customer_id
            ),
            exceptions.InvalidFile(),
        ]
    ),
    description="""
    Upload a document for a customer, optionally tied to one of the customer's stops.
    Stores the file in the `customer-documents` bucket in MinIO.
    """,
)
async def upload_customer_document(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        customer = (
            session.query(Customer)
            .filter(Customer.id == fParam.customer_id)
            .filter(Customer.is_deleted == False)
            .first()
        )
        if customer is None:
            raise exceptions.UnknownValue(CustomerDocument.customer_id)
        if fParam.stop_id is not None:
            stop = getters.stop(session, fParam.stop_id)
            if stop is None or stop.customer_id != customer.id:
                raise exceptions.InvalidAssociation(
                    CustomerDocument.stop_id, CustomerDocument.customer_id
                )

        fileBytes = await fParam.file.read()
        if len(fileBytes) == 0 or len(fileBytes) > MAX_DOCUMENT_SIZE:
            raise exceptions.InvalidFile()

        document = CustomerDocument(
            customer_id=customer.id,
            stop_id=fParam.stop_id,
            title=fParam.title,
            description=fParam.description,
            file_name=fParam.file.filename,
            file_type=fParam.file.content_type or "application/octet-stream",
            file_size=len(fileBytes),
            uploaded_by=identity.id,
        )
        session.add(document)
        session.commit()
        session.refresh(document)
        uploadFile(
            CUSTOMER_DOCUMENTS,
            str(document.id),
            len(fileBytes),
            BytesIO(fileBytes),
            document.file_type,
        )

        documentData = jsonable_encoder(document)
        logEvent(identity, request_info, documentData)
        return documentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_CUSTOMER_DOCUMENT,
    tags=["Customer Document"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a customer document by ID. The stored file is kept.
    """,
)
async def delete_customer_document(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        document = (
            session.query(CustomerDocument)
            .filter(CustomerDocument.id == fParam.id)
            .filter(CustomerDocument.is_deleted == False)
            .first()
        )
        if document is None:
            raise exceptions.InvalidIdentifier()
        document.is_deleted = True
        session.commit()
        logEvent(identity, request_info, jsonable_encoder(document))
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_CUSTOMER_DOCUMENT,
    tags=["Customer Document"],
    response_model=list[CustomerDocumentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the customer documents that are not deleted.
    """,
)
async def fetch_customer_documents(
    qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchCustomerDocument(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_CUSTOMER_DOCUMENT_FILE,
    tags=["Customer Document"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Download the file of a customer document.
    """,
)
async def download_customer_document(
    qParam: FileQueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        document = (
            session.query(CustomerDocument)
            .filter(CustomerDocument.id == qParam.id)
            .filter(CustomerDocument.is_deleted == False)
            .first()
        )
        if document is None:
            raise exceptions.InvalidIdentifier()
        return documentResponse(document)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_CUSTOMER_DOCUMENT,
    tags=["Customer Document"],
    response_model=list[CustomerDocumentSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Fetch the documents of an assigned stop and of its customer.
    """,
)
async def fetch_stop_documents(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, qParam.stop_id, session)
        return stopDocumentsQuery(session, stop).order_by(CustomerDocument.id.desc()).all()
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_CUSTOMER_DOCUMENT_FILE,
    tags=["Customer Document"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Download a document of an assigned stop or of its customer.
    """,
)
async def download_stop_document(
    qParam: FileQueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, qParam.stop_id, session)
        document = (
            stopDocumentsQuery(session, stop)
            .filter(CustomerDocument.id == qParam.id)
            .first()
        )
        if document is None:
            raise exceptions.InvalidIdentifier()
        return documentResponse(document)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
