from io import BytesIO
from datetime import date, datetime, timezone
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form, UploadFile, File
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.constants import MAX_DOCUMENT_SIZE, SYSTEM_DOCUMENTS
from app.src.db import DocumentAcknowledgment, SystemDocument, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import DocumentCategory, OrderIn
from app.src.loggers import logEvent
from app.src.minio import downloadFile, uploadFile
from app.src.functions import (
    enumStr,
    fuseExceptionResponses,
    insertIfAbsent,
    updateIfChanged,
)
from app.src.urls import (
    URL_DOCUMENT_ACKNOWLEDGMENT,
    URL_SYSTEM_DOCUMENT,
    URL_SYSTEM_DOCUMENT_FILE,
    URL_SYSTEM_DOCUMENT_PENDING,
)

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class SystemDocumentSchema(BaseModel):
    id: int
    title: str
    description: Optional[str]
    category: int
    document_type: Optional[str]
    file_name: str
    file_type: str
    file_size: int
    version: str
    is_required: bool
    is_active: bool
    uploaded_by: Optional[int]
    effective_on: Optional[date]
    expires_on: Optional[date]
    updated_on: Optional[datetime]
    created_on: datetime


class DriverDocumentSchema(SystemDocumentSchema):
    acknowledged: bool
    acknowledged_at: Optional[datetime]


class AcknowledgmentSchema(BaseModel):
    id: int
    document_id: int
    driver_id: int
    route_id: Optional[int]
    ip_address: Optional[str]
    user_agent: Optional[str]
    acknowledged_at: datetime
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    title: str = Field(Form(min_length=1, max_length=256))
    description: str | None = Field(Form(max_length=4096, default=None))
    category: DocumentCategory = Field(
        Form(description=enumStr(DocumentCategory), default=DocumentCategory.OTHER)
    )
    document_type: str | None = Field(Form(max_length=64, default=None))
    version: str = Field(Form(min_length=1, max_length=32, default="1.0"))
    is_required: bool = Field(Form(default=False))
    is_active: bool = Field(Form(default=True))
    effective_on: date | None = Field(Form(default=None))
    expires_on: date | None = Field(Form(default=None))
    file: UploadFile = Field(File())


class UpdateForm(BaseModel):
    id: int = Field(Form())
    title: str | None = Field(Form(min_length=1, max_length=256, default=None))
    description: str | None = Field(Form(max_length=4096, default=None))
    category: DocumentCategory | None = Field(
        Form(description=enumStr(DocumentCategory), default=None)
    )
    document_type: str | None = Field(Form(max_length=64, default=None))
    version: str | None = Field(Form(min_length=1, max_length=32, default=None))
    is_required: bool | None = Field(Form(default=None))
    is_active: bool | None = Field(Form(default=None))
    effective_on: date | None = Field(Form(default=None))
    expires_on: date | None = Field(Form(default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


class AcknowledgeForm(BaseModel):
    document_id: int = Field(Form())
    route_id: int | None = Field(Form(default=None))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    title = 2
    updated_on = 3
    created_on = 4


class QueryParamsForAD(BaseModel):
    title: str | None = Field(Query(default=None))
    category: DocumentCategory | None = Field(
        Query(default=None, description=enumStr(DocumentCategory))
    )
    is_required: bool | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
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
    route_id: int | None = Field(Query(default=None))
    category: DocumentCategory | None = Field(
        Query(default=None, description=enumStr(DocumentCategory))
    )


class AcknowledgmentParams(BaseModel):
    document_id: int | None = Field(Query(default=None))
    driver_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class FileQueryParams(BaseModel):
    id: int = Field(Query())


# Functions
def searchSystemDocument(session: Session, qParam: QueryParamsForAD) -> List[SystemDocument]:
    query = session.query(SystemDocument).filter(SystemDocument.is_deleted == False)

    # Filters
    if qParam.title is not None:
        query = query.filter(SystemDocument.title.ilike(f"%{qParam.title}%"))
    if qParam.category is not None:
        query = query.filter(SystemDocument.category == qParam.category)
    if qParam.is_required is not None:
        query = query.filter(SystemDocument.is_required == qParam.is_required)
    if qParam.is_active is not None:
        query = query.filter(SystemDocument.is_active == qParam.is_active)
    # id based filters
    if qParam.id is not None:
        query = query.filter(SystemDocument.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(SystemDocument.id.in_(qParam.id_list))

    # Ordering
    orderingAttribute = getattr(SystemDocument, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def systemDocument(session: Session, id: int) -> SystemDocument | None:
    return (
        session.query(SystemDocument)
        .filter(SystemDocument.id == id)
        .filter(SystemDocument.is_deleted == False)
        .first()
    )


def activeDocuments(session: Session, today: date, category=None) -> List[SystemDocument]:
    """Active documents whose validity window contains `today`."""
    query = (
        session.query(SystemDocument)
        .filter(SystemDocument.is_deleted == False)
        .filter(SystemDocument.is_active == True)
        .filter(
            or_(SystemDocument.effective_on == None, SystemDocument.effective_on <= today)
        )
        .filter(or_(SystemDocument.expires_on == None, SystemDocument.expires_on >= today))
    )
    if category is not None:
        query = query.filter(SystemDocument.category == category)
    return query.order_by(SystemDocument.id.asc()).all()


def findAcknowledgment(
    session: Session, document_id: int, driver_id: int, route_id: int | None
) -> DocumentAcknowledgment | None:
    query = (
        session.query(DocumentAcknowledgment)
        .filter(DocumentAcknowledgment.document_id == document_id)
        .filter(DocumentAcknowledgment.driver_id == driver_id)
    )
    if route_id is None:
        query = query.filter(DocumentAcknowledgment.route_id == None)
    else:
        query = query.filter(DocumentAcknowledgment.route_id == route_id)
    return query.first()


def driverDocuments(
    session: Session, driver_id: int, route_id: int | None, category=None
) -> List[dict]:
    documents = activeDocuments(session, datetime.now(timezone.utc).date(), category)
    result = []
    for document in documents:
        acknowledgment = findAcknowledgment(session, document.id, driver_id, route_id)
        documentData = jsonable_encoder(document)
        documentData["acknowledged"] = acknowledgment is not None
        documentData["acknowledged_at"] = (
            acknowledgment.acknowledged_at if acknowledgment else None
        )
        result.append(documentData)
    return result


def documentResponse(document: SystemDocument) -> StreamingResponse:
    fileBytes = downloadFile(SYSTEM_DOCUMENTS, str(document.id))
    return StreamingResponse(
        BytesIO(fileBytes),
        media_type=document.file_type,
        headers={"Content-Disposition": f"file_name={document.file_name}"},
    )


## API endpoints [Admin]
@route_admin.post(
    URL_SYSTEM_DOCUMENT,
    tags=["System Document"],
    response_model=SystemDocumentSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidFile(),
        ]
    ),
    description="""
    Upload a company document for drivers.
    Required documents must be acknowledged by every driver.
    Stores the file in the `system-documents` bucket in MinIO.
    """,
)
async def upload_system_document(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        fileBytes = await fParam.file.read()
        if len(fileBytes) == 0 or len(fileBytes) > MAX_DOCUMENT_SIZE:
            raise exceptions.InvalidFile()

        document = SystemDocument(
            title=fParam.title,
            description=fParam.description,
            category=fParam.category,
            document_type=fParam.document_type,
            file_name=fParam.file.filename,
            file_type=fParam.file.content_type or "application/octet-stream",
            file_size=len(fileBytes),
            version=fParam.version,
            is_required=fParam.is_required,
            is_active=fParam.is_active,
            uploaded_by=identity.id,
            effective_on=fParam.effective_on,
            expires_on=fParam.expires_on,
        )
        session.add(document)
        session.commit()
        session.refresh(document)
        uploadFile(
            SYSTEM_DOCUMENTS,
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


@route_admin.patch(
    URL_SYSTEM_DOCUMENT,
    tags=["System Document"],
    response_model=SystemDocumentSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Update the details of a company document by ID.
    Deactivating a document hides it from drivers.
    """,
)
async def update_system_document(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        document = systemDocument(session, fParam.id)
        if document is None:
            raise exceptions.InvalidIdentifier()
        updateIfChanged(
            document,
            fParam,
            [
                SystemDocument.title.key,
                SystemDocument.description.key,
                SystemDocument.category.key,
                SystemDocument.document_type.key,
                SystemDocument.version.key,
                SystemDocument.is_required.key,
                SystemDocument.is_active.key,
                SystemDocument.effective_on.key,
                SystemDocument.expires_on.key,
            ],
        )
        haveUpdates = session.is_modified(document)
        if haveUpdates:
            session.commit()
            session.refresh(document)

        documentData = jsonable_encoder(document)
        if haveUpdates:
            logEvent(identity, request_info, documentData)
        return documentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_SYSTEM_DOCUMENT,
    tags=["System Document"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a company document by ID. Existing acknowledgments are kept.
    """,
)
async def delete_system_document(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        document = systemDocument(session, fParam.id)
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
    URL_SYSTEM_DOCUMENT,
    tags=["System Document"],
    response_model=list[SystemDocumentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the company documents that are not deleted.
    """,
)
async def fetch_system_documents(
    qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchSystemDocument(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_SYSTEM_DOCUMENT_FILE,
    tags=["System Document"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Download the file of a company document.
    """,
)
async def download_system_document(
    qParam: FileQueryParams = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        document = systemDocument(session, qParam.id)
        if document is None:
            raise exceptions.InvalidIdentifier()
        return documentResponse(document)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_DOCUMENT_ACKNOWLEDGMENT,
    tags=["System Document"],
    response_model=list[AcknowledgmentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the document acknowledgments, newest first.
    """,
)
async def fetch_acknowledgments(
    qParam: AcknowledgmentParams = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        query = session.query(DocumentAcknowledgment)
        if qParam.document_id is not None:
            query = query.filter(DocumentAcknowledgment.document_id == qParam.document_id)
        if qParam.driver_id is not None:
            query = query.filter(DocumentAcknowledgment.driver_id == qParam.driver_id)
        if qParam.route_id is not None:
            query = query.filter(DocumentAcknowledgment.route_id == qParam.route_id)
        query = query.order_by(DocumentAcknowledgment.id.desc())
        return query.offset(qParam.offset).limit(qParam.limit).all()
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_SYSTEM_DOCUMENT,
    tags=["System Document"],
    response_model=list[DriverDocumentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the active company documents with the driver's acknowledgment state.
    Acknowledgments are looked up for the given route, or outside of any route.
    """,
)
async def fetch_active_documents(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        return driverDocuments(session, driver.id, qParam.route_id, qParam.category)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_SYSTEM_DOCUMENT_PENDING,
    tags=["System Document"],
    response_model=list[DriverDocumentSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the active required documents the driver has not acknowledged yet.
    """,
)
async def fetch_pending_documents(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        documents = driverDocuments(session, driver.id, qParam.route_id, qParam.category)
        return [d for d in documents if d["is_required"] and not d["acknowledged"]]
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_SYSTEM_DOCUMENT_FILE,
    tags=["System Document"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Download the file of an active company document.
    """,
)
async def download_active_document(
    qParam: FileQueryParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)

        document = systemDocument(session, qParam.id)
        if document is None or not document.is_active:
            raise exceptions.InvalidIdentifier()
        return documentResponse(document)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.post(
    URL_DOCUMENT_ACKNOWLEDGMENT,
    tags=["System Document"],
    response_model=AcknowledgmentSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.InactiveResource(SystemDocument),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Acknowledge a company document, optionally in the context of an assigned route.
    A document is acknowledged at most once per driver and route, acknowledging
    it again returns the existing acknowledgment.
    """,
)
async def acknowledge_document(
    fParam: AcknowledgeForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        document = systemDocument(session, fParam.document_id)
        if document is None:
            raise exceptions.InvalidIdentifier()
        if not document.is_active:
            raise exceptions.InactiveResource(SystemDocument)
        if fParam.route_id is not None:
            validators.routeAccess(driver, fParam.route_id, session)

        acknowledgment, created = insertIfAbsent(
            session,
            DocumentAcknowledgment(
                document_id=document.id,
                driver_id=driver.id,
                route_id=fParam.route_id,
                ip_address=request_info.ip_address,
                user_agent=request_info.user_agent,
                acknowledged_at=datetime.now(timezone.utc),
            ),
            lambda: findAcknowledgment(session, document.id, driver.id, fParam.route_id),
        )

        acknowledgmentData = jsonable_encoder(acknowledgment)
        if created:
            logEvent(identity, request_info, acknowledgmentData)
        return acknowledgmentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
