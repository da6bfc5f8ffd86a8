import re
from io import BytesIO
from uuid import uuid4
from datetime import datetime, timezone
from typing import List
from fastapi import APIRouter, Depends, Query, Response, status, Form, UploadFile, File
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.api.bearer import bearer_admin, bearer_driver
from app.src.constants import MAX_IMAGE_SIZE, MAX_IMAGES_PER_UPLOAD, STOP_IMAGES
from app.src.db import Stop, sessionMaker
from app.src import exceptions, validators, getters
from app.src.loggers import logEvent
from app.src.minio import deleteFile, downloadFile, listFiles, uploadFile
from app.src.functions import fuseExceptionResponses, isImage, resizeImage, splitMIME
from app.src.delivery.stop_status import checkAttachments
from app.src.urls import URL_STOP_IMAGE, URL_STOP_IMAGE_FILE

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class StopImageSchema(BaseModel):
    stop_id: int
    images: List[str]


## Input Forms
class CreateForm(BaseModel):
    id: int = Field(Form())
    files: List[UploadFile] = Field(File())


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class QueryParams(BaseModel):
    id: int = Field(Query())


class FileQueryParams(BaseModel):
    id: int = Field(Query())
    name: str = Field(Query(max_length=256))


# Functions
def imagePrefix(stopId: int) -> str:
    return f"invoice_{stopId}_"


def imagePattern(stopId: int) -> re.Pattern:
    return re.compile(rf"^invoice_{stopId}_.*_img\d+\.jpg$")


def imageName(stopId: int, takenAt: datetime, uid: str, number: int) -> str:
    return f"invoice_{stopId}_{takenAt.strftime('%Y%m%d%H%M%S')}_{uid}_img{number}.jpg"


def stopImages(stopId: int) -> List[str]:
    pattern = imagePattern(stopId)
    return [n for n in listFiles(STOP_IMAGES, imagePrefix(stopId)) if pattern.match(n)]


async def readImages(files: List[UploadFile]) -> List[bytes]:
    """
    Read and validate the uploaded proof images.

    Raises:
        exceptions.InvalidImageFile: On too many files, too large files or files
            that are not images.
    """
    if not files or len(files) > MAX_IMAGES_PER_UPLOAD:
        raise exceptions.InvalidImageFile()
    images = []
    for file in files:
        fileBytes = await file.read()
        if len(fileBytes) == 0 or len(fileBytes) > MAX_IMAGE_SIZE:
            raise exceptions.InvalidImageFile()
        mimeType = splitMIME(file.content_type)["type"]
        if mimeType != "image" or not isImage(fileBytes):
            raise exceptions.InvalidImageFile()
        images.append(fileBytes)
    return images


def imageResponse(stopId: int, name: str) -> StreamingResponse:
    if not imagePattern(stopId).match(name) or name not in stopImages(stopId):
        raise exceptions.InvalidIdentifier()
    fileBytes = downloadFile(STOP_IMAGES, name)
    return StreamingResponse(
        BytesIO(fileBytes),
        media_type="image/jpeg",
        headers={"Content-Disposition": f"file_name={name}"},
    )


## API endpoints [Admin]
@route_admin.get(
    URL_STOP_IMAGE,
    tags=["Stop Image"],
    response_model=StopImageSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    List the proof images of a stop.
    """,
)
async def fetch_stop_images(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, qParam.id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        return {"stop_id": stop.id, "images": stopImages(stop.id)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.get(
    URL_STOP_IMAGE_FILE,
    tags=["Stop Image"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Download a proof image of a stop as JPEG.
    """,
)
async def download_stop_image(
    qParam: FileQueryParams = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, qParam.id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        return imageResponse(stop.id, qParam.name)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.post(
    URL_STOP_IMAGE,
    tags=["Stop Image"],
    response_model=StopImageSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidSideData(Stop.status),
            exceptions.InvalidImageFile(),
        ]
    ),
    description="""
    Upload one or more proof of delivery images for an assigned stop.
    The stop must be ARRIVED or COMPLETED.
    Images are stored as JPEG in the `stop-images` bucket, named
    `invoice_{stopId}_{timestamp}_{uid}_img{n}.jpg`.
    """,
)
async def upload_stop_images(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, fParam.id, session)
        checkAttachments(stop, Stop.status)
        images = await readImages(fParam.files)

        takenAt = datetime.now(timezone.utc)
        uid = uuid4().hex[:8]
        names = []
        for number, fileBytes in enumerate(images, start=1):
            jpegBytes = resizeImage(fileBytes, "JPEG")
            name = imageName(stop.id, takenAt, uid, number)
            uploadFile(
                STOP_IMAGES, name, len(jpegBytes), BytesIO(jpegBytes), "image/jpeg"
            )
            names.append(name)

        imageData = {"stop_id": stop.id, "images": names}
        logEvent(identity, request_info, imageData)
        return imageData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.delete(
    URL_STOP_IMAGE,
    tags=["Stop Image"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Remove every proof image of an assigned stop.
    Deleting the images of a stop without images succeeds.
    """,
)
async def delete_stop_images(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, fParam.id, session)
        names = stopImages(stop.id)
        for name in names:
            deleteFile(STOP_IMAGES, name)

        logEvent(identity, request_info, {"stop_id": stop.id, "images": names})
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_STOP_IMAGE,
    tags=["Stop Image"],
    response_model=StopImageSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    List the proof images of an assigned stop.
    """,
)
async def fetch_assigned_stop_images(
    qParam: QueryParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, qParam.id, session)
        return {"stop_id": stop.id, "images": stopImages(stop.id)}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_driver.get(
    URL_STOP_IMAGE_FILE,
    tags=["Stop Image"],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Download a proof image of an assigned stop as JPEG.
    """,
)
async def download_assigned_stop_image(
    qParam: FileQueryParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, qParam.id, session)
        return imageResponse(stop.id, qParam.name)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
