from datetime import datetime, timezone
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Route, Stop, StopNote, sessionMaker
from app.src import events, exceptions, validators, getters
from app.src.enums import OrderIn
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses
from app.src.urls import URL_STOP_NOTE

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class StopNoteSchema(BaseModel):
    id: int
    stop_id: int
    admin_id: Optional[int]
    note: str
    read_by_driver: bool
    read_by_driver_at: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


## Input Forms
class CreateForm(BaseModel):
    stop_id: int = Field(Form())
    note: str = Field(Form(min_length=1, max_length=4096))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    note: str = Field(Form(min_length=1, max_length=4096))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    stop_id: int | None = Field(Query(default=None))
    route_id: int | None = Field(Query(default=None))
    read_by_driver: bool | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    offset: int = Field(Query(default=0, ge=0))
    limit: int = Field(Query(default=20, gt=0, le=100))


class DriverQueryParams(BaseModel):
    stop_id: int = Field(Query())


# Functions
def activeNotes(session: Session):
    return (
        session.query(StopNote)
        .join(Stop, Stop.id == StopNote.stop_id)
        .join(Route, Route.id == Stop.route_id)
        .filter(StopNote.is_deleted == False)
        .filter(Stop.is_deleted == False)
        .filter(Route.is_deleted == False)
    )


def searchNote(session: Session, qParam: QueryParams) -> List[StopNote]:
    query = activeNotes(session)

    # Filters
    if qParam.stop_id is not None:
        query = query.filter(StopNote.stop_id == qParam.stop_id)
    if qParam.route_id is not None:
        query = query.filter(Stop.route_id == qParam.route_id)
    if qParam.read_by_driver is not None:
        query = query.filter(StopNote.read_by_driver == qParam.read_by_driver)

    # Ordering
    orderingAttribute = getattr(StopNote, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset(qParam.offset).limit(qParam.limit)
    return query.all()


def stopNote(session: Session, id: int) -> StopNote | None:
    return activeNotes(session).filter(StopNote.id == id).first()


def markRead(notes: List[StopNote], readAt: datetime) -> int:
    """Flag the unread notes as read by the driver. Returns how many changed."""
    count = 0
    for note in notes:
        if not note.read_by_driver:
            note.read_by_driver = True
            note.read_by_driver_at = readAt
            count += 1
    return count


## API endpoints [Admin]
@route_admin.post(
    URL_STOP_NOTE,
    tags=["Stop Note"],
    response_model=StopNoteSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Leave a note on a stop for its driver.
    The note is announced on the stop note channel so the driver app can show it.
    """,
)
async def create_note(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, fParam.stop_id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        route = getters.route(session, stop.route_id)

        target = StopNote(stop_id=stop.id, admin_id=identity.id, note=fParam.note)
        session.add(target)
        session.commit()
        session.refresh(target)
        events.emitStopNote(
            target.id,
            stop.id,
            route.id,
            route.driver_id,
            stop.driver_name_from_upload,
        )

        noteData = jsonable_encoder(target)
        logEvent(identity, request_info, noteData)
        return noteData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.patch(
    URL_STOP_NOTE,
    tags=["Stop Note"],
    response_model=StopNoteSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Change the text of a note. A changed note is shown to the driver as unread again.
    """,
)
async def update_note(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = stopNote(session, fParam.id)
        if target is None:
            raise exceptions.InvalidIdentifier()
        haveUpdates = target.note != fParam.note
        if haveUpdates:
            target.note = fParam.note
            target.read_by_driver = False
            target.read_by_driver_at = None
            session.commit()
            session.refresh(target)

        noteData = jsonable_encoder(target)
        if haveUpdates:
            logEvent(identity, request_info, noteData)
        return noteData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_admin.delete(
    URL_STOP_NOTE,
    tags=["Stop Note"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Soft delete a note by ID.
    """,
)
async def delete_note(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_admin),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        target = stopNote(session, fParam.id)
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
    URL_STOP_NOTE,
    tags=["Stop Note"],
    response_model=list[StopNoteSchema],
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the notes left on stops, with their read state.
    """,
)
async def fetch_notes(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return searchNote(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_STOP_NOTE,
    tags=["Stop Note"],
    response_model=list[StopNoteSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
        ]
    ),
    description="""
    Fetch the notes of an assigned stop, oldest first.
    Fetching marks the unread notes as read.
    """,
)
async def fetch_own_notes(
    qParam: DriverQueryParams = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        validators.stopAccess(driver, qParam.stop_id, session)
        notes = (
            activeNotes(session)
            .filter(StopNote.stop_id == qParam.stop_id)
            .order_by(StopNote.id.asc())
            .all()
        )
        if markRead(notes, datetime.now(timezone.utc)):
            session.commit()
            for note in notes:
                session.refresh(note)
        return notes
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
