from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import User, sessionMaker
from app.src import attendance, exceptions, validators, getters
from app.src.enums import UserRole
from app.src.functions import fuseExceptionResponses
from app.src.urls import URL_ATTENDANCE_STATUS

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class AttendanceSchema(BaseModel):
    driver_id: int
    is_clocked_in: bool
    clock_in_time: Optional[datetime]
    last_checked: datetime
    source: str
    allowed: bool
    message: Optional[str]
    action: Optional[int]


## Query Parameters
class QueryParamsForDR(BaseModel):
    refresh: bool = Field(
        Query(default=False, description="Ask the attendance service, skipping the cache")
    )


class QueryParamsForAD(QueryParamsForDR):
    driver_id: int = Field(Query())


# Functions
def attendanceData(driver: User, decision: attendance.AccessDecision) -> dict:
    return {
        "driver_id": driver.id,
        "is_clocked_in": decision.status.is_clocked_in,
        "clock_in_time": decision.status.clock_in_time,
        "last_checked": decision.status.last_checked,
        "source": decision.status.source,
        "allowed": decision.allowed,
        "message": decision.message,
        "action": decision.action,
    }


## API endpoints [Admin]
@route_admin.get(
    URL_ATTENDANCE_STATUS,
    tags=["Attendance"],
    response_model=AttendanceSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Fetch the clock-in status of a driver.
    """,
)
async def fetch_driver_attendance(
    qParam: QueryParamsForAD = Depends(), bearer=Depends(bearer_admin)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        driver = getters.user(session, qParam.driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            raise exceptions.InvalidIdentifier()
        decision = attendance.checkDriverAccess(session, driver, qParam.refresh)
        return attendanceData(driver, decision)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.get(
    URL_ATTENDANCE_STATUS,
    tags=["Attendance"],
    response_model=AttendanceSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.NoPermission()]
    ),
    description="""
    Fetch the clock-in status of the signed in driver and whether routes can be accessed.
    The answer of the attendance service is cached for a few minutes.
    When the service cannot be reached the last known status is used.
    """,
)
async def fetch_own_attendance(
    qParam: QueryParamsForDR = Depends(), bearer=Depends(bearer_driver)
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        decision = attendance.checkDriverAccess(session, driver, qParam.refresh)
        return attendanceData(driver, decision)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
