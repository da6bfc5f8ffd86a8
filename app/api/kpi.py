import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.bearer import bearer_admin
from app.src.db import Route, User, sessionMaker
from app.src import exceptions, validators, getters
from app.src.delivery import kpi
from app.src.enums import KPIPeriod, UserRole
from app.src.functions import enumStr, fuseExceptionResponses
from app.src.urls import URL_KPI

route_admin = APIRouter()


## Output Schema
class DailyKPISchema(BaseModel):
    driver_id: int
    date: dt.date
    route_count: int
    stops_total: int
    stops_completed: int
    stops_failed: int
    amount_total: Decimal
    amount_collected: Decimal
    returns_count: int
    started_at: Optional[datetime]
    finished_at: Optional[datetime]


class KPIStatsSchema(BaseModel):
    stops_total: int
    stops_completed: int
    stops_failed: int
    amount_total: Decimal
    amount_collected: Decimal
    returns_count: int
    average_stops_per_day: float
    average_completed_per_day: float
    completion_rate: float


class KPIReportSchema(BaseModel):
    date_from: date
    date_to: date
    count: int
    kpis: List[DailyKPISchema]
    stats: KPIStatsSchema


## Query Parameters
class QueryParams(BaseModel):
    driver_id: int | None = Field(Query(default=None))
    date_from: date | None = Field(Query(default=None))
    date_to: date | None = Field(Query(default=None))
    period: KPIPeriod = Field(
        Query(default=KPIPeriod.DAILY, description=enumStr(KPIPeriod))
    )


# Functions
def reportWindow(qParam: QueryParams) -> tuple[date, date]:
    if qParam.date_from is None and qParam.date_to is None:
        return kpi.periodWindow(qParam.period, datetime.now(timezone.utc).date())
    if qParam.date_from is None or qParam.date_to is None:
        raise exceptions.MissingParameter(Route.date)
    if qParam.date_from > qParam.date_to:
        raise exceptions.InvalidValue(Route.date)
    return qParam.date_from, qParam.date_to


## API endpoints [Admin]
@route_admin.get(
    URL_KPI,
    tags=["KPI"],
    response_model=KPIReportSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.MissingParameter(Route.date),
            exceptions.InvalidValue(Route.date),
        ]
    ),
    description="""
    Daily delivery KPIs per driver, computed from the stops of the routes in the window.
    The window is either the inclusive date_from and date_to pair, or the
    current period (day, week starting on Sunday, or calendar month).
    The stats give the totals over the window together with the per day
    averages and the completion rate in percent.
    """,
)
async def fetch_kpis(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        dateFrom, dateTo = reportWindow(qParam)
        if qParam.driver_id is not None:
            driver = getters.user(session, qParam.driver_id)
            if driver is None or driver.role != UserRole.DRIVER:
                raise exceptions.InvalidIdentifier()
            drivers = [driver]
        else:
            drivers = (
                session.query(User)
                .filter(User.role == UserRole.DRIVER)
                .filter(User.is_deleted == False)
                .order_by(User.id.asc())
                .all()
            )

        kpis = kpi.dailyKPIs(session, drivers, dateFrom, dateTo)
        return {
            "date_from": dateFrom,
            "date_to": dateTo,
            "count": len(kpis),
            "kpis": [k.asDict() for k in kpis],
            "stats": kpi.summarize(kpis),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
