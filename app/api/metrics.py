from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.bearer import bearer_admin
from app.src import exceptions, validators
from app.src.metrics import requestMetrics
from app.src.functions import fuseExceptionResponses
from app.src.urls import URL_METRICS

route_admin = APIRouter()


## Output Schema
class MetricSchema(BaseModel):
    method: str
    path: str
    count: int
    average_ms: float
    errors: int


## API endpoints [Admin]
@route_admin.get(
    URL_METRICS,
    tags=["Metrics"],
    response_model=list[MetricSchema],
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.RedisDBError("Redis unavailable"),
        ]
    ),
    description="""
    Fetch the request counters per endpoint: number of requests, average
    duration in milliseconds and number of server errors.
    Counters are kept for one day.
    """,
)
async def fetch_metrics(bearer=Depends(bearer_admin)):
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        return sorted(
            requestMetrics.summary(), key=lambda m: (m["path"], m["method"])
        )
    except Exception as e:
        exceptions.handle(e)
