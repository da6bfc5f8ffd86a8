import logging
from time import perf_counter
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.src import exceptions, schemas
from app.src.constants import API_TITLE, API_VERSION, CSRF_ENABLED, METRICS_ENABLED
from app.src.csrf import csrfTokens, isExempt
from app.src.metrics import requestMetrics
from app.api.controller import app_admin, app_auth, app_driver

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=API_TITLE, version=API_VERSION)

origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def errorResponse(e: exceptions.APIException) -> JSONResponse:
    return JSONResponse(
        status_code=e.status_code, content={"message": e.detail}, headers=e.headers
    )


# Mutating requests must carry the CSRF token issued to the user
@app.middleware("http")
async def csrf_protection(request: Request, call_next):
    if not CSRF_ENABLED or isExempt(request.method, request.url.path):
        return await call_next(request)
    try:
        isValid = csrfTokens.verify(
            request.headers.get("x-user-id"), request.headers.get("x-csrf-token")
        )
    except RedisError as e:
        logger.error("CSRF verification failed: %s", e)
        return errorResponse(exceptions.RedisDBError("CSRF store unavailable"))
    if not isValid:
        return errorResponse(exceptions.InvalidCSRFToken())
    return await call_next(request)


@app.middleware("http")
async def request_metrics(request: Request, call_next):
    if not METRICS_ENABLED:
        return await call_next(request)
    startedAt = perf_counter()
    response = await call_next(request)
    durationMs = (perf_counter() - startedAt) * 1000
    requestMetrics.record(
        request.method, request.url.path, durationMs, response.status_code
    )
    return response


app.mount("/api/auth", app_auth, "Auth API")
app.mount("/api/admin", app_admin, "Admin API")
app.mount("/api/driver", app_driver, "Driver API")


# Health check endpoint
@app.get("/health", tags=["Health Check"], response_model=schemas.HealthStatus)
async def health_check():
    return {"status": "OK", "version": API_VERSION}
