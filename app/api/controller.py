from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.api import (
    token,
    account,
    route,
    stop,
    payment,
    stop_image,
    stop_note,
    stop_return,
    product,
    customer,
    customer_document,
    safety_declaration,
    system_document,
    vehicle,
    vehicle_assignment,
    location,
    attendance,
    metrics,
    kpi,
)
from app.src.enums import AppID


# ------------------------------------------------------
# Error payload: {"message": ...}
# ------------------------------------------------------
async def httpExceptionHandler(request: Request, e: HTTPException):
    return JSONResponse(
        status_code=e.status_code,
        content={"message": jsonable_encoder(e.detail)},
        headers=getattr(e, "headers", None),
    )


async def validationExceptionHandler(request: Request, e: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": jsonable_encoder(e.errors())},
        headers={"X-Error": "RequestValidationError"},
    )


async def unexpectedExceptionHandler(request: Request, e: Exception):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


def createApp(title: str, appID: AppID) -> FastAPI:
    app = FastAPI(title=title)
    app.state.id = appID
    app.add_exception_handler(HTTPException, httpExceptionHandler)
    app.add_exception_handler(RequestValidationError, validationExceptionHandler)
    app.add_exception_handler(Exception, unexpectedExceptionHandler)
    return app


# ------------------------------------------------------
# Create separate FastAPI apps for each user domain
# ------------------------------------------------------
app_auth = createApp("Auth APP", AppID.AUTH)
app_admin = createApp("Admin APP", AppID.ADMIN)
app_driver = createApp("Driver APP", AppID.DRIVER)


# ------------------------------------------------------
# Auth routers
# ------------------------------------------------------
app_auth.include_router(token.route_auth)


# ------------------------------------------------------
# Admin routers
# ------------------------------------------------------
app_admin.include_router(account.route_admin)
app_admin.include_router(route.route_admin)
app_admin.include_router(stop.route_admin)
app_admin.include_router(payment.route_admin)
app_admin.include_router(stop_image.route_admin)
app_admin.include_router(stop_note.route_admin)
app_admin.include_router(stop_return.route_admin)
app_admin.include_router(product.route_admin)
app_admin.include_router(customer.route_admin)
app_admin.include_router(customer_document.route_admin)
app_admin.include_router(safety_declaration.route_admin)
app_admin.include_router(system_document.route_admin)
app_admin.include_router(vehicle.route_admin)
app_admin.include_router(vehicle_assignment.route_admin)
app_admin.include_router(location.route_admin)
app_admin.include_router(attendance.route_admin)
app_admin.include_router(metrics.route_admin)
app_admin.include_router(kpi.route_admin)


# ------------------------------------------------------
# Driver routers
# ------------------------------------------------------
app_driver.include_router(account.route_driver)
app_driver.include_router(route.route_driver)
app_driver.include_router(stop.route_driver)
app_driver.include_router(payment.route_driver)
app_driver.include_router(stop_image.route_driver)
app_driver.include_router(stop_note.route_driver)
app_driver.include_router(stop_return.route_driver)
app_driver.include_router(product.route_driver)
app_driver.include_router(customer_document.route_driver)
app_driver.include_router(safety_declaration.route_driver)
app_driver.include_router(system_document.route_driver)
app_driver.include_router(vehicle_assignment.route_driver)
app_driver.include_router(location.route_driver)
app_driver.include_router(attendance.route_driver)
