from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from sqlalchemy.orm.session import Session

from app.api.bearer import bearer_admin, bearer_driver
from app.src.db import Payment, Stop, sessionMaker
from app.src import exceptions, validators, getters
from app.src.enums import PaymentMethod
from app.src.loggers import logEvent
from app.src.functions import enumStr, fuseExceptionResponses
from app.src.delivery.stop_status import checkAttachments
from app.src.urls import URL_STOP_PAYMENT

route_admin = APIRouter()
route_driver = APIRouter()


## Output Schema
class PaymentSchema(BaseModel):
    id: int
    stop_id: int
    amount: Decimal
    method: int
    notes: Optional[str]
    created_on: datetime


class StopPaymentSchema(BaseModel):
    stop_id: int
    driver_payment_amount: Optional[Decimal]
    driver_payment_methods: int
    payment_flag_not_paid: bool
    payments: List[PaymentSchema]


## Input Forms
class PaymentEntry(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    method: PaymentMethod
    notes: str | None = Field(default=None, max_length=1024)


PaymentEntries = TypeAdapter(List[PaymentEntry])


class UpdateForm(BaseModel):
    id: int = Field(Form())
    payments: str | None = Field(
        Form(
            default=None,
            description='JSON list of payments, e.g. [{"amount": 12.5, "method": 1}]',
        )
    )
    amount: Decimal | None = Field(Form(max_digits=10, decimal_places=2, default=None))
    methods: List[PaymentMethod] | None = Field(
        Form(description=enumStr(PaymentMethod), default=None)
    )


## Query Parameters
class QueryParams(BaseModel):
    stop_id: int = Field(Query())


# Functions
def parsePayments(payments: str) -> List[PaymentEntry]:
    try:
        entries = PaymentEntries.validate_json(payments)
    except ValidationError:
        raise exceptions.InvalidPayment()
    if not entries:
        raise exceptions.InvalidPayment("At least one payment must be provided")
    return entries


def combineMethods(methods) -> int:
    combined = PaymentMethod(0)
    for method in methods:
        combined |= PaymentMethod(method)
    return int(combined)


def stopPayments(session: Session, stop: Stop) -> dict:
    payments = (
        session.query(Payment)
        .filter(Payment.stop_id == stop.id)
        .order_by(Payment.id.asc())
        .all()
    )
    return {
        "stop_id": stop.id,
        "driver_payment_amount": stop.driver_payment_amount,
        "driver_payment_methods": stop.driver_payment_methods,
        "payment_flag_not_paid": stop.payment_flag_not_paid,
        "payments": payments,
    }


def recordPayment(session: Session, stop: Stop, fParam: UpdateForm) -> None:
    """
    Replace the payment collected at a stop.

    Itemized `payments` take precedence. Otherwise `amount` and `methods`
    record a single total without itemization.
    """
    if fParam.payments is not None:
        entries = parsePayments(fParam.payments)
        rows = [
            Payment(stop_id=stop.id, amount=e.amount, method=e.method, notes=e.notes)
            for e in entries
        ]
        total = sum((e.amount for e in entries), Decimal("0"))
        methods = combineMethods(e.method for e in entries)
    elif fParam.amount is not None:
        if fParam.amount <= 0:
            raise exceptions.InvalidPayment("The amount must be greater than zero")
        if not fParam.methods:
            raise exceptions.MissingParameter(Stop.driver_payment_methods)
        rows = []
        total = fParam.amount
        methods = combineMethods(fParam.methods)
    else:
        raise exceptions.MissingParameter(Stop.driver_payment_amount)

    session.query(Payment).filter(Payment.stop_id == stop.id).delete(
        synchronize_session=False
    )
    session.add_all(rows)
    stop.driver_payment_amount = total
    stop.driver_payment_methods = methods
    stop.payment_flag_not_paid = False


## API endpoints [Admin]
@route_admin.get(
    URL_STOP_PAYMENT,
    tags=["Payment"],
    response_model=StopPaymentSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
        ]
    ),
    description="""
    Fetch the payment collected at a stop with its itemized entries.
    """,
)
async def fetch_stop_payment(qParam: QueryParams = Depends(), bearer=Depends(bearer_admin)):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.ADMIN_ROLES)

        stop = getters.stop(session, qParam.stop_id)
        if stop is None:
            raise exceptions.InvalidIdentifier()
        return stopPayments(session, stop)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


## API endpoints [Driver]
@route_driver.patch(
    URL_STOP_PAYMENT,
    tags=["Payment"],
    response_model=StopPaymentSchema,
    responses=fuseExceptionResponses(
        [
            exceptions.InvalidToken(),
            exceptions.NoPermission(),
            exceptions.InvalidIdentifier(),
            exceptions.NotAssigned(),
            exceptions.InvalidSideData(Stop.driver_payment_amount),
            exceptions.InvalidPayment(),
            exceptions.MissingParameter(Stop.driver_payment_amount),
        ]
    ),
    description="""
    Record the payment collected at an assigned stop.
    The stop must be ARRIVED or COMPLETED.
    Either send `payments`, a JSON list of entries with a positive amount and
    a single method each, or a total `amount` with one or more `methods`.
    The previous payment of the stop is replaced and the not-paid flag is cleared.
    """,
)
async def update_stop_payment(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_driver),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        validators.role(identity, validators.DRIVER_ROLES)
        driver = validators.activeUser(identity, session)

        _, stop = validators.stopAccess(driver, fParam.id, session)
        checkAttachments(stop, Stop.driver_payment_amount)
        recordPayment(session, stop, fParam)
        session.commit()
        session.refresh(stop)

        paymentData = jsonable_encoder(stopPayments(session, stop))
        logEvent(identity, request_info, paymentData)
        return paymentData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
