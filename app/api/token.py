from datetime import datetime
from fastapi import APIRouter, Depends, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.api.bearer import bearer_auth
from app.api.account import AccountSchema
from app.src.constants import CSRF_TOKEN_VALIDITY, LOGIN_TOKEN_VALIDITY
from app.src.db import User, sessionMaker
from app.src import argon2, exceptions, validators, getters
from app.src.csrf import csrfTokens
from app.src.jwt import createToken, refreshValidity
from app.src.loggers import logEvent
from app.src.schemas import Identity
from app.src.functions import fuseExceptionResponses
from app.src.urls import URL_CSRF_TOKEN, URL_TOKEN

route_auth = APIRouter()


## Output Schema
class TokenSchema(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime
    user: AccountSchema


class CSRFTokenSchema(BaseModel):
    csrf_token: str
    expires_in: int


## Input Forms
class CreateForm(BaseModel):
    username: str = Field(Form(max_length=32))
    password: str = Field(Form(max_length=32))


# Functions
def issueToken(user: User, validity: int) -> dict:
    identity = Identity(id=user.id, username=user.username, role=user.role)
    accessToken, expiresAt = createToken(identity, validity)
    return {
        "access_token": accessToken,
        "token_type": "bearer",
        "expires_in": validity,
        "expires_at": expiresAt,
        "user": jsonable_encoder(user, exclude={"password"}),
    }


## API endpoints [Auth]
@route_auth.post(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenSchema,
    status_code=status.HTTP_201_CREATED,
    responses=fuseExceptionResponses([exceptions.InvalidCredentials()]),
    description="""
    Sign in with username and password.
    Returns a signed bearer token valid for 8 hours, carrying the user id, username and role.
    Deleted accounts cannot sign in.
    """,
)
async def create_token(
    fParam: CreateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        user = (
            session.query(User)
            .filter(User.username == fParam.username)
            .filter(User.is_deleted == False)
            .first()
        )
        if user is None:
            raise exceptions.InvalidCredentials()
        if not argon2.checkPassword(fParam.password, user.password):
            raise exceptions.InvalidCredentials()
        if argon2.needsRehash(user.password):
            user.password = argon2.makePassword(fParam.password)
            session.commit()
            session.refresh(user)

        tokenData = issueToken(user, LOGIN_TOKEN_VALIDITY)
        identity = Identity(id=user.id, username=user.username, role=user.role)
        logEvent(identity, request_info, {"expires_at": tokenData["expires_at"]})
        return tokenData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_auth.patch(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenSchema,
    responses=fuseExceptionResponses([exceptions.InvalidToken()]),
    description="""
    Exchange a valid token for a new one.
    Drivers receive a token valid for 12 hours, every other role 2 hours.
    The role and username are read again from the account, deleted accounts are rejected.
    """,
)
async def refresh_token(
    bearer=Depends(bearer_auth),
    request_info=Depends(getters.requestInfo),
):
    session = sessionMaker()
    try:
        identity = validators.token(bearer)
        user = validators.activeUser(identity, session)

        tokenData = issueToken(user, refreshValidity(user.role))
        logEvent(identity, request_info, {"expires_at": tokenData["expires_at"]})
        return tokenData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_auth.get(
    URL_CSRF_TOKEN,
    tags=["Token"],
    response_model=CSRFTokenSchema,
    responses=fuseExceptionResponses(
        [exceptions.InvalidToken(), exceptions.RedisDBError("Redis unavailable")]
    ),
    description="""
    Issue a CSRF token for the signed in user, valid for one hour.
    When CSRF protection is enabled, mutating requests must send it in the
    `X-CSRF-Token` header together with the user id in `X-User-Id`.
    """,
)
async def fetch_csrf_token(bearer=Depends(bearer_auth)):
    try:
        identity = validators.token(bearer)
        return {
            "csrf_token": csrfTokens.issue(identity.id),
            "expires_in": CSRF_TOKEN_VALIDITY,
        }
    except Exception as e:
        exceptions.handle(e)
