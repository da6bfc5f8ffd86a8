from datetime import datetime, timedelta, timezone
import jwt
from jwt.exceptions import InvalidTokenError

from app.src import exceptions
from app.src.schemas import Identity
from app.src.enums import UserRole
from app.src.constants import (
    JWT_ALGORITHM,
    JWT_AUDIENCE,
    JWT_ISSUER,
    JWT_SECRET,
    LOGIN_TOKEN_VALIDITY,
    DRIVER_REFRESH_TOKEN_VALIDITY,
    REFRESH_TOKEN_VALIDITY,
)


def refreshValidity(role: int) -> int:
    """
    Lifetime (in seconds) of a refreshed token.

    Drivers on a route keep a longer session than back office users.
    """
    if role == UserRole.DRIVER:
        return DRIVER_REFRESH_TOKEN_VALIDITY
    return REFRESH_TOKEN_VALIDITY


def createToken(
    identity: Identity,
    validity: int = LOGIN_TOKEN_VALIDITY,
    issuedAt: datetime | None = None,
) -> tuple[str, datetime]:
    """
    Sign a bearer token for the given identity.

    Args:
        identity (Identity): The user the token is issued to.
        validity (int): Lifetime of the token in seconds. Defaults to the login lifetime.
        issuedAt (datetime, optional): Issue time. Defaults to now.

    Returns:
        tuple[str, datetime]: The encoded token and its expiry time.
    """
    if issuedAt is None:
        issuedAt = datetime.now(timezone.utc)
    expiresAt = issuedAt + timedelta(seconds=validity)
    payload = {
        "id": identity.id,
        "username": identity.username,
        "role": UserRole(identity.role).name,
        "iat": issuedAt,
        "exp": expiresAt,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
    }
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token, expiresAt


def verifyToken(token: str | None) -> Identity:
    """
    Decode and validate a bearer token.

    Pure function, the database is not consulted.

    Raises:
        exceptions.InvalidToken: If the token is missing, malformed, expired,
            signed with another key, issued by someone else or lacks the identity claims.
    """
    if not token:
        raise exceptions.InvalidToken()
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"require": ["exp", "iat", "iss", "aud"]},
        )
        return Identity(
            id=int(payload["id"]),
            username=str(payload["username"]),
            role=UserRole[payload["role"]],
        )
    except (InvalidTokenError, KeyError, TypeError, ValueError):
        raise exceptions.InvalidToken()
