from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.src import exceptions
from app.src.constants import JWT_ALGORITHM, JWT_AUDIENCE, JWT_ISSUER
from app.src.enums import UserRole
from app.src.jwt import createToken, refreshValidity, verifyToken
from app.src.schemas import Identity
from conftest import PASSWORD, authHeader


def test_token_round_trip_carries_identity():
    identity = Identity(id=7, username="john", role=UserRole.DRIVER)
    token, expiresAt = createToken(identity)
    assert verifyToken(token) == identity
    remaining = expiresAt - datetime.now(timezone.utc)
    assert timedelta(hours=7, minutes=59) < remaining <= timedelta(hours=8)


def test_refresh_validity_depends_on_role():
    assert refreshValidity(UserRole.DRIVER) == 12 * 60 * 60
    assert refreshValidity(UserRole.ADMIN) == 2 * 60 * 60
    assert refreshValidity(UserRole.SUPER_ADMIN) == 2 * 60 * 60


def test_expired_token_is_rejected():
    identity = Identity(id=1, username="admin", role=UserRole.ADMIN)
    issuedAt = datetime.now(timezone.utc) - timedelta(hours=9)
    token, _ = createToken(identity, issuedAt=issuedAt)
    with pytest.raises(exceptions.InvalidToken):
        verifyToken(token)


@pytest.mark.parametrize("token", [None, "", "not-a-token"])
def test_malformed_token_is_rejected(token):
    with pytest.raises(exceptions.InvalidToken):
        verifyToken(token)


def test_token_signed_with_another_key_is_rejected():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "id": 1,
            "username": "admin",
            "role": "ADMIN",
            "iat": now,
            "exp": now + timedelta(hours=1),
            "iss": JWT_ISSUER,
            "aud": JWT_AUDIENCE,
        },
        "another-secret",
        algorithm=JWT_ALGORITHM,
    )
    with pytest.raises(exceptions.InvalidToken):
        verifyToken(token)


def test_login_and_refresh(client, driver):
    response = client.post(
        "/api/auth/token", data={"username": "john", "password": PASSWORD}
    )
    assert response.status_code == 201
    body = response.json()
    assert body["expires_in"] == 8 * 60 * 60
    assert body["user"]["username"] == "john"
    assert "password" not in body["user"]

    header = {"Authorization": f"Bearer {body['access_token']}"}
    response = client.patch("/api/auth/token", headers=header)
    assert response.status_code == 200
    assert response.json()["expires_in"] == 12 * 60 * 60


def test_login_with_wrong_password(client, driver):
    response = client.post(
        "/api/auth/token", data={"username": "john", "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.headers["X-Error"] == "InvalidCredentials"


def test_deleted_account_cannot_sign_in_or_refresh(client, user_factory):
    user = user_factory(username="gone", is_deleted=True)
    response = client.post(
        "/api/auth/token", data={"username": "gone", "password": PASSWORD}
    )
    assert response.status_code == 401

    response = client.patch("/api/auth/token", headers=authHeader(user))
    assert response.status_code == 401
    assert response.headers["X-Error"] == "InvalidToken"


def test_missing_bearer_is_unauthorized(client):
    response = client.get("/api/admin/route")
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid token"}
