"""
Validation and permission checks for the Dispatch API.

This module centralizes guard logic such as:
- Token validation
- Role-based permission checks
- Driver assignment checks for driver scoped resources
- State transition enforcement

All functions raise appropriate exceptions from `app.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from typing import Any, Iterable
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import Column
from sqlalchemy.orm.session import Session

from app.src import exceptions, getters
from app.src.db import Route, Stop, User
from app.src.enums import UserRole
from app.src.jwt import verifyToken
from app.src.schemas import Identity
from app.src.functions import containsEmail, isValidTransition
from app.src.delivery.assignment import canAccessRoute, canAccessStop

ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)
DRIVER_ROLES = (UserRole.DRIVER,)
SUPER_ADMIN_ROLES = (UserRole.SUPER_ADMIN,)


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------
def token(bearer: HTTPAuthorizationCredentials | None) -> Identity:
    """
    Validate the bearer credentials of a request.

    Raises:
        exceptions.InvalidToken: If the header is missing or the token is not valid.
    """
    if bearer is None:
        raise exceptions.InvalidToken()
    return verifyToken(bearer.credentials)


def activeUser(identity: Identity, session: Session) -> User:
    """
    Load the account behind a token. A token of a deleted account is rejected.
    """
    user = getters.user(session, identity.id)
    if user is None:
        raise exceptions.InvalidToken()
    return user


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------
def role(identity: Identity, allowed: Iterable[UserRole]) -> bool:
    """
    Validate that the identity carries one of the allowed roles.

    Raises:
        exceptions.NoPermission: If the role is not in the allow list.
    """
    if identity.role in tuple(allowed):
        return True
    raise exceptions.NoPermission()


def manageAccount(identity: Identity, targetRole: int) -> bool:
    """
    Administrators manage driver accounts. Only a super administrator may
    manage administrator accounts.
    """
    role(identity, ADMIN_ROLES)
    if targetRole != UserRole.DRIVER and identity.role != UserRole.SUPER_ADMIN:
        raise exceptions.NoPermission()
    return True


# ---------------------------------------------------------------------------
# Driver assignment
# ---------------------------------------------------------------------------
def routeAccess(driver: User, route_id: int, session: Session) -> Route:
    """
    Load a route for a driver.

    Raises:
        exceptions.InvalidIdentifier: If the route does not exist or is deleted.
        exceptions.NotAssigned: If the route is not assigned to the driver.
    """
    route = getters.route(session, route_id)
    if route is None:
        raise exceptions.InvalidIdentifier()
    if not canAccessRoute(driver, route, getters.routeStops(session, route.id)):
        raise exceptions.NotAssigned()
    return route


def stopAccess(driver: User, stop_id: int, session: Session) -> tuple[Route, Stop]:
    """
    Load a stop and its route for a driver.

    Raises:
        exceptions.InvalidIdentifier: If the stop or its route does not exist or is deleted.
        exceptions.NotAssigned: If the stop is not assigned to the driver.
    """
    stop = getters.stop(session, stop_id)
    if stop is None:
        raise exceptions.InvalidIdentifier()
    route = getters.route(session, stop.route_id)
    if not canAccessStop(driver, route, stop):
        raise exceptions.NotAssigned()
    return route, stop


# ---------------------------------------------------------------------------
# Other validations
# ---------------------------------------------------------------------------
def stateTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any, state: Column
) -> bool:
    """
    Validate whether a state transition is allowed.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.
        state (Column): SQLAlchemy column representing the state
            (used to format error messages).

    Raises:
        exceptions.InvalidStateTransition: If the transition is not permitted.
    """
    if not isValidTransition(transitions, old_state, new_state):
        raise exceptions.InvalidStateTransition(state)
    return True


def customerName(name: str | None) -> bool:
    """
    Raises:
        exceptions.EmailInCustomerName: If the name contains an email address.
    """
    if containsEmail(name):
        raise exceptions.EmailInCustomerName()
    return True
