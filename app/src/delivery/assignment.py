"""
Driver assignment resolution.

A stop reaches its driver in one of two ways: the route is owned directly by
the driver (`Route.driver_id`), or the stop carries the driver name that was
printed on the uploaded load sheet (`Stop.driver_name_from_upload`). Every
driver scoped operation resolves access through this module so that both
paths are always honoured together.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Union
from sqlalchemy import and_, exists, func, or_
from sqlalchemy.sql.elements import ColumnElement

from app.src.db import Route, Stop, User
from app.src.functions import normalizeName


@dataclass(frozen=True)
class DirectDriverId:
    driver_id: int


@dataclass(frozen=True)
class NameHint:
    name: str


Assignment = Union[DirectDriverId, NameHint]


def stopAssignments(route: Route, stop: Stop) -> Iterator[Assignment]:
    """Yield the assignments of a stop, the direct owner first."""
    if route.driver_id is not None:
        yield DirectDriverId(route.driver_id)
    if normalizeName(stop.driver_name_from_upload):
        yield NameHint(stop.driver_name_from_upload)


def matches(assignment: Assignment, driver: User) -> bool:
    if isinstance(assignment, DirectDriverId):
        return assignment.driver_id == driver.id
    hint = normalizeName(assignment.name)
    return hint != "" and hint in (
        normalizeName(driver.username),
        normalizeName(driver.full_name),
    )


def canAccessStop(driver: User, route: Route, stop: Stop) -> bool:
    return any(matches(a, driver) for a in stopAssignments(route, stop))


def canAccessRoute(driver: User, route: Route, stops: Iterable[Stop]) -> bool:
    """
    A driver can access a route they own directly or that holds
    at least one stop carrying their name.
    """
    if route.driver_id is not None and route.driver_id == driver.id:
        return True
    return any(canAccessStop(driver, route, stop) for stop in stops)


def driverKey(route: Route, stop: Stop, driversById: dict[int, User]) -> str:
    """Display name of the driver a stop resolves to, used to group stops."""
    if route.driver_id is not None and route.driver_id in driversById:
        driver = driversById[route.driver_id]
        return driver.full_name or driver.username
    if normalizeName(stop.driver_name_from_upload):
        return stop.driver_name_from_upload.strip()
    return ""


# ---------------------------------------------------------------------------
# SQL equivalents, used by listing queries
# ---------------------------------------------------------------------------
def _nameHintClause(driver: User) -> ColumnElement:
    names = {normalizeName(driver.username), normalizeName(driver.full_name)}
    names.discard("")
    hint = func.lower(func.trim(Stop.driver_name_from_upload))
    return hint.in_(sorted(names))


def assignedStopClause(driver: User) -> ColumnElement:
    """Filter for stops assigned to the driver. The query must join Route."""
    return or_(Route.driver_id == driver.id, _nameHintClause(driver))


def assignedRouteClause(driver: User) -> ColumnElement:
    """Filter for routes assigned to the driver."""
    return or_(
        Route.driver_id == driver.id,
        exists().where(
            and_(
                Stop.route_id == Route.id,
                Stop.is_deleted == False,
                _nameHintClause(driver),
            )
        ),
    )
