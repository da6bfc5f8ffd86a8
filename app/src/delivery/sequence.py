"""
Stop ordering within a route.

The sequence of the non deleted stops of a route is unique and starts at 1.
Every edit goes through this module so that the invariant is checked before
anything is written.
"""

from typing import Iterable, Sequence
from sqlalchemy.orm.session import Session

from app.src import exceptions
from app.src.db import Route, Stop, User
from app.src.delivery.assignment import driverKey


def nextSequence(stops: Iterable[Stop]) -> int:
    """Sequence for a stop appended to the route: the highest sequence plus one."""
    return max((s.sequence for s in stops), default=0) + 1


def sortStops(stops: Iterable[Stop]) -> list[Stop]:
    return sorted(stops, key=lambda s: (s.sequence, s.id))


def validateSequenceChange(stops: Iterable[Stop], stop: Stop, newSequence: int) -> None:
    """
    Validate a manual sequence edit of a single stop.

    Raises:
        exceptions.InvalidValue: If the sequence is not a positive number.
        exceptions.DuplicateSequence: If another stop of the route already uses it.
    """
    if newSequence < 1:
        raise exceptions.InvalidValue(Stop.sequence)
    for other in stops:
        if other.id != stop.id and other.sequence == newSequence:
            raise exceptions.DuplicateSequence()


def validateOrder(stops: Sequence[Stop], orderedIds: Sequence[int]) -> None:
    """
    The requested order must be a permutation of the route's stops.

    Raises:
        exceptions.InvalidSequenceOrder: On missing, unknown or repeated stop ids.
    """
    if len(orderedIds) != len(stops):
        raise exceptions.InvalidSequenceOrder()
    if set(orderedIds) != {s.id for s in stops}:
        raise exceptions.InvalidSequenceOrder()


def _assign(session: Session, orderedStops: Sequence[Stop]) -> list[Stop]:
    # Park every stop on a negative sequence first, otherwise the unique
    # index on (route_id, sequence) can reject an intermediate state
    if any(s.sequence != i for i, s in enumerate(orderedStops, start=1)):
        for i, s in enumerate(orderedStops, start=1):
            s.sequence = -i
        session.flush()
        for i, s in enumerate(orderedStops, start=1):
            s.sequence = i
    return list(orderedStops)


def reorder(session: Session, stops: Sequence[Stop], orderedIds: Sequence[int]):
    """Assign sequences 1..n following `orderedIds`."""
    validateOrder(stops, orderedIds)
    stopsById = {s.id: s for s in stops}
    return _assign(session, [stopsById[id] for id in orderedIds])


def renumber(session: Session, stops: Iterable[Stop]) -> list[Stop]:
    """Compact the sequences to 1..n keeping the current order."""
    return _assign(session, sortStops(stops))


def groupByDriver(
    route: Route, stops: Iterable[Stop], driversById: dict[int, User]
) -> dict[str, list[Stop]]:
    """
    Group the stops of a route by the driver they resolve to.
    Stops without any driver are grouped under an empty name.
    """
    groups: dict[str, list[Stop]] = {}
    for stop in sortStops(stops):
        groups.setdefault(driverKey(route, stop, driversById), []).append(stop)
    return groups
