"""
Stop status lifecycle.

    PENDING -> ON_THE_WAY -> ARRIVED -> COMPLETED
       \____________\___________\______> FAILED

COMPLETED and FAILED are terminal. In `strict` mode only the transitions
above are accepted. In `permissive` mode any change is accepted except
leaving a terminal state. An administrator override may always reset a
stop back to PENDING.

Each transition is a single update of the stop row. Two devices moving the
same stop at the same time are not serialized, the last write wins.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.orm.session import Session

from app.src import exceptions
from app.src.db import Route, Stop
from app.src.enums import RouteStatus, StopStatus
from app.src.constants import STOP_TRANSITION_MODE
from app.src.functions import isValidTransition

STRICT = "strict"
PERMISSIVE = "permissive"

STOP_STATUS_TRANSITION = {
    StopStatus.PENDING: [StopStatus.ON_THE_WAY, StopStatus.FAILED],
    StopStatus.ON_THE_WAY: [StopStatus.ARRIVED, StopStatus.FAILED],
    StopStatus.ARRIVED: [StopStatus.COMPLETED, StopStatus.FAILED],
    StopStatus.COMPLETED: [],
    StopStatus.FAILED: [],
}

TERMINAL_STATUSES = (StopStatus.COMPLETED, StopStatus.FAILED)

# Proof images and payment can only be attached once the driver is at the customer
ATTACHMENT_STATUSES = (StopStatus.ARRIVED, StopStatus.COMPLETED)

# Timestamp column recorded when a stop enters a status
STATUS_TIMESTAMP = {
    StopStatus.ON_THE_WAY: Stop.on_the_way_at.key,
    StopStatus.ARRIVED: Stop.arrived_at.key,
    StopStatus.COMPLETED: Stop.completed_at.key,
}


@dataclass
class StatusEvent:
    route_id: int
    status: int
    stop_id: int | None = None

    @property
    def isRouteEvent(self) -> bool:
        return self.stop_id is None


def isTerminal(status: int) -> bool:
    return status in TERMINAL_STATUSES


def isAllowed(
    oldStatus: int, newStatus: int, mode: str = STOP_TRANSITION_MODE, override=False
) -> bool:
    """
    Check whether a stop may move from `oldStatus` to `newStatus`.

    Args:
        oldStatus (int): Current status of the stop.
        newStatus (int): Requested status.
        mode (str): `strict` or `permissive`.
        override (bool): Administrator override, allows resetting to PENDING.
    """
    if oldStatus == newStatus:
        return True
    if override and newStatus == StopStatus.PENDING:
        return True
    if mode == PERMISSIVE:
        return not isTerminal(oldStatus)
    return isValidTransition(STOP_STATUS_TRANSITION, oldStatus, newStatus)


def acceptsAttachments(status: int) -> bool:
    return status in ATTACHMENT_STATUSES


def checkAttachments(stop: Stop, column) -> None:
    """Raise `InvalidSideData` unless images or payment may be recorded on the stop."""
    if not acceptsAttachments(stop.status):
        raise exceptions.InvalidSideData(column)


def applyStopStatus(
    session: Session,
    route: Route,
    stop: Stop,
    newStatus: StopStatus,
    now: datetime | None = None,
    mode: str = STOP_TRANSITION_MODE,
    override: bool = False,
) -> list[StatusEvent]:
    """
    Move a stop to a new status and apply the effects on its route.

    Effects:
        - The status timestamp of the stop is recorded.
        - The first stop going ON_THE_WAY starts a PENDING route.
        - When a stop is COMPLETED the next PENDING stop (by sequence) goes ON_THE_WAY.
        - When every stop of the route is terminal the route is COMPLETED.
        - Resetting a stop to PENDING clears its timestamps and reopens a completed route.

    Changes are left in the session, the caller commits.

    Returns:
        list[StatusEvent]: Status changes to broadcast, in the order they happened.

    Raises:
        exceptions.InvalidStateTransition: If the transition is not allowed.
    """
    if not isAllowed(stop.status, newStatus, mode, override):
        raise exceptions.InvalidStateTransition(Stop.status)
    if stop.status == newStatus:
        return []
    if now is None:
        now = datetime.now(timezone.utc)

    events = []
    stop.status = newStatus
    if newStatus in STATUS_TIMESTAMP:
        setattr(stop, STATUS_TIMESTAMP[newStatus], now)
    if newStatus == StopStatus.PENDING:
        stop.on_the_way_at = None
        stop.arrived_at = None
        stop.completed_at = None
        stop.failure_reason = None
    events.append(StatusEvent(route.id, newStatus, stop.id))

    if newStatus == StopStatus.ON_THE_WAY and route.status == RouteStatus.PENDING:
        route.status = RouteStatus.IN_PROGRESS
        events.append(StatusEvent(route.id, route.status))

    if newStatus == StopStatus.PENDING and route.status == RouteStatus.COMPLETED:
        route.status = RouteStatus.IN_PROGRESS
        events.append(StatusEvent(route.id, route.status))

    if isTerminal(newStatus):
        siblings = (
            session.query(Stop)
            .filter(Stop.route_id == route.id)
            .filter(Stop.is_deleted == False)
            .filter(Stop.id != stop.id)
            .order_by(Stop.sequence.asc())
            .all()
        )
        remaining = [s for s in siblings if not isTerminal(s.status)]
        if not remaining:
            if route.status != RouteStatus.COMPLETED:
                route.status = RouteStatus.COMPLETED
                events.append(StatusEvent(route.id, route.status))
        elif newStatus == StopStatus.COMPLETED:
            nextStop = next(
                (
                    s
                    for s in remaining
                    if s.sequence > stop.sequence and s.status == StopStatus.PENDING
                ),
                None,
            )
            if nextStop is not None:
                nextStop.status = StopStatus.ON_THE_WAY
                nextStop.on_the_way_at = now
                events.append(StatusEvent(route.id, nextStop.status, nextStop.id))
    return events
