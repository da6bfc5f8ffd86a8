import pytest

from app.src import exceptions
from app.src.db import Stop
from app.src.enums import RouteStatus, StopStatus
from app.src.delivery.stop_status import (
    PERMISSIVE,
    STRICT,
    applyStopStatus,
    checkAttachments,
    isAllowed,
)


@pytest.fixture
def route_with_stops(route_factory, stop_factory):
    route = route_factory()
    stops = [stop_factory(route_id=route.id, sequence=i) for i in (1, 2, 3)]
    return route, stops


def load(session, route, stops):
    route = session.merge(route)
    return route, [session.merge(s) for s in stops]


@pytest.mark.parametrize(
    "old, new, allowed",
    [
        (StopStatus.PENDING, StopStatus.ON_THE_WAY, True),
        (StopStatus.ON_THE_WAY, StopStatus.ARRIVED, True),
        (StopStatus.ARRIVED, StopStatus.COMPLETED, True),
        (StopStatus.ARRIVED, StopStatus.FAILED, True),
        (StopStatus.PENDING, StopStatus.COMPLETED, False),
        (StopStatus.COMPLETED, StopStatus.ARRIVED, False),
        (StopStatus.FAILED, StopStatus.PENDING, False),
    ],
)
def test_strict_transitions(old, new, allowed):
    assert isAllowed(old, new, STRICT) is allowed


def test_permissive_mode_only_protects_terminal_statuses():
    assert isAllowed(StopStatus.PENDING, StopStatus.COMPLETED, PERMISSIVE)
    assert isAllowed(StopStatus.ARRIVED, StopStatus.ON_THE_WAY, PERMISSIVE)
    assert not isAllowed(StopStatus.COMPLETED, StopStatus.ARRIVED, PERMISSIVE)


def test_override_resets_a_terminal_stop():
    assert not isAllowed(StopStatus.COMPLETED, StopStatus.PENDING, STRICT)
    assert isAllowed(StopStatus.COMPLETED, StopStatus.PENDING, STRICT, override=True)


def test_first_stop_on_the_way_starts_the_route(session, route_with_stops):
    route, stops = load(session, *route_with_stops)
    statusEvents = applyStopStatus(session, route, stops[0], StopStatus.ON_THE_WAY)
    assert route.status == RouteStatus.IN_PROGRESS
    assert stops[0].on_the_way_at is not None
    assert [(e.stop_id, e.status) for e in statusEvents] == [
        (stops[0].id, StopStatus.ON_THE_WAY),
        (None, RouteStatus.IN_PROGRESS),
    ]


def test_completing_a_stop_sends_the_next_one_on_the_way(session, route_with_stops):
    route, stops = load(session, *route_with_stops)
    stops[0].status = StopStatus.ARRIVED
    route.status = RouteStatus.IN_PROGRESS
    session.commit()

    statusEvents = applyStopStatus(session, route, stops[0], StopStatus.COMPLETED)
    assert stops[0].completed_at is not None
    assert stops[1].status == StopStatus.ON_THE_WAY
    assert stops[2].status == StopStatus.PENDING
    assert statusEvents[-1].stop_id == stops[1].id


def test_last_terminal_stop_completes_the_route(session, route_with_stops):
    route, stops = load(session, *route_with_stops)
    route.status = RouteStatus.IN_PROGRESS
    stops[0].status = StopStatus.COMPLETED
    stops[1].status = StopStatus.FAILED
    stops[2].status = StopStatus.ON_THE_WAY
    session.commit()

    statusEvents = applyStopStatus(session, route, stops[2], StopStatus.FAILED)
    assert route.status == RouteStatus.COMPLETED
    assert statusEvents[-1].isRouteEvent

    # Reopening a stop reopens the route
    applyStopStatus(session, route, stops[2], StopStatus.PENDING, override=True)
    assert route.status == RouteStatus.IN_PROGRESS
    assert stops[2].failure_reason is None
    assert stops[2].on_the_way_at is None


def test_invalid_transition_changes_nothing(session, route_with_stops):
    route, stops = load(session, *route_with_stops)
    with pytest.raises(exceptions.InvalidStateTransition):
        applyStopStatus(session, route, stops[0], StopStatus.COMPLETED, mode=STRICT)
    assert stops[0].status == StopStatus.PENDING
    assert route.status == RouteStatus.PENDING


def test_same_status_is_a_no_op(session, route_with_stops):
    route, stops = load(session, *route_with_stops)
    assert applyStopStatus(session, route, stops[0], StopStatus.PENDING) == []


def test_attachments_need_an_arrived_or_completed_stop():
    with pytest.raises(exceptions.InvalidSideData):
        checkAttachments(Stop(status=StopStatus.ON_THE_WAY), Stop.status)
    checkAttachments(Stop(status=StopStatus.ARRIVED), Stop.status)
    checkAttachments(Stop(status=StopStatus.COMPLETED), Stop.status)
