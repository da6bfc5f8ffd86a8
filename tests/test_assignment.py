from app.src.db import Route, Stop, User
from app.src.delivery.assignment import (
    DirectDriverId,
    NameHint,
    canAccessRoute,
    canAccessStop,
    driverKey,
    stopAssignments,
)
from app.src.delivery.sequence import groupByDriver

john = User(id=1, username="john", full_name="John Carter")
maria = User(id=2, username="maria", full_name="Maria Lopez")


def test_direct_owner_reaches_every_stop():
    route = Route(id=10, driver_id=john.id)
    stop = Stop(id=100, route_id=10, sequence=1)
    assert canAccessStop(john, route, stop)
    assert not canAccessStop(maria, route, stop)


def test_name_hint_matches_username_or_full_name_ignoring_case():
    route = Route(id=10, driver_id=None)
    assert canAccessStop(john, route, Stop(driver_name_from_upload="  john carter "))
    assert canAccessStop(john, route, Stop(driver_name_from_upload="JOHN"))
    assert not canAccessStop(john, route, Stop(driver_name_from_upload="Johnny"))


def test_both_assignment_paths_are_honoured():
    route = Route(id=10, driver_id=john.id)
    stop = Stop(driver_name_from_upload="Maria Lopez")
    assert list(stopAssignments(route, stop)) == [
        DirectDriverId(john.id),
        NameHint("Maria Lopez"),
    ]
    assert canAccessStop(john, route, stop)
    assert canAccessStop(maria, route, stop)


def test_blank_name_hint_matches_nobody():
    route = Route(id=10, driver_id=None)
    nameless = User(id=3, username="x", full_name=None)
    assert not canAccessStop(nameless, route, Stop(driver_name_from_upload="   "))
    assert list(stopAssignments(route, Stop(driver_name_from_upload=""))) == []


def test_route_access_through_any_stop():
    route = Route(id=10, driver_id=None)
    stops = [
        Stop(id=1, driver_name_from_upload="someone else"),
        Stop(id=2, driver_name_from_upload="maria"),
    ]
    assert canAccessRoute(maria, route, stops)
    assert not canAccessRoute(john, route, stops)
    assert not canAccessRoute(john, route, [])


def test_group_by_driver_prefers_the_direct_owner():
    route = Route(id=10, driver_id=None)
    stops = [
        Stop(id=3, sequence=3, driver_name_from_upload="Maria Lopez"),
        Stop(id=1, sequence=1, driver_name_from_upload=" John Carter "),
        Stop(id=2, sequence=2, driver_name_from_upload=None),
    ]
    groups = groupByDriver(route, stops, {})
    assert [s.id for s in groups["John Carter"]] == [1]
    assert [s.id for s in groups["Maria Lopez"]] == [3]
    assert [s.id for s in groups[""]] == [2]

    owned = Route(id=11, driver_id=john.id)
    assert driverKey(owned, stops[0], {john.id: john}) == "John Carter"
