import pytest

from app.src import exceptions, getters
from app.src.db import Stop
from app.src.delivery import sequence


@pytest.fixture
def route_stops(route_factory, stop_factory):
    route = route_factory()
    for i in (1, 2, 5):
        stop_factory(route_id=route.id, sequence=i)
    return route


def test_next_sequence_follows_the_highest():
    assert sequence.nextSequence([]) == 1
    assert sequence.nextSequence([Stop(sequence=2), Stop(sequence=7)]) == 8


def test_sequence_change_is_validated():
    stops = [Stop(id=1, sequence=1), Stop(id=2, sequence=2)]
    with pytest.raises(exceptions.InvalidValue):
        sequence.validateSequenceChange(stops, stops[0], 0)
    with pytest.raises(exceptions.DuplicateSequence):
        sequence.validateSequenceChange(stops, stops[0], 2)
    sequence.validateSequenceChange(stops, stops[0], 3)


def test_reorder_assigns_consecutive_sequences(session, route_stops):
    stops = getters.routeStops(session, route_stops.id)
    ids = [s.id for s in stops]
    sequence.reorder(session, stops, list(reversed(ids)))
    session.commit()

    reordered = getters.routeStops(session, route_stops.id)
    assert [s.id for s in reordered] == list(reversed(ids))
    assert [s.sequence for s in reordered] == [1, 2, 3]


@pytest.mark.parametrize("change", ["missing", "unknown", "repeated"])
def test_reorder_rejects_anything_but_a_permutation(session, route_stops, change):
    stops = getters.routeStops(session, route_stops.id)
    ids = [s.id for s in stops]
    if change == "missing":
        ids = ids[:-1]
    elif change == "unknown":
        ids[-1] = 9999
    else:
        ids[-1] = ids[0]
    with pytest.raises(exceptions.InvalidSequenceOrder):
        sequence.reorder(session, stops, ids)
    assert [s.sequence for s in stops] == [1, 2, 5]


def test_renumber_closes_gaps(session, route_stops):
    stops = getters.routeStops(session, route_stops.id)
    sequence.renumber(session, stops)
    session.commit()
    assert [s.sequence for s in getters.routeStops(session, route_stops.id)] == [1, 2, 3]
