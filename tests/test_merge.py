import pytest

from app.src.db import Customer, CustomerDocument, Stop
from app.src.enums import MergePolicy
from app.src.delivery import merge


@pytest.fixture
def duplicates(customer_factory, route_factory, stop_factory):
    oldest = customer_factory(name="Corner Market", address="12 Harbor Street")
    middle = customer_factory(name="Corner Market", address=None)
    newest = customer_factory(name="Corner Market", address="  ")
    customer_factory(name="Green Grocers")
    route = route_factory()
    for i, customer in enumerate((oldest, middle, middle, newest), start=1):
        stop_factory(route_id=route.id, customer_id=customer.id, sequence=i)
    return oldest, middle, newest


def addDocument(session, customer):
    session.add(
        CustomerDocument(
            customer_id=customer.id,
            title="Contract",
            file_name="contract.pdf",
            file_type="application/pdf",
            file_size=4,
        )
    )
    session.commit()


def test_primary_selection_policies(session, duplicates):
    oldest, middle, newest = duplicates
    assert merge.planMerge(session, "Corner Market").primary.id == oldest.id
    plan = merge.planMerge(session, "Corner Market", MergePolicy.OLDEST)
    assert plan.primary.id == oldest.id
    plan = merge.planMerge(session, "Corner Market", MergePolicy.MOST_STOPS)
    assert plan.primary.id == middle.id
    assert sorted(plan.duplicateIds) == sorted([oldest.id, newest.id])


def test_dry_run_counts_match_the_merge(session, duplicates):
    oldest, middle, newest = duplicates
    addDocument(session, middle)

    plan = merge.planMerge(session, "Corner Market")
    assert (plan.stops_to_move, plan.documents_to_move) == (3, 1)
    assert session.query(Stop).filter(Stop.customer_id == oldest.id).count() == 1

    result = merge.executeMerge(session, plan)
    session.commit()
    assert result.stops_moved == plan.stops_to_move
    assert result.documents_moved == plan.documents_to_move
    assert result.duplicates_removed == 2
    assert session.query(Stop).filter(Stop.customer_id == oldest.id).count() == 4
    remaining = (
        session.query(Customer)
        .filter(Customer.name == "Corner Market")
        .filter(Customer.is_deleted == False)
        .all()
    )
    assert [c.id for c in remaining] == [oldest.id]


def test_merge_is_idempotent(session, duplicates):
    merge.executeMerge(session, merge.planMerge(session, "Corner Market"))
    session.commit()

    plan = merge.planMerge(session, "Corner Market")
    result = merge.executeMerge(session, plan)
    assert plan.duplicates == []
    assert (result.stops_moved, result.documents_moved, result.duplicates_removed) == (
        0,
        0,
        0,
    )


def test_unknown_name_has_nothing_to_merge(session, duplicates):
    plan = merge.planMerge(session, "Nobody")
    assert plan.primary is None
    assert merge.executeMerge(session, plan).primary_id is None


def test_duplicate_groups(session, duplicates):
    assert merge.duplicateGroups(session) == [("Corner Market", 3)]
