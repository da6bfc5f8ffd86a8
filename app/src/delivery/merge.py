"""
Customer deduplication.

Customers sharing the exact same name are duplicates. Merging keeps one
primary customer, moves every stop and document of the duplicates onto it
and soft deletes the duplicates. A dry run computes the same plan without
writing anything, and the counts it reports are the counts the real merge moves.
"""

from dataclasses import dataclass, field
from sqlalchemy import func
from sqlalchemy.orm.session import Session

from app.src.db import Customer, CustomerDocument, Stop
from app.src.enums import MergePolicy


@dataclass
class MergePlan:
    name: str
    primary: Customer | None
    duplicates: list[Customer] = field(default_factory=list)
    stops_to_move: int = 0
    documents_to_move: int = 0

    @property
    def duplicateIds(self) -> list[int]:
        return [c.id for c in self.duplicates]


@dataclass
class MergeResult:
    primary_id: int | None
    stops_moved: int
    documents_moved: int
    duplicates_removed: int


def findDuplicates(session: Session, name: str) -> list[Customer]:
    """Non deleted customers carrying the name, newest first."""
    return (
        session.query(Customer)
        .filter(Customer.name == name)
        .filter(Customer.is_deleted == False)
        .order_by(Customer.created_on.desc(), Customer.id.desc())
        .all()
    )


def stopCounts(session: Session, customerIds: list[int]) -> dict[int, int]:
    if not customerIds:
        return {}
    rows = (
        session.query(Stop.customer_id, func.count(Stop.id))
        .filter(Stop.customer_id.in_(customerIds))
        .filter(Stop.is_deleted == False)
        .group_by(Stop.customer_id)
        .all()
    )
    return {customerId: count for customerId, count in rows}


def choosePrimary(
    customers: list[Customer], policy: MergePolicy, counts: dict[int, int]
) -> Customer | None:
    """
    Pick the surviving customer. `customers` is ordered newest first.

    ADDRESS_FIRST: the newest customer having an address, else the newest.
    OLDEST: the oldest customer.
    MOST_STOPS: the customer with the most active stops, the oldest on a tie.
    """
    if not customers:
        return None
    if policy == MergePolicy.OLDEST:
        return customers[-1]
    if policy == MergePolicy.MOST_STOPS:
        return max(reversed(customers), key=lambda c: counts.get(c.id, 0))
    for customer in customers:
        if customer.address and customer.address.strip():
            return customer
    return customers[0]


def _stopsOf(session: Session, customerIds: list[int]):
    return session.query(Stop).filter(Stop.customer_id.in_(customerIds))


def _documentsOf(session: Session, customerIds: list[int]):
    return session.query(CustomerDocument).filter(
        CustomerDocument.customer_id.in_(customerIds)
    )


def planMerge(
    session: Session, name: str, policy: MergePolicy = MergePolicy.ADDRESS_FIRST
) -> MergePlan:
    customers = findDuplicates(session, name)
    counts = stopCounts(session, [c.id for c in customers])
    primary = choosePrimary(customers, policy, counts)
    plan = MergePlan(
        name=name,
        primary=primary,
        duplicates=[c for c in customers if primary is not None and c.id != primary.id],
    )
    if plan.duplicates:
        plan.stops_to_move = _stopsOf(session, plan.duplicateIds).count()
        plan.documents_to_move = _documentsOf(session, plan.duplicateIds).count()
    return plan


def executeMerge(session: Session, plan: MergePlan) -> MergeResult:
    """
    Apply a merge plan. Changes are left in the session, the caller commits
    so that the whole merge lands in a single transaction.
    """
    if not plan.duplicates:
        return MergeResult(
            primary_id=plan.primary.id if plan.primary else None,
            stops_moved=0,
            documents_moved=0,
            duplicates_removed=0,
        )
    stopsMoved = _stopsOf(session, plan.duplicateIds).update(
        {Stop.customer_id: plan.primary.id}, synchronize_session=False
    )
    documentsMoved = _documentsOf(session, plan.duplicateIds).update(
        {CustomerDocument.customer_id: plan.primary.id}, synchronize_session=False
    )
    for duplicate in plan.duplicates:
        duplicate.is_deleted = True
    return MergeResult(
        primary_id=plan.primary.id,
        stops_moved=stopsMoved,
        documents_moved=documentsMoved,
        duplicates_removed=len(plan.duplicates),
    )


def duplicateGroups(session: Session) -> list[tuple[str, int]]:
    """Names shared by more than one non deleted customer, with the number of customers."""
    return (
        session.query(Customer.name, func.count(Customer.id))
        .filter(Customer.is_deleted == False)
        .group_by(Customer.name)
        .having(func.count(Customer.id) > 1)
        .order_by(Customer.name.asc())
        .all()
    )
