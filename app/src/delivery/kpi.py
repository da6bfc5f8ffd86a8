"""
Daily delivery KPIs.

The figures are computed on demand from the stops of the routes scheduled in
the requested window. A stop counts for the driver it primarily resolves to:
the route owner when the route has one, otherwise the driver named on the
load sheet. Each (driver, route date) pair yields one `DailyKPI`.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm.session import Session

from app.src.db import Route, Stop, StopReturn, User
from app.src.delivery.assignment import assignedStopClause, matches, stopAssignments
from app.src.enums import KPIPeriod, StopStatus


@dataclass
class DailyKPI:
    driver_id: int
    date: date
    routes: set = field(default_factory=set)
    stops_total: int = 0
    stops_completed: int = 0
    stops_failed: int = 0
    amount_total: Decimal = Decimal("0")
    amount_collected: Decimal = Decimal("0")
    returns_count: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def add(self, route: Route, stop: Stop, returns: int):
        self.routes.add(route.id)
        self.stops_total += 1
        if stop.status == StopStatus.COMPLETED:
            self.stops_completed += 1
        elif stop.status == StopStatus.FAILED:
            self.stops_failed += 1
        self.amount_total += stop.amount or 0
        self.amount_collected += stop.driver_payment_amount or 0
        self.returns_count += returns
        if stop.on_the_way_at is not None:
            if self.started_at is None or stop.on_the_way_at < self.started_at:
                self.started_at = stop.on_the_way_at
        if stop.completed_at is not None:
            if self.finished_at is None or stop.completed_at > self.finished_at:
                self.finished_at = stop.completed_at

    def asDict(self) -> dict:
        return {
            "driver_id": self.driver_id,
            "date": self.date,
            "route_count": len(self.routes),
            "stops_total": self.stops_total,
            "stops_completed": self.stops_completed,
            "stops_failed": self.stops_failed,
            "amount_total": self.amount_total,
            "amount_collected": self.amount_collected,
            "returns_count": self.returns_count,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def periodWindow(period: KPIPeriod, today: date) -> tuple[date, date]:
    """Inclusive date window of a period. Weeks start on Sunday."""
    if period == KPIPeriod.WEEKLY:
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == KPIPeriod.MONTHLY:
        start = today.replace(day=1)
        nextMonth = (start + timedelta(days=32)).replace(day=1)
        return start, nextMonth - timedelta(days=1)
    return today, today


def returnCounts(session: Session, stopIds: List[int]) -> dict[int, int]:
    if not stopIds:
        return {}
    rows = (
        session.query(StopReturn.stop_id, func.count(StopReturn.id))
        .filter(StopReturn.stop_id.in_(stopIds))
        .filter(StopReturn.is_deleted == False)
        .group_by(StopReturn.stop_id)
        .all()
    )
    return dict(rows)


def dailyKPIs(
    session: Session, drivers: Iterable[User], dateFrom: date, dateTo: date
) -> List[DailyKPI]:
    """KPIs per driver and day, newest day first."""
    result = []
    for driver in drivers:
        rows = (
            session.query(Stop, Route)
            .join(Route, Route.id == Stop.route_id)
            .filter(Stop.is_deleted == False)
            .filter(Route.is_deleted == False)
            .filter(Route.date >= dateFrom)
            .filter(Route.date <= dateTo)
            .filter(assignedStopClause(driver))
            .all()
        )
        # A stop named for one driver on a route owned by another counts for the owner
        rows = [
            (stop, route)
            for stop, route in rows
            if matches(next(stopAssignments(route, stop)), driver)
        ]
        returns = returnCounts(session, [stop.id for stop, _ in rows])

        days = {}
        for stop, route in rows:
            kpi = days.get(route.date)
            if kpi is None:
                kpi = days[route.date] = DailyKPI(driver_id=driver.id, date=route.date)
            kpi.add(route, stop, returns.get(stop.id, 0))
        result.extend(days.values())

    result.sort(key=lambda kpi: (kpi.date, kpi.driver_id), reverse=True)
    return result


def summarize(kpis: List[DailyKPI]) -> dict:
    """Totals over the KPI rows together with per day averages and the completion rate."""
    stopsTotal = sum(k.stops_total for k in kpis)
    stopsCompleted = sum(k.stops_completed for k in kpis)
    days = len(kpis)
    return {
        "stops_total": stopsTotal,
        "stops_completed": stopsCompleted,
        "stops_failed": sum(k.stops_failed for k in kpis),
        "amount_total": sum((k.amount_total for k in kpis), Decimal("0")),
        "amount_collected": sum((k.amount_collected for k in kpis), Decimal("0")),
        "returns_count": sum(k.returns_count for k in kpis),
        "average_stops_per_day": round(stopsTotal / days, 2) if days else 0,
        "average_completed_per_day": round(stopsCompleted / days, 2) if days else 0,
        "completion_rate": round(stopsCompleted * 100 / stopsTotal, 2)
        if stopsTotal
        else 0,
    }
