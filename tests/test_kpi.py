from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.src.db import StopReturn
from app.src.delivery import kpi
from app.src.enums import KPIPeriod, StopStatus
from conftest import authHeader


@pytest.mark.parametrize(
    "period, today, expected",
    [
        (KPIPeriod.DAILY, date(2026, 10, 21), (date(2026, 10, 21), date(2026, 10, 21))),
        (KPIPeriod.WEEKLY, date(2026, 10, 21), (date(2026, 10, 18), date(2026, 10, 24))),
        (KPIPeriod.WEEKLY, date(2026, 10, 18), (date(2026, 10, 18), date(2026, 10, 24))),
        (KPIPeriod.MONTHLY, date(2026, 12, 9), (date(2026, 12, 1), date(2026, 12, 31))),
        (KPIPeriod.MONTHLY, date(2028, 2, 29), (date(2028, 2, 1), date(2028, 2, 29))),
    ],
)
def test_period_windows(period, today, expected):
    assert kpi.periodWindow(period, today) == expected


def test_daily_figures_per_driver(session, driver, user_factory, route_factory, stop_factory):
    today = date.today()
    started = datetime(2026, 10, 19, 8, tzinfo=timezone.utc)
    route = route_factory(driver_id=driver.id, date=today)
    done = stop_factory(
        route_id=route.id,
        sequence=1,
        status=StopStatus.COMPLETED,
        amount=Decimal("40.00"),
        driver_payment_amount=Decimal("40.00"),
        on_the_way_at=started,
        completed_at=started + timedelta(hours=1),
    )
    stop_factory(route_id=route.id, sequence=2, status=StopStatus.FAILED)
    stop_factory(route_id=route.id, sequence=3)
    session.add(StopReturn(stop_id=done.id, quantity=1, reason_code="Damaged"))
    session.commit()

    # Named for another driver, but the route owner takes the stop
    maria = user_factory(username="maria", full_name="Maria Lopez")
    stop_factory(route_id=route.id, sequence=4, driver_name_from_upload="Maria Lopez")
    # Load sheet assignment on an unowned route
    unowned = route_factory(date=today)
    stop_factory(route_id=unowned.id, sequence=1, driver_name_from_upload="maria lopez")

    rows = kpi.dailyKPIs(session, [driver, maria], today, today)
    figures = {row.driver_id: row for row in rows}
    mine = figures[driver.id]
    assert (mine.stops_total, mine.stops_completed, mine.stops_failed) == (4, 1, 1)
    assert mine.amount_collected == Decimal("40.00")
    assert mine.returns_count == 1
    assert mine.started_at is not None
    assert figures[maria.id].stops_total == 1

    stats = kpi.summarize(rows)
    assert stats["stops_total"] == 5
    assert stats["completion_rate"] == 20.0
    assert stats["average_stops_per_day"] == 2.5


def test_summary_of_nothing():
    stats = kpi.summarize([])
    assert stats["completion_rate"] == 0
    assert stats["average_stops_per_day"] == 0


def test_admin_fetches_kpis(client, admin, driver, route_factory, stop_factory):
    day = date(2026, 10, 14)
    route = route_factory(driver_id=driver.id, date=day)
    stop_factory(route_id=route.id, sequence=1, status=StopStatus.COMPLETED)
    stop_factory(route_id=route.id, sequence=2)
    route_factory(driver_id=driver.id, date=day + timedelta(days=30))
    header = authHeader(admin)

    response = client.get(
        "/api/admin/kpi",
        headers=header,
        params={"date_from": "2026-10-01", "date_to": "2026-10-31", "driver_id": driver.id},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["kpis"][0]["date"] == "2026-10-14"
    assert body["kpis"][0]["route_count"] == 1
    assert body["stats"]["completion_rate"] == 50.0


def test_kpi_window_is_validated(client, admin):
    header = authHeader(admin)
    response = client.get(
        "/api/admin/kpi", headers=header, params={"date_from": "2026-10-01"}
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "MissingParameter"

    response = client.get(
        "/api/admin/kpi",
        headers=header,
        params={"date_from": "2026-10-31", "date_to": "2026-10-01"},
    )
    assert response.status_code == 400
    assert response.headers["X-Error"] == "InvalidValue"

    response = client.get("/api/admin/kpi", headers=header, params={"driver_id": admin.id})
    assert response.status_code == 404


def test_current_period_is_the_default(client, admin, driver, route_factory, stop_factory):
    route = route_factory(driver_id=driver.id, date=datetime.now(timezone.utc).date())
    stop_factory(route_id=route.id, sequence=1)
    response = client.get(
        "/api/admin/kpi",
        headers=authHeader(admin),
        params={"period": KPIPeriod.MONTHLY.value},
    )
    body = response.json()
    assert body["stats"]["stops_total"] == 1
    assert body["date_from"].endswith("-01")
