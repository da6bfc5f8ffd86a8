"""
Client of the external attendance (clock-in) service.

Drivers are expected to clock in before working their routes. The answer of
the service is cached on the user row for `ATTENDANCE_CACHE_DURATION`
seconds. When the service cannot be reached the last cached answer is used,
and without any cached answer `ATTENDANCE_FALLBACK_MODE` decides: the driver
is treated as clocked in (`permissive`) or not (`strict`).

`ATTENDANCE_ENFORCEMENT_MODE` decides what happens to a driver who is not
clocked in: nothing but a message (`permissive`), a warning asking them to
clock in (`warning`), or a refusal (`strict`).
"""

import logging, requests
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.orm.session import Session

from app.src.db import User
from app.src.enums import AttendanceAction
from app.src.functions import asUTC
from app.src.constants import (
    ATTENDANCE_API_KEY,
    ATTENDANCE_API_URL,
    ATTENDANCE_CACHE_DURATION,
    ATTENDANCE_ENABLED,
    ATTENDANCE_ENFORCEMENT_MODE,
    ATTENDANCE_FALLBACK_MODE,
    ATTENDANCE_TIMEOUT,
)

logger = logging.getLogger(__name__)

SOURCE_SERVICE = "service"
SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"


@dataclass
class AttendanceStatus:
    is_clocked_in: bool
    last_checked: datetime
    source: str
    clock_in_time: datetime | None = None


@dataclass
class AccessDecision:
    allowed: bool
    status: AttendanceStatus
    message: str | None = None
    action: AttendanceAction | None = None


def _parseTime(value) -> datetime | None:
    if not value:
        return None
    try:
        return asUTC(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def fetchStatus(user: User) -> AttendanceStatus:
    """
    Ask the attendance service whether the user is clocked in.

    Raises:
        requests.RequestException: On timeouts, connection errors and non 2xx answers.
    """
    response = requests.post(
        f"{ATTENDANCE_API_URL}/attendance/status",
        json={"userId": user.id, "username": user.username},
        headers={"Authorization": f"Bearer {ATTENDANCE_API_KEY}"},
        timeout=ATTENDANCE_TIMEOUT,
    )
    response.raise_for_status()
    data = response.json()
    return AttendanceStatus(
        is_clocked_in=bool(data.get("isClockedIn", False)),
        clock_in_time=_parseTime(data.get("clockInTime")),
        last_checked=datetime.now(timezone.utc),
        source=SOURCE_SERVICE,
    )


def cachedStatus(user: User, now: datetime) -> AttendanceStatus | None:
    checkedAt = asUTC(user.cached_clock_in_status_at)
    if checkedAt is None or user.cached_clock_in_status is None:
        return None
    if (now - checkedAt).total_seconds() > ATTENDANCE_CACHE_DURATION:
        return None
    return AttendanceStatus(
        is_clocked_in=user.cached_clock_in_status,
        clock_in_time=asUTC(user.cached_clock_in_at),
        last_checked=checkedAt,
        source=SOURCE_CACHE,
    )


def fallbackStatus(user: User, now: datetime) -> AttendanceStatus:
    """Stale cached answer if there is one, otherwise the fallback mode."""
    checkedAt = asUTC(user.cached_clock_in_status_at)
    if checkedAt is not None and user.cached_clock_in_status is not None:
        return AttendanceStatus(
            is_clocked_in=user.cached_clock_in_status,
            clock_in_time=asUTC(user.cached_clock_in_at),
            last_checked=checkedAt,
            source=SOURCE_FALLBACK,
        )
    return AttendanceStatus(
        is_clocked_in=ATTENDANCE_FALLBACK_MODE != "strict",
        last_checked=now,
        source=SOURCE_FALLBACK,
    )


def checkAttendanceStatus(
    session: Session, user: User, refresh: bool = False
) -> AttendanceStatus:
    """
    Resolve the clock-in status of a user.

    Args:
        session (Session): Active SQLAlchemy session, used to store the cached answer.
        user (User): The driver.
        refresh (bool): Skip the cache and ask the service.
    """
    now = datetime.now(timezone.utc)
    if not ATTENDANCE_ENABLED:
        return AttendanceStatus(
            is_clocked_in=True, last_checked=now, source=SOURCE_FALLBACK
        )
    if not refresh:
        status = cachedStatus(user, now)
        if status is not None:
            return status
    try:
        status = fetchStatus(user)
    except (requests.RequestException, ValueError) as e:
        logger.warning("Attendance service failed for %s: %s", user.username, e)
        return fallbackStatus(user, now)

    user.cached_clock_in_status = status.is_clocked_in
    user.cached_clock_in_at = status.clock_in_time
    user.cached_clock_in_status_at = status.last_checked
    session.commit()
    return status


def decide(status: AttendanceStatus, mode: str) -> AccessDecision:
    if mode == "warning":
        if status.is_clocked_in:
            return AccessDecision(True, status, "You are clocked in", AttendanceAction.CONTINUE)
        return AccessDecision(
            True,
            status,
            "You are not clocked in. Please clock in soon to avoid access restrictions.",
            AttendanceAction.CLOCK_IN,
        )
    if mode == "strict":
        if status.is_clocked_in:
            return AccessDecision(True, status, "You are clocked in", AttendanceAction.CONTINUE)
        return AccessDecision(
            False,
            status,
            "You must clock in before accessing routes. Please use the attendance app to clock in.",
            AttendanceAction.CLOCK_IN,
        )
    if mode != "permissive":
        logger.warning("Unknown attendance enforcement mode %s, allowing", mode)
    if status.is_clocked_in:
        return AccessDecision(True, status, "You are clocked in")
    return AccessDecision(
        True,
        status,
        "You are not clocked in. Please clock in at the attendance app.",
    )


def checkDriverAccess(session: Session, user: User, refresh=False) -> AccessDecision:
    """Apply the enforcement mode to the clock-in status of a driver."""
    status = checkAttendanceStatus(session, user, refresh)
    return decide(status, ATTENDANCE_ENFORCEMENT_MODE)
