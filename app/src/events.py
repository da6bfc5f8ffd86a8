"""
Real-time notifications.

Location and status changes are published on Redis channels, from where the
dispatch dashboards receive them. Publishing is best effort: the change is
already committed when the event is sent, so a failure is only logged.
"""

import json, logging
from datetime import datetime, timezone
from redis.exceptions import RedisError

from app.src.redis import redisClient
from app.src.constants import (
    CHANNEL_DRIVER_LOCATION,
    CHANNEL_ROUTE_STATUS,
    CHANNEL_STOP_NOTE,
    CHANNEL_STOP_STATUS,
)
from app.src.enums import RouteStatus, StopStatus

logger = logging.getLogger(__name__)


def publish(channel: str, data: dict) -> bool:
    """
    Publish a JSON message on a channel.

    Returns:
        bool: True if the message was handed to Redis.
    """
    message = dict(data, timestamp=datetime.now(timezone.utc).isoformat())
    try:
        redisClient.publish(channel, json.dumps(message, default=str))
        return True
    except RedisError as e:
        logger.warning("Failed to publish on %s: %s", channel, e)
        return False


def emitDriverLocationUpdate(
    driver_id: int,
    route_id: int,
    stop_id: int,
    latitude: float,
    longitude: float,
    accuracy: float | None = None,
) -> bool:
    return publish(
        CHANNEL_DRIVER_LOCATION,
        {
            "driver_id": driver_id,
            "route_id": route_id,
            "stop_id": stop_id,
            "latitude": latitude,
            "longitude": longitude,
            "accuracy": accuracy,
        },
    )


def emitStopStatusUpdate(stop_id: int, route_id: int, status: int) -> bool:
    return publish(
        CHANNEL_STOP_STATUS,
        {
            "stop_id": stop_id,
            "route_id": route_id,
            "status": StopStatus(status).name,
        },
    )


def emitRouteStatusUpdate(route_id: int, status: int) -> bool:
    return publish(
        CHANNEL_ROUTE_STATUS,
        {"route_id": route_id, "status": RouteStatus(status).name},
    )


def emitStopNote(
    note_id: int,
    stop_id: int,
    route_id: int,
    driver_id: int | None,
    driver_name: str | None,
) -> bool:
    """
    Tell the driver of a stop about a new administrator note. Stops assigned
    only through the load sheet carry the driver name instead of an id.
    """
    return publish(
        CHANNEL_STOP_NOTE,
        {
            "note_id": note_id,
            "stop_id": stop_id,
            "route_id": route_id,
            "driver_id": driver_id,
            "driver_name": driver_name,
        },
    )


def emitStatusEvents(statusEvents) -> None:
    """Send the events returned by `applyStopStatus`, in order."""
    for event in statusEvents:
        if event.isRouteEvent:
            emitRouteStatusUpdate(event.route_id, event.status)
        else:
            emitStopStatusUpdate(event.stop_id, event.route_id, event.status)
