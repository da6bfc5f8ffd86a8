from fastapi import Request
from sqlalchemy.orm.session import Session

from app.src import schemas
from app.src.db import Route, Stop, User


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - app_id (int): Application ID from app state.
            - ip_address (str | None): Client address, proxy headers first.
            - user_agent (str | None): Client user agent.
    """
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        app_id=request.scope["app"].state.id,
        ip_address=clientAddress(request),
        user_agent=request.headers.get("user-agent"),
    )


def clientAddress(request: Request) -> str | None:
    forwardedFor = request.headers.get("x-forwarded-for")
    if forwardedFor:
        return forwardedFor.split(",")[0].strip()
    realIP = request.headers.get("x-real-ip")
    if realIP:
        return realIP.strip()
    if request.client is not None:
        return request.client.host
    return None


def user(session: Session, id: int) -> User | None:
    """Fetch a user that is not soft deleted."""
    return (
        session.query(User)
        .filter(User.id == id)
        .filter(User.is_deleted == False)
        .first()
    )


def route(session: Session, id: int) -> Route | None:
    """Fetch a route that is not soft deleted."""
    return (
        session.query(Route)
        .filter(Route.id == id)
        .filter(Route.is_deleted == False)
        .first()
    )


def stop(session: Session, id: int) -> Stop | None:
    """Fetch a stop that is not soft deleted and whose route is not soft deleted."""
    return (
        session.query(Stop)
        .join(Route, Route.id == Stop.route_id)
        .filter(Stop.id == id)
        .filter(Stop.is_deleted == False)
        .filter(Route.is_deleted == False)
        .first()
    )


def routeStops(session: Session, route_id: int) -> list[Stop]:
    """Fetch the non deleted stops of a route ordered by sequence."""
    return (
        session.query(Stop)
        .filter(Stop.route_id == route_id)
        .filter(Stop.is_deleted == False)
        .order_by(Stop.sequence.asc(), Stop.id.asc())
        .all()
    )
