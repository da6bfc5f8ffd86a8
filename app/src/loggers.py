from app.src import openobserve
from app.src.schemas import Identity, RequestInfo


def logEvent(identity: Identity, requestInfo: RequestInfo, data: dict) -> None:
    """
    Log an event to OpenObserve with request and user context.

    Args:
        identity (Identity): Authenticated user performing the action.
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Additional event-specific details to include in the log.

    Notes:
        - Automatically attaches `_app_id`, `_method`, `_path`, `_user_id` and `_role`.
        - Password hashes are removed from the event data.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_app_id": requestInfo.app_id,
        "_user_id": identity.id,
        "_role": identity.role,
    }
    logDetails.update({k: v for k, v in data.items() if k != "password"})
    openobserve.logEvent(logDetails)
