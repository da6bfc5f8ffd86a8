import base64, json, logging, requests
from requests import Response
from requests.exceptions import RequestException

from app.src.constants import (
    OPENOBSERVE_ENABLED,
    OPENOBSERVE_HOST,
    OPENOBSERVE_ORG,
    OPENOBSERVE_PASSWORD,
    OPENOBSERVE_PORT,
    OPENOBSERVE_PROTOCOL,
    OPENOBSERVE_STREAM,
    OPENOBSERVE_USERNAME,
)

logger = logging.getLogger(__name__)

# Prepare Basic Auth credentials
credentials = base64.b64encode(
    bytes(OPENOBSERVE_USERNAME + ":" + OPENOBSERVE_PASSWORD, "utf-8")
).decode("utf-8")

# Default headers for all requests
headers = {"Content-type": "application/json", "Authorization": "Basic " + credentials}

# Construct OpenObserve endpoint URL
openobserve_host = f"{OPENOBSERVE_PROTOCOL}://{OPENOBSERVE_HOST}:{OPENOBSERVE_PORT}"
openobserve_url = f"{openobserve_host}/api/{OPENOBSERVE_ORG}/{OPENOBSERVE_STREAM}/_json"


def logEvent(eventData: dict) -> Response | None:
    """
    Send an event log to the configured OpenObserve instance.

    The event is serialized as JSON and sent using HTTP POST with Basic
    authentication. The action being logged has already been committed, so
    a delivery failure is written to the application log instead of failing
    the request.

    Args:
        eventData (dict): A dictionary representing the event log to be sent.
            Example:
                {
                    "_method": "PATCH",
                    "_path": "/api/driver/route/stop",
                    "_app_id": 2,
                    "_user_id": 7
                }

    Returns:
        requests.Response | None: The HTTP response, None when disabled or unreachable.
    """
    if not OPENOBSERVE_ENABLED:
        return None
    try:
        return requests.post(
            openobserve_url, headers=headers, data=json.dumps(eventData, default=str)
        )
    except RequestException as e:
        logger.warning("OpenObserve unreachable, event dropped: %s", e)
        return None
