import logging
from redis.exceptions import RedisError

from app.src.constants import METRICS_RETENTION
from app.src.redis import KeyValueStore, kvStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "metrics:"


class RequestMetrics:
    """
    Request counters per endpoint, kept in the shared key-value store so that
    every server instance contributes to the same figures.
    """

    def __init__(self, store: KeyValueStore, retention: int = METRICS_RETENTION):
        self.store = store
        self.retention = retention

    def record(self, method: str, path: str, durationMs: float, statusCode: int):
        """Record one request. Store failures are logged and ignored."""
        amounts = {"count": 1, "total_ms": durationMs, "errors": 0}
        if statusCode >= 500:
            amounts["errors"] = 1
        try:
            self.store.incrementFields(
                f"{KEY_PREFIX}{method.upper()}:{path}", amounts, self.retention
            )
        except RedisError as e:
            logger.warning("Failed to record request metrics: %s", e)

    def summary(self) -> list[dict]:
        summary = []
        for key in self.store.keys(KEY_PREFIX):
            method, path = key[len(KEY_PREFIX) :].split(":", 1)
            fields = self.store.fields(key)
            count = int(float(fields.get("count", 0)))
            totalMs = float(fields.get("total_ms", 0))
            summary.append(
                {
                    "method": method,
                    "path": path,
                    "count": count,
                    "average_ms": round(totalMs / count, 2) if count else 0.0,
                    "errors": int(float(fields.get("errors", 0))),
                }
            )
        return summary


requestMetrics = RequestMetrics(kvStore)
