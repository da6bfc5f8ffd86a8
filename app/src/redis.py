from redis import Redis
from typing import Optional, Protocol
from redis.lock import Lock

from app.src import exceptions
from app.src.constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    MUTEX_LOCK_TIMEOUT,
    MUTEX_LOCK_MAX_WAIT_TIME,
)

# Redis client (single connection)
redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def acquireLock(
    tableName: str,
    pk: Optional[int] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
) -> Lock:
    """
    Acquire a Redis-based mutex lock for a table or specific row.

    Args:
        tableName (str): Name of the table/resource to lock.
        pk (Optional[int]): Optional primary key for row-level locking.
        timeOut (int): Lock expiration in seconds (auto-released after this).
        blockingTimeOut (int): Maximum time (in seconds) to wait for lock acquisition.

    Returns:
        Lock: A Redis lock object if successfully acquired.

    Raises:
        exceptions.LockAcquireTimeout: If the lock could not be acquired within blockingTimeOut.
    """
    try:
        lockName = f"lock:{tableName}" if pk is None else f"lock:{tableName}:{pk}"
        lock = redisClient.lock(lockName, timeout=timeOut)
        if lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
            return lock
        raise exceptions.LockAcquireTimeout()
    except Exception as e:
        exceptions.handle(e)


def releaseLock(lock: Optional[Lock]) -> None:
    """
    Release a previously acquired Redis lock.

    Args:
        lock (Lock | None): The Redis lock object to release. Does nothing if None.
    """
    if lock and lock.locked() and lock.owned():
        lock.release()


# ---------------------------------------------------------------------------
# Shared key-value store
# ---------------------------------------------------------------------------
class KeyValueStore(Protocol):
    """
    Key-value store with expiry shared by every instance of the server.
    CSRF tokens and request metrics are kept here.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def incrementFields(self, key: str, amounts: dict[str, float], ttl: int) -> None: ...

    def fields(self, key: str) -> dict[str, str]: ...

    def keys(self, prefix: str) -> list[str]: ...


class RedisStore:
    """`KeyValueStore` backed by Redis strings and hashes."""

    def __init__(self, client: Redis):
        self.client = client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.set(key, value, ex=ttl)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def incrementFields(self, key: str, amounts: dict[str, float], ttl: int) -> None:
        pipeline = self.client.pipeline()
        for field, amount in amounts.items():
            pipeline.hincrbyfloat(key, field, amount)
        pipeline.expire(key, ttl)
        pipeline.execute()

    def fields(self, key: str) -> dict[str, str]:
        return self.client.hgetall(key)

    def keys(self, prefix: str) -> list[str]:
        return sorted(self.client.scan_iter(match=f"{prefix}*"))


kvStore = RedisStore(redisClient)
