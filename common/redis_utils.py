"""
Redis utilities and the Redis-backed Entity Store.

Layout:
    dispatch:{kind}:{id}      JSON record
    dispatch:{kind}:index     sorted set of ids scored by creation time

Atomic commits use WATCH/MULTI/EXEC; a WatchError means another client
touched one of the records and surfaces as Conflict.
"""

import time
import logging
from typing import Callable, TypeVar

import redis

from common.errors import Conflict, StoreUnavailable
from common.store import EntityStore, MemoryEntityStore, Write, check_version, sort_key


logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "dispatch"

TRANSIENT_ERRORS = (redis.ConnectionError, redis.TimeoutError)


def get_redis_client(redis_url: str = "redis://localhost:6379/0") -> redis.Redis:
    """
    Create a Redis client for the given URL.

    Returns:
        Redis client instance (connections are opened lazily)
    """
    return redis.from_url(redis_url, decode_responses=True)


def health_check(client: redis.Redis) -> bool:
    """
    Check if Redis is accessible.

    Returns:
        True if Redis is healthy, False otherwise
    """
    try:
        client.ping()
        logger.info("Redis health check passed")
        return True
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False


class RedisEntityStore(EntityStore):
    """Entity Store persisted in Redis."""

    def __init__(
        self,
        client: redis.Redis,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
        prefix: str = KEY_PREFIX,
    ):
        self.client = client
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.prefix = prefix

    def record_key(self, kind: str, entity_id: str) -> str:
        return f"{self.prefix}:{kind}:{entity_id}"

    def index_key(self, kind: str) -> str:
        return f"{self.prefix}:{kind}:index"

    def _with_retry(self, operation: Callable[[], T], description: str) -> T:
        """
        Run `operation`, retrying transient connection errors with exponential backoff.

        Conflict and every other error propagate unchanged.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except TRANSIENT_ERRORS as e:
                attempt += 1
                if attempt > self.retry_attempts:
                    logger.error(f"Redis {description} failed after {attempt} attempts: {e}")
                    raise StoreUnavailable(f"Store unavailable during {description}: {e}")
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(f"Redis {description} failed (attempt {attempt}), retrying in {delay:.2f}s: {e}")
                time.sleep(delay)

    def ping(self) -> bool:
        return health_check(self.client)

    def _load(self, model, entity_id):
        raw = self._with_retry(
            lambda: self.client.get(self.record_key(model.kind, entity_id)),
            f"get {model.kind}",
        )
        return None if raw is None else model.model_validate_json(raw)

    def _load_all(self, model):
        def read():
            ids = self.client.zrange(self.index_key(model.kind), 0, -1)
            if not ids:
                return []
            return self.client.mget([self.record_key(model.kind, i) for i in ids])

        raws = self._with_retry(read, f"scan {model.kind}")
        # ids removed between ZRANGE and MGET come back as None
        records = [model.model_validate_json(raw) for raw in raws if raw is not None]
        return sorted(records, key=sort_key)

    def _apply(self, writes: list[Write]) -> None:
        keys = [self.record_key(w.model.kind, w.entity_id) for w in writes]

        def transaction():
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(*keys)
                    for write, key in zip(writes, keys):
                        check_version(write, pipe.get(key), write.model)
                    pipe.multi()
                    for write, key in zip(writes, keys):
                        index = self.index_key(write.model.kind)
                        if write.record is None:
                            pipe.delete(key)
                            pipe.zrem(index, write.entity_id)
                        else:
                            pipe.set(key, write.record.model_dump_json())
                            if write.expected_version is None:
                                pipe.zadd(index, {write.entity_id: write.record.created_at.timestamp()})
                    pipe.execute()
                except redis.WatchError:
                    raise Conflict("Records changed concurrently: " + ", ".join(keys))

        self._with_retry(transaction, "commit")


def build_store(settings) -> EntityStore:
    """Create the Entity Store selected by settings.store_backend."""
    if settings.store_backend == "memory":
        logger.info("Using in-memory entity store")
        return MemoryEntityStore()

    client = get_redis_client(settings.redis_url)
    logger.info(f"Using Redis entity store at {settings.redis_url}")
    return RedisEntityStore(
        client,
        retry_attempts=settings.store_retry_attempts,
        retry_backoff=settings.store_retry_backoff,
    )

