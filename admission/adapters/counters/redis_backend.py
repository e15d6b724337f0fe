"""Redis-backed fixed-window counter store shared by every instance.

Each increment is one MULTI/EXEC round trip::

    SET <key> 0 PX <window_ms> NX
    INCR <key>

The NX set only takes effect for a brand-new key, so the expiry is fixed
exactly once per counter and no counter can exist without one. INCR keeps
the TTL in place. The store is never read before it is written.
"""

from __future__ import annotations

import logging

import redis
from redis.backoff import NoBackoff
from redis.retry import Retry

from admission.adapters.counters.base import AbstractCounterStore, CounterKey
from admission.core.config import RedisSettings
from admission.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


def create_redis_client(redis_settings: RedisSettings) -> redis.Redis:
    """Build a Redis client with short, bounded timeouts.

    The client connects lazily on its first command, so building it never
    fails because the store is down. Retries are disabled: a slow store must
    turn into a fast fallback, not a longer wait.
    """
    return redis.Redis.from_url(
        redis_settings.url,
        socket_timeout=redis_settings.socket_timeout_ms / 1000,
        socket_connect_timeout=redis_settings.connect_timeout_ms / 1000,
        retry_on_timeout=False,
        retry=Retry(NoBackoff(), 0),
        decode_responses=True,
    )


class RemoteCounterBackend(AbstractCounterStore):
    """Counter store backed by a shared Redis instance."""

    name = "remote"

    def __init__(self, client: redis.Redis, *, key_prefix: str = "rate_limit") -> None:
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RemoteCounterBackend":
        return cls(create_redis_client(redis_settings), key_prefix=redis_settings.key_prefix)

    def _redis_key(self, key: CounterKey) -> str:
        return key.render(self._key_prefix)

    def increment_and_get(self, key: CounterKey, window_ms: int) -> int:
        redis_key = self._redis_key(key)
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.set(redis_key, 0, px=window_ms, nx=True)
            pipe.incr(redis_key)
            _created, count = pipe.execute()
        except redis.exceptions.RedisError as exc:
            raise BackendUnavailableError(
                code="counter_store_unavailable",
                message=f"Redis increment failed: {type(exc).__name__}",
                details={"backend": self.name, "scope": key.scope},
            ) from exc

        return int(count)

    def decrement(self, key: CounterKey, window_ms: int) -> None:
        """Undo one increment with the same expiry guarantee as the increment.

        The NX set only matters when the key already expired; the resulting
        negative count then lives under a closed window and is never read.
        """
        redis_key = self._redis_key(key)
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.set(redis_key, 0, px=window_ms, nx=True)
            pipe.decr(redis_key)
            pipe.execute()
        except redis.exceptions.RedisError as exc:
            raise BackendUnavailableError(
                code="counter_store_unavailable",
                message=f"Redis decrement failed: {type(exc).__name__}",
                details={"backend": self.name, "scope": key.scope},
            ) from exc

    def delete(self, key: CounterKey) -> None:
        try:
            self._client.delete(self._redis_key(key))
        except redis.exceptions.RedisError as exc:
            raise BackendUnavailableError(
                code="counter_store_unavailable",
                message=f"Redis delete failed: {type(exc).__name__}",
                details={"backend": self.name, "scope": key.scope},
            ) from exc

    def ping(self) -> bool:
        """Return True when the store answers; never raises."""
        try:
            return bool(self._client.ping())
        except redis.exceptions.RedisError as exc:
            logger.debug("counter_store.ping_failed", extra={"error_type": type(exc).__name__})
            return False

    def stats(self) -> dict[str, object]:
        return {"backend": self.name, "key_prefix": self._key_prefix}
