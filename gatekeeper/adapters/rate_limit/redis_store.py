"""Redis-backed fixed-window counter store.

Shared across every worker and instance pointing at the same Redis, so the
configured limit is enforced globally.

The whole check-then-increment runs inside one Lua script (a single EVALSHA
round trip), which Redis executes atomically. Splitting it into a GET and a
later SET/INCR would let two concurrent callers act on the same stale count.
"""

from __future__ import annotations

import logging
import math

import redis
from redis.exceptions import RedisError

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot
from gatekeeper.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


# Fixed-window increment-or-create.
# KEYS[1] = hash key holding fields "count" and "created_at"
# ARGV[1] = now (epoch seconds, decimal string)
# ARGV[2] = refresh interval in seconds
# ARGV[3] = max count (0 = uncapped)
# ARGV[4] = expiry in milliseconds
# Returns: {count, created_at_string}
# created_at travels as a string: Lua numbers are truncated to integers in replies.
INCREMENT_OR_CREATE_LUA = r"""
local key = KEYS[1]
local now = tonumber(ARGV[1])
local interval = tonumber(ARGV[2])
local max_count = tonumber(ARGV[3])
local ttl_ms = tonumber(ARGV[4])

local entry = redis.call('HMGET', key, 'count', 'created_at')
local count = tonumber(entry[1])
local created_at = tonumber(entry[2])

if (not count) or (not created_at) or (now - created_at >= interval) then
  redis.call('HSET', key, 'count', 1, 'created_at', ARGV[1])
  redis.call('PEXPIRE', key, ttl_ms)
  return {1, ARGV[1]}
end

if max_count <= 0 or count < max_count then
  count = redis.call('HINCRBY', key, 'count', 1)
end
return {count, entry[2]}
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by Redis hashes and a Lua script."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        namespace: str = "gatekeeper",
    ) -> None:
        """Initialize the store.

        Args:
            client: Redis client. Replies may be bytes or str.
            namespace: Prefix for every key written to Redis.
        """
        self._client = client
        self._namespace = namespace
        self._increment_script = client.register_script(INCREMENT_OR_CREATE_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        namespace: str = "gatekeeper",
        socket_timeout: float | None = None,
    ) -> "RedisCounterStore":
        """Build a store with its own connection pool."""

        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, namespace=namespace)

    def _redis_key(self, key: str) -> str:
        return f"{self._namespace}:rl:{key}"

    def increment_or_create(
        self,
        key: str,
        now: float,
        refresh_interval: float,
        *,
        max_count: int | None = None,
    ) -> CounterSnapshot:
        ttl_ms = max(1, int(math.ceil(refresh_interval * 1000)))
        try:
            count, created_at = self._increment_script(
                keys=[self._redis_key(key)],
                args=[repr(float(now)), repr(float(refresh_interval)), max_count or 0, ttl_ms],
            )
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store could not record the request",
                details={"backend": "redis", "hint": type(exc).__name__},
            ) from exc

        return CounterSnapshot(count=int(count), created_at=float(_as_text(created_at)))

    def peek(self, key: str) -> CounterSnapshot | None:
        try:
            count, created_at = self._client.hmget(self._redis_key(key), ["count", "created_at"])
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store could not be read",
                details={"backend": "redis", "hint": type(exc).__name__},
            ) from exc

        if count is None or created_at is None:
            return None
        return CounterSnapshot(count=int(count), created_at=float(_as_text(created_at)))


def _as_text(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value
