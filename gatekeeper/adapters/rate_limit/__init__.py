"""Counter store adapters.

A small abstraction layer so the engine can run against an in-memory store
in development and tests, and against Redis when several processes must
share their counters.
"""

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot
from gatekeeper.adapters.rate_limit.in_memory import InMemoryCounterStore
from gatekeeper.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterSnapshot",
    "InMemoryCounterStore",
    "RedisCounterStore",
]
