"""Factory for building counter stores from configuration."""

from __future__ import annotations

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore
from gatekeeper.adapters.rate_limit.in_memory import InMemoryCounterStore
from gatekeeper.adapters.rate_limit.redis_store import RedisCounterStore
from gatekeeper.core.config import GatekeeperSettings, settings
from gatekeeper.core.errors import InvalidConfigurationError


def create_counter_store(gatekeeper_settings: GatekeeperSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by ``GATEKEEPER_STORE``.

    Args:
        gatekeeper_settings: Optional settings; defaults to the global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        InvalidConfigurationError: If the backend is unknown or misconfigured.
    """
    cfg = gatekeeper_settings or settings.gatekeeper
    backend = cfg.store.lower()

    if backend == "memory":
        return InMemoryCounterStore(
            max_entries=cfg.memory_max_entries,
            sweep_interval=cfg.memory_sweep_interval_seconds,
        )

    if backend == "redis":
        if not cfg.redis_url:
            raise InvalidConfigurationError(
                code="store_missing_redis_url",
                message="Redis store requires GATEKEEPER_REDIS_URL",
                details={"backend": backend, "setting": "redis_url"},
            )
        return RedisCounterStore.from_url(
            cfg.redis_url,
            namespace=cfg.redis_namespace,
            socket_timeout=cfg.redis_socket_timeout_seconds,
        )

    raise InvalidConfigurationError(
        code="store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: memory, redis",
        details={"backend": backend, "setting": "store"},
    )
