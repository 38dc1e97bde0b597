"""Fixed-window admission engine.

The engine turns one atomic store operation into an admission decision:

- ``count <= limit`` admits the request, anything above denies it
- the window resets once ``now - created_at >= refresh_interval``
- denied requests keep counting, capped at ``limit + 1``

A denial is a regular ``Decision`` value. Store faults surface as
``StoreUnavailableError`` and are never retried here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot
from gatekeeper.core.errors import InvalidConfigurationError
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)

# Named windows accepted by RateLimitConfig.per()
INTERVAL_SECONDS: dict[str, float] = {
    "second": 1.0,
    "minute": 60.0,
    "hour": 3600.0,
    "day": 86400.0,
}


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable rate limit policy.

    Attributes:
        limit: Maximum requests per window.
        refresh_interval: Window length in seconds.
    """

    limit: int
    refresh_interval: float

    def __post_init__(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit <= 0:
            raise InvalidConfigurationError(
                code="invalid_limit",
                message="limit must be a positive integer",
                details={"setting": "limit", "actual_value": self.limit},
            )
        if not isinstance(self.refresh_interval, (int, float)) or not self.refresh_interval > 0:
            raise InvalidConfigurationError(
                code="invalid_refresh_interval",
                message="refresh_interval must be a positive number of seconds",
                details={"setting": "refresh_interval", "actual_value": self.refresh_interval},
            )

    @classmethod
    def per(cls, limit: int, interval: str) -> "RateLimitConfig":
        """Build a config from a named interval.

        Example:
            >>> RateLimitConfig.per(10, "minute")
            RateLimitConfig(limit=10, refresh_interval=60.0)
        """
        try:
            seconds = INTERVAL_SECONDS[interval.lower()]
        except KeyError:
            raise InvalidConfigurationError(
                code="invalid_interval",
                message=f"Unknown interval '{interval}'. Supported: {', '.join(INTERVAL_SECONDS)}",
                details={"setting": "interval", "actual_value": interval},
            ) from None
        return cls(limit=limit, refresh_interval=seconds)


@dataclass(frozen=True)
class Decision:
    """Admission verdict for a single request.

    Attributes:
        allowed: Whether the request may proceed.
        requests_left: ``max(0, limit - count)``.
        created_at: Start of the window the request was counted in.
        count: Counter value after this request.
    """

    allowed: bool
    requests_left: int
    created_at: float
    count: int


@dataclass(frozen=True)
class RateLimitMetadata:
    """Values exposed to the caller alongside a response.

    Attributes:
        limit: Configured requests per window.
        remaining: Requests left in the current window.
        reset: Whole seconds until the window resets (never negative).
    """

    limit: int
    remaining: int
    reset: int


def build_metadata(decision: Decision, config: RateLimitConfig, now: float) -> RateLimitMetadata:
    """Map an engine decision to the limit/remaining/reset triple.

    ``reset`` is truncated to whole seconds and floored at 0 for clock skew.
    """
    expires_at = decision.created_at + config.refresh_interval
    return RateLimitMetadata(
        limit=config.limit,
        remaining=decision.requests_left,
        reset=max(0, int(expires_at - now)),
    )


def decide(snapshot: CounterSnapshot, config: RateLimitConfig) -> Decision:
    """Derive the admission verdict from a post-increment snapshot."""

    return Decision(
        allowed=snapshot.count <= config.limit,
        requests_left=max(0, config.limit - snapshot.count),
        created_at=snapshot.created_at,
        count=snapshot.count,
    )


class GatekeeperEngine:
    """Per-key admission control over an injected counter store.

    The engine holds no mutable state of its own; all shared state lives in
    the store, so one instance can serve any number of concurrent callers.
    """

    def __init__(
        self,
        *,
        store: AbstractCounterStore,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Counter store providing atomic increment-or-create.
            config: Default policy used when a call supplies none.
            clock: Time source returning UNIX time in seconds.
        """
        self._store = store
        self._config = config
        self._clock = clock

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def now(self) -> float:
        return self._clock()

    def check_and_consume(
        self,
        key: str,
        config: RateLimitConfig | None = None,
        now: float | None = None,
    ) -> Decision:
        """Record one request for ``key`` and decide whether it is admitted.

        Args:
            key: Derived rate limit key.
            config: Policy override; defaults to the engine's config.
            now: Request time; defaults to the engine clock.

        Returns:
            Decision for this request.

        Raises:
            StoreUnavailableError: Propagated unchanged from the store.
        """
        cfg = config if config is not None else self._config
        current = self._clock() if now is None else now

        snapshot = self._store.increment_or_create(
            key,
            current,
            cfg.refresh_interval,
            max_count=cfg.limit + 1,
        )
        decision = decide(snapshot, cfg)

        if snapshot.count == 1:
            logger.debug(
                "counter_store.reset",
                extra={"key_hash": hash_identifier(key), "window_s": cfg.refresh_interval},
            )
        return decision

    def peek(self, key: str) -> CounterSnapshot | None:
        """Return the current counter for ``key`` without consuming a request."""

        return self._store.peek(key)
