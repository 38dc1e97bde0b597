"""Rate limiting dependency for FastAPI routes.

This module wires the admission engine into the HTTP layer.

Per request the ``Gatekeeper`` dependency:
1. builds a ``RequestContext`` and derives the key with the ``KeyMaker``
2. consumes one request through ``GatekeeperEngine.check_and_consume``
3. on admission attaches ``Rate-Limit-Limit`` / ``-Remaining`` / ``-Reset``
4. on denial raises the configured error (HTTP 429 by default)
5. on store failure applies the configured failure policy

The engine and default key maker live on ``app.state`` and are built by the
application factory; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from gatekeeper.adapters.rate_limit.factory import create_counter_store
from gatekeeper.core.config import GatekeeperSettings, settings
from gatekeeper.core.errors import RateLimitExceededError, StoreUnavailableError
from gatekeeper.core.logging import hash_identifier
from gatekeeper.services.gatekeeper_service import (
    Decision,
    GatekeeperEngine,
    RateLimitConfig,
    RateLimitMetadata,
    build_metadata,
)
from gatekeeper.utils.key_maker import KeyMaker, RequestContext

logger = logging.getLogger(__name__)

LIMIT_HEADER = "Rate-Limit-Limit"
REMAINING_HEADER = "Rate-Limit-Remaining"
RESET_HEADER = "Rate-Limit-Reset"
RETRY_AFTER_HEADER = "Retry-After"
API_KEY_HEADER = "X-API-Key"

DEFAULT_DENIAL_MESSAGE = "Slow down. You sent too many requests."

ErrorFactory = Callable[[RateLimitMetadata], Exception]


def create_engine(gatekeeper_settings: GatekeeperSettings | None = None) -> GatekeeperEngine:
    """Build the application-wide engine from settings.

    Raises:
        InvalidConfigurationError: If the limit, window or store are invalid.
    """
    cfg = gatekeeper_settings or settings.gatekeeper
    return GatekeeperEngine(
        store=create_counter_store(cfg),
        config=RateLimitConfig(limit=cfg.limit, refresh_interval=cfg.refresh_interval_seconds),
    )


def create_key_maker(gatekeeper_settings: GatekeeperSettings | None = None) -> KeyMaker:
    """Build the application-wide key maker from settings."""

    cfg = gatekeeper_settings or settings.gatekeeper
    return KeyMaker(
        source=cfg.key_source,
        prefix=cfg.key_prefix,
        trust_forwarded_for=cfg.trust_forwarded_for,
        scope_by_route=cfg.scope_by_route,
        default_identity=cfg.default_identity,
    )


def get_engine(request: Request) -> GatekeeperEngine:
    return request.app.state.gatekeeper


def get_key_maker(request: Request) -> KeyMaker:
    return request.app.state.key_maker


def build_request_context(request: Request) -> RequestContext:
    """Collect the identifying attributes of a FastAPI request."""

    route = request.scope.get("route")
    principal = getattr(request.state, "principal", None)
    return RequestContext(
        remote_address=request.client.host if request.client else None,
        forwarded_for=request.headers.get("X-Forwarded-For"),
        api_key=request.headers.get(API_KEY_HEADER),
        principal=str(principal) if principal is not None else None,
        route=getattr(route, "path", None) or request.url.path,
    )


def rate_limit_headers(metadata: RateLimitMetadata) -> dict[str, str]:
    """Render rate limit metadata as response headers."""

    return {
        LIMIT_HEADER: str(metadata.limit),
        REMAINING_HEADER: str(metadata.remaining),
        RESET_HEADER: str(metadata.reset),
    }


def default_error_factory(metadata: RateLimitMetadata) -> RateLimitExceededError:
    """Build the 429 error raised when a caller runs out of requests."""

    headers = rate_limit_headers(metadata) if settings.gatekeeper.include_headers else {}
    headers[RETRY_AFTER_HEADER] = str(metadata.reset)
    return RateLimitExceededError(
        code="rate_limit_exceeded",
        message=DEFAULT_DENIAL_MESSAGE,
        details={
            "limit": metadata.limit,
            "remaining": metadata.remaining,
            "retry_after": metadata.reset,
        },
        headers=headers,
    )


class Gatekeeper:
    """FastAPI dependency enforcing a fixed-window rate limit.

    Usage:
        @router.get("/search", dependencies=[Depends(Gatekeeper())])
        @router.post("/login", dependencies=[Depends(Gatekeeper(config=RateLimitConfig.per(5, "minute")))])

    Args:
        config: Override the engine's default ``RateLimitConfig``.
        key_maker: Override the application's ``KeyMaker``.
        error_factory: Build the exception raised on denial instead of the
            default ``RateLimitExceededError``.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        key_maker: KeyMaker | None = None,
        error_factory: ErrorFactory | None = None,
    ) -> None:
        self.config = config
        self.key_maker = key_maker
        self.error_factory = error_factory or default_error_factory

    async def __call__(self, request: Request, response: Response) -> Decision | None:
        if not settings.gatekeeper.enabled:
            return None

        engine = get_engine(request)
        key_maker = self.key_maker or get_key_maker(request)
        config = self.config if self.config is not None else engine.config

        key = key_maker.derive(build_request_context(request))
        key_hash = hash_identifier(key)
        now = engine.now()

        try:
            decision = await run_in_threadpool(engine.check_and_consume, key, config, now)
        except StoreUnavailableError as exc:
            if settings.gatekeeper.failure_policy == "fail_open":
                logger.warning(
                    "rate_limit.store_unavailable",
                    extra={"key_hash": key_hash, "policy": "fail_open", "error_code": exc.code},
                )
                return None
            logger.error(
                "rate_limit.store_unavailable",
                extra={"key_hash": key_hash, "policy": "fail_closed", "error_code": exc.code},
            )
            raise

        metadata = build_metadata(decision, config, now)

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": key_hash,
                    "limit": metadata.limit,
                    "count": decision.count,
                    "window_s": config.refresh_interval,
                    "retry_after_s": metadata.reset,
                },
            )
            raise self.error_factory(metadata)

        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_hash": key_hash,
                "limit": metadata.limit,
                "remaining": metadata.remaining,
                "window_s": config.refresh_interval,
            },
        )

        if settings.gatekeeper.include_headers:
            response.headers.update(rate_limit_headers(metadata))
        return decision


enforce_rate_limit = Gatekeeper()
