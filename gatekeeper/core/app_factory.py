"""Application factory for the FastAPI app.

Centralizes app construction (logging, engine, middleware, handlers, routers)
so tests can build isolated apps with their own engine and settings.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from gatekeeper.api.routes import health_router, rate_limit_router
from gatekeeper.core.config import settings
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_id_middleware
from gatekeeper.core.rate_limit import create_engine, create_key_maker
from gatekeeper.services.gatekeeper_service import GatekeeperEngine
from gatekeeper.utils.key_maker import KeyMaker

logger = logging.getLogger(__name__)


def create_app(
    *,
    engine: GatekeeperEngine | None = None,
    key_maker: KeyMaker | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine: Prebuilt engine; built from settings when omitted.
        key_maker: Prebuilt key maker; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.

    Raises:
        InvalidConfigurationError: If the rate limit settings are invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Gatekeeper",
        description=(
            "Per-client fixed-window rate limiting. Rate-limited responses carry "
            "Rate-Limit-Limit, Rate-Limit-Remaining and Rate-Limit-Reset headers; "
            "callers over their limit receive 429 Too Many Requests."
        ),
        version="0.1.0",
    )

    app.state.gatekeeper = engine or create_engine(settings.gatekeeper)
    app.state.key_maker = key_maker or create_key_maker(settings.gatekeeper)

    logger.info(
        "gatekeeper.configured",
        extra={
            "enabled": settings.gatekeeper.enabled,
            "store": type(app.state.gatekeeper.store).__name__,
            "limit": app.state.gatekeeper.config.limit,
            "window_s": app.state.gatekeeper.config.refresh_interval,
            "failure_policy": settings.gatekeeper.failure_policy,
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    return app
