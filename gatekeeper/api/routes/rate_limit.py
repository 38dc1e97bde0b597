from __future__ import annotations

from dataclasses import replace
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from gatekeeper.core.logging import hash_identifier
from gatekeeper.core.rate_limit import (
    build_request_context,
    enforce_rate_limit,
    get_engine,
    get_key_maker,
)
from gatekeeper.schemas.rate_limit import PingResponse, RateLimitStatusResponse
from gatekeeper.services.gatekeeper_service import (
    Decision,
    GatekeeperEngine,
    build_metadata,
    decide,
)

router = APIRouter(tags=["Rate Limit"])

# Full path of /ping once mounted under /v1
PING_ROUTE = "/v1/ping"


@router.get("/ping", response_model=PingResponse)
async def ping(
    decision: Annotated[Decision | None, Depends(enforce_rate_limit)],
) -> PingResponse:
    """Rate-limited endpoint.

    Each call consumes one request from the caller's window. Over the limit
    the dependency rejects the call with 429 before this body runs.
    """

    return PingResponse(remaining=decision.requests_left if decision else None)


@router.get("/rate-limit/status", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    request: Request,
    engine: Annotated[GatekeeperEngine, Depends(get_engine)],
    route: Annotated[
        str,
        Query(description="Path of the rate-limited route whose counter is reported."),
    ] = PING_ROUTE,
) -> RateLimitStatusResponse:
    """Report the caller's counter without consuming a request.

    The key is derived as if the request had been made to ``route``, so the
    report matches the limited route even when keys are scoped by route.

    Returns:
        RateLimitStatusResponse: Count, remaining and reset for the caller's key.
    """

    context = replace(build_request_context(request), route=route)
    key = get_key_maker(request).derive(context)
    config = engine.config
    now = engine.now()
    snapshot = engine.peek(key)

    if snapshot is None or now - snapshot.created_at >= config.refresh_interval:
        return RateLimitStatusResponse(
            key_hash=hash_identifier(key),
            limit=config.limit,
            window_seconds=config.refresh_interval,
            remaining=config.limit,
        )

    metadata = build_metadata(decide(snapshot, config), config, now)
    return RateLimitStatusResponse(
        key_hash=hash_identifier(key),
        limit=metadata.limit,
        window_seconds=config.refresh_interval,
        count=snapshot.count,
        remaining=metadata.remaining,
        window_started_at=snapshot.created_at,
        reset=metadata.reset,
    )
