"""HTTP middleware for request ID propagation and correlation.

The middleware:
- Accepts the incoming request id header or generates a UUID
- Stores request_id in contextvars so rate limit log lines carry it
- Echoes request_id and the request duration in response headers
- Clears context after the request completes

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from gatekeeper.core.config import settings
from gatekeeper.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Assign a correlation id to the request and echo it on the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response with the request id and X-Request-Duration-ms headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
