"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 with Rate-Limit-* and Retry-After headers
- StoreUnavailableError → 503 (infrastructure fault, never a denial)
- Other AppError subclasses → 400
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from gatekeeper.core.errors import AppError, RateLimitExceededError, StoreUnavailableError
from gatekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, StoreUnavailableError):
        return 503
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Response body:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code, body and headers.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    headers = exc.headers if isinstance(exc, RateLimitExceededError) else None
    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the failure and returns a generic message without implementation
    details.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with a FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
