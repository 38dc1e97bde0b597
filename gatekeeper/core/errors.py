"""Application-level exception types.

This module defines domain errors used across the engine, stores and the HTTP
adapter, enabling consistent error handling, logging, and API responses.

A rate-limit denial is not an error inside the engine (it is a regular
``Decision``). Only the HTTP adapter turns it into ``RateLimitExceededError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what it knows.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    reset: int
    retry_after: int
    backend: str
    setting: str
    actual_value: Any
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidConfigurationError(ValidationAppError):
    """Raised when a rate limit configuration is invalid.

    Always raised at construction time, never while serving a request.
    """


class StoreUnavailableError(AppError):
    """Raised when a counter store cannot complete its atomic operation."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the HTTP adapter when a caller has no requests left.

    Attributes:
        headers: Rate limit headers to send with the rejection.
    """

    headers: dict[str, str] = field(default_factory=dict)
