"""Pydantic schemas for rate limit endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitStatusResponse(BaseModel):
    """Current counter for the calling client, read without consuming a request."""

    key_hash: str = Field(
        ..., description="Short SHA-256 digest of the caller's rate limit key."
    )
    limit: int = Field(
        ..., description="Maximum requests allowed per window."
    )
    window_seconds: float = Field(
        ..., description="Window length in seconds."
    )
    count: int = Field(
        0, description="Requests recorded in the current window."
    )
    remaining: int = Field(
        ..., description="Requests left in the current window."
    )
    window_started_at: float | None = Field(
        default=None,
        description="UNIX time the current window started (null when no active window).",
    )
    reset: int = Field(
        0, description="Seconds until the current window resets."
    )


class PingResponse(BaseModel):
    """Response of the rate-limited ping endpoint."""

    status: str = Field("ok", description="Always 'ok' when the request was admitted.")
    remaining: int | None = Field(
        default=None,
        description="Requests left in the current window (null when rate limiting is disabled).",
    )
