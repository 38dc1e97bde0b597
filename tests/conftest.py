"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded and
pins the rate limit settings every test module relies on.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("GATEKEEPER_STORE", "memory")
os.environ.setdefault("GATEKEEPER_LIMIT", "5")
os.environ.setdefault("GATEKEEPER_REFRESH_INTERVAL_SECONDS", "60")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402


class FakeClock:
    """Deterministic clock used to drive window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
