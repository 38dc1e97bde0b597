"""Tests for the FastAPI rate limiting dependency and routes."""

from unittest.mock import Mock

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore
from gatekeeper.adapters.rate_limit.in_memory import InMemoryCounterStore
from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import settings
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.rate_limit import Gatekeeper
from gatekeeper.services.gatekeeper_service import GatekeeperEngine, RateLimitConfig
from gatekeeper.utils.key_maker import KeyMaker, KeySource


@pytest.fixture
def engine(clock) -> GatekeeperEngine:
    return GatekeeperEngine(
        store=InMemoryCounterStore(),
        config=RateLimitConfig(limit=3, refresh_interval=60),
        clock=clock,
    )


@pytest.fixture
def client(engine: GatekeeperEngine) -> TestClient:
    return TestClient(create_app(engine=engine, key_maker=KeyMaker()))


def _failing_engine(clock) -> GatekeeperEngine:
    store = Mock(spec=AbstractCounterStore)
    store.increment_or_create.side_effect = StoreUnavailableError(
        code="store_unavailable",
        message="Rate limit store could not record the request",
        details={"backend": "redis"},
    )
    return GatekeeperEngine(store=store, config=RateLimitConfig(3, 60), clock=clock)


def test_admitted_requests_carry_rate_limit_headers(client: TestClient, clock) -> None:
    clock.advance(15)
    resp = client.get("/v1/ping")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "remaining": 2}
    assert resp.headers["Rate-Limit-Limit"] == "3"
    assert resp.headers["Rate-Limit-Remaining"] == "2"
    assert resp.headers["Rate-Limit-Reset"] == "60"


def test_reset_header_counts_down_within_window(client: TestClient, clock) -> None:
    client.get("/v1/ping")
    clock.advance(20.5)

    resp = client.get("/v1/ping")

    assert resp.headers["Rate-Limit-Remaining"] == "1"
    assert resp.headers["Rate-Limit-Reset"] == "39"


def test_rejects_with_429_after_limit(client: TestClient) -> None:
    for _ in range(3):
        assert client.get("/v1/ping").status_code == 200

    resp = client.get("/v1/ping")

    assert resp.status_code == 429
    body = resp.json()
    assert body["error"]["code"] == "rate_limit_exceeded"
    assert body["error"]["message"] == "Slow down. You sent too many requests."
    assert body["error"]["details"]["remaining"] == 0
    assert resp.headers["Retry-After"] == "60"
    assert resp.headers["Rate-Limit-Remaining"] == "0"
    assert resp.headers["X-Request-ID"]


def test_window_reset_admits_again(client: TestClient, clock) -> None:
    for _ in range(4):
        client.get("/v1/ping")

    clock.advance(60)
    resp = client.get("/v1/ping")

    assert resp.status_code == 200
    assert resp.headers["Rate-Limit-Remaining"] == "2"


def test_forwarded_clients_are_counted_separately(client: TestClient) -> None:
    for _ in range(3):
        client.get("/v1/ping", headers={"X-Forwarded-For": "203.0.113.1"})

    blocked = client.get("/v1/ping", headers={"X-Forwarded-For": "203.0.113.1"})
    other = client.get("/v1/ping", headers={"X-Forwarded-For": "203.0.113.2"})

    assert blocked.status_code == 429
    assert other.status_code == 200


def test_health_is_not_rate_limited(client: TestClient) -> None:
    for _ in range(10):
        assert client.get("/health").status_code == 200


def test_status_reports_counter_without_consuming(client: TestClient, clock) -> None:
    client.get("/v1/ping")
    client.get("/v1/ping")
    clock.advance(10)

    first = client.get("/v1/rate-limit/status").json()
    second = client.get("/v1/rate-limit/status").json()

    assert first == second
    assert first["count"] == 2
    assert first["remaining"] == 1
    assert first["limit"] == 3
    assert first["window_started_at"] == 1000.0
    assert first["reset"] == 50
    assert client.get("/v1/ping").headers["Rate-Limit-Remaining"] == "0"


def test_status_without_active_window(client: TestClient) -> None:
    body = client.get("/v1/rate-limit/status").json()

    assert body["count"] == 0
    assert body["remaining"] == 3
    assert body["window_started_at"] is None


def test_status_reports_route_scoped_counter(engine: GatekeeperEngine) -> None:
    client = TestClient(create_app(engine=engine, key_maker=KeyMaker(scope_by_route=True)))
    client.get("/v1/ping")
    client.get("/v1/ping")

    default = client.get("/v1/rate-limit/status").json()
    explicit = client.get("/v1/rate-limit/status", params={"route": "/v1/ping"}).json()
    other = client.get("/v1/rate-limit/status", params={"route": "/v1/other"}).json()

    assert default == explicit
    assert default["count"] == 2
    assert default["remaining"] == 1
    assert other["count"] == 0
    assert other["key_hash"] != default["key_hash"]


def test_full_memory_store_rejects_new_clients_with_503(clock, monkeypatch) -> None:
    monkeypatch.setattr(settings.gatekeeper, "failure_policy", "fail_closed")
    engine = GatekeeperEngine(
        store=InMemoryCounterStore(max_entries=1),
        config=RateLimitConfig(limit=2, refresh_interval=60),
        clock=clock,
    )
    client = TestClient(create_app(engine=engine, key_maker=KeyMaker()))
    victim = {"X-Forwarded-For": "203.0.113.1"}

    assert client.get("/v1/ping", headers=victim).status_code == 200
    assert client.get("/v1/ping", headers=victim).status_code == 200
    sprayed = client.get("/v1/ping", headers={"X-Forwarded-For": "198.51.100.9"})

    assert sprayed.status_code == 503
    assert sprayed.json()["error"]["code"] == "store_capacity_exceeded"
    assert client.get("/v1/ping", headers=victim).status_code == 429


def test_store_failure_fails_closed_by_default(clock, monkeypatch) -> None:
    monkeypatch.setattr(settings.gatekeeper, "failure_policy", "fail_closed")
    client = TestClient(create_app(engine=_failing_engine(clock)))

    resp = client.get("/v1/ping")

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "store_unavailable"
    assert "Rate-Limit-Limit" not in resp.headers


def test_store_failure_can_fail_open(clock, monkeypatch) -> None:
    monkeypatch.setattr(settings.gatekeeper, "failure_policy", "fail_open")
    client = TestClient(create_app(engine=_failing_engine(clock)))

    resp = client.get("/v1/ping")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "remaining": None}
    assert "Rate-Limit-Limit" not in resp.headers


def test_disabled_gatekeeper_skips_engine(clock, monkeypatch) -> None:
    monkeypatch.setattr(settings.gatekeeper, "enabled", False)
    client = TestClient(create_app(engine=_failing_engine(clock)))

    for _ in range(5):
        resp = client.get("/v1/ping")
        assert resp.status_code == 200
        assert "Rate-Limit-Remaining" not in resp.headers


def test_headers_can_be_disabled(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings.gatekeeper, "include_headers", False)

    resp = client.get("/v1/ping")

    assert resp.status_code == 200
    assert "Rate-Limit-Limit" not in resp.headers


class TestRouteOverrides:
    @pytest.fixture
    def app(self, engine: GatekeeperEngine) -> FastAPI:
        app = FastAPI()
        app.state.gatekeeper = engine
        app.state.key_maker = KeyMaker()
        setup_exception_handlers(app)

        strict = Gatekeeper(config=RateLimitConfig(limit=1, refresh_interval=10))
        custom_error = Gatekeeper(
            config=RateLimitConfig(limit=1, refresh_interval=10),
            error_factory=lambda metadata: HTTPException(
                status_code=403,
                detail=f"blocked for {metadata.reset}s",
            ),
        )
        by_api_key = Gatekeeper(key_maker=KeyMaker(source=KeySource.API_KEY, scope_by_route=True))

        @app.get("/strict", dependencies=[Depends(strict)])
        async def strict_route() -> dict:
            return {"ok": True}

        @app.get("/custom", dependencies=[Depends(custom_error)])
        async def custom_route() -> dict:
            return {"ok": True}

        @app.get("/keyed", dependencies=[Depends(by_api_key)])
        async def keyed_route() -> dict:
            return {"ok": True}

        return app

    def test_route_config_overrides_engine_default(self, app: FastAPI) -> None:
        client = TestClient(app)

        first = client.get("/strict")
        second = client.get("/strict")

        assert first.headers["Rate-Limit-Limit"] == "1"
        assert first.headers["Rate-Limit-Reset"] == "10"
        assert second.status_code == 429

    def test_error_factory_replaces_default_error(self, app: FastAPI) -> None:
        client = TestClient(app)
        client.get("/custom")

        resp = client.get("/custom")

        assert resp.status_code == 403
        assert resp.json() == {"detail": "blocked for 10s"}

    def test_route_key_maker_isolates_api_keys(self, app: FastAPI) -> None:
        client = TestClient(app)

        for _ in range(3):
            assert client.get("/keyed", headers={"X-API-Key": "alpha"}).status_code == 200

        assert client.get("/keyed", headers={"X-API-Key": "alpha"}).status_code == 429
        assert client.get("/keyed", headers={"X-API-Key": "beta"}).status_code == 200
