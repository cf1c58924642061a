"""Unit tests for the health, readiness and statistics endpoints."""

from __future__ import annotations

import asyncio

from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import failing, make_config
from stealth_router.config.routing import StrategyDefinition
from stealth_router.models.routing import RouteRequest
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.types import ProxyEndpoint
from stealth_router.routers.health import create_health_router
from stealth_router.routing.router import AdaptiveRouter

URL = "https://shop.example.com/products"


def _client(router=None, proxy_pool=None) -> TestClient:
    app = FastAPI()
    app.include_router(create_health_router(router=router, proxy_pool=proxy_pool))
    return TestClient(app)


def _router(*definitions: StrategyDefinition) -> AdaptiveRouter:
    return AdaptiveRouter(make_config(*definitions or (StrategyDefinition(name="direct"),)))


def _pool(count: int = 2) -> ProxyPoolManager:
    pool = ProxyPoolManager(max_failures=1)
    pool.add_endpoints([ProxyEndpoint(host=f"p{i}", port=8080) for i in range(count)])
    return pool


class TestHealth:
    def test_health_without_dependencies(self):
        resp = _client().get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["total_requests"] == 0

    def test_health_reports_router_and_pool(self):
        router = _router()
        asyncio.run(router.route(RouteRequest(url=URL), {"direct": failing()}))

        body = _client(router, _pool()).get("/health").json()

        assert body["data"]["total_requests"] == 1
        assert body["data"]["overall_success_rate"] == 0.0
        assert body["data"]["proxy_pool"]["total_endpoints"] == 2


class TestReadiness:
    """200 only when a strategy can take traffic and the pool has a working endpoint."""

    def test_ready_with_enabled_strategy(self):
        resp = _client(_router()).get("/readiness")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["ready"] is True
        assert data["available_strategies"] == ["direct"]
        assert data["working_endpoints"] is None

    def test_not_ready_without_router(self):
        resp = _client().get("/readiness")
        assert resp.status_code == 503
        assert resp.json()["error"] == "Service not ready"

    def test_not_ready_when_all_disabled(self):
        router = _router(StrategyDefinition(name="direct", enabled=False))
        assert _client(router).get("/readiness").status_code == 503

    def test_not_ready_when_breaker_open(self):
        router = _router()

        async def trip() -> None:
            for _ in range(5):
                await router.route(RouteRequest(url=URL), {"direct": failing()})
            await router.update_circuit_breakers()

        asyncio.run(trip())

        resp = _client(router).get("/readiness")
        assert resp.status_code == 503
        assert resp.json()["data"]["available_strategies"] == []

    def test_not_ready_when_pool_has_no_working_endpoint(self):
        pool = _pool(1)
        pool.report_failure(pool.endpoints[0], "refused")

        resp = _client(_router(), pool).get("/readiness")

        assert resp.status_code == 503
        assert resp.json()["data"]["working_endpoints"] == 0

    def test_ready_with_working_pool(self):
        resp = _client(_router(), _pool()).get("/readiness")
        assert resp.status_code == 200
        assert resp.json()["data"]["working_endpoints"] == 2


class TestStatistics:
    def test_statistics_payload(self):
        router = _router(StrategyDefinition(name="direct"), StrategyDefinition(name="browser"))
        asyncio.run(router.route(RouteRequest(url=URL), {"direct": failing(), "browser": failing()}))

        data = _client(router).get("/statistics").json()["data"]

        assert data["total_requests"] == 2
        assert set(data["strategies"]) == {"direct", "browser"}
        assert data["strategies"]["direct"]["circuit_breaker"] == "closed"
        assert "detection" in data

    def test_statistics_without_router(self):
        assert _client().get("/statistics").json()["data"] == {}
