"""Unit tests for application assembly."""

import pytest
from fastapi.testclient import TestClient

from stealth_router.config.routing import DEFAULT_ROUTE_CONFIG
from stealth_router.config.settings import RouterSettings
from stealth_router.main import (
    build_proxy_pool,
    build_router,
    build_strategies,
    create_app,
    provider_accounts,
)
from stealth_router.proxy.providers import PROVIDER_DEFAULTS


class TestProviderAccounts:
    def test_none_without_credentials(self):
        assert provider_accounts(RouterSettings()) == []

    def test_only_complete_accounts(self):
        settings = RouterSettings(
            oxylabs_username="cust",
            oxylabs_password="pw",
            oxylabs_country="DE",
            brightdata_username="only-user",
            sticky_sessions=False,
        )
        accounts = provider_accounts(settings)
        assert len(accounts) == 1
        assert accounts[0].provider == "oxylabs"
        assert accounts[0].country == "DE"
        assert accounts[0].sticky is False


class TestBuildProxyPool:
    def test_no_sources_means_no_pool(self):
        assert build_proxy_pool(RouterSettings()) is None

    def test_plain_urls(self, settings):
        pool = build_proxy_pool(settings)
        assert [e.host for e in pool.endpoints] == ["proxy1", "proxy2"]
        assert pool.max_failures == settings.proxy_max_failures

    def test_provider_endpoints_added(self, settings):
        settings.smartproxy_username = "u"
        settings.smartproxy_password = "p"
        pool = build_proxy_pool(settings)
        _, sticky_count, _ = PROVIDER_DEFAULTS["smartproxy"]
        assert len(pool.endpoints) == 2 + sticky_count


class TestBuildRouter:
    def test_falls_back_to_default_config(self, settings):
        router = build_router(settings, None)
        assert router.config == DEFAULT_ROUTE_CONFIG

    def test_proxy_pool_prerequisite(self, settings):
        pool = build_proxy_pool(settings)
        router = build_router(settings, pool)
        assert "proxy_pool" in router.get_statistics()

    def test_strategies_follow_pool(self, settings):
        assert build_strategies(None).list_names() == ["direct"]
        pool = build_proxy_pool(settings)
        assert build_strategies(pool).list_names() == ["direct", "premium_proxy"]

    def test_router_is_bound_to_startup_strategies(self, settings):
        pool = build_proxy_pool(settings)
        router = build_router(settings, pool)
        assert sorted(router.implementations) == ["direct", "premium_proxy"]
        assert sorted(build_router(settings, None).implementations) == ["direct"]


class TestApp:
    def test_lifespan_serves_health(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ROUTER_ROUTE_CONFIG_PATH", "does/not/exist.yaml")
        monkeypatch.setenv("ROUTER_JSON_LOGS", "false")

        with TestClient(create_app()) as client:
            resp = client.get("/health")
            assert resp.status_code == 200
            assert resp.json()["data"]["status"] == "healthy"
            assert client.get("/readiness").status_code == 200
