"""Unit tests for the proxy pool manager."""

import httpx
import pytest

from conftest import FakeClock
from stealth_router.middleware.error_handler import ResourcePoolExhaustedError
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.providers import ProviderAccount, build_endpoints
from stealth_router.proxy.types import ProxyEndpoint, ProxyFilter


def _probe_factory(handler):
    """Client factory routing every probe through an httpx.MockTransport."""

    def factory(endpoint, timeout):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

    return factory


def _ipapi_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ip": "203.0.113.7", "country_name": "Germany", "city": "Berlin"})


def _ipapi_down(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class TestProxyEndpoint:
    """Test ProxyEndpoint dataclass defaults and URLs."""

    def test_defaults(self):
        ep = ProxyEndpoint(host="p1", port=8080)
        assert ep.success_rate == 1.0
        assert ep.failures == 0
        assert ep.last_used_at is None
        assert ep.proxy_url == "http://p1:8080"

    def test_proxy_url_quotes_credentials(self):
        ep = ProxyEndpoint(host="p1", port=8080, username="user@x", password="p:ss")
        assert ep.proxy_url == "http://user%40x:p%3Ass@p1:8080"

    def test_label_has_no_credentials(self):
        ep = ProxyEndpoint(host="p1", port=8080, username="u", password="secret", session_id="abc")
        assert "secret" not in ep.label
        assert ep.label == "custom:p1:8080#abc"


class TestSelection:
    """Test health-ranked selection."""

    def test_empty_pool_returns_none(self):
        assert ProxyPoolManager().get_next() is None

    def test_require_next_raises_on_empty_pool(self):
        with pytest.raises(ResourcePoolExhaustedError):
            ProxyPoolManager().require_next()

    def test_prefers_higher_success_rate(self, proxy_pool):
        proxy_pool.endpoints[0].success_rate = 0.6
        proxy_pool.endpoints[1].success_rate = 0.9
        proxy_pool.endpoints[2].success_rate = 0.7
        assert proxy_pool.get_next().host == "p2.example.net"

    def test_spreads_across_equally_healthy_endpoints(self, proxy_pool):
        hosts = [proxy_pool.get_next().host for _ in range(3)]
        assert sorted(hosts) == ["p1.example.net", "p2.example.net", "p3.example.net"]

    def test_stamps_last_used(self, proxy_pool, clock):
        selected = proxy_pool.get_next()
        assert selected.last_used_at == clock()

    def test_recency_penalty_expires(self, proxy_pool, clock):
        first = proxy_pool.get_next()
        clock.advance(61)
        for ep in proxy_pool.endpoints:
            if ep is not first:
                ep.success_rate = 0.99
        assert proxy_pool.get_next() is first

    def test_excludes_endpoints_at_max_failures(self, proxy_pool):
        target = proxy_pool.endpoints[0]
        for _ in range(3):
            proxy_pool.report_failure(target, "timeout")
        hosts = {proxy_pool.get_next().host for _ in range(6)}
        assert "p1.example.net" not in hosts

    def test_filters_by_provider_and_country(self, proxy_pool):
        proxy_pool.add_endpoints([ProxyEndpoint(host="gw", port=1, provider="oxylabs", country="DE")])
        selected = proxy_pool.get_next(ProxyFilter(provider="oxylabs", country="DE"))
        assert selected.host == "gw"

    def test_find_endpoint_by_label(self, proxy_pool):
        ep = proxy_pool.endpoints[1]
        assert proxy_pool.find_endpoint(ep.label) is ep
        assert proxy_pool.find_endpoint("missing") is None


class TestResetPath:
    """Total-outage recovery."""

    def test_resets_failures_when_nothing_qualifies(self, proxy_pool):
        for ep in proxy_pool.endpoints:
            for _ in range(3):
                proxy_pool.report_failure(ep, "refused")

        selected = proxy_pool.get_next()

        assert selected is not None
        assert all(ep.failures == 0 for ep in proxy_pool.endpoints)
        assert all(ep.success_rate >= 0.5 for ep in proxy_pool.endpoints)

    def test_filter_with_no_match_still_none(self, proxy_pool):
        assert proxy_pool.get_next(ProxyFilter(provider="brightdata")) is None

    def test_require_next_raises_with_details(self, proxy_pool):
        with pytest.raises(ResourcePoolExhaustedError) as exc_info:
            proxy_pool.require_next(ProxyFilter(country="JP"))
        assert exc_info.value.details["country"] == "JP"
        assert exc_info.value.details["total_endpoints"] == 3

    def test_manual_reset(self, proxy_pool):
        ep = proxy_pool.endpoints[0]
        for _ in range(3):
            proxy_pool.report_failure(ep, "refused")
        proxy_pool.reset()
        assert ep.failures == 0
        assert ep.success_rate == 0.5


class TestReporting:
    def test_success_recovers_one_failure(self, proxy_pool):
        ep = proxy_pool.endpoints[0]
        proxy_pool.report_failure(ep, "a")
        proxy_pool.report_failure(ep, "b")
        proxy_pool.report_success(ep, 300)
        assert ep.failures == 1
        assert ep.total_requests == 3
        assert ep.success_rate == pytest.approx(1 / 3)
        assert ep.avg_response_time_ms == 300

    def test_average_blends(self, proxy_pool):
        ep = proxy_pool.endpoints[0]
        proxy_pool.report_success(ep, 300)
        proxy_pool.report_success(ep, 100)
        assert ep.avg_response_time_ms == 200


class TestSessions:
    def test_rotate_session_changes_sticky_credentials(self):
        account = ProviderAccount(provider="oxylabs", username="cust", password="pw", sticky=True)
        pool = ProxyPoolManager()
        pool.add_endpoints(build_endpoints(account))
        ep = pool.endpoints[0]
        old_session, old_username = ep.session_id, ep.username

        pool.rotate_session(ep)

        assert ep.session_id != old_session
        assert ep.username != old_username
        assert ep.username == f"cust-session-{ep.session_id}"

    def test_rotate_session_ignores_rotating_endpoints(self, proxy_pool):
        ep = proxy_pool.endpoints[0]
        assert proxy_pool.rotate_session(ep) is not None
        assert ep.session_id is None

    def test_rotate_idle_sessions(self, clock):
        account = ProviderAccount(provider="smartproxy", username="u", password="p")
        pool = ProxyPoolManager(rotation_interval_seconds=300, clock=clock)
        pool.add_endpoints(build_endpoints(account))
        busy = pool.endpoints[0]
        pool.report_success(busy, 100)
        busy_session = busy.session_id

        rotated = pool.rotate_idle_sessions()

        assert rotated == len(pool.endpoints) - 1
        assert busy.session_id == busy_session


class TestHealthCheck:
    """Probes go through an injected httpx client factory."""

    @pytest.mark.asyncio
    async def test_probe_success_restores_endpoint(self, clock):
        pool = ProxyPoolManager(max_failures=2, clock=clock, client_factory=_probe_factory(_ipapi_ok))
        ep = ProxyEndpoint(host="p1", port=8080)
        pool.add_endpoints([ep])
        pool.report_failure(ep, "x")
        pool.report_failure(ep, "y")

        results = await pool.run_health_check()

        assert len(results) == 1
        assert results[0].success is True
        assert results[0].ip == "203.0.113.7"
        assert results[0].country == "Germany"
        assert ep.failures == 0

    @pytest.mark.asyncio
    async def test_probe_failure_counts(self, clock):
        pool = ProxyPoolManager(clock=clock, client_factory=_probe_factory(_ipapi_down))
        ep = ProxyEndpoint(host="p1", port=8080)
        pool.add_endpoints([ep])

        result = await pool.test_endpoint(ep)

        assert result.success is False
        assert "connection refused" in result.error
        assert ep.failures == 1
        assert ep.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_healthy_endpoints_are_not_probed(self, proxy_pool):
        assert await proxy_pool.run_health_check() == []

    @pytest.mark.asyncio
    async def test_initialize_probes_every_endpoint(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return _ipapi_ok(request)

        pool = ProxyPoolManager(client_factory=_probe_factory(handler))
        pool.add_urls(["http://p1:8080", "socks5://p2:1080"])
        await pool.initialize()

        assert len(calls) == 2
        assert all(ep.successful_requests == 1 for ep in pool.endpoints)

    @pytest.mark.asyncio
    async def test_start_stop_loops(self, proxy_pool):
        await proxy_pool.start()
        await proxy_pool.stop()
        await proxy_pool.stop()


class TestStats:
    def test_get_stats(self, proxy_pool):
        proxy_pool.add_endpoints([ProxyEndpoint(host="gw", port=1, provider="oxylabs")])
        for _ in range(3):
            proxy_pool.report_failure(proxy_pool.endpoints[0], "refused")

        stats = proxy_pool.get_stats()

        assert stats["total_endpoints"] == 4
        assert stats["working_endpoints"] == 3
        assert set(stats["providers"]) == {"custom", "oxylabs"}
        assert stats["providers"]["custom"]["working"] == 2

    def test_empty_stats(self):
        stats = ProxyPoolManager().get_stats()
        assert stats["total_endpoints"] == 0
        assert stats["overall_success_rate"] == 0.0
