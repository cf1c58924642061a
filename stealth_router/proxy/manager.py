"""Proxy pool manager with health-ranked selection, session rotation and health checks.

Selection filters the pool to endpoints with ``success_rate >=
min_success_rate`` and ``failures < max_failures`` (plus optional provider /
country constraints), ranks them by ``success_rate * 100 - recency_penalty``
and stamps ``last_used_at`` on the winner. The recency penalty is one point
per second of the reuse cooldown still remaining, so the pool spreads load
across equally healthy endpoints.

When nothing qualifies the pool assumes a total outage it cannot see the end
of: every endpoint's failures are reset and its success rate lifted to a
neutral floor, and selection is retried once. Background loops re-test
unhealthy endpoints and rotate idle sticky sessions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable

import httpx

from stealth_router.middleware.error_handler import ResourcePoolExhaustedError
from stealth_router.proxy.providers import new_session_id, parse_proxy_url, session_username
from stealth_router.proxy.types import ProxyEndpoint, ProxyFilter, ProxyTestResult

logger = logging.getLogger(__name__)

NEUTRAL_SUCCESS_RATE = 0.5
RECOVERY_SUCCESS_RATE = 0.3
HEALTH_FLOOR = 0.3

ClientFactory = Callable[[ProxyEndpoint, float], httpx.AsyncClient]


def _default_client_factory(endpoint: ProxyEndpoint, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        proxy=endpoint.proxy_url,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"},
    )


class ProxyPoolManager:
    """Owns the egress endpoint table and every mutation of its statistics.

    All mutating methods are synchronous and contain no awaits, so on the
    event loop they run as indivisible critical sections; health checks
    probe concurrently and apply their results in one such section per
    endpoint.
    """

    def __init__(
        self,
        *,
        max_failures: int = 5,
        min_success_rate: float = NEUTRAL_SUCCESS_RATE,
        reuse_cooldown_seconds: float = 60.0,
        health_check_interval_seconds: float = 600.0,
        rotation_interval_seconds: float = 300.0,
        probe_url: str = "https://ipapi.co/json/",
        probe_timeout_seconds: float = 10.0,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._endpoints: list[ProxyEndpoint] = []
        self._max_failures = max_failures
        self._min_success_rate = min_success_rate
        self._reuse_cooldown = reuse_cooldown_seconds
        self._health_check_interval = health_check_interval_seconds
        self._rotation_interval = rotation_interval_seconds
        self._probe_url = probe_url
        self._probe_timeout = probe_timeout_seconds
        self._client_factory = client_factory or _default_client_factory
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @property
    def endpoints(self) -> list[ProxyEndpoint]:
        return list(self._endpoints)

    @property
    def max_failures(self) -> int:
        return self._max_failures

    def add_endpoints(self, endpoints: Iterable[ProxyEndpoint]) -> None:
        self._endpoints.extend(endpoints)

    def add_urls(self, urls: Iterable[str]) -> None:
        """Add plain proxy URLs (``scheme://[user:pass@]host:port``)."""
        self.add_endpoints(parse_proxy_url(url) for url in urls)

    async def initialize(self, *, probe: bool = True) -> None:
        """Probe every endpoint once so ranking starts from real data."""
        if probe and self._endpoints:
            results = await asyncio.gather(*(self.test_endpoint(e) for e in self._endpoints))
            working = sum(1 for r in results if r.success)
            logger.info(
                "Proxy pool initialized: %d/%d endpoints working",
                working,
                len(self._endpoints),
            )
        else:
            logger.info("Proxy pool initialized with %d endpoints", len(self._endpoints))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def get_next(self, filter: ProxyFilter | None = None) -> ProxyEndpoint | None:
        """Return the best-ranked usable endpoint, or ``None``.

        An empty candidate set triggers the full-pool reset and one retry.
        """
        if not self._endpoints:
            return None

        filter = filter or ProxyFilter()
        floor = (
            filter.min_success_rate
            if filter.min_success_rate is not None
            else self._min_success_rate
        )
        candidates = self._candidates(filter, floor)

        if not candidates:
            logger.warning("No usable proxy endpoints, resetting failure counts")
            self._reset_pool()
            candidates = self._candidates(filter, min(floor, RECOVERY_SUCCESS_RATE))

        if not candidates:
            return None

        now = self._clock()
        selected = max(candidates, key=lambda e: self._score(e, now))
        selected.last_used_at = now
        return selected

    def require_next(self, filter: ProxyFilter | None = None) -> ProxyEndpoint:
        """Like :meth:`get_next` but raise when nothing is usable.

        Raises
        ------
        ResourcePoolExhaustedError
            If no endpoint qualifies even after the pool reset.
        """
        endpoint = self.get_next(filter)
        if endpoint is None:
            raise ResourcePoolExhaustedError(
                total_endpoints=len(self._endpoints),
                provider=filter.provider if filter else None,
                country=filter.country if filter else None,
            )
        return endpoint

    def find_endpoint(self, label: str) -> ProxyEndpoint | None:
        """Look an endpoint up by its :attr:`ProxyEndpoint.label`."""
        for endpoint in self._endpoints:
            if endpoint.label == label:
                return endpoint
        return None

    def _candidates(self, filter: ProxyFilter, floor: float) -> list[ProxyEndpoint]:
        return [
            e
            for e in self._endpoints
            if e.success_rate >= floor
            and e.failures < self._max_failures
            and (filter.provider is None or e.provider == filter.provider)
            and (filter.country is None or e.country == filter.country)
        ]

    def _score(self, endpoint: ProxyEndpoint, now: float) -> float:
        return endpoint.success_rate * 100 - self._recency_penalty(endpoint, now)

    def _recency_penalty(self, endpoint: ProxyEndpoint, now: float) -> float:
        if endpoint.last_used_at is None:
            return 0.0
        return max(0.0, self._reuse_cooldown - (now - endpoint.last_used_at))

    def _reset_pool(self) -> None:
        for endpoint in self._endpoints:
            endpoint.failures = 0
            endpoint.success_rate = max(endpoint.success_rate, NEUTRAL_SUCCESS_RATE)

    def reset(self) -> None:
        """Manually rehabilitate every endpoint."""
        self._reset_pool()
        logger.info("Proxy pool manually reset (%d endpoints)", len(self._endpoints))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def rotate_session(self, endpoint: ProxyEndpoint) -> ProxyEndpoint | None:
        """Give a sticky *endpoint* a fresh session, then select the next endpoint."""
        self._new_session(endpoint)
        return self.get_next()

    def _new_session(self, endpoint: ProxyEndpoint) -> None:
        if not endpoint.is_sticky:
            return
        old_session = endpoint.session_id
        endpoint.session_id = new_session_id()
        if endpoint.base_username:
            endpoint.username = session_username(endpoint.base_username, endpoint.session_id)
        logger.info(
            "Rotated %s session %s → %s",
            endpoint.provider,
            old_session,
            endpoint.session_id,
        )

    def rotate_idle_sessions(self) -> int:
        """Rotate sticky sessions idle for longer than the rotation interval."""
        now = self._clock()
        rotated = 0
        for endpoint in self._endpoints:
            idle = endpoint.last_used_at is None or now - endpoint.last_used_at > self._rotation_interval
            if endpoint.is_sticky and idle:
                self._new_session(endpoint)
                rotated += 1
        return rotated

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def report_success(self, endpoint: ProxyEndpoint, response_time_ms: float) -> None:
        """Record a successful request; recovers one failure."""
        endpoint.total_requests += 1
        endpoint.successful_requests += 1
        endpoint.success_rate = endpoint.successful_requests / endpoint.total_requests
        endpoint.avg_response_time_ms = self._blend(endpoint.avg_response_time_ms, response_time_ms)
        endpoint.last_used_at = self._clock()
        endpoint.failures = max(0, endpoint.failures - 1)

    def report_failure(self, endpoint: ProxyEndpoint, reason: str) -> None:
        """Record a failed request; excluded from selection at ``max_failures``."""
        endpoint.failures += 1
        endpoint.total_requests += 1
        endpoint.success_rate = endpoint.successful_requests / endpoint.total_requests

        logger.warning(
            "Proxy failure: %s (%d/%d) - %s",
            endpoint.label,
            endpoint.failures,
            self._max_failures,
            reason,
        )
        if endpoint.failures == self._max_failures:
            logger.error("Proxy excluded from selection: %s", endpoint.label)

    @staticmethod
    def _blend(current: float, sample: float) -> float:
        return sample if current <= 0 else (current + sample) / 2

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def test_endpoint(self, endpoint: ProxyEndpoint) -> ProxyTestResult:
        """Probe *endpoint* with a lightweight request and update its stats."""
        start = time.monotonic()
        try:
            async with self._client_factory(endpoint, self._probe_timeout) as client:
                response = await client.get(self._probe_url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            endpoint.total_requests += 1
            endpoint.failures += 1
            endpoint.success_rate = endpoint.successful_requests / endpoint.total_requests
            logger.debug("Health check failed for proxy %s: %s", endpoint.label, exc)
            return ProxyTestResult(
                endpoint=endpoint,
                success=False,
                response_time_ms=elapsed_ms,
                error=str(exc) or exc.__class__.__name__,
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        endpoint.total_requests += 1
        endpoint.successful_requests += 1
        endpoint.success_rate = endpoint.successful_requests / endpoint.total_requests
        endpoint.avg_response_time_ms = self._blend(endpoint.avg_response_time_ms, elapsed_ms)
        endpoint.last_used_at = self._clock()
        endpoint.failures = 0

        payload = data if isinstance(data, dict) else {}
        return ProxyTestResult(
            endpoint=endpoint,
            success=True,
            response_time_ms=elapsed_ms,
            ip=str(payload.get("ip", "unknown")),
            country=str(payload.get("country_name", "unknown")),
            city=payload.get("city"),
        )

    def _needs_health_check(self, endpoint: ProxyEndpoint) -> bool:
        return endpoint.success_rate < HEALTH_FLOOR or endpoint.failures >= self._max_failures

    async def run_health_check(self) -> list[ProxyTestResult]:
        """Re-test every endpoint below the health floor."""
        unhealthy = [e for e in self._endpoints if self._needs_health_check(e)]
        if not unhealthy:
            return []

        logger.info("Testing %d unhealthy proxy endpoints", len(unhealthy))
        results = await asyncio.gather(*(self.test_endpoint(e) for e in unhealthy))
        restored = sum(1 for r in results if r.success)
        if restored:
            logger.info("Restored %d/%d proxy endpoints", restored, len(unhealthy))
        return list(results)

    async def health_check_loop(self) -> None:
        while True:
            await asyncio.sleep(self._health_check_interval)
            await self.run_health_check()

    async def rotation_loop(self) -> None:
        while True:
            await asyncio.sleep(self._rotation_interval)
            rotated = self.rotate_idle_sessions()
            if rotated:
                logger.info("Auto-rotated %d idle sticky sessions", rotated)

    async def start(self) -> None:
        """Launch the health-check and rotation loops."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.health_check_loop(), name="proxy-health-check"),
            asyncio.create_task(self.rotation_loop(), name="proxy-session-rotation"),
        ]

    async def stop(self) -> None:
        """Cancel and join the background loops."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Stats / metrics
    # ------------------------------------------------------------------

    def _is_working(self, endpoint: ProxyEndpoint) -> bool:
        return endpoint.success_rate >= NEUTRAL_SUCCESS_RATE and endpoint.failures < self._max_failures

    def get_stats(self) -> dict:
        """Pool-wide and per-provider statistics."""
        total = len(self._endpoints)
        working = sum(1 for e in self._endpoints if self._is_working(e))

        providers: dict[str, dict] = {}
        for name in sorted({e.provider for e in self._endpoints}):
            group = [e for e in self._endpoints if e.provider == name]
            providers[name] = {
                "total": len(group),
                "working": sum(1 for e in group if self._is_working(e)),
                "avg_success_rate": sum(e.success_rate for e in group) / len(group),
                "avg_response_time_ms": sum(e.avg_response_time_ms for e in group) / len(group),
            }

        return {
            "total_endpoints": total,
            "working_endpoints": working,
            "overall_success_rate": (
                sum(e.success_rate for e in self._endpoints) / total if total else 0.0
            ),
            "providers": providers,
        }
