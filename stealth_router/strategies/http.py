"""Reference HTTP strategy built on httpx.

Performs one request, optionally through an endpoint drawn from a
:class:`ProxyPoolManager`, and reports the endpoint's outcome back to the
pool. Server errors and transport failures raise
:class:`StrategyExecutionError`; every other response is returned so the
router's detection feedback can inspect it (a 403 challenge page is a
response, not an exception).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from stealth_router.middleware.error_handler import StrategyExecutionError
from stealth_router.models.routing import RouteRequest, StrategyResponse
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.types import ProxyEndpoint, ProxyFilter
from stealth_router.strategies.base import BaseStrategy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Statuses that indicate the egress endpoint itself is burned or misconfigured
PROXY_FAILURE_STATUSES = frozenset({403, 407, 429})

HttpClientFactory = Callable[[ProxyEndpoint | None, float], httpx.AsyncClient]


def default_client_factory(endpoint: ProxyEndpoint | None, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        proxy=endpoint.proxy_url if endpoint else None,
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
    )


class HttpStrategy(BaseStrategy):
    """Plain or proxied HTTP fetch.

    Args:
        name: Strategy name this implementation is registered under.
        pool: Proxy pool to draw an endpoint from per request, if any.
        proxy_filter: Selection constraints passed to the pool.
        client_factory: Builds the ``httpx.AsyncClient`` for one request.
    """

    def __init__(
        self,
        name: str = "direct",
        *,
        pool: ProxyPoolManager | None = None,
        proxy_filter: ProxyFilter | None = None,
        client_factory: HttpClientFactory | None = None,
    ) -> None:
        self.name = name
        self._pool = pool
        self._proxy_filter = proxy_filter
        self._client_factory = client_factory or default_client_factory

    async def fetch(self, request: RouteRequest) -> StrategyResponse:
        endpoint = self._pool.require_next(self._proxy_filter) if self._pool else None
        timeout = (request.timeout_ms / 1000) if request.timeout_ms else DEFAULT_TIMEOUT_SECONDS

        start = time.monotonic()
        try:
            async with self._client_factory(endpoint, timeout) as client:
                response = await client.request(
                    request.http_method.value,
                    request.url,
                    headers=request.headers or None,
                    **self._body_kwargs(request),
                )
        except httpx.HTTPError as exc:
            if endpoint is not None and self._pool is not None:
                self._pool.report_failure(endpoint, f"{exc.__class__.__name__}: {exc}")
            raise StrategyExecutionError(
                f"HTTP request failed: {exc.__class__.__name__}",
                strategy=self.name,
            ) from exc
        except asyncio.CancelledError:
            # router timeout or caller cancellation; a hung proxy still counts
            if endpoint is not None and self._pool is not None:
                self._pool.report_failure(endpoint, "cancelled")
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        proxy_label = endpoint.label if endpoint else None

        if endpoint is not None and self._pool is not None:
            if response.status_code >= 500 or response.status_code in PROXY_FAILURE_STATUSES:
                self._pool.report_failure(endpoint, f"HTTP {response.status_code}")
            else:
                self._pool.report_success(endpoint, elapsed_ms)

        if response.status_code >= 500:
            raise StrategyExecutionError(
                f"Upstream returned HTTP {response.status_code}",
                upstream_status=response.status_code,
                strategy=self.name,
            )

        logger.debug(
            "Fetched %s via %s in %.0fms (HTTP %d)",
            request.url,
            self.name,
            elapsed_ms,
            response.status_code,
        )
        return StrategyResponse(
            status_code=response.status_code,
            headers=dict(response.headers.items()),
            content=response.text,
            cookies=[
                {"name": cookie.name, "value": cookie.value, "domain": cookie.domain}
                for cookie in response.cookies.jar
            ],
            proxy_used=proxy_label,
        )

    @staticmethod
    def _body_kwargs(request: RouteRequest) -> dict:
        if request.body is None:
            return {}
        if isinstance(request.body, (str, bytes)):
            return {"content": request.body}
        return {"json": request.body}
