"""Shared test fixtures and hypothesis strategies for the routing test suite."""

from __future__ import annotations

import pytest
from hypothesis import strategies as st

from stealth_router.config.routing import (
    AdaptiveSettings,
    RetrySettings,
    RouteConfig,
    RoutingPolicy,
    StrategyDefinition,
)
from stealth_router.config.settings import RouterSettings
from stealth_router.models.detection import DetectionSignal, Severity, SignalType
from stealth_router.models.routing import RouteRequest, StrategyResponse
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.types import ProxyEndpoint


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(
    *definitions: StrategyDefinition,
    policy: RoutingPolicy = RoutingPolicy.PRIORITY,
    max_retries: int = 0,
    retry_delay_ms: int = 0,
    **adaptive: object,
) -> RouteConfig:
    """Small route config with zero retry delay so tests never sleep."""
    return RouteConfig(
        strategy=policy,
        methods=definitions,
        adaptive_settings=AdaptiveSettings(**adaptive),
        retry_settings=RetrySettings(max_retries=max_retries, retry_delay_ms=retry_delay_ms),
    )


def ok(content: str = "<html><body><p>Product list</p></body></html>", status_code: int = 200):
    """Strategy implementation that always returns a clean page."""

    async def _impl(request: RouteRequest) -> StrategyResponse:
        return StrategyResponse(status_code=status_code, content=content)

    return _impl


def failing(message: str = "connection reset"):
    """Strategy implementation that always raises."""

    async def _impl(request: RouteRequest) -> StrategyResponse:
        raise RuntimeError(message)

    return _impl


def make_signal(severity: Severity, signal_type: SignalType = SignalType.CHALLENGE, **kwargs) -> DetectionSignal:
    return DetectionSignal(
        type=signal_type,
        severity=severity,
        description=f"{severity.value} test signal",
        adaptation_suggestion="slow down",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> RouterSettings:
    """Test settings with safe defaults."""
    return RouterSettings(
        proxy_endpoints=["http://proxy1:8080", "http://proxy2:8080"],
        route_config_path="does/not/exist.yaml",
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def request_() -> RouteRequest:
    return RouteRequest(url="https://shop.example.com/products")


@pytest.fixture
def proxy_pool(clock: FakeClock) -> ProxyPoolManager:
    pool = ProxyPoolManager(max_failures=3, clock=clock)
    pool.add_endpoints(
        [
            ProxyEndpoint(host="p1.example.net", port=8080),
            ProxyEndpoint(host="p2.example.net", port=8080),
            ProxyEndpoint(host="p3.example.net", port=8080),
        ]
    )
    return pool


# ---------------------------------------------------------------------------
# Hypothesis strategies (reusable across property tests)
# ---------------------------------------------------------------------------

severities = st.sampled_from(list(Severity))
signal_types = st.sampled_from(list(SignalType))

detection_signals = st.builds(
    DetectionSignal,
    type=signal_types,
    severity=severities,
    description=st.just("generated"),
    adaptation_suggestion=st.just("adapt"),
)

signal_batches = st.lists(detection_signals, min_size=0, max_size=20)

strategy_names = st.sampled_from(["alpha", "bravo", "charlie", "delta", "echo"])

success_rates = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
response_times_ms = st.floats(min_value=0.0, max_value=120_000.0, allow_nan=False)
priorities = st.integers(min_value=0, max_value=10)
