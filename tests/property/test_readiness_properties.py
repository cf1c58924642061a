"""Property tests for the readiness endpoint.

Readiness is 200 if and only if at least one enabled strategy has a closed
breaker and, when a proxy pool is configured, it has a working endpoint.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient
from hypothesis import given, settings, strategies as st

from stealth_router.config.routing import StrategyDefinition
from stealth_router.routers.health import create_health_router
from stealth_router.routing.circuit_breaker import CircuitState


def _make_app(strategy_states: list[tuple[bool, bool]], working_endpoints: int | None) -> FastAPI:
    """Minimal app whose router reports (enabled, breaker_open) per strategy."""
    definitions = tuple(
        StrategyDefinition(name=f"s{i}", enabled=enabled)
        for i, (enabled, _) in enumerate(strategy_states)
    )
    open_breakers = {f"s{i}" for i, (_, is_open) in enumerate(strategy_states) if is_open}

    router = MagicMock()
    router.registry.definitions = definitions
    router.registry.circuit_state.side_effect = lambda name: (
        CircuitState.OPEN if name in open_breakers else CircuitState.CLOSED
    )

    proxy_pool = None
    if working_endpoints is not None:
        proxy_pool = MagicMock()
        proxy_pool.get_stats.return_value = {
            "total_endpoints": max(working_endpoints, 1),
            "working_endpoints": working_endpoints,
        }

    app = FastAPI()
    app.include_router(create_health_router(router=router, proxy_pool=proxy_pool))
    return app


@settings(max_examples=100)
@given(
    strategy_states=st.lists(st.tuples(st.booleans(), st.booleans()), min_size=0, max_size=6),
    working_endpoints=st.none() | st.integers(min_value=0, max_value=10),
)
def test_readiness_reflects_strategy_and_pool_state(strategy_states, working_endpoints) -> None:
    client = TestClient(_make_app(strategy_states, working_endpoints))

    response = client.get("/readiness")

    expected_available = [
        f"s{i}" for i, (enabled, is_open) in enumerate(strategy_states) if enabled and not is_open
    ]
    expected_ready = bool(expected_available) and (
        working_endpoints is None or working_endpoints > 0
    )

    body = response.json()
    assert body["data"]["available_strategies"] == expected_available
    if expected_ready:
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["ready"] is True
    else:
        assert response.status_code == 503
        assert body["success"] is False
        assert body["data"]["ready"] is False
