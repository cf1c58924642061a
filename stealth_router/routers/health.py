"""Observability endpoints: /health, /readiness and /statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Response, status

from stealth_router.models.responses import ApiResponse
from stealth_router.routing.circuit_breaker import CircuitState

if TYPE_CHECKING:
    from stealth_router.proxy.manager import ProxyPoolManager
    from stealth_router.routing.router import AdaptiveRouter


def available_strategies(router: AdaptiveRouter | None) -> list[str]:
    """Enabled strategies whose breaker is closed, in configuration order."""
    if router is None:
        return []
    registry = router.registry
    return [
        definition.name
        for definition in registry.definitions
        if definition.enabled
        and registry.circuit_state(definition.name) is CircuitState.CLOSED
    ]


def create_health_router(
    *,
    router: AdaptiveRouter | None = None,
    proxy_pool: ProxyPoolManager | None = None,
) -> APIRouter:
    """Build the observability router around the running components."""

    health_router = APIRouter(tags=["observability"])

    @health_router.get("/health")
    async def health() -> dict:
        totals = router.get_statistics() if router else {}
        return ApiResponse.ok(
            {
                "status": "healthy",
                "total_requests": totals.get("total_requests", 0),
                "overall_success_rate": totals.get("overall_success_rate", 0.0),
                "proxy_pool": proxy_pool.get_stats() if proxy_pool else {},
            }
        )

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """200 when a strategy can take traffic and, with a pool configured,
        at least one endpoint is working; 503 otherwise."""
        strategies = available_strategies(router)
        working = proxy_pool.get_stats()["working_endpoints"] if proxy_pool else None
        ready = bool(strategies) and (working is None or working > 0)

        data = {
            "ready": ready,
            "available_strategies": strategies,
            "working_endpoints": working,
        }
        if ready:
            return ApiResponse.ok(data)

        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ApiResponse.failure("Service not ready", data=data)

    @health_router.get("/statistics")
    async def statistics() -> dict:
        return ApiResponse.ok(router.get_statistics() if router else {})

    return health_router
