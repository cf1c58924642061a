"""Strategy routing: registry, ordering policies, circuit breakers and the router."""

from stealth_router.routing.circuit_breaker import CircuitState, StrategyCircuitBreaker
from stealth_router.routing.policies import LoadBalancer, StrategyOrderer, adaptive_score
from stealth_router.routing.prerequisites import PrerequisiteChecker
from stealth_router.routing.registry import StrategyRegistry
from stealth_router.routing.router import AdaptiveRouter

__all__ = [
    "AdaptiveRouter",
    "CircuitState",
    "LoadBalancer",
    "PrerequisiteChecker",
    "StrategyCircuitBreaker",
    "StrategyOrderer",
    "StrategyRegistry",
    "adaptive_score",
]
