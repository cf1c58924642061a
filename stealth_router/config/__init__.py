"""Configuration module: settings and route configuration."""

from stealth_router.config.routing import (
    DEFAULT_ROUTE_CONFIG,
    AdaptiveSettings,
    LoadBalanceAlgorithm,
    LoadBalanceSettings,
    RetrySettings,
    RouteConfig,
    RoutingPolicy,
    StrategyDefinition,
    load_route_config,
    validate_route_config,
)
from stealth_router.config.settings import RouterSettings

__all__ = [
    "DEFAULT_ROUTE_CONFIG",
    "AdaptiveSettings",
    "LoadBalanceAlgorithm",
    "LoadBalanceSettings",
    "RetrySettings",
    "RouteConfig",
    "RouterSettings",
    "RoutingPolicy",
    "StrategyDefinition",
    "load_route_config",
    "validate_route_config",
]
