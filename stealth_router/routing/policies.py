"""Strategy ordering policies.

Every policy takes the admissible definitions in configuration order and
returns them reordered. All sorts are stable, so ties keep configuration
order.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from stealth_router.config.routing import (
    AdaptiveSettings,
    LoadBalanceAlgorithm,
    LoadBalanceSettings,
    RouteConfig,
    RoutingPolicy,
    StrategyDefinition,
)
from stealth_router.models.routing import StrategyStats

SUCCESS_WEIGHT = 0.6
SPEED_WEIGHT = 0.3
PRIORITY_WEIGHT = 0.1
MIN_RESPONSE_SECONDS = 0.001

Definitions = Sequence[StrategyDefinition]
StatsMap = Mapping[str, StrategyStats]


def order_by_priority(definitions: Definitions) -> list[StrategyDefinition]:
    return sorted(definitions, key=lambda d: -d.priority)


def adaptive_score(definition: StrategyDefinition, stats: StrategyStats) -> float:
    """Blend of success rate, speed and configured priority.

    With no latency samples yet the speed term is awarded in full.
    """
    if stats.avg_response_time_ms > 0:
        avg_seconds = max(stats.avg_response_time_ms / 1000, MIN_RESPONSE_SECONDS)
        speed = (1 / avg_seconds) * SPEED_WEIGHT
    else:
        speed = SPEED_WEIGHT
    return (
        stats.success_rate * SUCCESS_WEIGHT
        + speed
        + (definition.priority / 10) * PRIORITY_WEIGHT
    )


def order_adaptive(definitions: Definitions, stats: StatsMap) -> list[StrategyDefinition]:
    return sorted(definitions, key=lambda d: -adaptive_score(d, stats[d.name]))


def order_failover(
    definitions: Definitions,
    stats: StatsMap,
    settings: AdaptiveSettings,
) -> list[StrategyDefinition]:
    """Healthiest strategy first, the rest in configuration order."""
    healthy = [
        d for d in definitions
        if stats[d.name].success_rate >= settings.success_rate_threshold
    ]
    if not healthy:
        return list(definitions)

    primary = max(healthy, key=lambda d: stats[d.name].success_rate)
    return [primary] + [d for d in definitions if d.name != primary.name]


class LoadBalancer:
    """Load-balancing sub-policies. Holds the round-robin cursor."""

    def __init__(self, settings: LoadBalanceSettings) -> None:
        self._settings = settings
        self._index = 0

    def order(self, definitions: Definitions, stats: StatsMap) -> list[StrategyDefinition]:
        algorithm = self._settings.algorithm
        if algorithm == LoadBalanceAlgorithm.ROUND_ROBIN:
            return self._round_robin(definitions)
        if algorithm == LoadBalanceAlgorithm.WEIGHTED:
            return self._weighted(definitions)
        if algorithm == LoadBalanceAlgorithm.LEAST_CONNECTIONS:
            return sorted(definitions, key=lambda d: stats[d.name].concurrent_requests)
        if algorithm == LoadBalanceAlgorithm.RESPONSE_TIME:
            return sorted(definitions, key=lambda d: self._response_time_key(stats[d.name]))
        return list(definitions)

    def _round_robin(self, definitions: Definitions) -> list[StrategyDefinition]:
        if not definitions:
            return []
        selected = definitions[self._index % len(definitions)]
        self._index += 1
        return [selected] + [d for d in definitions if d.name != selected.name]

    def _weighted(self, definitions: Definitions) -> list[StrategyDefinition]:
        overrides = self._settings.weights or {}
        return sorted(definitions, key=lambda d: -overrides.get(d.name, d.weight))

    @staticmethod
    def _response_time_key(stats: StrategyStats) -> tuple[int, float]:
        # Strategies without samples sort after every measured one
        if stats.avg_response_time_ms <= 0:
            return (1, 0.0)
        return (0, stats.avg_response_time_ms)


class StrategyOrderer:
    """Dispatches to the configured routing policy."""

    def __init__(self, config: RouteConfig) -> None:
        self._config = config
        self._load_balancer = LoadBalancer(config.load_balance_settings)

    def order(self, definitions: Definitions, stats: StatsMap) -> list[StrategyDefinition]:
        policy = self._config.strategy
        if policy == RoutingPolicy.PRIORITY:
            return order_by_priority(definitions)
        if policy == RoutingPolicy.ADAPTIVE:
            return order_adaptive(definitions, stats)
        if policy == RoutingPolicy.LOAD_BALANCE:
            return self._load_balancer.order(definitions, stats)
        if policy == RoutingPolicy.FAILOVER:
            return order_failover(definitions, stats, self._config.adaptive_settings)
        return list(definitions)
