"""Route configuration models and YAML loader.

Provides typed Pydantic models for the strategy list and routing policy, and
a loader that parses the YAML config into those models. The shape mirrors
the configuration surface consumed by the router:

    strategy: adaptive
    methods:
      - name: browser
        priority: 8
        timeout_ms: 45000
        max_concurrency: 3
        fallback_methods: [premium_proxy]
    adaptive_settings: {...}
    retry_settings: {...}
    load_balance_settings: {...}
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stealth_router.middleware.error_handler import ConfigurationError

logger = logging.getLogger(__name__)


class RoutingPolicy(str, Enum):
    """How the router orders strategies for a request."""

    PRIORITY = "priority"
    ADAPTIVE = "adaptive"
    LOAD_BALANCE = "load_balance"
    FAILOVER = "failover"


class LoadBalanceAlgorithm(str, Enum):
    """Sub-policy used when the routing policy is ``load_balance``."""

    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"
    LEAST_CONNECTIONS = "least_connections"
    RESPONSE_TIME = "response_time"


class StrategyDefinition(BaseModel):
    """A named acquisition method. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    enabled: bool = True
    priority: int = Field(default=5, ge=0)
    weight: float = Field(default=1.0, gt=0)
    timeout_ms: int = Field(default=30000, ge=1)
    max_concurrency: int = Field(default=5, ge=1)
    prerequisites: tuple[str, ...] = ()
    fallback_methods: tuple[str, ...] = ()


class AdaptiveSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_sample_size: int = Field(default=5, ge=1)
    success_rate_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    response_time_threshold_ms: int = Field(default=30000, ge=0)
    evaluation_interval_ms: int = Field(default=60000, ge=1)


class RetrySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=2, ge=0)
    retry_delay_ms: int = Field(default=5000, ge=0)
    exponential_backoff: bool = True
    # Fraction of failures that trips the breaker: open when
    # success_rate < 1 - circuit_breaker_threshold.
    circuit_breaker_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    circuit_breaker_cooldown_ms: int = Field(default=60000, ge=0)


class LoadBalanceSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    algorithm: LoadBalanceAlgorithm = LoadBalanceAlgorithm.ROUND_ROBIN
    weights: dict[str, float] | None = None


class RouteConfig(BaseModel):
    """Complete routing configuration, loaded once at startup."""

    model_config = ConfigDict(frozen=True)

    strategy: RoutingPolicy = RoutingPolicy.ADAPTIVE
    methods: tuple[StrategyDefinition, ...] = ()
    adaptive_settings: AdaptiveSettings = AdaptiveSettings()
    retry_settings: RetrySettings = RetrySettings()
    load_balance_settings: LoadBalanceSettings = LoadBalanceSettings()

    def method(self, name: str) -> StrategyDefinition | None:
        """Return the definition named *name*, or ``None``."""
        for definition in self.methods:
            if definition.name == name:
                return definition
        return None


DEFAULT_ROUTE_CONFIG = RouteConfig(
    strategy=RoutingPolicy.ADAPTIVE,
    methods=(
        StrategyDefinition(
            name="browser",
            priority=8,
            timeout_ms=45000,
            max_concurrency=3,
            fallback_methods=("premium_proxy",),
        ),
        StrategyDefinition(
            name="unblocker",
            priority=9,
            timeout_ms=60000,
            max_concurrency=5,
        ),
        StrategyDefinition(
            name="premium_proxy",
            priority=7,
            timeout_ms=30000,
            max_concurrency=10,
            prerequisites=("proxy_pool",),
        ),
        StrategyDefinition(
            name="direct",
            priority=2,
            timeout_ms=15000,
            max_concurrency=10,
        ),
    ),
)


def validate_route_config(config: RouteConfig) -> RouteConfig:
    """Check cross-field consistency that field-level validation cannot.

    Raises
    ------
    ConfigurationError
        On duplicate strategy names or a fallback naming an unknown strategy.
    """
    names = [m.name for m in config.methods]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(
            f"Duplicate strategy names: {', '.join(duplicates)}",
            duplicates=duplicates,
        )

    known = set(names)
    for definition in config.methods:
        unknown = [f for f in definition.fallback_methods if f not in known]
        if unknown:
            raise ConfigurationError(
                f"Strategy '{definition.name}' falls back to unknown "
                f"strategies: {', '.join(unknown)}",
                strategy=definition.name,
                unknown=unknown,
            )
    return config


def load_route_config(yaml_path: str) -> RouteConfig:
    """Parse a route configuration YAML file into a :class:`RouteConfig`.

    A missing or unparsable file falls back to the built-in default config.
    A well-formed file with inconsistent strategy references raises
    :class:`ConfigurationError`.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Route config not found at %s: using built-in defaults", yaml_path)
        return DEFAULT_ROUTE_CONFIG

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse route config YAML at %s: %s", yaml_path, exc)
        return DEFAULT_ROUTE_CONFIG

    if not isinstance(raw, dict) or "methods" not in raw:
        logger.warning("Route config YAML missing 'methods' key: using built-in defaults")
        return DEFAULT_ROUTE_CONFIG

    try:
        config = RouteConfig.model_validate(raw)
    except ValidationError as exc:
        logger.error("Invalid route config at %s: %s: using built-in defaults", yaml_path, exc)
        return DEFAULT_ROUTE_CONFIG

    logger.info(
        "Loaded %d strategies from %s (policy=%s)",
        len(config.methods),
        yaml_path,
        config.strategy.value,
    )
    return validate_route_config(config)
