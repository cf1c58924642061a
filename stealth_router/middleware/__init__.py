"""Middleware package: error hierarchy and API exception handlers."""

from stealth_router.middleware.error_handler import (
    AllStrategiesExhaustedError,
    ConfigurationError,
    ResourcePoolExhaustedError,
    RouterError,
    StrategyExecutionError,
    StrategyNotFoundError,
    StrategyTimeoutError,
    register_error_handlers,
)

__all__ = [
    "AllStrategiesExhaustedError",
    "ConfigurationError",
    "ResourcePoolExhaustedError",
    "RouterError",
    "StrategyExecutionError",
    "StrategyNotFoundError",
    "StrategyTimeoutError",
    "register_error_handlers",
]
