"""Acquisition strategies: base contract, implementation registry, HTTP reference."""

from stealth_router.strategies.base import BaseStrategy
from stealth_router.strategies.http import HttpStrategy
from stealth_router.strategies.registry import StrategyCallable, StrategyImplementationRegistry

__all__ = [
    "BaseStrategy",
    "HttpStrategy",
    "StrategyCallable",
    "StrategyImplementationRegistry",
]
