"""Pluggable strategy implementation registry.

Maps strategy name → implementation. Adding an acquisition method requires
only a :class:`BaseStrategy` subclass (or an async callable) and a
``register()`` call at startup.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterator, Mapping

from stealth_router.middleware.error_handler import StrategyNotFoundError
from stealth_router.models.routing import RouteRequest, StrategyResponse
from stealth_router.strategies.base import BaseStrategy

logger = logging.getLogger(__name__)

StrategyCallable = Callable[[RouteRequest], Awaitable[StrategyResponse]]


class StrategyImplementationRegistry(Mapping[str, StrategyCallable]):
    """Read-only mapping of strategy names to their implementations."""

    def __init__(self) -> None:
        self._implementations: dict[str, StrategyCallable] = {}

    def register(self, implementation: BaseStrategy | StrategyCallable, name: str | None = None) -> None:
        """Register *implementation* under *name* (defaults to its ``name``).

        Raises
        ------
        ValueError
            If no name is given or one is already registered.
        """
        key = name or getattr(implementation, "name", None)
        if not key:
            raise ValueError("Strategy implementation needs a name")
        if key in self._implementations:
            raise ValueError(f"Strategy '{key}' is already registered")
        self._implementations[key] = implementation
        logger.info("Registered strategy implementation '%s'", key)

    def get_strategy(self, name: str) -> StrategyCallable:
        """Return the implementation for *name*.

        Raises
        ------
        StrategyNotFoundError
            If nothing is registered under *name*.
        """
        try:
            return self._implementations[name]
        except KeyError:
            raise StrategyNotFoundError(
                f"No implementation registered for strategy '{name}'",
                strategy=name,
            ) from None

    def list_names(self) -> list[str]:
        return list(self._implementations.keys())

    def __getitem__(self, name: str) -> StrategyCallable:
        return self._implementations[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._implementations)

    def __len__(self) -> int:
        return len(self._implementations)
