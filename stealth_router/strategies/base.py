"""Abstract base class for acquisition strategies.

A strategy performs exactly one fetch per call. It raises on failure and
never retries internally; retries, fallbacks and timeouts belong to the
router.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from stealth_router.models.routing import RouteRequest, StrategyResponse


class BaseStrategy(ABC):
    """Typed form of the strategy contract.

    Subclasses MUST set ``name`` as a class attribute matching a configured
    :class:`~stealth_router.config.routing.StrategyDefinition` and implement
    :meth:`fetch`. Instances are callable, so they can be handed to the
    router anywhere a plain ``async (RouteRequest) -> StrategyResponse``
    function is accepted.
    """

    name: str

    @abstractmethod
    async def fetch(self, request: RouteRequest) -> StrategyResponse:
        """Fetch *request* once.

        Returns
        -------
        StrategyResponse
            Status, headers, body and cookies of the response.

        Raises
        ------
        StrategyExecutionError
            Or any other exception, when the fetch fails.
        """
        ...

    async def __call__(self, request: RouteRequest) -> StrategyResponse:
        return await self.fetch(request)
