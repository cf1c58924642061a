"""Per-strategy circuit breaker driven by rolling statistics.

Unlike a per-call breaker, this one is evaluated on a timer against each
strategy's aggregated :class:`StrategyStats`:

- Closed → Open: at least ``min_sample_size`` attempts recorded and
  ``success_rate < 1 - failure_threshold``.
- Open → Closed: ``cooldown_ms`` elapsed since the breaker opened, whether
  or not the strategy has improved.

There is no half-open state. A strategy re-admitted after cooldown takes
full traffic again and trips on the next evaluation if it is still failing.
"""

from __future__ import annotations

import logging
from enum import Enum

from stealth_router.models.routing import StrategyStats

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"


class StrategyCircuitBreaker:
    """Closed/open transitions for strategy statistics.

    Args:
        failure_threshold: Fraction of failures that trips the breaker.
        min_sample_size: Attempts required before the breaker may open.
        cooldown_ms: Milliseconds an open breaker stays open.
    """

    def __init__(
        self,
        failure_threshold: float = 0.5,
        min_sample_size: int = 5,
        cooldown_ms: float = 60000,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._min_sample_size = min_sample_size
        self._cooldown_ms = cooldown_ms

    @staticmethod
    def get_state(stats: StrategyStats) -> CircuitState:
        return CircuitState.OPEN if stats.circuit_breaker_open else CircuitState.CLOSED

    def should_open(self, stats: StrategyStats) -> bool:
        return (
            not stats.circuit_breaker_open
            and stats.total_attempts >= self._min_sample_size
            and stats.success_rate < 1 - self._failure_threshold
        )

    def should_close(self, stats: StrategyStats, now: float) -> bool:
        if not stats.circuit_breaker_open or stats.circuit_breaker_opened_at is None:
            return False
        return (now - stats.circuit_breaker_opened_at) * 1000 >= self._cooldown_ms

    def update(self, stats: StrategyStats, now: float) -> CircuitState | None:
        """Apply at most one transition to *stats*.

        The open check runs before the close check, so a breaker opened in
        this pass is never closed in the same pass.

        Returns the new state when a transition happened, else ``None``.
        """
        if self.should_open(stats):
            stats.circuit_breaker_open = True
            stats.circuit_breaker_opened_at = now
            logger.warning(
                "Circuit breaker opened for strategy %s (success_rate=%.2f over %d attempts)",
                stats.name,
                stats.success_rate,
                stats.total_attempts,
            )
            return CircuitState.OPEN

        if self.should_close(stats, now):
            stats.circuit_breaker_open = False
            stats.circuit_breaker_opened_at = None
            logger.info("Circuit breaker closed for strategy %s", stats.name)
            return CircuitState.CLOSED

        return None
