"""Strategy registry: definitions plus live, lock-guarded statistics.

Every mutation of a :class:`StrategyStats` record happens here, inside that
strategy's ``asyncio.Lock``. The critical sections are short and never
await I/O, so no lock is ever held across a strategy invocation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from stealth_router.config.routing import RouteConfig, StrategyDefinition
from stealth_router.models.routing import RouteAttempt, StrategyStats
from stealth_router.routing.circuit_breaker import CircuitState, StrategyCircuitBreaker

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Holds every configured strategy and its rolling statistics.

    Args:
        config: The loaded route configuration.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        config: RouteConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clock = clock
        self._definitions: dict[str, StrategyDefinition] = {m.name: m for m in config.methods}
        self._stats: dict[str, StrategyStats] = {
            name: StrategyStats(name=name) for name in self._definitions
        }
        self._locks: dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in self._definitions}
        self._breaker = StrategyCircuitBreaker(
            failure_threshold=config.retry_settings.circuit_breaker_threshold,
            min_sample_size=config.adaptive_settings.min_sample_size,
            cooldown_ms=config.retry_settings.circuit_breaker_cooldown_ms,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def config(self) -> RouteConfig:
        return self._config

    @property
    def definitions(self) -> tuple[StrategyDefinition, ...]:
        """All definitions in configuration order."""
        return self._config.methods

    def definition(self, name: str) -> StrategyDefinition | None:
        return self._definitions.get(name)

    def stats(self, name: str) -> StrategyStats | None:
        return self._stats.get(name)

    def all_stats(self) -> dict[str, StrategyStats]:
        return dict(self._stats)

    def circuit_state(self, name: str) -> CircuitState:
        stats = self._stats.get(name)
        if stats is None:
            return CircuitState.CLOSED
        return self._breaker.get_state(stats)

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Concurrency slots
    # ------------------------------------------------------------------

    async def try_acquire(self, name: str) -> bool:
        """Reserve one concurrency slot for *name*; ``False`` at the cap."""
        definition = self._definitions[name]
        async with self._locks[name]:
            stats = self._stats[name]
            if stats.concurrent_requests >= definition.max_concurrency:
                return False
            stats.concurrent_requests += 1
            return True

    async def release(self, name: str) -> None:
        async with self._locks[name]:
            stats = self._stats[name]
            stats.concurrent_requests = max(0, stats.concurrent_requests - 1)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_attempt(self, attempt: RouteAttempt) -> None:
        """Fold one finished attempt into its strategy's statistics."""
        name = attempt.strategy_name
        async with self._locks[name]:
            stats = self._stats[name]
            stats.total_attempts += 1
            if attempt.success:
                stats.successful_attempts += 1
                stats.avg_response_time_ms = (
                    attempt.response_time_ms
                    if stats.avg_response_time_ms <= 0
                    else (stats.avg_response_time_ms + attempt.response_time_ms) / 2
                )
            else:
                stats.failed_attempts += 1
            stats.success_rate = stats.successful_attempts / stats.total_attempts
            stats.last_used_at = attempt.end_time
            stats.recent_attempts.append(attempt)

    # ------------------------------------------------------------------
    # Periodic maintenance
    # ------------------------------------------------------------------

    async def evaluate_performance(self, now: float | None = None) -> None:
        """Prune each rolling window and recompute rates from what remains.

        The window spans twice the evaluation interval. Rates are only
        recomputed once the window holds ``min_sample_size`` attempts.
        """
        now = self._clock() if now is None else now
        settings = self._config.adaptive_settings
        window_seconds = 2 * settings.evaluation_interval_ms / 1000

        for name, stats in self._stats.items():
            async with self._locks[name]:
                while stats.recent_attempts and now - stats.recent_attempts[0].start_time > window_seconds:
                    stats.recent_attempts.popleft()

                sample = len(stats.recent_attempts)
                if sample < settings.min_sample_size:
                    continue

                successes = sum(1 for a in stats.recent_attempts if a.success)
                stats.success_rate = successes / sample
                stats.avg_response_time_ms = (
                    sum(a.response_time_ms for a in stats.recent_attempts) / sample
                )
                logger.debug(
                    "Strategy %s performance: success_rate=%.2f avg=%.0fms sample=%d",
                    name,
                    stats.success_rate,
                    stats.avg_response_time_ms,
                    sample,
                )

    async def update_circuit_breakers(self, now: float | None = None) -> dict[str, CircuitState]:
        """Apply breaker transitions; returns the strategies that changed."""
        now = self._clock() if now is None else now
        transitions: dict[str, CircuitState] = {}
        for name, stats in self._stats.items():
            async with self._locks[name]:
                state = self._breaker.update(stats, now)
            if state is not None:
                transitions[name] = state
        return transitions

    async def reset_statistics(self) -> None:
        """Restore every stats record to its initial state."""
        for name in self._stats:
            async with self._locks[name]:
                in_flight = self._stats[name].concurrent_requests
                self._stats[name] = StrategyStats(name=name, concurrent_requests=in_flight)
        logger.info("Strategy statistics reset")

    # ------------------------------------------------------------------
    # Stats / metrics
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Totals and per-strategy breakdown."""
        stats = list(self._stats.values())
        total = sum(s.total_attempts for s in stats)
        successful = sum(s.successful_attempts for s in stats)
        return {
            "total_requests": total,
            "successful_requests": successful,
            "overall_success_rate": successful / total if total else 0.0,
            "avg_response_time": (
                sum(s.avg_response_time_ms for s in stats) / len(stats) if stats else 0.0
            ),
            "strategies": {
                s.name: {
                    "attempts": s.total_attempts,
                    "success_rate": s.success_rate,
                    "avg_response_time": s.avg_response_time_ms,
                    "concurrent_requests": s.concurrent_requests,
                    "circuit_breaker": self._breaker.get_state(s).value,
                }
                for s in stats
            },
        }
