"""Adaptive router: strategy selection, retries, fallbacks and detection feedback.

One ``route()`` call walks the computed strategy order for up to
``max_retries + 1`` rounds. Each invocation is raced against its timeout
inside a reserved concurrency slot; the slot is released on every path,
cancellation included. Responses are fed through the signal monitor and
behavior adaptor so a challenge page can fail the attempt, rotate the
persona and proxy session, slow the domain down or abort the call for a
cooldown.

Two background loops (``start()``/``stop()``) keep statistics fresh: one
re-evaluates rolling performance, the other opens and closes circuit
breakers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from stealth_router.config.routing import RouteConfig, StrategyDefinition, validate_route_config
from stealth_router.detection.behavior_adaptor import BehaviorAdaptor, merge_adaptations
from stealth_router.detection.persona import PersonaRotator
from stealth_router.detection.signal_monitor import SignalMonitor
from stealth_router.middleware.error_handler import StrategyExecutionError
from stealth_router.models.detection import (
    BehaviorAdaptation,
    DetectionSignal,
    FetchOutcome,
)
from stealth_router.models.routing import (
    AttemptStatus,
    RouteAttempt,
    RouteRequest,
    RouteResult,
    SkippedStrategy,
    SkipReason,
    StrategyResponse,
)
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.resilience.pacer import DomainPacer, extract_domain
from stealth_router.routing.policies import StrategyOrderer
from stealth_router.routing.prerequisites import PrerequisiteChecker
from stealth_router.routing.registry import StrategyRegistry
from stealth_router.strategies.registry import StrategyCallable

logger = logging.getLogger(__name__)

DEFAULT_ABORT_BACKOFF_MS = 600_000


class _CallState:
    """Mutable bookkeeping for one ``route()`` call."""

    def __init__(self, request: RouteRequest, start: float) -> None:
        self.request = request
        self.start = start
        self.attempts: list[RouteAttempt] = []
        self.skipped: list[SkippedStrategy] = []
        self.signals: list[DetectionSignal] = []
        self.adaptation: BehaviorAdaptation | None = None
        self.persona_headers: dict[str, str] = {}
        self.captcha_detected = False
        self.last_load_time_ms: float | None = None
        self.last_error: str | None = None
        self.response: StrategyResponse | None = None

    def skip(self, name: str, reason: SkipReason, retry_count: int) -> None:
        self.skipped.append(SkippedStrategy(name, reason, retry_count))
        logger.debug("Skipping strategy %s: %s", name, reason.value)

    def effective_request(self) -> RouteRequest:
        if not self.persona_headers:
            return self.request
        return self.request.model_copy(
            update={"headers": {**self.request.headers, **self.persona_headers}}
        )


class AdaptiveRouter:
    """Routes requests across configured acquisition strategies.

    Args:
        config: Route configuration; validated on construction.
        proxy_pool: Pool backing the ``proxy_pool`` prerequisite and
            session rotation on persona switches.
        signal_monitor: Classifies responses into detection signals.
        behavior_adaptor: Folds signals into adaptations and risk scores.
        persona_rotator: Supplies fingerprint headers after a persona switch.
        pacer: Per-domain pacing applied before every attempt.
        prerequisites: Named prerequisite checks.
        block_on_challenge: Fail attempts that returned a block page (403/429
            or a CAPTCHA widget) instead of content.
        abort_backoff_ms: Backoff at or above which a call aborts.
        implementations: Strategy implementations used when ``route`` is not
            given its own mapping.
        registry: Pre-built statistics registry (mostly for tests).
    """

    def __init__(
        self,
        config: RouteConfig,
        *,
        proxy_pool: ProxyPoolManager | None = None,
        signal_monitor: SignalMonitor | None = None,
        behavior_adaptor: BehaviorAdaptor | None = None,
        persona_rotator: PersonaRotator | None = None,
        pacer: DomainPacer | None = None,
        prerequisites: PrerequisiteChecker | None = None,
        block_on_challenge: bool = True,
        abort_backoff_ms: int = DEFAULT_ABORT_BACKOFF_MS,
        implementations: Mapping[str, StrategyCallable] | None = None,
        registry: StrategyRegistry | None = None,
    ) -> None:
        self._config = validate_route_config(config)
        self._registry = registry or StrategyRegistry(config)
        self._orderer = StrategyOrderer(config)
        self._proxy_pool = proxy_pool
        self._monitor = signal_monitor or SignalMonitor()
        self._adaptor = behavior_adaptor or BehaviorAdaptor()
        self._personas = persona_rotator or PersonaRotator()
        self._pacer = pacer
        self._prerequisites = prerequisites or PrerequisiteChecker()
        if proxy_pool is not None and "proxy_pool" not in self._prerequisites.names():
            self._prerequisites.register_proxy_pool(proxy_pool)
        self._block_on_challenge = block_on_challenge
        self._abort_backoff_ms = abort_backoff_ms
        self._implementations: Mapping[str, StrategyCallable] = (
            implementations if implementations is not None else {}
        )
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def config(self) -> RouteConfig:
        return self._config

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def implementations(self) -> Mapping[str, StrategyCallable]:
        return self._implementations

    @property
    def signal_monitor(self) -> SignalMonitor:
        return self._monitor

    @property
    def behavior_adaptor(self) -> BehaviorAdaptor:
        return self._adaptor

    @property
    def persona_rotator(self) -> PersonaRotator:
        return self._personas

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def strategy_order(self, request: RouteRequest) -> list[StrategyDefinition]:
        """Compute the initial strategy order for *request*.

        A forced strategy is returned alone, whatever its breaker state. An
        unknown or disabled forced strategy yields an empty order.
        """
        if request.force_strategy:
            definition = self._registry.definition(request.force_strategy)
            if definition is None or not definition.enabled:
                return []
            return [definition]

        stats = self._registry.all_stats()
        admissible = [
            d
            for d in self._registry.definitions
            if d.enabled
            and (request.bypass_circuit_breaker or not stats[d.name].circuit_breaker_open)
        ]
        return self._orderer.order(admissible, stats)

    async def route(
        self,
        request: RouteRequest,
        implementations: Mapping[str, StrategyCallable] | None = None,
    ) -> RouteResult:
        """Fetch *request* with the best available strategy.

        Per-attempt failures are absorbed into the attempt list and
        statistics; only total exhaustion (or a cooldown abort) produces a
        failed result. Cancelling this coroutine cancels the in-flight
        strategy call and re-raises ``CancelledError``. Without
        *implementations* the ones bound at construction are used.
        """
        call = _CallState(request, self._registry.now())
        if implementations is None:
            implementations = self._implementations
        order = self.strategy_order(request)

        if request.force_strategy and not order:
            definition = self._registry.definition(request.force_strategy)
            reason = SkipReason.NOT_CONFIGURED if definition is None else SkipReason.DISABLED
            call.skip(request.force_strategy, reason, 0)
            return self._failed_result(
                call, f"Forced strategy '{request.force_strategy}' is {reason.value.replace('_', ' ')}"
            )

        names = [d.name for d in order]
        logger.info(
            "Routing %s: %s",
            request.url,
            " → ".join(names) or "(no admissible strategies)",
            extra={"target_url": request.url},
        )

        retry_settings = self._config.retry_settings
        for retry_count in range(retry_settings.max_retries + 1):
            index = 0
            # The order grows while iterating as fallbacks are appended
            while index < len(names):
                name = names[index]
                index += 1

                reason = self._skip_reason(name, request, implementations)
                if reason is not None:
                    call.skip(name, reason, retry_count)
                    continue

                if not await self._registry.try_acquire(name):
                    call.skip(name, SkipReason.CONCURRENCY_LIMIT, retry_count)
                    continue

                if self._pacer is not None:
                    # skipped strategies never spend a pacing token
                    try:
                        await self._pacer.acquire(extract_domain(request.url))
                    except asyncio.CancelledError:
                        await self._registry.release(name)
                        raise

                attempt = await self._attempt(name, implementations[name], call, retry_count)
                call.attempts.append(attempt)

                if attempt.success:
                    return self._success_result(call, name)

                call.last_error = attempt.error
                if self._should_abort(call):
                    error = (
                        f"cooldown required: backoff {call.adaptation.backoff_duration_ms}ms"
                        f" after {attempt.error}"
                    )
                    logger.warning(
                        "Aborting route for %s: %s",
                        request.url,
                        error,
                        extra={"target_url": request.url, "attempts": len(call.attempts)},
                    )
                    return self._failed_result(call, error)

                definition = self._registry.definition(name)
                for fallback in definition.fallback_methods:
                    if fallback not in names:
                        names.append(fallback)

            if retry_count < retry_settings.max_retries:
                delay_ms = (
                    retry_settings.retry_delay_ms * 2**retry_count
                    if retry_settings.exponential_backoff
                    else retry_settings.retry_delay_ms
                )
                logger.info("Waiting %dms before retry %d", delay_ms, retry_count + 1)
                await asyncio.sleep(delay_ms / 1000)

        logger.warning(
            "All strategies failed for %s",
            request.url,
            extra={
                "target_url": request.url,
                "attempts": len(call.attempts),
                "error_reason": call.last_error,
            },
        )
        return self._failed_result(call)

    def _skip_reason(
        self,
        name: str,
        request: RouteRequest,
        implementations: Mapping[str, StrategyCallable],
    ) -> SkipReason | None:
        definition = self._registry.definition(name)
        if definition is None:
            return SkipReason.NOT_CONFIGURED
        forced = request.force_strategy == name
        if not definition.enabled:
            return SkipReason.DISABLED
        if name not in implementations:
            return SkipReason.NO_IMPLEMENTATION
        if not self._prerequisites.all_met(definition.prerequisites):
            return SkipReason.PREREQUISITE_UNMET
        stats = self._registry.stats(name)
        if stats.circuit_breaker_open and not (forced or request.bypass_circuit_breaker):
            return SkipReason.CIRCUIT_OPEN
        return None

    async def _attempt(
        self,
        name: str,
        implementation: StrategyCallable,
        call: _CallState,
        retry_count: int,
    ) -> RouteAttempt:
        """Run one invocation inside an already-reserved slot."""
        definition = self._registry.definition(name)
        timeout_ms = call.request.timeout_ms or definition.timeout_ms
        start = self._registry.now()

        try:
            response = await asyncio.wait_for(
                implementation(call.effective_request()), timeout=timeout_ms / 1000
            )
        except asyncio.CancelledError:
            await self._registry.record_attempt(
                self._make_attempt(name, start, retry_count, AttemptStatus.CANCELLED, error="cancelled")
            )
            raise
        except asyncio.TimeoutError:
            attempt = self._make_attempt(
                name,
                start,
                retry_count,
                AttemptStatus.TIMEOUT,
                error=f"Strategy timeout after {timeout_ms}ms",
            )
        except Exception as exc:
            status_code = exc.upstream_status if isinstance(exc, StrategyExecutionError) else None
            attempt = self._make_attempt(
                name,
                start,
                retry_count,
                AttemptStatus.FAILED,
                error=str(exc) or exc.__class__.__name__,
                status_code=status_code or 0,
            )
        else:
            attempt = self._inspect_response(name, start, retry_count, response, call)
        finally:
            await self._registry.release(name)

        await self._registry.record_attempt(attempt)
        self._log_attempt(attempt, call.request.url)
        return attempt

    def _inspect_response(
        self,
        name: str,
        start: float,
        retry_count: int,
        response: StrategyResponse,
        call: _CallState,
    ) -> RouteAttempt:
        """Run detection feedback over a returned response."""
        elapsed_ms = (self._registry.now() - start) * 1000
        outcome = FetchOutcome(
            url=call.request.url,
            status_code=response.status_code,
            headers=response.headers,
            content=response.content,
            load_time_ms=elapsed_ms,
        )
        signals, captcha = self._monitor.inspect(outcome)
        call.signals.extend(signals)
        call.last_load_time_ms = elapsed_ms
        call.captcha_detected = call.captcha_detected or captcha.detected

        if signals:
            adaptation = self._adaptor.adapt_behavior(signals)
            call.adaptation = (
                adaptation if call.adaptation is None else merge_adaptations(call.adaptation, adaptation)
            )
            self._apply_adaptation(adaptation, call, response)

        reason = self._monitor.blocking_evidence(outcome, captcha) if self._block_on_challenge else None
        if reason is not None:
            return self._make_attempt(
                name,
                start,
                retry_count,
                AttemptStatus.FAILED,
                error=f"blocked: {reason}",
                status_code=response.status_code,
                proxy_used=response.proxy_used,
            )

        call.response = response
        return self._make_attempt(
            name,
            start,
            retry_count,
            AttemptStatus.SUCCESS,
            status_code=response.status_code,
            proxy_used=response.proxy_used,
        )

    def _apply_adaptation(
        self,
        adaptation: BehaviorAdaptation,
        call: _CallState,
        response: StrategyResponse,
    ) -> None:
        if self._pacer is not None:
            self._pacer.apply_adaptation(extract_domain(call.request.url), adaptation)

        if not adaptation.switch_persona:
            return

        endpoint = None
        if self._proxy_pool is not None and response.proxy_used:
            endpoint = self._proxy_pool.find_endpoint(response.proxy_used)
        persona = self._personas.rotate(endpoint.country if endpoint else None)
        call.persona_headers = persona.headers()
        if endpoint is not None:
            self._proxy_pool.rotate_session(endpoint)
        logger.info("Switched persona to #%d for %s", persona.persona_id, call.request.url)

    def _should_abort(self, call: _CallState) -> bool:
        return (
            call.adaptation is not None
            and call.adaptation.backoff_duration_ms >= self._abort_backoff_ms
        )

    def _make_attempt(
        self,
        name: str,
        start: float,
        retry_count: int,
        status: AttemptStatus,
        *,
        error: str | None = None,
        status_code: int = 0,
        proxy_used: str | None = None,
    ) -> RouteAttempt:
        end = self._registry.now()
        return RouteAttempt(
            strategy_name=name,
            start_time=start,
            end_time=end,
            success=status is AttemptStatus.SUCCESS,
            response_time_ms=(end - start) * 1000,
            status_code=status_code,
            retry_count=retry_count,
            status=status,
            error=error,
            proxy_used=proxy_used,
        )

    @staticmethod
    def _log_attempt(attempt: RouteAttempt, url: str) -> None:
        extra = {
            "strategy": attempt.strategy_name,
            "target_url": url,
            "retry_count": attempt.retry_count,
            "response_time_ms": round(attempt.response_time_ms, 1),
            "status_code": attempt.status_code,
        }
        if attempt.proxy_used:
            extra["proxy_used"] = attempt.proxy_used
        if attempt.success:
            logger.info("Strategy %s succeeded", attempt.strategy_name, extra=extra)
        else:
            extra["error_reason"] = attempt.error
            logger.warning(
                "Strategy %s %s: %s",
                attempt.strategy_name,
                attempt.status.value,
                attempt.error,
                extra=extra,
            )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _risk_score(self, call: _CallState) -> float:
        return self._adaptor.evaluate_risk(
            self._monitor.recent_signals(),
            call.captcha_detected,
            call.last_load_time_ms,
        )

    def _success_result(self, call: _CallState, name: str) -> RouteResult:
        return RouteResult(
            success=True,
            final_strategy=name,
            attempts=tuple(call.attempts),
            total_time_ms=(self._registry.now() - call.start) * 1000,
            result=call.response,
            skipped=tuple(call.skipped),
            signals=tuple(call.signals),
            adaptation=call.adaptation,
            risk_score=self._risk_score(call),
        )

    def _failed_result(self, call: _CallState, error: str | None = None) -> RouteResult:
        if error is None:
            error = (
                f"All strategies exhausted: {call.last_error}"
                if call.last_error
                else "All strategies exhausted: no strategy was attempted"
            )
        return RouteResult(
            success=False,
            final_strategy=None,
            attempts=tuple(call.attempts),
            total_time_ms=(self._registry.now() - call.start) * 1000,
            error=error,
            skipped=tuple(call.skipped),
            signals=tuple(call.signals),
            adaptation=call.adaptation,
            risk_score=self._risk_score(call),
        )

    # ------------------------------------------------------------------
    # Periodic maintenance
    # ------------------------------------------------------------------

    async def evaluate_performance(self, now: float | None = None) -> None:
        await self._registry.evaluate_performance(now)

    async def update_circuit_breakers(self, now: float | None = None) -> None:
        await self._registry.update_circuit_breakers(now)

    async def run_evaluation_cycle(self, now: float | None = None) -> None:
        """One evaluation pass followed by one breaker pass."""
        await self.evaluate_performance(now)
        await self.update_circuit_breakers(now)

    async def _evaluation_loop(self) -> None:
        interval = self._config.adaptive_settings.evaluation_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.evaluate_performance()

    async def _circuit_breaker_loop(self) -> None:
        interval = self._config.adaptive_settings.evaluation_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.update_circuit_breakers()

    async def start(self) -> None:
        """Launch the evaluation and circuit-breaker loops."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._evaluation_loop(), name="router-evaluation"),
            asyncio.create_task(self._circuit_breaker_loop(), name="router-circuit-breakers"),
        ]
        logger.info(
            "Adaptive router started (%d strategies, policy=%s)",
            len(self._config.methods),
            self._config.strategy.value,
        )

    async def stop(self) -> None:
        """Cancel and join the background loops."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Adaptive router stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    async def __aenter__(self) -> AdaptiveRouter:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Stats / metrics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict:
        """Per-strategy and overall figures, plus pool and detection state."""
        statistics = self._registry.snapshot()
        statistics["detection"] = {
            "adaptation_level": self._adaptor.adaptation_level,
            "recent_signals": len(self._monitor.recent_signals()),
            "persona_rotations": self._personas.rotations,
        }
        if self._proxy_pool is not None:
            statistics["proxy_pool"] = self._proxy_pool.get_stats()
        return statistics

    async def reset_statistics(self) -> None:
        await self._registry.reset_statistics()
