"""Request/result models and in-memory statistics state for routing."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from stealth_router.middleware.error_handler import AllStrategiesExhaustedError

if TYPE_CHECKING:
    from stealth_router.models.detection import BehaviorAdaptation, DetectionSignal


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class RequestPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class RouteRequest(BaseModel):
    """One outbound fetch submitted to the router."""

    url: str = Field(..., min_length=1)
    http_method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    force_strategy: str | None = None
    bypass_circuit_breaker: bool = False
    timeout_ms: int | None = Field(default=None, ge=1)
    priority: RequestPriority = RequestPriority.NORMAL


class StrategyResponse(BaseModel):
    """Success value returned by a strategy implementation."""

    status_code: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    content: str = ""
    cookies: list[dict[str, Any]] = Field(default_factory=list)
    proxy_used: str | None = None


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    """Why a strategy in the order was not invoked. Soft conditions, never errors."""

    CIRCUIT_OPEN = "circuit_open"
    PREREQUISITE_UNMET = "prerequisite_unmet"
    CONCURRENCY_LIMIT = "concurrency_limit"
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"
    NO_IMPLEMENTATION = "no_implementation"


@dataclass(frozen=True)
class RouteAttempt:
    """Immutable record of one strategy invocation.

    ``start_time``/``end_time`` are ``time.monotonic()`` readings.
    """

    strategy_name: str
    start_time: float
    end_time: float
    success: bool
    response_time_ms: float
    status_code: int
    retry_count: int
    status: AttemptStatus
    error: str | None = None
    proxy_used: str | None = None


@dataclass(frozen=True)
class SkippedStrategy:
    """A zero-duration, non-counted entry for a strategy that was passed over."""

    strategy_name: str
    reason: SkipReason
    retry_count: int


@dataclass
class StrategyStats:
    """Mutable live statistics for one strategy.

    Only the owning :class:`~stealth_router.routing.registry.StrategyRegistry`
    mutates these, under the strategy's lock.
    """

    name: str
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    avg_response_time_ms: float = 0.0
    success_rate: float = 1.0  # Start optimistic
    last_used_at: float | None = None
    concurrent_requests: int = 0
    circuit_breaker_open: bool = False
    circuit_breaker_opened_at: float | None = None
    recent_attempts: deque[RouteAttempt] = field(default_factory=deque)


@dataclass(frozen=True)
class RouteResult:
    """Terminal outcome of one ``route()`` call. Owns copies of its attempts."""

    success: bool
    final_strategy: str | None
    attempts: tuple[RouteAttempt, ...]
    total_time_ms: float
    result: StrategyResponse | None = None
    error: str | None = None
    skipped: tuple[SkippedStrategy, ...] = ()
    signals: tuple["DetectionSignal", ...] = ()
    adaptation: "BehaviorAdaptation | None" = None
    risk_score: float = 0.0

    def raise_for_failure(self) -> None:
        """Raise :class:`AllStrategiesExhaustedError` if the route failed."""
        if not self.success:
            raise AllStrategiesExhaustedError(
                self.error,
                attempts=len(self.attempts),
                strategies=sorted({a.strategy_name for a in self.attempts}),
            )
