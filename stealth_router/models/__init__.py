"""Public models for the routing engine."""

from stealth_router.models.detection import (
    NEUTRAL_ADAPTATION,
    NO_CAPTCHA,
    BehaviorAdaptation,
    CaptchaChallenge,
    CaptchaType,
    DetectionSignal,
    FetchOutcome,
    Severity,
    SignalType,
)
from stealth_router.models.responses import ApiResponse
from stealth_router.models.routing import (
    AttemptStatus,
    HttpMethod,
    RequestPriority,
    RouteAttempt,
    RouteRequest,
    RouteResult,
    SkippedStrategy,
    SkipReason,
    StrategyResponse,
    StrategyStats,
)

__all__ = [
    "NEUTRAL_ADAPTATION",
    "NO_CAPTCHA",
    "ApiResponse",
    "AttemptStatus",
    "BehaviorAdaptation",
    "CaptchaChallenge",
    "CaptchaType",
    "DetectionSignal",
    "FetchOutcome",
    "HttpMethod",
    "RequestPriority",
    "RouteAttempt",
    "RouteRequest",
    "RouteResult",
    "Severity",
    "SignalType",
    "SkipReason",
    "SkippedStrategy",
    "StrategyResponse",
    "StrategyStats",
]
