"""Bot-detection signal models and the behavior adaptation they produce."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SignalType(str, Enum):
    BEHAVIORAL = "behavioral"
    TECHNICAL = "technical"
    RATE_LIMIT = "rate_limit"
    CHALLENGE = "challenge"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CaptchaType(str, Enum):
    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"
    CLOUDFLARE = "cloudflare"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DetectionSignal:
    """One classified bot-detection observation."""

    type: SignalType
    severity: Severity
    description: str
    adaptation_suggestion: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class CaptchaChallenge:
    """Result of challenge classification for one fetch."""

    type: CaptchaType
    detected: bool
    element: str | None
    confidence: float


NO_CAPTCHA = CaptchaChallenge(
    type=CaptchaType.UNKNOWN,
    detected=False,
    element=None,
    confidence=0.0,
)


@dataclass(frozen=True)
class BehaviorAdaptation:
    """Advisory pacing/identity guidance derived from a signal batch."""

    speed_reduction: float = 1.0  # 0.1–1.0 multiplier on request speed
    pause_increase: float = 1.0  # ≤5x multiplier on pauses
    randomization_factor: float = 0.0  # 0–1
    backoff_duration_ms: int = 0  # 0–1,800,000
    switch_persona: bool = False

    @property
    def is_neutral(self) -> bool:
        return self == NEUTRAL_ADAPTATION


NEUTRAL_ADAPTATION = BehaviorAdaptation()


@dataclass
class FetchOutcome:
    """Observable artifacts of one fetch, as seen by the signal monitor."""

    url: str
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    content: str = ""
    load_time_ms: float = 0.0
