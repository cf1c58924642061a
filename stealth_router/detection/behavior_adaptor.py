"""Signal-driven behavior adaptation and risk scoring.

``adapt_behavior`` folds a batch of detection signals multiplicatively into a
:class:`BehaviorAdaptation`:

    severity   speed   pause   randomization   backoff
    critical   ×0.3    ×3      +0.5            +300s   (forces persona switch)
    high       ×0.5    ×2      +0.3            +120s
    medium     ×0.7    ×1.5    +0.2            +60s
    low        ×0.9    ×1.2    +0.1            +30s

More than one critical or more than two high signals in one batch force a
persona switch and raise the backoff floor to ten minutes. Results are
clamped (speed ≥ 0.1, pause ≤ 5, randomization ≤ 1, backoff ≤ 30 minutes).

``evaluate_risk`` is advisory output for callers; the router never acts on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from stealth_router.models.detection import (
    NEUTRAL_ADAPTATION,
    BehaviorAdaptation,
    DetectionSignal,
    Severity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _SeverityEffect:
    speed: float
    pause: float
    randomization: float
    backoff_ms: int


SEVERITY_EFFECTS: dict[Severity, _SeverityEffect] = {
    Severity.CRITICAL: _SeverityEffect(0.3, 3.0, 0.5, 300_000),
    Severity.HIGH: _SeverityEffect(0.5, 2.0, 0.3, 120_000),
    Severity.MEDIUM: _SeverityEffect(0.7, 1.5, 0.2, 60_000),
    Severity.LOW: _SeverityEffect(0.9, 1.2, 0.1, 30_000),
}

RISK_POINTS: dict[Severity, int] = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}

MIN_SPEED_REDUCTION = 0.1
MAX_PAUSE_INCREASE = 5.0
MAX_RANDOMIZATION = 1.0
MAX_BACKOFF_MS = 1_800_000
ESCALATED_BACKOFF_FLOOR_MS = 600_000

CAPTCHA_RISK = 50
SLOW_LOAD_RISK = 20
RISK_WINDOW = timedelta(minutes=5)
MAX_ADAPTATION_LEVEL = 10


class BehaviorAdaptor:
    """Turns detection signals into pacing/identity guidance and a risk score.

    Args:
        slow_load_risk_threshold_ms: Load time above which risk gains
            ``SLOW_LOAD_RISK`` points.
    """

    def __init__(self, slow_load_risk_threshold_ms: int = 15000) -> None:
        self._slow_load_risk_threshold_ms = slow_load_risk_threshold_ms
        self._adaptation_level = 0

    @property
    def adaptation_level(self) -> int:
        """Escalation level 0–10, raised by every non-empty signal batch."""
        return self._adaptation_level

    def reset(self) -> None:
        self._adaptation_level = 0

    def adapt_behavior(self, signals: Iterable[DetectionSignal]) -> BehaviorAdaptation:
        """Fold *signals* into a clamped :class:`BehaviorAdaptation`."""
        batch = list(signals)
        if not batch:
            return NEUTRAL_ADAPTATION

        speed = 1.0
        pause = 1.0
        randomization = 0.0
        backoff_ms = 0
        switch_persona = False
        critical_count = 0
        high_count = 0

        for signal in batch:
            effect = SEVERITY_EFFECTS[signal.severity]
            speed *= effect.speed
            pause *= effect.pause
            randomization += effect.randomization
            backoff_ms += effect.backoff_ms
            if signal.severity is Severity.CRITICAL:
                critical_count += 1
                switch_persona = True
            elif signal.severity is Severity.HIGH:
                high_count += 1

        if critical_count > 1 or high_count > 2:
            switch_persona = True
            backoff_ms = max(backoff_ms, ESCALATED_BACKOFF_FLOOR_MS)

        adaptation = BehaviorAdaptation(
            speed_reduction=max(MIN_SPEED_REDUCTION, speed),
            pause_increase=min(MAX_PAUSE_INCREASE, pause),
            randomization_factor=min(MAX_RANDOMIZATION, randomization),
            backoff_duration_ms=min(MAX_BACKOFF_MS, backoff_ms),
            switch_persona=switch_persona,
        )

        self._adaptation_level = min(
            MAX_ADAPTATION_LEVEL, self._adaptation_level + len(batch)
        )

        logger.info(
            "Behavior adaptation: signals=%d speed=%.2f pause=%.2f backoff=%ds persona_switch=%s",
            len(batch),
            adaptation.speed_reduction,
            adaptation.pause_increase,
            adaptation.backoff_duration_ms // 1000,
            adaptation.switch_persona,
        )
        return adaptation

    def evaluate_risk(
        self,
        recent_signals: Iterable[DetectionSignal],
        captcha_detected: bool,
        load_time_ms: float | None = None,
        now: datetime | None = None,
    ) -> float:
        """Score current detection risk in [0, 100].

        Only signals from the last five minutes count.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - RISK_WINDOW

        score = sum(
            RISK_POINTS[s.severity] for s in recent_signals if s.timestamp > cutoff
        )
        if captcha_detected:
            score += CAPTCHA_RISK
        if load_time_ms is not None and load_time_ms > self._slow_load_risk_threshold_ms:
            score += SLOW_LOAD_RISK

        return float(max(0, min(100, score)))


def merge_adaptations(
    first: BehaviorAdaptation, second: BehaviorAdaptation
) -> BehaviorAdaptation:
    """Combine two adaptations, keeping the more cautious value of each field."""
    return BehaviorAdaptation(
        speed_reduction=min(first.speed_reduction, second.speed_reduction),
        pause_increase=max(first.pause_increase, second.pause_increase),
        randomization_factor=max(first.randomization_factor, second.randomization_factor),
        backoff_duration_ms=max(first.backoff_duration_ms, second.backoff_duration_ms),
        switch_persona=first.switch_persona or second.switch_persona,
    )
