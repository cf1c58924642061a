"""Per-domain adaptive request pacing.

Token bucket per target domain. Behavior adaptations slow a domain down:
``apply_adaptation`` multiplies the refill rate by the adaptation's
``speed_reduction`` for ``backoff_duration_ms``, after which the original
rate is restored. Reductions never compound: each one is computed from the
original rate and the most cautious active reduction wins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlparse

from stealth_router.models.detection import BehaviorAdaptation

logger = logging.getLogger(__name__)


def extract_domain(url: str) -> str:
    """Host part of *url*; bare ``host/path`` strings are accepted too."""
    parsed = urlparse(url)
    return parsed.netloc or parsed.path.split("/")[0]


@dataclass
class TokenBucket:
    """Pacing state for one domain. ``refill_rate`` is tokens per second."""

    domain: str
    tokens: float
    max_tokens: int
    refill_rate: float
    last_refill: float
    reduced_until: float | None = None
    original_refill_rate: float = 0.0

    def __post_init__(self) -> None:
        if not self.original_refill_rate:
            self.original_refill_rate = self.refill_rate

    def advance(self, now: float) -> None:
        """Credit tokens earned since the last call, lifting an expired reduction."""
        if now <= self.last_refill:
            return
        if self.reduced_until is not None and self.reduced_until <= now:
            self.refill_rate = self.original_refill_rate
            self.reduced_until = None
            logger.info("Pacing for %s back to %.4f tokens/s", self.domain, self.refill_rate)

        earned = (now - self.last_refill) * self.refill_rate
        self.tokens = min(float(self.max_tokens), self.tokens + earned)
        self.last_refill = now

    def try_take(self) -> float:
        """Consume a token and return 0, or return the seconds until one is due."""
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0.0
        if self.refill_rate <= 0:
            return 1.0
        return (1.0 - self.tokens) / self.refill_rate


class DomainPacer:
    """Per-domain token bucket whose rate follows detection feedback.

    Args:
        tokens: Bucket capacity per domain.
        interval_seconds: Seconds to refill a full bucket at the normal rate.
    """

    def __init__(self, tokens: int = 2, interval_seconds: int = 10) -> None:
        self._tokens = tokens
        self._base_rate = tokens / interval_seconds if interval_seconds > 0 else float(tokens)
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    def _current(self, domain: str) -> TokenBucket:
        now = time.monotonic()
        bucket = self._buckets.get(domain)
        if bucket is None:
            bucket = TokenBucket(
                domain=domain,
                tokens=float(self._tokens),
                max_tokens=self._tokens,
                refill_rate=self._base_rate,
                last_refill=now,
            )
            self._buckets[domain] = bucket
        else:
            bucket.advance(now)
        return bucket

    async def acquire(self, domain: str) -> float:
        """Wait for a token for *domain*; returns the seconds spent waiting."""
        waited = 0.0
        while True:
            async with self._lock:
                delay = self._current(domain).try_take()
            if delay == 0.0:
                return waited
            # the lock is not held while sleeping so other domains keep moving
            await asyncio.sleep(delay)
            waited += delay

    def slow_down(self, domain: str, factor: float, duration_seconds: float) -> None:
        """Multiply *domain*'s original rate by *factor* for *duration_seconds*."""
        if factor >= 1.0 or duration_seconds <= 0:
            return

        bucket = self._current(domain)
        rate = bucket.original_refill_rate * factor
        until = time.monotonic() + duration_seconds
        if bucket.reduced_until is not None:
            rate = min(rate, bucket.refill_rate)
            until = max(until, bucket.reduced_until)

        bucket.refill_rate, bucket.reduced_until = rate, until
        logger.warning(
            "Slowing %s to %.4f tokens/s (normal %.4f) for %.0fs",
            domain,
            rate,
            bucket.original_refill_rate,
            until - time.monotonic(),
        )

    def apply_adaptation(self, domain: str, adaptation: BehaviorAdaptation) -> None:
        self.slow_down(
            domain,
            factor=adaptation.speed_reduction,
            duration_seconds=adaptation.backoff_duration_ms / 1000.0,
        )

    def get_stats(self, domain: str) -> dict:
        """Current tokens, capacity, rate and reduction flag for *domain*."""
        bucket = self._buckets.get(domain)
        if bucket is None:
            return {
                "current_tokens": float(self._tokens),
                "max_tokens": self._tokens,
                "refill_rate": self._base_rate,
                "is_reduced": False,
            }

        bucket.advance(time.monotonic())
        return {
            "current_tokens": bucket.tokens,
            "max_tokens": bucket.max_tokens,
            "refill_rate": bucket.refill_rate,
            "is_reduced": bucket.reduced_until is not None,
        }
