"""Bot-detection signal classification for fetch outcomes.

Inspects the observable artifacts of one fetch (status, headers, body,
timing) and emits classified :class:`DetectionSignal` objects:

- challenge/verification language or meta refresh / CSP markers → rate_limit, high
- HTTP 429 or a Retry-After header → rate_limit, high
- bot-detection vocabulary inside <script> → behavioral, medium
- load time above the slow threshold → technical, low
- style-hidden <input>/<button> elements (honeypots) → technical, medium
- blocking keywords or HTTP 403 → challenge, high
- a detected CAPTCHA → challenge, critical

``detect_captcha`` classifies the challenge type with layered heuristics:
markup signatures (0.9) > page-text phrases (0.7) > title (0.6).

Signals are advisory. Only ``blocking_evidence`` (a 403/429 status or a
markup-signature CAPTCHA) decides that a fetch returned a block page.
Keywords and phrases match whole words only.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup, Comment, Doctype

from stealth_router.models.detection import (
    NO_CAPTCHA,
    CaptchaChallenge,
    CaptchaType,
    DetectionSignal,
    FetchOutcome,
    Severity,
    SignalType,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

CAPTCHA_SELECTORS: dict[CaptchaType, list[str]] = {
    CaptchaType.RECAPTCHA: [
        'iframe[src*="recaptcha"]',
        ".g-recaptcha",
        "#g-recaptcha",
        "[data-sitekey]",
        ".recaptcha-checkbox-border",
    ],
    CaptchaType.HCAPTCHA: [
        'iframe[src*="hcaptcha"]',
        ".h-captcha",
        "[data-hcaptcha-sitekey]",
        "#h-captcha",
    ],
    CaptchaType.CLOUDFLARE: [
        ".cf-challenge-running",
        "#cf-wrapper",
        ".cf-browser-verification",
        ".cf-checking-browser",
        "#challenge-form",
    ],
}

CHALLENGE_PHRASES: tuple[str, ...] = (
    "verify you are human",
    "complete the captcha",
    "security check",
    "bot detection",
    "access denied",
    "are you a robot",
    "prove you are human",
    "anti-robot verification",
    "please verify",
    "verification required",
)

TITLE_MARKERS: tuple[str, ...] = ("captcha", "verification", "security check")

BOT_SCRIPT_MARKERS: tuple[str, ...] = (
    "fingerprint",
    "bot-detection",
    "behavior-analysis",
    "antibot",
    "fraud-detection",
)

BLOCKING_KEYWORDS: tuple[str, ...] = (
    "access denied",
    "blocked",
    "forbidden",
    "403",
    "rate limit exceeded",
    "too many requests",
)

# Only these fail an attempt; keyword and phrase matches stay advisory
BLOCKING_STATUS_CODES = frozenset({403, 429})
BLOCKING_CAPTCHA_CONFIDENCE = 0.9


def _whole_words(phrases: tuple[str, ...]) -> re.Pattern[str]:
    # "1,403,000" and "unblocked" must not match "403" and "blocked"
    alternatives = "|".join(re.escape(p) for p in phrases)
    return re.compile(rf"(?<![\w.,])(?:{alternatives})(?![\w]|[.,]\d)")


_CHALLENGE_PATTERN = _whole_words(CHALLENGE_PHRASES)
_BLOCKING_PATTERN = _whole_words(BLOCKING_KEYWORDS)

_HIDDEN_STYLE = re.compile(
    r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(?:\.0+)?(?![.\d])",
    re.IGNORECASE,
)

_NON_VISIBLE_TAGS = frozenset({"script", "style", "noscript", "template", "title", "head"})


def _parse(outcome: FetchOutcome) -> tuple[BeautifulSoup, str]:
    """Parse the body and return it with its lower-cased visible text."""
    soup = BeautifulSoup(outcome.content or "", "html.parser")
    parts = [
        text.strip()
        for text in soup.find_all(string=True)
        if not isinstance(text, (Comment, Doctype))
        and text.parent is not None
        and text.parent.name not in _NON_VISIBLE_TAGS
        and text.strip()
    ]
    return soup, " ".join(parts).lower()


class SignalMonitor:
    """Classifies fetch outcomes into detection signals.

    ``detect_signals`` is a pure function of its outcome; the monitor also
    keeps a rolling, time-bounded history of everything it emitted so that
    risk scoring can look back over recent fetches.

    Args:
        slow_load_threshold_ms: Load time above which a technical signal fires.
        history_seconds: How long emitted signals are retained.
    """

    def __init__(
        self,
        slow_load_threshold_ms: int = 10000,
        history_seconds: int = 3600,
    ) -> None:
        self._slow_load_threshold_ms = slow_load_threshold_ms
        self._history_window = timedelta(seconds=history_seconds)
        self._history: deque[DetectionSignal] = deque()

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def detect_signals(self, outcome: FetchOutcome) -> list[DetectionSignal]:
        """Return every detection signal observable in *outcome*."""
        signals, _ = self.inspect(outcome)
        return signals

    def detect_captcha(self, outcome: FetchOutcome) -> CaptchaChallenge:
        """Classify the challenge type present in *outcome*, if any."""
        soup, page_text = _parse(outcome)
        return self._classify_captcha(soup, page_text)

    def inspect(
        self, outcome: FetchOutcome
    ) -> tuple[list[DetectionSignal], CaptchaChallenge]:
        """Run signal detection and CAPTCHA classification over one parse."""
        soup, page_text = _parse(outcome)
        headers = {k.lower(): v for k, v in outcome.headers.items()}
        signals: list[DetectionSignal] = []

        rate_limit_reason = self._rate_limit_reason(outcome, soup, page_text, headers)
        if rate_limit_reason:
            signals.append(
                DetectionSignal(
                    type=SignalType.RATE_LIMIT,
                    severity=Severity.HIGH,
                    description=f"Rate limit detected via {rate_limit_reason}",
                    adaptation_suggestion="Increase delays and reduce request frequency",
                )
            )

        if self._has_bot_detection_scripts(soup):
            signals.append(
                DetectionSignal(
                    type=SignalType.BEHAVIORAL,
                    severity=Severity.MEDIUM,
                    description="Behavioral analysis scripts detected",
                    adaptation_suggestion="Add more human-like variations to interactions",
                )
            )

        if outcome.load_time_ms > self._slow_load_threshold_ms:
            signals.append(
                DetectionSignal(
                    type=SignalType.TECHNICAL,
                    severity=Severity.LOW,
                    description=(
                        f"Slow page load detected ({outcome.load_time_ms:.0f}ms), "
                        "possible rate limiting"
                    ),
                    adaptation_suggestion="Reduce request frequency",
                )
            )

        honeypots = self._count_honeypots(soup)
        if honeypots > 0:
            signals.append(
                DetectionSignal(
                    type=SignalType.TECHNICAL,
                    severity=Severity.MEDIUM,
                    description=f"{honeypots} honeypot elements detected",
                    adaptation_suggestion="Avoid interacting with hidden elements",
                )
            )

        blocking = self._blocking_reason(outcome, page_text)
        if blocking:
            signals.append(
                DetectionSignal(
                    type=SignalType.CHALLENGE,
                    severity=Severity.HIGH,
                    description=f"Blocking detected: {blocking}",
                    adaptation_suggestion="Switch proxy and persona, increase delays",
                )
            )

        captcha = self._classify_captcha(soup, page_text)
        if captcha.detected:
            signals.append(
                DetectionSignal(
                    type=SignalType.CHALLENGE,
                    severity=Severity.CRITICAL,
                    description=(
                        f"{captcha.type.value} challenge detected "
                        f"(confidence {captcha.confidence:.1f})"
                    ),
                    adaptation_suggestion="Back off, switch persona, and rotate proxy session",
                )
            )

        if signals:
            logger.info(
                "Detected %d signal(s) for %s: %s",
                len(signals),
                outcome.url,
                ", ".join(f"{s.type.value}/{s.severity.value}" for s in signals),
            )
        self._remember(signals)
        return signals, captcha

    @staticmethod
    def blocking_evidence(outcome: FetchOutcome, captcha: CaptchaChallenge) -> str | None:
        """Reason *outcome* is a block page rather than content, or ``None``.

        A 403/429 status or a CAPTCHA widget found by markup signature counts.
        Language and title matches are reported as signals but never block.
        """
        if outcome.status_code in BLOCKING_STATUS_CODES:
            return f"HTTP {outcome.status_code}"
        if captcha.detected and captcha.confidence >= BLOCKING_CAPTCHA_CONFIDENCE:
            return f"{captcha.type.value} challenge ({captcha.element})"
        return None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def recent_signals(self, now: datetime | None = None) -> list[DetectionSignal]:
        """Return retained signals, pruning those older than the history window."""
        self._prune(now or datetime.now(timezone.utc))
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def _remember(self, signals: list[DetectionSignal]) -> None:
        self._history.extend(signals)
        self._prune(datetime.now(timezone.utc))

    def _prune(self, now: datetime) -> None:
        cutoff = now - self._history_window
        while self._history and self._history[0].timestamp <= cutoff:
            self._history.popleft()

    # ------------------------------------------------------------------
    # Classification helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _rate_limit_reason(
        outcome: FetchOutcome,
        soup: BeautifulSoup,
        page_text: str,
        headers: dict[str, str],
    ) -> str | None:
        if outcome.status_code == 429:
            return "HTTP 429"
        if "retry-after" in headers:
            return "Retry-After header"
        for meta in soup.find_all("meta"):
            http_equiv = (meta.get("http-equiv") or "").lower()
            if http_equiv == "refresh":
                return "meta refresh"
            if http_equiv == "content-security-policy":
                return "content security meta"
        match = _CHALLENGE_PATTERN.search(page_text)
        if match:
            return f"challenge language '{match.group(0)}'"
        return None

    @staticmethod
    def _has_bot_detection_scripts(soup: BeautifulSoup) -> bool:
        for script in soup.find_all("script"):
            content = (script.string or script.get_text() or "").lower()
            src = (script.get("src") or "").lower()
            if any(marker in content or marker in src for marker in BOT_SCRIPT_MARKERS):
                return True
        return False

    @staticmethod
    def _count_honeypots(soup: BeautifulSoup) -> int:
        count = 0
        for element in soup.find_all(["input", "button"]):
            if element.name == "input" and (element.get("type") or "").lower() == "hidden":
                # Hidden form fields are normal markup, not traps
                continue
            style = element.get("style") or ""
            if _HIDDEN_STYLE.search(style):
                count += 1
        return count

    @staticmethod
    def _blocking_reason(outcome: FetchOutcome, page_text: str) -> str | None:
        if outcome.status_code == 403:
            return "HTTP 403"
        match = _BLOCKING_PATTERN.search(page_text)
        if match:
            return f"keyword '{match.group(0)}'"
        return None

    @staticmethod
    def _classify_captcha(soup: BeautifulSoup, page_text: str) -> CaptchaChallenge:
        for captcha_type, selectors in CAPTCHA_SELECTORS.items():
            for selector in selectors:
                if soup.select_one(selector) is not None:
                    return CaptchaChallenge(
                        type=captcha_type,
                        detected=True,
                        element=selector,
                        confidence=BLOCKING_CAPTCHA_CONFIDENCE,
                    )

        if _CHALLENGE_PATTERN.search(page_text):
            return CaptchaChallenge(
                type=CaptchaType.CUSTOM,
                detected=True,
                element=None,
                confidence=0.7,
            )

        title = soup.title.get_text().lower() if soup.title else ""
        if any(marker in title for marker in TITLE_MARKERS):
            return CaptchaChallenge(
                type=CaptchaType.CUSTOM,
                detected=True,
                element=None,
                confidence=0.6,
            )

        return NO_CAPTCHA
