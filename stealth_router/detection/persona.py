"""Persona rotation for anti-detection.

A persona is a coherent browser fingerprint (user agent, viewport, timezone,
language, geolocation) plus the request headers it implies. The router swaps
to a fresh persona when a behavior adaptation asks for it, and uses
``pacing_delay_ms`` to stretch human-like pauses by the adaptation's
multipliers.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from stealth_router.models.detection import BehaviorAdaptation

# ---------------------------------------------------------------------------
# Curated user agents: real desktop browser UA strings
# ---------------------------------------------------------------------------

CURATED_USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
]

# Country code → (timezones, languages, approximate geolocation)
REGION_PROFILES: dict[str, tuple[list[str], list[str], dict[str, float]]] = {
    "US": (
        ["America/New_York", "America/Chicago", "America/Denver", "America/Los_Angeles"],
        ["en-US"],
        {"latitude": 37.7749, "longitude": -122.4194},
    ),
    "GB": (["Europe/London"], ["en-GB"], {"latitude": 51.5074, "longitude": -0.1278}),
    "DE": (["Europe/Berlin"], ["de-DE"], {"latitude": 52.5200, "longitude": 13.4050}),
    "FR": (["Europe/Paris"], ["fr-FR"], {"latitude": 48.8566, "longitude": 2.3522}),
    "CA": (
        ["America/Toronto", "America/Vancouver"],
        ["en-CA", "fr-CA"],
        {"latitude": 43.6532, "longitude": -79.3832},
    ),
    "AU": (
        ["Australia/Sydney", "Australia/Melbourne"],
        ["en-AU"],
        {"latitude": -33.8688, "longitude": 151.2093},
    ),
}

ALL_TIMEZONES: list[str] = sorted({tz for tzs, _, _ in REGION_PROFILES.values() for tz in tzs})
ALL_LANGUAGES: list[str] = sorted({lang for _, langs, _ in REGION_PROFILES.values() for lang in langs})


@dataclass(frozen=True)
class Persona:
    """A coherent browser identity."""

    persona_id: int
    user_agent: str
    viewport_width: int  # 1280–1920
    viewport_height: int  # 720–1080
    timezone: str
    language: str
    geolocation: dict[str, float] | None

    def headers(self) -> dict[str, str]:
        """Request headers a strategy should send for this persona."""
        primary = self.language.split("-")[0]
        return {
            "User-Agent": self.user_agent,
            "Accept-Language": f"{self.language},{primary};q=0.9",
        }


class PersonaRotator:
    """Generates personas and tracks the active one.

    When ``country`` is given, timezone, language and geolocation are drawn
    to be consistent with it (matching the egress proxy's country).
    """

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._counter = 0
        self._current: Persona | None = None

    @property
    def current(self) -> Persona:
        if self._current is None:
            self._current = self.generate()
        return self._current

    @property
    def rotations(self) -> int:
        """Number of personas generated so far."""
        return self._counter

    def generate(self, country: str | None = None) -> Persona:
        """Return a fresh randomized :class:`Persona`."""
        self._counter += 1
        region = country.upper() if country else None

        if region and region in REGION_PROFILES:
            timezones, languages, geolocation = REGION_PROFILES[region]
            timezone = self._rng.choice(timezones)
            language = self._rng.choice(languages)
        else:
            timezone = self._rng.choice(ALL_TIMEZONES)
            language = self._rng.choice(ALL_LANGUAGES)
            geolocation = None

        return Persona(
            persona_id=self._counter,
            user_agent=self._rng.choice(CURATED_USER_AGENTS),
            viewport_width=self._rng.randint(1280, 1920),
            viewport_height=self._rng.randint(720, 1080),
            timezone=timezone,
            language=language,
            geolocation=geolocation,
        )

    def rotate(self, country: str | None = None) -> Persona:
        """Replace the active persona with a fresh one, never reusing the same UA."""
        previous = self._current
        persona = self.generate(country)
        if previous is not None and len(CURATED_USER_AGENTS) > 1:
            while persona.user_agent == previous.user_agent:
                persona = Persona(
                    persona_id=persona.persona_id,
                    user_agent=self._rng.choice(CURATED_USER_AGENTS),
                    viewport_width=persona.viewport_width,
                    viewport_height=persona.viewport_height,
                    timezone=persona.timezone,
                    language=persona.language,
                    geolocation=persona.geolocation,
                )
        self._current = persona
        return persona

    def pacing_delay_ms(
        self,
        adaptation: BehaviorAdaptation,
        min_delay_ms: int = 500,
        max_delay_ms: int = 2000,
    ) -> float:
        """Return a human-like delay stretched by *adaptation*.

        The base delay is uniform in [min, max]; it is scaled by
        ``pause_increase / speed_reduction`` and jittered by up to
        ``±randomization_factor`` of itself.
        """
        base = self._rng.uniform(min_delay_ms, max_delay_ms)
        scaled = base * adaptation.pause_increase / adaptation.speed_reduction
        jitter = self._rng.uniform(-adaptation.randomization_factor, adaptation.randomization_factor)
        return max(0.0, scaled * (1.0 + jitter))
