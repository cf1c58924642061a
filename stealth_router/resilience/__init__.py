"""Resilience components: adaptive per-domain pacing."""

from stealth_router.resilience.pacer import DomainPacer, TokenBucket, extract_domain

__all__ = [
    "DomainPacer",
    "TokenBucket",
    "extract_domain",
]
