"""Named prerequisite checks for strategies.

A strategy lists prerequisite names (e.g. ``proxy_pool``); each name maps to
a zero-argument callable that reports whether the resource is available
right now. A strategy whose prerequisites are unmet is skipped for the
current round, never counted as a failure.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from stealth_router.proxy.manager import ProxyPoolManager

logger = logging.getLogger(__name__)

Check = Callable[[], bool]


class PrerequisiteChecker:
    def __init__(self) -> None:
        self._checks: dict[str, Check] = {}
        self._warned: set[str] = set()

    def register(self, name: str, check: Check) -> None:
        self._checks[name] = check

    def register_proxy_pool(self, pool: ProxyPoolManager) -> None:
        """``proxy_pool`` is met while the pool holds any endpoint."""
        self.register("proxy_pool", lambda: bool(pool.endpoints))

    def names(self) -> list[str]:
        return sorted(self._checks)

    def is_met(self, name: str) -> bool:
        check = self._checks.get(name)
        if check is None:
            if name not in self._warned:
                self._warned.add(name)
                logger.warning("Unknown prerequisite '%s' treated as unmet", name)
            return False
        return check()

    def all_met(self, names: Iterable[str]) -> bool:
        return all(self.is_met(name) for name in names)
