"""Proxy data models for the pool manager."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote


@dataclass
class ProxyEndpoint:
    """A single egress endpoint with live health and usage tracking.

    Endpoints are never removed from the pool. ``failures >= max_failures``
    excludes one from selection until a health check or reset restores it.
    """

    host: str
    port: int
    protocol: str = "http"  # http, https, socks5
    provider: str = "custom"
    username: str | None = None
    password: str | None = None
    base_username: str | None = None  # username without the session suffix
    country: str | None = None
    city: str | None = None
    session_id: str | None = None
    is_sticky: bool = False
    success_rate: float = 1.0
    total_requests: int = 0
    successful_requests: int = 0
    failures: int = 0
    avg_response_time_ms: float = 0.0
    last_used_at: float | None = None  # time.monotonic(); None = never used

    @property
    def proxy_url(self) -> str:
        """Proxy URL including credentials, for use by HTTP clients."""
        if self.username:
            auth = quote(self.username, safe="")
            if self.password:
                auth = f"{auth}:{quote(self.password, safe='')}"
            return f"{self.protocol}://{auth}@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def label(self) -> str:
        """Credential-free identifier for logs and metrics."""
        suffix = f"#{self.session_id}" if self.session_id else ""
        return f"{self.provider}:{self.host}:{self.port}{suffix}"


@dataclass(frozen=True)
class ProxyFilter:
    """Selection constraints for :meth:`ProxyPoolManager.get_next`."""

    provider: str | None = None
    country: str | None = None
    min_success_rate: float | None = None


@dataclass(frozen=True)
class ProxyTestResult:
    """Outcome of probing one endpoint."""

    endpoint: ProxyEndpoint
    success: bool
    response_time_ms: float
    ip: str = "unknown"
    country: str = "unknown"
    city: str | None = None
    error: str | None = None
