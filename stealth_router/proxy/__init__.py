"""Egress proxy pool: endpoint models, provider accounts and the pool manager."""

from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.providers import (
    PROVIDER_DEFAULTS,
    ProviderAccount,
    build_endpoints,
    parse_proxy_url,
)
from stealth_router.proxy.types import ProxyEndpoint, ProxyFilter, ProxyTestResult

__all__ = [
    "PROVIDER_DEFAULTS",
    "ProviderAccount",
    "ProxyEndpoint",
    "ProxyFilter",
    "ProxyPoolManager",
    "ProxyTestResult",
    "build_endpoints",
    "parse_proxy_url",
]
