"""Endpoint construction for premium residential proxy providers.

Each provider account expands into several session-scoped endpoints so the
pool can rotate between them. Sticky accounts embed the session identifier
in the username (``<user>-session-<id>``); rotating accounts share one
username and let the provider pick the exit IP.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from stealth_router.proxy.types import ProxyEndpoint

logger = logging.getLogger(__name__)

# provider → (default gateway, sticky session count, rotating session count)
PROVIDER_DEFAULTS: dict[str, tuple[str, int, int]] = {
    "brightdata": ("brd.superproxy.io:22225", 10, 10),
    "oxylabs": ("pr.oxylabs.io:7777", 10, 5),
    "smartproxy": ("gate.smartproxy.com:7000", 8, 3),
}


@dataclass(frozen=True)
class ProviderAccount:
    """Credentials and session preferences for one provider account."""

    provider: str
    username: str
    password: str
    sticky: bool = True
    endpoint: str | None = None  # host:port override
    country: str | None = None
    city: str | None = None


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def session_username(base_username: str, session_id: str) -> str:
    return f"{base_username}-session-{session_id}"


def build_endpoints(account: ProviderAccount) -> list[ProxyEndpoint]:
    """Expand *account* into its session-scoped endpoints.

    Raises
    ------
    ValueError
        If the provider is unknown or the gateway is not ``host:port``.
    """
    if account.provider not in PROVIDER_DEFAULTS:
        raise ValueError(f"Unknown proxy provider '{account.provider}'")

    default_gateway, sticky_count, rotating_count = PROVIDER_DEFAULTS[account.provider]
    gateway = account.endpoint or default_gateway
    host, _, port = gateway.rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"Invalid gateway '{gateway}' for provider '{account.provider}'")

    count = sticky_count if account.sticky else rotating_count
    endpoints: list[ProxyEndpoint] = []
    for _ in range(count):
        session_id = new_session_id() if account.sticky else None
        endpoints.append(
            ProxyEndpoint(
                host=host,
                port=int(port),
                protocol="http",
                provider=account.provider,
                username=(
                    session_username(account.username, session_id)
                    if session_id
                    else account.username
                ),
                password=account.password,
                base_username=account.username,
                country=account.country,
                city=account.city,
                session_id=session_id,
                is_sticky=account.sticky,
            )
        )

    logger.info(
        "Created %d %s endpoints (sticky=%s)",
        len(endpoints),
        account.provider,
        account.sticky,
    )
    return endpoints


def parse_proxy_url(raw_url: str, provider: str = "custom") -> ProxyEndpoint:
    """Build an endpoint from a plain proxy URL such as ``socks5://u:p@host:1080``.

    Raises
    ------
    ValueError
        If the URL has no host or port.
    """
    parsed = urlparse(raw_url)
    if not parsed.hostname or parsed.port is None:
        raise ValueError(f"Proxy URL must include host and port: {raw_url!r}")

    username = unquote(parsed.username) if parsed.username else None
    return ProxyEndpoint(
        host=parsed.hostname,
        port=parsed.port,
        protocol=(parsed.scheme or "http").lower(),
        provider=provider,
        username=username,
        password=unquote(parsed.password) if parsed.password else None,
        base_username=username,
    )
