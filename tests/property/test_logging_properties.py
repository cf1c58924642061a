"""Property tests for structured logging.

Every entry is valid JSON with level, timestamp, logger and message; routing
context passed through ``extra`` is carried over; credentials never appear
in the message, the proxy field or the error reason.
"""

from __future__ import annotations

import json
import logging

from hypothesis import given, settings, strategies as st

from stealth_router.logging_config import JsonFormatter

LOGGER_NAME = "stealth_router.routing.router"

plain_text = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789 ._-/", min_size=1, max_size=80)
level_names = st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
page_urls = st.builds(
    "https://{}.{}/{}".format,
    st.text(alphabet="abcdefghij", min_size=3, max_size=10),
    st.sampled_from(["com", "net", "io", "shop"]),
    st.text(alphabet="abc123", min_size=1, max_size=10),
)
strategy_names = st.sampled_from(["unblocker", "browser", "premium_proxy", "direct"])
elapsed_ms = st.floats(min_value=0.0, max_value=120_000.0, allow_nan=False)
secrets = st.text(min_size=8, max_size=32, alphabet="abcdefghijklmnopqrstuvwxyz0123456789")


def _render(message: str, level: str = "INFO", **extra: object) -> dict:
    record = logging.makeLogRecord(
        {"name": LOGGER_NAME, "levelname": level, "levelno": logging.getLevelName(level), "msg": message}
    )
    record.__dict__.update(extra)
    return json.loads(JsonFormatter().format(record))


@settings(max_examples=100)
@given(message=plain_text, level=level_names)
def test_required_fields_present(message: str, level: str) -> None:
    entry = _render(message, level)

    assert entry["level"] == level
    assert entry["logger"] == LOGGER_NAME
    assert entry["message"] == message
    assert entry["timestamp"].endswith("+00:00")


@settings(max_examples=100)
@given(
    strategy=strategy_names,
    target_url=page_urls,
    retry_count=st.integers(min_value=0, max_value=5),
    response_time_ms=elapsed_ms,
    error_reason=plain_text,
)
def test_attempt_context_copied_from_extra(
    strategy: str,
    target_url: str,
    retry_count: int,
    response_time_ms: float,
    error_reason: str,
) -> None:
    attempt = {
        "strategy": strategy,
        "target_url": target_url,
        "retry_count": retry_count,
        "response_time_ms": response_time_ms,
        "error_reason": error_reason,
    }
    entry = _render("Attempt failed", "WARNING", **attempt)

    assert {key: entry[key] for key in attempt} == attempt


@settings(max_examples=100)
@given(message=plain_text)
def test_missing_context_is_left_out(message: str) -> None:
    entry = _render(message)
    assert not {"strategy", "proxy_used", "risk_score"} & entry.keys()


@settings(max_examples=100)
@given(
    secret_value=secrets,
    key=st.sampled_from(["api_key=", "API-KEY: ", "secret=", "password = ", "token:", "Authorization: "]),
)
def test_secret_assignments_redacted(secret_value: str, key: str) -> None:
    entry = _render(f"HTTP 401 via {key}{secret_value} on CDN", "ERROR")
    assert secret_value not in entry["message"]
    assert "[REDACTED]" in entry["message"]


@settings(max_examples=100)
@given(
    username=st.text(min_size=3, max_size=16, alphabet="abcdefghijklmnopqrstuvwxyz-"),
    password=secrets,
    scheme=st.sampled_from(["http", "https", "socks5"]),
)
def test_proxy_userinfo_redacted(username: str, password: str, scheme: str) -> None:
    proxy_url = f"{scheme}://{username}:{password}@gate.example.net:7000"
    entry = _render(
        f"Proxy {proxy_url} refused the tunnel",
        "ERROR",
        proxy_used=proxy_url,
        error_reason=f"ProxyError: {proxy_url}",
    )

    for key in ("message", "proxy_used", "error_reason"):
        assert password not in entry[key]
        assert "gate.example.net:7000" in entry[key]
