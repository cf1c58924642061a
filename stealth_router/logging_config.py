"""JSON log lines for the router.

Each entry carries level, timestamp, logger and message. Routing context is
passed with ``extra=`` and copied into the entry when present: attempt
fields (strategy, target_url, retry_count, response_time_ms, proxy_used,
error_reason) and detection feedback (risk_score).

Proxy credentials and secret-looking ``key=value`` pairs are redacted from
every free-text field before it is written.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

_SECRET_ASSIGNMENT = re.compile(
    r"(api.key|secret|password|token|credential|authorization)\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_USERINFO = re.compile(r"(?<=://)[^/@\s:]+:[^/@\s]+@")

# extra= attribute -> whether it is free text that needs redaction
_EXTRA_FIELDS: dict[str, bool] = {
    "strategy": False,
    "target_url": False,
    "retry_count": False,
    "response_time_ms": False,
    "status_code": False,
    "risk_score": False,
    "attempts": False,
    "proxy_used": True,
    "error_reason": True,
}

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def redact(text: str) -> str:
    """Strip URL userinfo and secret assignments from *text*."""
    return _SECRET_ASSIGNMENT.sub("[REDACTED]", _USERINFO.sub("[REDACTED]@", text))


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }

        for name, free_text in _EXTRA_FIELDS.items():
            if name not in record.__dict__:
                continue
            value = record.__dict__[name]
            entry[name] = redact(str(value)) if free_text else value

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    """Replace the root logger's handlers with a single stream handler.

    ``json_output=False`` switches to a plain text line for local runs.
    Unknown level names fall back to INFO.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
