from __future__ import annotations

import logging
import sys
from typing import Any

SENSITIVE_KEYS = (
    "token",
    "session_token",
    "access_key_id",
    "secret_key",
    "password",
    "authorization",
    "cookie",
    "api_key",
    "apikey",
)

REDACTED = "[REDACTED]"


def redact(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive keys masked, recursively."""
    if isinstance(data, dict):
        out = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if any(sk in lowered for sk in SENSITIVE_KEYS):
                out[key] = REDACTED
            else:
                out[key] = redact(value)
        return out
    if isinstance(data, (list, tuple)):
        return type(data)(redact(v) for v in data)
    return data


class RedactingFilter(logging.Filter):
    """Mask credentials in dict-shaped log arguments before they are formatted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(redact(a) for a in record.args)
        return True


def configure_logging(level: str | int = "INFO") -> None:
    # stdout carries the stdio MCP transport, so logs go to stderr only.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    handler.addFilter(RedactingFilter())

    root = logging.getLogger("rad_security_mcp")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
