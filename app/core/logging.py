"""Logging configuration for the IRAC commerce service.

One stdout handler on the root logger, text or JSON Lines (LOG_JSON).

Money movements are the events support staff search for most often
("what happened to authority X?", "why is wallet Y short?").  Services
pass identifiers such as ``wallet_id`` or ``authority`` through
``extra=``; the JSON formatter lifts them to top-level keys and the text
formatter appends them as ``key=value`` after the message.

The request id lives in ``request_id_var``.  RequestContextMiddleware
sets it per request and the handler filter installed here stamps it on
every record, including records propagated from ``app.*`` loggers.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# Request fields first, then domain identifiers.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "user_id",
    "status_code",
    "duration_ms",
    "group_id",
    "course_id",
    "wallet_id",
    "authority",
    "error_code",
)
_DOMAIN_FIELDS = CONTEXT_FIELDS[6:]

_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


class RequestIdFilter(logging.Filter):
    """Stamp the current request id on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()  # type: ignore[attr-defined]
        return True


class _ContainerFormatter(logging.Formatter):
    """Single-line text for container stdout.

    ``<ts> LEVEL logger  message  wallet_id=... [req=...] [file:line]``;
    the location suffix is added from WARNING up, tracebacks follow on
    the next lines.
    """

    def __init__(self) -> None:
        super().__init__(datefmt=_DATEFMT)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        # milliseconds go before the +0000 offset
        return f"{base[:-5]}.{int(record.msecs):03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            self.formatTime(record, self.datefmt),
            f"{record.levelname:<8}",
            f"{record.name} ",
            record.getMessage(),
        ]
        for key in _DOMAIN_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                parts.append(f"{key}={value}")

        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            parts.append(f"[req={request_id}]")
        if record.levelno >= logging.WARNING:
            parts.append(f"[{record.filename}:{record.lineno}]")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _JsonFormatter(logging.Formatter):
    """JSON Lines: one object per record, context fields as top-level keys."""

    def __init__(self) -> None:
        super().__init__(datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger for container environments.

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: Emit JSON lines instead of text (LOG_JSON).
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Keep third-party loggers from flooding at DEBUG
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
