"""
Structured JSON logging.

Every record is one JSON object carrying the request's correlation and event
ids plus the incident or CAPA id being worked on, so a single lifecycle
operation can be followed across the HTTP and service layers.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "safetyops-engine"

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
event_id_ctx: ContextVar[Optional[str]] = ContextVar("event_id", default=None)
entity_id_ctx: ContextVar[Optional[str]] = ContextVar("entity_id", default=None)

_CONTEXT_FIELDS = (
    ("correlation_id", correlation_id_ctx),
    ("event_id", event_id_ctx),
    ("entity_id", entity_id_ctx),
)

# Third-party loggers kept at WARNING unless the app runs in debug
_QUIET_LOGGERS = ("httpx", "aiosqlite", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """Formatter that dumps records as JSON, merging any ``extra_data`` dict."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "func": record.funcName,
            "line": record.lineno,
            "service": SERVICE_NAME,
        }

        for key, ctx in _CONTEXT_FIELDS:
            value = ctx.get()
            if value:
                entry[key] = value

        extra = getattr(record, "extra_data", None)
        if extra:
            entry.update(extra)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Route the root logger through a single stdout handler with JSON output."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    # Requests are logged by TracingMiddleware
    logging.getLogger("uvicorn.access").disabled = True
    if not debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
