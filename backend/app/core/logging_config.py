"""
Structured logging for the notification engine.

Two renderings of the same record:
    production   one JSON object per line, event fields under "event"
    otherwise    single console line with an event tag appended

    12:00:01 INFO     [a1b2c3d4] ...escalation: Escalated 3f1c to SMS  (evt=3f1c ch=SMS)

Request scope (request_id, endpoint, ...) is carried in a ContextVar set by
the request middleware; event scope comes from ``extra=`` on each call.

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Escalated", extra={"event_id": eid, "channel": "SMS"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# extra= keys that describe the notification event being handled
EVENT_FIELDS = ("event_id", "user_id", "channel", "event_type")
# extra= keys the request middleware attaches
REQUEST_FIELDS = ("duration_ms", "status_code", "endpoint")

_EVENT_TAGS = {"event_id": "evt", "user_id": "user", "channel": "ch"}


def set_request_context(**kwargs: Any) -> None:
    """Replace the request scope; call with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _pick(record: logging.LogRecord, names) -> Dict[str, Any]:
    return {n: getattr(record, n) for n in names if getattr(record, n, None) is not None}


class JSONFormatter(logging.Formatter):
    """Machine-readable line; event and request scopes kept apart."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        event = _pick(record, EVENT_FIELDS)
        if event:
            entry["event"] = event
        request = {**get_request_context(), **_pick(record, REQUEST_FIELDS)}
        if request:
            entry["request"] = request
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Console line for local runs of the simulator."""

    _LEVEL_COLORS = {
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        color = self._LEVEL_COLORS.get(record.levelname)
        if color:
            level = f"{color}{level}{self._RESET}"

        request_id = get_request_context().get("request_id")
        scope = f" [{request_id[:8]}]" if request_id else ""

        tags = " ".join(
            f"{tag}={getattr(record, name)}"
            for name, tag in _EVENT_TAGS.items()
            if getattr(record, name, None) is not None
        )
        line = (
            f"{self.formatTime(record, '%H:%M:%S')} {level}{scope} "
            f"{record.name}: {record.getMessage()}"
        )
        if tags:
            line += f"  ({tags})"
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # the middleware already writes one line per request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
