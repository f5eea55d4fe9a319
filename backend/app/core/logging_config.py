"""
Structured logging configuration.

Two renderings of the same records:

    production   one JSON object per line, for log aggregation
    otherwise    coloured single line:  12:01:07 WARNING  [9f1c2a4b] <hosted-api> DLV-3F.. router: ...

Delivery code passes its fields through ``extra=`` and they are lifted
into the record:

    logger.warning("...", extra={"channel": "native", "delivery_id": "DLV-1"})

Request-scoped fields (request_id, endpoint, method, client_ip) are bound
by the request middleware in a ContextVar and attached to every line
emitted while that request is being served, including lines from the
router and the channel adapters.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

# extra= keys promoted to top-level JSON fields
DELIVERY_FIELDS = (
    "channel", "destination", "delivery_id", "user_id", "category",
    "duration_ms", "status_code", "endpoint",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def set_request_context(**kwargs: Any) -> None:
    """Bind request-scoped fields; call with no arguments to clear."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _delivery_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: getattr(record, key)
        for key in DELIVERY_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_delivery_fields(record))

        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Coloured console lines for local development."""

    _LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self._LEVEL_COLOURS.get(record.levelno, self._RESET)
        parts = [f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self._RESET}"]

        request_id = get_request_context().get("request_id")
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        channel = getattr(record, "channel", None)
        if channel:
            parts.append(f"<{channel}>")
        delivery_id = getattr(record, "delivery_id", None)
        if delivery_id:
            parts.append(delivery_id)

        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)

        if record.exc_info and record.exc_info[1] is not None:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Defaults come from settings: LOG_LEVEL, and JSON output in production.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    use_json = settings.is_production if json_output is None else json_output

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
