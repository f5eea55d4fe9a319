"""
Request middleware — correlation IDs and one access line per request.

The leave store calls this service right after committing a status
transition and passes its own X-Request-ID. That id is bound into the log
context, so the router's dispatch and fall-through lines for that
transition carry it too.

Access lines are grouped by route family:

    /api/v1/notifications/dispatch, /leave-*   → "delivery"
    /api/v1/notifications/inbox/...            → "inbox"
    /api/v1/notifications/channels/...         → "channels"
    /health...                                 → "probe"   (DEBUG only)
    anything else                              → "api"
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_NOTIFICATIONS_PREFIX = "/api/v1/notifications/"
_SILENT_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon")
SLOW_REQUEST_MS = 2000.0


def classify_path(path: str) -> str:
    """Route family used as the ``category`` of the access line."""
    if path.startswith("/health"):
        return "probe"
    if not path.startswith(_NOTIFICATIONS_PREFIX):
        return "api"
    section = path[len(_NOTIFICATIONS_PREFIX):].split("/", 1)[0]
    if section in ("dispatch", "leave-status", "leave-application"):
        return "delivery"
    if section in ("inbox", "channels"):
        return section
    return "api"


def _access_level(category: str, status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400 or duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    if category == "probe":
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind request context, time the call, emit the access line."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        category = classify_path(path)

        set_request_context(
            request_id=request_id,
            endpoint=path,
            method=request.method,
            client_ip=request.client.host if request.client else "unknown",
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s crashed after %.1fms",
                request.method, path, (time.perf_counter() - start) * 1000,
                extra={"category": category, "status_code": 500, "endpoint": path},
            )
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

        if not path.startswith(_SILENT_PREFIXES):
            logger.log(
                _access_level(category, response.status_code, elapsed_ms),
                "%s %s → %d in %.1fms",
                request.method, path, response.status_code, elapsed_ms,
                extra={
                    "category": category,
                    "duration_ms": round(elapsed_ms, 1),
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_request_context()
        return response
