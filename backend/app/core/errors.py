"""
Error model for the notification service and its HTTP surface.

Two families live here:

    LeaveNotifyError
    ├── NotFoundError              404  unknown inbox notification
    ├── MalformedRequestError      422  missing destination / body / names
    └── ChannelError               502  raised inside a channel adapter
        ├── ConfigurationMissingError      503
        ├── AuthenticationRejectedError
        ├── RecipientNotRegisteredError
        └── TransportFailureError

Only MalformedRequestError is meant to reach a caller of the router. The
channel family is absorbed into the fallback chain; ``attempt_code`` is
the short code written on the failed chain entry.

register_error_handlers() renders every failure as the same JSON envelope.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class LeaveNotifyError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(LeaveNotifyError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class MalformedRequestError(LeaveNotifyError):
    """Notification request is missing a destination or body (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="MALFORMED_REQUEST",
            details=d,
        )


class ChannelError(LeaveNotifyError):
    """Base for failures raised inside a channel adapter."""

    #: short code recorded on the fallback-chain entry
    attempt_code = "send_failed"

    def __init__(
        self,
        channel: str,
        message: str = "",
        *,
        status_code: int = 502,
        error_code: str = "CHANNEL_ERROR",
        **details: Any,
    ):
        super().__init__(
            message=f"Channel '{channel}' failed: {message}",
            status_code=status_code,
            error_code=error_code,
            details={"channel": channel, **details},
        )
        self.channel = channel


class ConfigurationMissingError(ChannelError):
    """Channel credentials are absent — the channel stays unavailable."""

    attempt_code = "configuration_missing"

    def __init__(self, channel: str, message: str = "credentials not configured", **details: Any):
        super().__init__(
            channel, message,
            status_code=503,
            error_code="CONFIGURATION_MISSING",
            **details,
        )


class AuthenticationRejectedError(ChannelError):
    """Provider rejected the configured credentials."""

    attempt_code = "authentication_rejected"

    def __init__(self, channel: str, message: str = "credentials rejected", **details: Any):
        super().__init__(
            channel, message,
            error_code="AUTHENTICATION_REJECTED",
            **details,
        )


class RecipientNotRegisteredError(ChannelError):
    """Recipient has not opted in to the provider's sandbox."""

    attempt_code = "recipient_not_registered"

    def __init__(self, channel: str, message: str = "recipient has not joined the sandbox", **details: Any):
        super().__init__(
            channel, message,
            error_code="RECIPIENT_NOT_REGISTERED",
            **details,
        )


class TransportFailureError(ChannelError):
    """Network, timeout or provider-side failure."""

    attempt_code = "transport_failure"

    def __init__(self, channel: str, message: str = "", **details: Any):
        super().__init__(
            channel, message,
            error_code="TRANSPORT_FAILURE",
            **details,
        )



# ═══════════════════════════════════════════════════════════════════════════
# JSON Error Envelope
# ═══════════════════════════════════════════════════════════════════════════
#
#   {"error": {"code": "MALFORMED_REQUEST", "message": "...", "status": 422,
#              "requestId": "9f1c...", "details": {...}}}
#
# requestId matches the X-Request-ID response header, so a failed dispatch
# in the logs can be tied back to the call that caused it.

def _error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]],
    request: Request,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {
        "code": error_code,
        "message": message,
        "status": status_code,
    }
    request_id = get_request_context().get("request_id")
    if request_id:
        error["requestId"] = request_id
    if details:
        error["details"] = details
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return {"error": error}


def _respond(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_error_body(status_code, error_code, message, details, request),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Attach the JSON error envelope to every failure path of the app."""

    @app.exception_handler(LeaveNotifyError)
    async def on_leave_notify_error(request: Request, exc: LeaveNotifyError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level, "%s %s rejected [%s]: %s",
            request.method, request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "channel": exc.details.get("channel")},
        )
        return _respond(request, exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def on_schema_error(request: Request, exc: RequestValidationError):
        fields = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "issue": err.get("msg")}
            for err in exc.errors()
        ]
        logger.info("Rejected malformed body on %s: %s", request.url.path, fields)
        return _respond(
            request, 422, "MALFORMED_REQUEST", "Request body failed validation",
            {"fields": fields},
        )

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return _respond(request, 422, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path,
            exc_info=exc,
        )
        if settings.DEBUG:
            return _respond(
                request, 500, "INTERNAL_ERROR", str(exc),
                {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)},
            )
        return _respond(request, 500, "INTERNAL_ERROR", "Internal server error")
