"""
models.py — Shared data structures for leave notification delivery.

Defines:
    • ChannelName        — the three outbound channels, in priority order
    • Readiness          — channel readiness states
    • LeaveStatus        — approved / rejected
    • NotificationRequest — one rendered message + destination
    • LeaveStatusPayload  — structured status change, rendered by templates
    • ChannelStatus      — last known readiness of one channel
    • ChannelAttempt     — one entry of the fallback chain
    • DeliveryResult     — outcome of one dispatch
    • InboxNotification  — in-app notification record

═══════════════════════════════════════════════════════════════════════════
CHANNEL PRIORITY
═══════════════════════════════════════════════════════════════════════════

    Order   Channel       Needs                         Cost
    ─────   ──────────    ──────────────────────────    ──────────
    1       native        paired WhatsApp-Web session   free
    2       hosted-api    valid provider credentials    per message
                          (+ recipient opt-in on trial)
    3       recording     nothing                       free

The recording channel is always ready, so a well-formed request can never
be dropped: at worst it ends up durably logged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from backend.app.core.errors import MalformedRequestError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class ChannelName(str, Enum):
    """Outbound channels."""
    NATIVE     = "native"
    HOSTED_API = "hosted-api"
    RECORDING  = "recording"


# Fixed dispatch order, highest priority first
CHANNEL_PRIORITY: Tuple[ChannelName, ...] = (
    ChannelName.NATIVE,
    ChannelName.HOSTED_API,
    ChannelName.RECORDING,
)


class Readiness(str, Enum):
    """Channel capability to attempt a send right now."""
    UNINITIALIZED = "uninitialized"   # initializer has not finished
    READY         = "ready"
    DEGRADED      = "degraded"        # was ready, lost its session
    UNAVAILABLE   = "unavailable"     # permanently off for this process


class LeaveStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class PushEventType(str, Enum):
    """Real-time event types consumed by the dashboards."""
    LEAVE_STATUS_UPDATE = "leave_status_update"
    LEAVE_APPLICATION   = "leave_application_notification"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_delivery_id() -> str:
    return f"DLV-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedRequestError(f"{field_name} is required", field=field_name)
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotificationRequest:
    """
    A rendered message bound for one destination.

    Immutable once constructed. Construction fails fast with
    MalformedRequestError when the destination or body is missing, so a
    bad request never reaches a channel.

    Attributes
    ----------
    destination : str
        Phone number (any formatting; channels normalise it).
    body : str
        Fully rendered message text.
    category : str
        Free-form subject, e.g. "leave_status" or "leave_application".
    channel_hints : tuple of ChannelName | None
        Restrict dispatch to these channels. The recording channel is
        always kept as the final sink.
    """
    destination: str
    body: str
    category: str = "leave_status"
    channel_hints: Optional[Tuple[ChannelName, ...]] = None

    def __post_init__(self) -> None:
        _require_text(self.destination, "destination")
        _require_text(self.body, "body")
        if self.channel_hints is not None:
            try:
                hints = tuple(ChannelName(h) for h in self.channel_hints)
            except ValueError as exc:
                raise MalformedRequestError(str(exc), field="channel_hints") from exc
            object.__setattr__(self, "channel_hints", hints)

    def channels_in_order(self) -> Tuple[ChannelName, ...]:
        """Channels this request may use, in fixed priority order."""
        if not self.channel_hints:
            return CHANNEL_PRIORITY
        allowed = set(self.channel_hints) | {ChannelName.RECORDING}
        return tuple(c for c in CHANNEL_PRIORITY if c in allowed)


@dataclass(frozen=True)
class LeaveStatusPayload:
    """Structured status change for a leave application."""
    applicant_name: str
    leave_type: str
    date_range_start: str
    date_range_end: str
    status: LeaveStatus
    reviewer_name: str
    comments: str = ""

    def __post_init__(self) -> None:
        _require_text(self.applicant_name, "applicant_name")
        _require_text(self.leave_type, "leave_type")
        status = self.status
        if not isinstance(status, LeaveStatus):
            status = str(status).strip().lower()
        try:
            object.__setattr__(self, "status", LeaveStatus(status))
        except ValueError as exc:
            raise MalformedRequestError(
                f"status must be one of {[s.value for s in LeaveStatus]}",
                field="status",
            ) from exc

    @property
    def date_range(self) -> Tuple[str, str]:
        return (self.date_range_start, self.date_range_end)


# ═══════════════════════════════════════════════════════════════════════════
# Readiness & Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChannelStatus:
    """Last known readiness of one channel."""
    channel: ChannelName
    readiness: Readiness
    detail: str = ""

    @property
    def is_ready(self) -> bool:
        return self.readiness == Readiness.READY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "readiness": self.readiness.value,
            "detail": self.detail,
        }


@dataclass
class ChannelAttempt:
    """One entry in the fallback chain."""
    channel: ChannelName
    succeeded: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "channel": self.channel.value,
            "succeeded": self.succeeded,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error_code:
            d["errorCode"] = self.error_code
        if self.error_message:
            d["errorMessage"] = self.error_message
        return d


@dataclass
class DeliveryResult:
    """Outcome of one dispatch — produced exactly once per request."""
    destination: str
    delivery_id: str = field(default_factory=_generate_delivery_id)
    channel_used: Optional[ChannelName] = None
    succeeded: bool = False
    attempts: List[ChannelAttempt] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def fallback_chain(self) -> List[ChannelName]:
        """Ordered channels attempted."""
        return [a.channel for a in self.attempts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deliveryId": self.delivery_id,
            "channelUsed": self.channel_used.value if self.channel_used else None,
            "succeeded": self.succeeded,
            "attempts": [a.to_dict() for a in self.attempts],
            "startedAt": self.started_at.isoformat(),
            "completedAt": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


@dataclass
class InboxNotification:
    """In-app notification shown on the dashboards."""
    user_id: int
    title: str
    message: str
    kind: str = "info"
    related_application_id: Optional[int] = None
    notification_id: int = 0
    is_read: bool = False
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.notification_id,
            "userId": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.kind,
            "relatedApplicationId": self.related_application_id,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
        }
