"""
FastAPI route: Leave notification delivery endpoints.

Provides endpoints to:
    POST  /api/v1/notifications/dispatch           — send a rendered message
    POST  /api/v1/notifications/leave-status       — notify a status change
    POST  /api/v1/notifications/leave-application  — alert a reviewer
    GET   /api/v1/notifications/channels           — channel readiness
    POST  /api/v1/notifications/channels/native/paired — complete pairing
    GET   /api/v1/notifications/recorded           — recording channel history
    GET   /api/v1/notifications/inbox/{user_id}    — in-app notifications
    PATCH /api/v1/notifications/inbox/{id}/read    — mark as read
    GET   /api/v1/notifications/health             — service health
    WS    /ws                                      — real-time push
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field

from backend.app.core.errors import NotFoundError
from backend.app.core.health import run_health_check
from backend.app.notifications.channels import NativeClientChannel, RecordingChannel
from backend.app.notifications.inbox import NotificationInbox
from backend.app.notifications.models import (
    ChannelName,
    LeaveStatus,
    LeaveStatusPayload,
    NotificationRequest,
)
from backend.app.notifications.router import NotificationRouter
from backend.app.notifications.service import LeaveNotificationService
from backend.app.realtime.push_hub import PushHub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
ws_router = APIRouter(tags=["realtime"])


# ---------------------------------------------------------------------------
# Request / Response Schemas
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DispatchRequest(_CamelModel):
    """A pre-rendered message."""
    destination: str = Field(..., min_length=1, examples=["+919876543210"])
    body: str = Field(..., min_length=1, examples=["Your leave has been approved."])
    category: str = Field("leave_status", examples=["leave_status"])
    channel_hints: Optional[List[ChannelName]] = Field(
        None, alias="channelHints",
        description="Restrict to these channels (recording is always kept)",
    )


class LeaveStatusRequest(_CamelModel):
    """Structured leave status change, rendered server-side."""
    destination: Optional[str] = Field(None, examples=["+919876543210"])
    email: Optional[str] = Field(None, examples=["asha.rao@example.edu"])
    applicant_user_id: Optional[int] = Field(None, alias="applicantUserId", examples=[42])
    application_id: Optional[int] = Field(None, alias="applicationId", examples=[1001])
    applicant_name: str = Field(..., alias="applicantName", min_length=1, examples=["Asha Rao"])
    leave_type: str = Field(..., alias="leaveType", min_length=1, examples=["sick"])
    date_range_start: str = Field(..., alias="dateRangeStart", examples=["2024-03-01"])
    date_range_end: str = Field(..., alias="dateRangeEnd", examples=["2024-03-03"])
    status: LeaveStatus = Field(..., examples=["approved"])
    reviewer_name: str = Field(..., alias="reviewerName", examples=["Dr. Menon"])
    comments: str = Field("", examples=["Get well soon"])


class LeaveApplicationAlertRequest(_CamelModel):
    """A new application waiting for a reviewer."""
    reviewer_user_id: Optional[int] = Field(None, alias="reviewerUserId")
    reviewer_phone: Optional[str] = Field(None, alias="reviewerPhone")
    reviewer_email: Optional[str] = Field(None, alias="reviewerEmail")
    reviewer_name: str = Field(..., alias="reviewerName", examples=["Dr. Menon"])
    applicant_name: str = Field(..., alias="applicantName", min_length=1)
    leave_type: str = Field(..., alias="leaveType", min_length=1)
    date_range_start: str = Field(..., alias="dateRangeStart")
    date_range_end: str = Field(..., alias="dateRangeEnd")
    leave_days: int = Field(1, alias="leaveDays", ge=1)
    application_id: Optional[int] = Field(None, alias="applicationId")


# ---------------------------------------------------------------------------
# Dependencies (owned by the app lifespan, see main.py)
# ---------------------------------------------------------------------------

def _router(request: Request) -> NotificationRouter:
    return request.app.state.notification_router


def _service(request: Request) -> LeaveNotificationService:
    return request.app.state.notification_service


def _inbox(request: Request) -> NotificationInbox:
    return request.app.state.inbox


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/dispatch",
    summary="Dispatch a rendered message",
    description=(
        "Walks native → hosted-api → recording and stops at the first "
        "channel that succeeds. Always succeeds for a well-formed request."
    ),
)
async def dispatch_message(body: DispatchRequest, request: Request) -> Dict[str, Any]:
    notification = NotificationRequest(
        destination=body.destination,
        body=body.body,
        category=body.category,
        channel_hints=tuple(body.channel_hints) if body.channel_hints else None,
    )
    result = await _router(request).dispatch(notification)
    return result.to_dict()


@router.post(
    "/leave-status",
    summary="Notify an applicant of a leave status change",
)
async def notify_leave_status(body: LeaveStatusRequest, request: Request) -> Dict[str, Any]:
    payload = LeaveStatusPayload(
        applicant_name=body.applicant_name,
        leave_type=body.leave_type,
        date_range_start=body.date_range_start,
        date_range_end=body.date_range_end,
        status=body.status,
        reviewer_name=body.reviewer_name,
        comments=body.comments,
    )
    outcome = await _service(request).notify_leave_status(
        body.applicant_user_id,
        body.destination,
        payload,
        application_id=body.application_id,
        email=body.email,
    )
    return outcome.to_dict()


@router.post(
    "/leave-application",
    summary="Alert a reviewer about a new leave application",
)
async def notify_leave_application(
    body: LeaveApplicationAlertRequest, request: Request,
) -> Dict[str, Any]:
    outcome = await _service(request).notify_new_application(
        body.reviewer_user_id,
        body.reviewer_phone,
        body.reviewer_name,
        body.applicant_name,
        body.leave_type,
        body.date_range_start,
        body.date_range_end,
        body.leave_days,
        application_id=body.application_id,
        reviewer_email=body.reviewer_email,
    )
    return outcome.to_dict()


@router.get(
    "/channels",
    summary="Channel readiness",
    description="Last known readiness of every channel. Performs no I/O.",
)
async def list_channels(request: Request) -> Dict[str, Any]:
    notification_router = _router(request)
    return {
        "channels": [s.to_dict() for s in notification_router.readiness()],
        "summary": notification_router.readiness_summary(),
    }


@router.post(
    "/channels/native/paired",
    summary="Mark the native WhatsApp session as paired",
)
async def mark_native_paired(request: Request) -> Dict[str, Any]:
    channel = _router(request).get_channel(ChannelName.NATIVE)
    if not isinstance(channel, NativeClientChannel):
        raise HTTPException(status_code=409, detail="Native channel does not support pairing")
    channel.mark_paired()
    return channel.report_readiness().to_dict()


@router.get(
    "/recorded",
    summary="Messages kept by the recording channel",
)
async def recorded_messages(
    request: Request,
    limit: int = Query(50, ge=1, le=1000),
) -> Dict[str, Any]:
    channel = _router(request).get_channel(ChannelName.RECORDING)
    items = channel.history(limit) if isinstance(channel, RecordingChannel) else []
    return {"count": len(items), "messages": items}


@router.get(
    "/inbox/{user_id}",
    summary="In-app notifications for a user",
)
async def get_inbox(
    user_id: int,
    request: Request,
    unread_only: bool = Query(False, alias="unreadOnly"),
) -> Dict[str, Any]:
    inbox = _inbox(request)
    items = inbox.list_for_user(user_id, unread_only=unread_only)
    return {
        "userId": user_id,
        "unreadCount": inbox.unread_count(user_id),
        "notifications": [n.to_dict() for n in items],
    }


@router.patch(
    "/inbox/{notification_id}/read",
    summary="Mark an in-app notification as read",
)
async def mark_notification_read(notification_id: int, request: Request) -> Dict[str, Any]:
    if not _inbox(request).mark_read(notification_id):
        raise NotFoundError("Notification", id=notification_id)
    return {"id": notification_id, "isRead": True}


@router.get(
    "/health",
    summary="Notification service health check",
)
async def health(request: Request) -> Dict[str, Any]:
    hub: PushHub = request.app.state.push_hub
    report = await run_health_check(_router(request), hub)
    return {
        "status": report.status.value,
        "service": "leave-notifications",
        "external_channels_ready": report.external_channels_ready,
        "push_connections": hub.total_connections(),
    }


# ---------------------------------------------------------------------------
# WebSocket push
# ---------------------------------------------------------------------------

@ws_router.websocket("/ws")
async def push_socket(websocket: WebSocket) -> None:
    """Register the socket under the user named in its first auth frame."""
    hub: PushHub = websocket.app.state.push_hub
    await websocket.accept()
    user_id: Optional[int] = None
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON push frame")
                continue
            if not isinstance(message, dict):
                logger.warning("Ignoring push frame that is not an object")
                continue
            if message.get("type") == "auth" and message.get("userId") is not None:
                try:
                    new_user_id = int(message["userId"])
                except (TypeError, ValueError):
                    logger.warning("Ignoring auth frame with bad userId %r", message["userId"])
                    continue
                if user_id is not None:
                    await hub.unregister(user_id, websocket)
                user_id = new_user_id
                await hub.register(user_id, websocket)
                await websocket.send_json(hub.auth_ok(user_id))
            elif message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.debug("Push socket closed for user %s", user_id)
    finally:
        if user_id is not None:
            await hub.unregister(user_id, websocket)
