"""
service.py — Leave notification service (application-layer seam).

The leave store calls this after it has committed a status transition.
Four things happen, each independent of the others:

    1. In-app inbox record        (dashboard bell, polling)
    2. Real-time push event        (open dashboards update immediately)
    3. Outbound message dispatch   (native → hosted API → recording)
    4. Email copy                  (SMTP, when configured and an address is known)

Nothing here may block or roll back the transition itself: every failure
is logged and reported in the returned outcome, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.errors import LeaveNotifyError
from backend.app.notifications.inbox import NotificationInbox
from backend.app.notifications.mailer import (
    EmailNotifier,
    RenderedEmail,
    build_application_email,
    build_status_email,
)
from backend.app.notifications.models import (
    DeliveryResult,
    LeaveStatus,
    LeaveStatusPayload,
    NotificationRequest,
    PushEventType,
)
from backend.app.notifications.router import NotificationRouter
from backend.app.notifications.templates import (
    format_application_alert,
    format_status_change_message,
)
from backend.app.realtime.push_hub import PushHub

logger = logging.getLogger(__name__)


@dataclass
class LeaveNotificationOutcome:
    """What happened on each delivery path."""
    inbox_notification_id: Optional[int] = None
    push_sockets_reached: int = 0
    delivery: Optional[DeliveryResult] = None
    email_sent: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inboxNotificationId": self.inbox_notification_id,
            "pushSocketsReached": self.push_sockets_reached,
            "delivery": self.delivery.to_dict() if self.delivery else None,
            "emailSent": self.email_sent,
            "errors": self.errors,
        }


class LeaveNotificationService:
    """Fans a leave event out to inbox, push, WhatsApp and email."""

    def __init__(
        self,
        router: NotificationRouter,
        inbox: NotificationInbox,
        push_hub: PushHub,
        mailer: Optional[EmailNotifier] = None,
    ) -> None:
        self.router = router
        self.inbox = inbox
        self.push_hub = push_hub
        self.mailer = mailer

    async def _push(
        self,
        outcome: LeaveNotificationOutcome,
        user_id: Optional[int],
        event: PushEventType,
        data: Dict[str, Any],
    ) -> None:
        if user_id is None:
            return
        try:
            outcome.push_sockets_reached = await self.push_hub.send_to_user(
                user_id, event.value, data,
            )
        except Exception as exc:
            logger.error("Push to user %s failed: %s", user_id, exc, extra={"user_id": user_id})
            outcome.errors.append(f"push: {exc}")

    async def _dispatch(
        self,
        outcome: LeaveNotificationOutcome,
        phone: Optional[str],
        body: str,
        category: str,
    ) -> None:
        if not phone:
            logger.info("No phone number on file — outbound message skipped")
            return
        try:
            outcome.delivery = await self.router.dispatch(
                NotificationRequest(destination=phone, body=body, category=category)
            )
        except LeaveNotifyError as exc:
            logger.warning("Outbound %s message rejected: %s", category, exc.message)
            outcome.errors.append(f"dispatch: {exc.message}")
        except Exception as exc:
            logger.exception("Outbound %s message failed unexpectedly", category)
            outcome.errors.append(f"dispatch: {exc}")

    async def _email(
        self,
        outcome: LeaveNotificationOutcome,
        address: Optional[str],
        build: Callable[[], RenderedEmail],
    ) -> None:
        if not address or self.mailer is None or not self.mailer.configured:
            return
        try:
            await self.mailer.send(address, build())
            outcome.email_sent = True
        except LeaveNotifyError as exc:
            logger.warning("Email to %s not sent: %s", address, exc.message)
            outcome.errors.append(f"email: {exc.message}")
        except Exception as exc:
            logger.exception("Email to %s failed unexpectedly", address)
            outcome.errors.append(f"email: {exc}")

    async def notify_leave_status(
        self,
        applicant_user_id: Optional[int],
        phone: Optional[str],
        payload: LeaveStatusPayload,
        *,
        application_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> LeaveNotificationOutcome:
        """Tell the applicant their leave was approved or rejected."""
        outcome = LeaveNotificationOutcome()
        verb = "Approved" if payload.status == LeaveStatus.APPROVED else "Rejected"

        try:
            body = format_status_change_message(
                payload.applicant_name,
                payload.leave_type,
                payload.date_range,
                payload.status,
                payload.reviewer_name,
                payload.comments,
            )
        except LeaveNotifyError as exc:
            outcome.errors.append(f"render: {exc.message}")
            return outcome

        if applicant_user_id is not None:
            item = self.inbox.add(
                applicant_user_id,
                f"Leave Application {verb}",
                f"Your {payload.leave_type} leave application has been "
                f"{payload.status.value} by {payload.reviewer_name}",
                kind="success" if payload.status == LeaveStatus.APPROVED else "error",
                related_application_id=application_id,
            )
            outcome.inbox_notification_id = item.notification_id

        await self._push(outcome, applicant_user_id, PushEventType.LEAVE_STATUS_UPDATE, {
            "applicationId": application_id,
            "leaveType": payload.leave_type,
            "status": payload.status.value,
            "reviewerName": payload.reviewer_name,
            "comments": payload.comments,
        })

        await self._dispatch(outcome, phone, body, "leave_status")
        await self._email(outcome, email, lambda: build_status_email(
            payload.applicant_name,
            payload.leave_type,
            payload.status,
            payload.reviewer_name,
            payload.comments,
        ))
        return outcome

    async def notify_new_application(
        self,
        reviewer_user_id: Optional[int],
        reviewer_phone: Optional[str],
        reviewer_name: str,
        applicant_name: str,
        leave_type: str,
        date_range_start: str,
        date_range_end: str,
        leave_days: int,
        *,
        application_id: Optional[int] = None,
        reviewer_email: Optional[str] = None,
    ) -> LeaveNotificationOutcome:
        """Tell a reviewer that an application is waiting for them."""
        outcome = LeaveNotificationOutcome()

        try:
            body = format_application_alert(
                reviewer_name, applicant_name, leave_type,
                date_range_start, date_range_end, leave_days,
            )
        except LeaveNotifyError as exc:
            outcome.errors.append(f"render: {exc.message}")
            return outcome

        if reviewer_user_id is not None:
            item = self.inbox.add(
                reviewer_user_id,
                "New Leave Application",
                f"{applicant_name} has submitted a {leave_type} leave application "
                f"({leave_days} days)",
                kind="info",
                related_application_id=application_id,
            )
            outcome.inbox_notification_id = item.notification_id

        await self._push(outcome, reviewer_user_id, PushEventType.LEAVE_APPLICATION, {
            "applicationId": application_id,
            "applicantName": applicant_name,
            "leaveType": leave_type,
            "leaveDays": leave_days,
        })

        await self._dispatch(outcome, reviewer_phone, body, "leave_application")
        await self._email(outcome, reviewer_email, lambda: build_application_email(
            applicant_name, leave_type, date_range_start, date_range_end,
        ))
        return outcome
