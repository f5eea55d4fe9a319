"""
test_service.py — Tests for the inbox, push hub and leave notification service.

Covers:
    • In-app inbox: ordering, unread filter, mark-read, not-found
    • Push hub: multi-socket fan-out, broken sockets dropped
    • LeaveNotificationService: inbox + push + dispatch + email, never raises

Run with:
    pytest tests/test_service.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from backend.app.core.errors import NotFoundError, TransportFailureError
from backend.app.notifications.inbox import NotificationInbox
from backend.app.notifications.mailer import EmailNotifier
from backend.app.notifications.models import (
    ChannelName,
    LeaveStatusPayload,
)
from backend.app.notifications.router import NotificationRouter
from backend.app.notifications.service import LeaveNotificationService
from backend.app.realtime.push_hub import PushHub
from conftest import FakeChannel


class _Socket:
    """Minimal stand-in for a WebSocket."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)


def _make_payload(**overrides) -> LeaveStatusPayload:
    args = dict(
        applicant_name="Asha Rao",
        leave_type="sick",
        date_range_start="2024-03-01",
        date_range_end="2024-03-03",
        status="approved",
        reviewer_name="Dr. Menon",
        comments="Get well soon",
    )
    args.update(overrides)
    return LeaveStatusPayload(**args)


def _make_service(native=None):
    native = native or FakeChannel(ChannelName.NATIVE)
    router = NotificationRouter([native])
    return LeaveNotificationService(router, NotificationInbox(), PushHub()), native


# ═══════════════════════════════════════════════════════════════════════════
# Inbox
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationInbox:

    def test_ids_increment(self):
        inbox = NotificationInbox()
        first = inbox.add(1, "a", "x")
        second = inbox.add(1, "b", "y")
        assert (first.notification_id, second.notification_id) == (1, 2)

    def test_list_newest_first_per_user(self):
        inbox = NotificationInbox()
        inbox.add(1, "first", "x")
        inbox.add(2, "other user", "x")
        inbox.add(1, "second", "x")

        titles = [n.title for n in inbox.list_for_user(1)]
        assert titles == ["second", "first"]

    def test_unread_filter_and_mark_read(self):
        inbox = NotificationInbox()
        a = inbox.add(1, "a", "x")
        inbox.add(1, "b", "x")

        assert inbox.mark_read(a.notification_id) is True
        assert [n.title for n in inbox.list_for_user(1, unread_only=True)] == ["b"]
        assert inbox.unread_count(1) == 1

    def test_mark_read_missing(self):
        assert NotificationInbox().mark_read(99) is False

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            NotificationInbox().get(99)

    def test_to_dict_keys(self):
        item = NotificationInbox().add(7, "t", "m", kind="success", related_application_id=3)
        d = item.to_dict()
        assert d["userId"] == 7
        assert d["type"] == "success"
        assert d["relatedApplicationId"] == 3
        assert d["isRead"] is False


# ═══════════════════════════════════════════════════════════════════════════
# Push hub
# ═══════════════════════════════════════════════════════════════════════════

class TestPushHub:

    @pytest.mark.asyncio
    async def test_fan_out_to_every_socket(self):
        hub = PushHub()
        a, b = _Socket(), _Socket()
        await hub.register(1, a)
        await hub.register(1, b)

        reached = await hub.send_to_user(1, "leave_status_update", {"status": "approved"})

        assert reached == 2
        assert a.sent == [{"type": "leave_status_update", "data": {"status": "approved"}}]
        assert b.sent == a.sent

    @pytest.mark.asyncio
    async def test_broken_socket_dropped(self):
        hub = PushHub()
        good, bad = _Socket(), _Socket(fail=True)
        await hub.register(1, good)
        await hub.register(1, bad)

        reached = await hub.send_to_user(1, "ping", {})

        assert reached == 1
        assert hub.connection_count(1) == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self):
        assert await PushHub().send_to_user(42, "ping", {}) == 0

    @pytest.mark.asyncio
    async def test_register_twice_and_unregister(self):
        hub = PushHub()
        s = _Socket()
        await hub.register(1, s)
        await hub.register(1, s)
        assert hub.total_connections() == 1

        await hub.unregister(1, s)
        assert hub.connection_count(1) == 0

    def test_auth_ok_carries_reconnect_delay(self):
        assert PushHub(reconnect_delay_seconds=3.0).auth_ok(5) == {
            "type": "auth_ok", "userId": 5, "reconnect_delay_seconds": 3.0,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Leave notification service
# ═══════════════════════════════════════════════════════════════════════════

class TestLeaveNotificationService:

    @pytest.mark.asyncio
    async def test_status_change_all_paths(self):
        service, native = _make_service()
        socket = _Socket()
        await service.push_hub.register(10, socket)

        outcome = await service.notify_leave_status(
            10, "+91 98765 43210", _make_payload(), application_id=55,
        )

        assert outcome.errors == []
        assert outcome.delivery.channel_used == ChannelName.NATIVE
        assert outcome.push_sockets_reached == 1
        assert socket.sent[0]["type"] == "leave_status_update"
        assert socket.sent[0]["data"]["applicationId"] == 55

        item = service.inbox.get(outcome.inbox_notification_id)
        assert item.title == "Leave Application Approved"
        assert item.kind == "success"
        assert "Asha Rao" in native.calls[0][1]

    @pytest.mark.asyncio
    async def test_rejection_inbox_kind(self):
        service, _ = _make_service()
        outcome = await service.notify_leave_status(10, None, _make_payload(status="rejected"))
        item = service.inbox.get(outcome.inbox_notification_id)
        assert item.title == "Leave Application Rejected"
        assert item.kind == "error"

    @pytest.mark.asyncio
    async def test_no_phone_skips_dispatch(self):
        service, native = _make_service()
        outcome = await service.notify_leave_status(10, None, _make_payload())
        assert outcome.delivery is None
        assert native.calls == []
        assert outcome.inbox_notification_id is not None

    @pytest.mark.asyncio
    async def test_dispatch_failure_never_raises(self):
        service, _ = _make_service()
        service.router.dispatch = AsyncMock(side_effect=RuntimeError("router exploded"))

        outcome = await service.notify_leave_status(10, "+919876543210", _make_payload())

        assert outcome.delivery is None
        assert any("router exploded" in e for e in outcome.errors)
        assert outcome.inbox_notification_id is not None

    @pytest.mark.asyncio
    async def test_push_failure_never_raises(self):
        service, _ = _make_service()
        service.push_hub.send_to_user = AsyncMock(side_effect=RuntimeError("hub down"))

        outcome = await service.notify_leave_status(10, "+919876543210", _make_payload())

        assert outcome.delivery.succeeded
        assert any(e.startswith("push:") for e in outcome.errors)

    @pytest.mark.asyncio
    async def test_channel_failure_falls_to_recording(self):
        native = FakeChannel(ChannelName.NATIVE, error=ConnectionError("bridge gone"))
        service, _ = _make_service(native)

        outcome = await service.notify_leave_status(10, "+919876543210", _make_payload())

        assert outcome.delivery.channel_used == ChannelName.RECORDING
        assert outcome.errors == []

    @pytest.mark.asyncio
    async def test_new_application_alert(self):
        service, native = _make_service()

        outcome = await service.notify_new_application(
            20, "+919876500000", "Dr. Menon", "Asha Rao", "casual",
            "2024-04-10", "2024-04-12", 3, application_id=8,
        )

        assert outcome.delivery.succeeded
        assert "Dear Dr. Menon" in native.calls[0][1]
        item = service.inbox.get(outcome.inbox_notification_id)
        assert item.title == "New Leave Application"
        assert item.related_application_id == 8

    @pytest.mark.asyncio
    async def test_new_application_render_error_reported(self):
        service, native = _make_service()

        outcome = await service.notify_new_application(
            20, "+919876500000", "Dr. Menon", "", "casual", "a", "b", 1,
        )

        assert outcome.errors and outcome.errors[0].startswith("render:")
        assert native.calls == []

    @pytest.mark.asyncio
    async def test_outcome_dict(self):
        service, _ = _make_service()
        outcome = await service.notify_leave_status(10, "+919876543210", _make_payload())
        d = outcome.to_dict()
        assert d["delivery"]["channelUsed"] == "native"
        assert d["inboxNotificationId"] == outcome.inbox_notification_id


# ═══════════════════════════════════════════════════════════════════════════
# Email side-channel
# ═══════════════════════════════════════════════════════════════════════════

def _make_mailer(**send_kwargs) -> EmailNotifier:
    mailer = EmailNotifier(host="smtp.test", from_address="noreply@college.test")
    mailer.send = AsyncMock(**send_kwargs)
    return mailer


class TestLeaveEmail:

    @pytest.mark.asyncio
    async def test_status_change_emails_applicant(self):
        service, native = _make_service()
        service.mailer = _make_mailer()

        outcome = await service.notify_leave_status(
            10, "+919876543210", _make_payload(), email="asha@college.test",
        )

        assert outcome.email_sent is True
        assert outcome.errors == []
        address, email = service.mailer.send.await_args.args
        assert address == "asha@college.test"
        assert email.subject == "Leave Application Approved - sick"
        assert native.calls  # WhatsApp chain still ran
        assert outcome.to_dict()["emailSent"] is True

    @pytest.mark.asyncio
    async def test_email_failure_recorded_not_raised(self):
        service, _ = _make_service()
        service.mailer = _make_mailer(
            side_effect=TransportFailureError("email", "connection refused"),
        )

        outcome = await service.notify_leave_status(
            10, "+919876543210", _make_payload(), email="asha@college.test",
        )

        assert outcome.email_sent is False
        assert outcome.delivery.succeeded
        assert any(e.startswith("email:") and "connection refused" in e for e in outcome.errors)

    @pytest.mark.asyncio
    async def test_unexpected_email_error_recorded(self):
        service, _ = _make_service()
        service.mailer = _make_mailer(side_effect=RuntimeError("smtp exploded"))

        outcome = await service.notify_leave_status(
            10, None, _make_payload(), email="asha@college.test",
        )

        assert outcome.errors == ["email: smtp exploded"]

    @pytest.mark.asyncio
    async def test_no_address_or_unconfigured_skips_email(self):
        service, _ = _make_service()
        service.mailer = _make_mailer()

        outcome = await service.notify_leave_status(10, None, _make_payload())
        assert outcome.email_sent is False
        service.mailer.send.assert_not_awaited()

        service.mailer.host = None
        outcome = await service.notify_leave_status(
            10, None, _make_payload(), email="asha@college.test",
        )
        assert outcome.email_sent is False
        assert outcome.errors == []
        service.mailer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_application_emails_reviewer(self):
        service, _ = _make_service()
        service.mailer = _make_mailer()

        outcome = await service.notify_new_application(
            20, None, "Dr. Menon", "Asha Rao", "casual",
            "2024-04-10", "2024-04-12", 3, reviewer_email="menon@college.test",
        )

        assert outcome.email_sent is True
        address, email = service.mailer.send.await_args.args
        assert address == "menon@college.test"
        assert email.subject == "New Leave Application - Asha Rao"
