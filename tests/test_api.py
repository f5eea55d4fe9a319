"""
test_api.py — HTTP and WebSocket surface tests.

Uses FastAPI's TestClient as a context manager so the application lifespan
runs; the notification stack is then swapped for one built on fake
channels so no request leaves the process.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app
from backend.app.notifications.channels import NativeClientChannel
from backend.app.notifications.inbox import NotificationInbox
from backend.app.notifications.mailer import EmailNotifier
from backend.app.notifications.models import ChannelName, Readiness
from backend.app.notifications.router import NotificationRouter
from backend.app.notifications.service import LeaveNotificationService
from backend.app.realtime.push_hub import PushHub
from conftest import FakeChannel


def _install_stack(channels):
    router = NotificationRouter(channels)
    inbox = NotificationInbox()
    hub = PushHub(reconnect_delay_seconds=3.0)
    app.state.notification_router = router
    app.state.inbox = inbox
    app.state.push_hub = hub
    app.state.notification_service = LeaveNotificationService(router, inbox, hub)
    return router


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def hosted():
    return FakeChannel(ChannelName.HOSTED_API)


@pytest.fixture
def stack(client, hosted):
    native = NativeClientChannel()
    return _install_stack([native, hosted]), native


LEAVE_STATUS_BODY = {
    "destination": "+919876543210",
    "applicantUserId": 42,
    "applicationId": 1001,
    "applicantName": "Asha Rao",
    "leaveType": "sick",
    "dateRangeStart": "2024-03-01",
    "dateRangeEnd": "2024-03-03",
    "status": "approved",
    "reviewerName": "Dr. Menon",
    "comments": "Get well soon",
}


# ═══════════════════════════════════════════════════════════════════════════
# Root & health
# ═══════════════════════════════════════════════════════════════════════════

class TestRootAndHealth:

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "notification-router" in r.json()["modules"]

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_request_id_echoed(self, client):
        r = client.get("/", headers={"X-Request-ID": "transition-77"})
        assert r.headers["X-Request-ID"] == "transition-77"
        assert "X-Process-Time" in r.headers

    def test_health_with_external_channel(self, client, stack):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        names = [c["name"] for c in body["components"]]
        assert "channel:recording" in names
        assert "push_hub" in names

    def test_health_degraded_when_only_recording(self, client):
        _install_stack([])
        r = client.get("/health/ready")
        assert r.status_code == 200
        assert r.json()["status"] == "degraded"

    def test_service_health(self, client, stack):
        body = client.get("/api/v1/notifications/health").json()
        assert body["status"] == "healthy"
        assert body["external_channels_ready"] == ["hosted-api"]


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatchEndpoint:

    def test_falls_through_native_to_hosted(self, client, stack, hosted):
        r = client.post("/api/v1/notifications/dispatch", json={
            "destination": "+919876543210", "body": "hello",
        })
        assert r.status_code == 200
        body = r.json()
        assert body["succeeded"] is True
        assert body["channelUsed"] == "hosted-api"
        assert [a["channel"] for a in body["attempts"]] == ["native", "hosted-api"]
        assert body["attempts"][0]["errorCode"] == "not_ready"
        assert hosted.calls == [("+919876543210", "hello")]

    def test_channel_hints(self, client, stack, hosted):
        r = client.post("/api/v1/notifications/dispatch", json={
            "destination": "+919876543210", "body": "hello", "channelHints": ["recording"],
        })
        assert r.json()["channelUsed"] == "recording"
        assert hosted.calls == []

    def test_blank_body_rejected(self, client, stack):
        r = client.post("/api/v1/notifications/dispatch", json={
            "destination": "+919876543210", "body": "   ",
        })
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "MALFORMED_REQUEST"

    def test_missing_destination_rejected(self, client, stack):
        r = client.post("/api/v1/notifications/dispatch", json={"body": "hello"})
        assert r.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Leave events
# ═══════════════════════════════════════════════════════════════════════════

class TestLeaveEndpoints:

    def test_leave_status(self, client, stack, hosted):
        r = client.post("/api/v1/notifications/leave-status", json=LEAVE_STATUS_BODY)
        assert r.status_code == 200
        body = r.json()
        assert body["errors"] == []
        assert body["delivery"]["channelUsed"] == "hosted-api"
        assert "Asha Rao" in hosted.calls[0][1]

        inbox = client.get("/api/v1/notifications/inbox/42").json()
        assert inbox["unreadCount"] == 1
        assert inbox["notifications"][0]["title"] == "Leave Application Approved"
        assert inbox["notifications"][0]["relatedApplicationId"] == 1001

    def test_leave_status_email_copy(self, client, stack):
        mailer = EmailNotifier(host="smtp.test", from_address="noreply@college.test")
        mailer.send = AsyncMock()
        app.state.notification_service.mailer = mailer

        r = client.post("/api/v1/notifications/leave-status",
                        json={**LEAVE_STATUS_BODY, "email": "asha@college.test"})

        assert r.json()["emailSent"] is True
        assert mailer.send.await_args.args[0] == "asha@college.test"

    def test_leave_status_bad_status(self, client, stack):
        r = client.post("/api/v1/notifications/leave-status",
                        json={**LEAVE_STATUS_BODY, "status": "pending"})
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "MALFORMED_REQUEST"
        assert r.json()["error"]["details"]["fields"][0]["field"] == "status"

    def test_leave_application_alert(self, client, stack, hosted):
        r = client.post("/api/v1/notifications/leave-application", json={
            "reviewerUserId": 7,
            "reviewerPhone": "+919876500000",
            "reviewerName": "Dr. Menon",
            "applicantName": "Asha Rao",
            "leaveType": "casual",
            "dateRangeStart": "2024-04-10",
            "dateRangeEnd": "2024-04-12",
            "leaveDays": 3,
        })
        assert r.status_code == 200
        assert r.json()["delivery"]["succeeded"] is True
        assert "Dear Dr. Menon" in hosted.calls[0][1]

    def test_mark_read(self, client, stack):
        client.post("/api/v1/notifications/leave-status", json=LEAVE_STATUS_BODY)
        notification_id = client.get(
            "/api/v1/notifications/inbox/42",
        ).json()["notifications"][0]["id"]

        r = client.patch(f"/api/v1/notifications/inbox/{notification_id}/read")
        assert r.json() == {"id": notification_id, "isRead": True}

        unread = client.get("/api/v1/notifications/inbox/42", params={"unreadOnly": True})
        assert unread.json()["notifications"] == []

    def test_mark_read_missing(self, client, stack):
        r = client.patch("/api/v1/notifications/inbox/999/read")
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Channels
# ═══════════════════════════════════════════════════════════════════════════

class TestChannelEndpoints:

    def test_channel_readiness(self, client, stack):
        body = client.get("/api/v1/notifications/channels").json()
        readiness = {c["channel"]: c["readiness"] for c in body["channels"]}
        assert readiness == {
            "native": "uninitialized",
            "hosted-api": "ready",
            "recording": "ready",
        }
        assert body["summary"]["recording"] == "always ready"

    def test_pairing_routes_to_native(self, client, stack):
        router, native = stack
        r = client.post("/api/v1/notifications/channels/native/paired")
        assert r.json()["readiness"] == "ready"
        assert native.report_readiness().readiness == Readiness.READY

    def test_pairing_requires_native_client(self, client):
        _install_stack([FakeChannel(ChannelName.NATIVE)])
        r = client.post("/api/v1/notifications/channels/native/paired")
        assert r.status_code == 409

    def test_recorded_history(self, client):
        _install_stack([])
        client.post("/api/v1/notifications/dispatch", json={
            "destination": "+919876543210", "body": "kept on record",
        })
        body = client.get("/api/v1/notifications/recorded", params={"limit": 5}).json()
        assert body["count"] == 1
        assert body["messages"][0]["body"] == "kept on record"


# ═══════════════════════════════════════════════════════════════════════════
# WebSocket push
# ═══════════════════════════════════════════════════════════════════════════

class TestPushSocket:

    def test_auth_and_ping(self, client, stack):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "userId": 42})
            assert ws.receive_json() == {
                "type": "auth_ok", "userId": 42, "reconnect_delay_seconds": 3.0,
            }
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            assert app.state.push_hub.connection_count(42) == 1

    def test_status_change_pushed(self, client, stack):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "userId": 42})
            ws.receive_json()

            r = client.post("/api/v1/notifications/leave-status", json=LEAVE_STATUS_BODY)
            assert r.json()["pushSocketsReached"] == 1

            event = ws.receive_json()
            assert event["type"] == "leave_status_update"
            assert event["data"]["status"] == "approved"
            assert event["data"]["applicationId"] == 1001

    def test_non_object_frame_ignored(self, client, stack):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("42")
            ws.send_text('["auth"]')
            ws.send_json({"type": "auth", "userId": 42})
            assert ws.receive_json()["type"] == "auth_ok"

    def test_bad_user_id_ignored(self, client, stack):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "userId": "abc"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            assert app.state.push_hub.total_connections() == 0
