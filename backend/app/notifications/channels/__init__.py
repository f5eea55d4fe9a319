"""
channels — Outbound delivery adapters, in dispatch priority order.

Each channel exposes:
    report_readiness() → ChannelStatus
    send(destination, body) → bool

Channels make one attempt per call. Fallback lives in the router.
"""

from backend.app.notifications.channels.base import NotificationChannel
from backend.app.notifications.channels.hosted_api import HostedApiChannel
from backend.app.notifications.channels.native_client import NativeClientChannel
from backend.app.notifications.channels.recording import RecordingChannel

__all__ = [
    "NotificationChannel",
    "NativeClientChannel",
    "HostedApiChannel",
    "RecordingChannel",
]
