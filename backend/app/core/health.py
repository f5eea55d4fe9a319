"""
Health aggregation for the notification service.

Nothing here performs I/O: channel state is whatever the channels last
reported, so probes stay cheap even while a provider is down.

    recording sink not ready       → unhealthy  (a message could be lost)
    no native / hosted-api ready   → degraded   (messages are only recorded)
    otherwise                      → healthy

The push hub never changes the verdict; it only reports its open
connection count.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.config import settings
from backend.app.notifications.models import ChannelName, ChannelStatus, Readiness
from backend.app.notifications.router import NotificationRouter
from backend.app.realtime.push_hub import PushHub

_PROCESS_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Verdict for one channel or for the push hub."""
    name: str
    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            out["message"] = self.message
        if self.details:
            out["details"] = self.details
        return out


@dataclass
class HealthReport:
    status: HealthStatus
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def external_channels_ready(self) -> List[str]:
        return [
            c.name.split(":", 1)[1] for c in self.components
            if c.name.startswith("channel:")
            and c.name != f"channel:{ChannelName.RECORDING.value}"
            and c.status == HealthStatus.HEALTHY
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _PROCESS_STARTED, 1),
            "external_channels_ready": self.external_channels_ready,
            "components": [c.to_dict() for c in self.components],
        }


def _channel_health(status: ChannelStatus) -> ComponentHealth:
    if status.is_ready:
        verdict = HealthStatus.HEALTHY
    elif status.channel == ChannelName.RECORDING:
        verdict = HealthStatus.UNHEALTHY
    else:
        verdict = HealthStatus.DEGRADED
    return ComponentHealth(
        name=f"channel:{status.channel.value}",
        status=verdict,
        message=status.detail,
        details={"readiness": status.readiness.value},
    )


def check_channels(router: NotificationRouter) -> List[ComponentHealth]:
    """One component per registered channel, in priority order."""
    return [_channel_health(s) for s in router.readiness()]


def check_push_hub(hub: Optional[PushHub]) -> ComponentHealth:
    if hub is None:
        return ComponentHealth("push_hub", HealthStatus.DEGRADED, "push hub not initialised")
    return ComponentHealth(
        "push_hub",
        HealthStatus.HEALTHY,
        f"{hub.total_connections()} open connection(s)",
        {"reconnect_delay_seconds": hub.reconnect_delay_seconds},
    )


async def run_health_check(
    router: NotificationRouter,
    hub: Optional[PushHub] = None,
) -> HealthReport:
    channels = check_channels(router)
    if any(c.status == HealthStatus.UNHEALTHY for c in channels):
        overall = HealthStatus.UNHEALTHY
    elif not any(
        s.readiness == Readiness.READY and s.channel != ChannelName.RECORDING
        for s in router.readiness()
    ):
        overall = HealthStatus.DEGRADED
    else:
        overall = HealthStatus.HEALTHY
    return HealthReport(status=overall, components=channels + [check_push_hub(hub)])
