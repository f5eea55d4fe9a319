"""
Shared test doubles for the notification tests.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

from backend.app.notifications.channels.base import NotificationChannel
from backend.app.notifications.models import ChannelName, Readiness


class FakeChannel(NotificationChannel):
    """Scriptable channel: fixed readiness, fixed outcome, call log."""

    def __init__(
        self,
        name: ChannelName,
        *,
        readiness: Readiness = Readiness.READY,
        detail: str = "",
        result: bool = True,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        super().__init__()
        self._set_readiness(readiness, detail or readiness.value)
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.started = False
        self.stopped = False

    async def send(self, destination: str, body: str) -> bool:
        self.calls.append((destination, body))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


