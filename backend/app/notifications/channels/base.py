"""Outbound channel abstract base class.

Every channel (native client, hosted API, recording) implements the same
small contract, so the router can walk an ordered list of adapters without
knowing what is behind each one:

    report_readiness() -> ChannelStatus   non-blocking, no I/O
    send(destination, body) -> bool       one attempt, may raise ChannelError
    start() / stop()                      lifecycle owned by the router

Readiness is written only by the channel's own initializer (credential
validation, pairing watch) and only read by the router.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from backend.app.notifications.models import ChannelName, ChannelStatus, Readiness

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Base class for outbound notification channels.

    Subclasses set ``name`` and implement ``send``. Readiness bookkeeping
    lives here so every channel reports it the same way.
    """

    name: ChannelName

    def __init__(self) -> None:
        self._readiness = Readiness.UNINITIALIZED
        self._detail = "initializing"

    def report_readiness(self) -> ChannelStatus:
        """Last known readiness. Never performs I/O."""
        return ChannelStatus(
            channel=self.name,
            readiness=self._readiness,
            detail=self._detail,
        )

    def _set_readiness(self, readiness: Readiness, detail: str) -> None:
        if readiness != self._readiness or detail != self._detail:
            logger.info(
                "Channel %s: %s → %s (%s)",
                self.name.value, self._readiness.value, readiness.value, detail,
                extra={"channel": self.name.value},
            )
        self._readiness = readiness
        self._detail = detail

    @abstractmethod
    async def send(self, destination: str, body: str) -> bool:
        """Make exactly one delivery attempt.

        Returns True on success, False on a plain refusal. Transport and
        provider problems are raised as ChannelError subclasses; the router
        converts both into a failed chain entry.
        """

    async def start(self) -> None:
        """Kick off background initialization. Must not block on I/O."""

    async def stop(self) -> None:
        """Release transports and cancel background work."""
