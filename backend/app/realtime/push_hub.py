"""
push_hub.py — Per-user WebSocket fan-out for dashboard events.

Browsers open ``/ws``, send ``{"type": "auth", "userId": 42}`` and are then
registered under that user. Any number of tabs may be open per user.

Events go out as ``{"type": <event>, "data": {...}}``. A socket that fails
to receive is dropped from the hub; delivery to the remaining sockets
continues and the caller never sees the error.

Clients reconnect after a fixed delay (no backoff growth); the hub tells
them the delay in its ``auth_ok`` reply so server and client agree.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class PushSocket(Protocol):
    """The part of a WebSocket the hub needs."""

    async def send_json(self, data: Any) -> None: ...


class PushHub:
    """Registry of open sockets per user."""

    def __init__(self, reconnect_delay_seconds: float = 3.0) -> None:
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._sockets: Dict[int, List[PushSocket]] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: int, socket: PushSocket) -> None:
        async with self._lock:
            sockets = self._sockets.setdefault(user_id, [])
            if socket not in sockets:
                sockets.append(socket)
        logger.info(
            "Push socket registered for user %s (%d open)",
            user_id, self.connection_count(user_id),
            extra={"user_id": user_id},
        )

    async def unregister(self, user_id: int, socket: PushSocket) -> None:
        async with self._lock:
            sockets = self._sockets.get(user_id, [])
            if socket in sockets:
                sockets.remove(socket)
            if not sockets:
                self._sockets.pop(user_id, None)

    def connection_count(self, user_id: int) -> int:
        return len(self._sockets.get(user_id, []))

    def total_connections(self) -> int:
        return sum(len(s) for s in self._sockets.values())

    async def send_to_user(self, user_id: int, event_type: str, data: Dict[str, Any]) -> int:
        """
        Push an event to every open socket of one user.

        Returns
        -------
        int
            Number of sockets that accepted the event.
        """
        message = {"type": event_type, "data": data}
        delivered = 0
        for socket in list(self._sockets.get(user_id, [])):
            try:
                await socket.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.info(
                    "Dropping push socket for user %s: %s", user_id, exc,
                    extra={"user_id": user_id},
                )
                await self.unregister(user_id, socket)
        return delivered

    def auth_ok(self, user_id: int) -> Dict[str, Any]:
        return {
            "type": "auth_ok",
            "userId": user_id,
            "reconnect_delay_seconds": self.reconnect_delay_seconds,
        }
