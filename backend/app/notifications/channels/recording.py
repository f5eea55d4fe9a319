"""
recording.py — Last-resort recording channel.

Always ready. "Sending" means writing the fully rendered message and its
destination to the log (and, optionally, to a JSON-lines file), so a
notification that no external channel could deliver is still on record.

═══════════════════════════════════════════════════════════════════════════
DURABILITY
═══════════════════════════════════════════════════════════════════════════

    1. Structured log record at WARNING level (always)
    2. In-memory history of the last N records (dashboard view)
    3. JSON line appended to RECORDING_LOG_PATH (when configured)

A failure in step 3 is logged and ignored: the log record from step 1 is
already the durable copy, and this channel must never report failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from backend.app.notifications.channels.base import NotificationChannel
from backend.app.notifications.models import ChannelName, Readiness

logger = logging.getLogger(__name__)

_RULE = "━" * 60


class RecordingChannel(NotificationChannel):
    """Logs the message instead of transmitting it."""

    name = ChannelName.RECORDING

    def __init__(
        self,
        *,
        log_path: Optional[str] = None,
        history_size: int = 200,
    ) -> None:
        super().__init__()
        self.log_path = Path(log_path) if log_path else None
        self._history: Deque[Dict[str, Any]] = deque(maxlen=max(1, history_size))
        self._set_readiness(Readiness.READY, "always ready")

    async def send(self, destination: str, body: str) -> bool:
        record = {
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "destination": destination,
            "body": body,
        }

        logger.warning(
            "\n%s\n📱 WHATSAPP NOTIFICATION (recorded, not transmitted)\n"
            "📱 To: %s\n%s\n%s\n%s",
            _RULE, destination, _RULE, body, _RULE,
            extra={"channel": self.name.value, "destination": destination},
        )

        self._history.append(record)

        if self.log_path is not None:
            try:
                await asyncio.to_thread(self._append_line, record)
            except OSError as exc:
                logger.error(
                    "Could not append recorded message to %s: %s",
                    self.log_path, exc,
                    extra={"channel": self.name.value},
                )

        return True

    def _append_line(self, record: Dict[str, Any]) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=False) + "\n")

    def history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent recorded messages, newest first."""
        items = list(reversed(self._history))
        return items[:limit] if limit is not None else items
