"""
inbox.py — In-app notification store.

Backs the dashboard bell: every status change and new application leaves
a record here regardless of what happens to the outbound message.

In-memory store (production: database table keyed by user).
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Dict, List, Optional

from backend.app.core.errors import NotFoundError
from backend.app.notifications.models import InboxNotification

logger = logging.getLogger(__name__)


class NotificationInbox:
    """Per-user in-app notifications."""

    def __init__(self) -> None:
        self._items: Dict[int, InboxNotification] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(
        self,
        user_id: int,
        title: str,
        message: str,
        *,
        kind: str = "info",
        related_application_id: Optional[int] = None,
    ) -> InboxNotification:
        with self._lock:
            item = InboxNotification(
                notification_id=next(self._ids),
                user_id=user_id,
                title=title,
                message=message,
                kind=kind,
                related_application_id=related_application_id,
            )
            self._items[item.notification_id] = item
        logger.debug(
            "Inbox notification %d for user %s: %s",
            item.notification_id, user_id, title,
            extra={"user_id": user_id},
        )
        return item

    def list_for_user(self, user_id: int, unread_only: bool = False) -> List[InboxNotification]:
        """Newest first."""
        items = [
            n for n in self._items.values()
            if n.user_id == user_id and not (unread_only and n.is_read)
        ]
        return sorted(items, key=lambda n: (n.created_at, n.notification_id), reverse=True)

    def get(self, notification_id: int) -> InboxNotification:
        item = self._items.get(notification_id)
        if item is None:
            raise NotFoundError("Notification", id=notification_id)
        return item

    def mark_read(self, notification_id: int) -> bool:
        """Return False when the notification does not exist."""
        item = self._items.get(notification_id)
        if item is None:
            return False
        item.is_read = True
        return True

    def unread_count(self, user_id: int) -> int:
        return sum(1 for n in self._items.values() if n.user_id == user_id and not n.is_read)
