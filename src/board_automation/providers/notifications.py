"""Notification outbox for the notification actions.

Actions never deliver anything themselves. They enqueue a
:class:`Notification` and report that it was queued; delivery belongs to
whatever drains the outbox.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from ..core.logger import get_logger

logger = get_logger("providers.notifications")


@dataclass
class Notification:
    """A message produced by an automation and awaiting delivery."""

    channel: str
    recipient: str
    message: str
    subject: str = ""
    scope_id: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.channel:
            raise ValueError("Notification channel cannot be empty")


@runtime_checkable
class NotificationSink(Protocol):
    """Destination for queued notifications."""

    async def enqueue(self, notification: Notification) -> None: ...


class NotificationOutbox:
    """Bounded in-memory :class:`NotificationSink`.

    When full, the oldest notification is dropped to make room.
    """

    def __init__(self, capacity: int = 1000) -> None:
        """Initialize the outbox.

        Args:
            capacity: Maximum number of pending notifications
        """
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._queue: deque[Notification] = deque(maxlen=capacity)
        self._stats = {"total_enqueued": 0, "total_dropped": 0, "total_drained": 0}

    async def enqueue(self, notification: Notification) -> None:
        if len(self._queue) == self.capacity:
            self._stats["total_dropped"] += 1
            logger.warning("Notification outbox full, dropping oldest notification")
        self._queue.append(notification)
        self._stats["total_enqueued"] += 1
        logger.debug(
            "Notification queued: channel=%s recipient=%s size=%d",
            notification.channel,
            notification.recipient,
            len(self._queue),
        )

    def pending(self) -> list[Notification]:
        """Return queued notifications, oldest first, without removing them."""
        return list(self._queue)

    def drain(self) -> list[Notification]:
        """Remove and return every queued notification, oldest first."""
        items = list(self._queue)
        self._queue.clear()
        self._stats["total_drained"] += len(items)
        return items

    def get_stats(self) -> dict[str, int]:
        stats = dict(self._stats)
        stats["current_size"] = len(self._queue)
        return stats

    def __len__(self) -> int:
        return len(self._queue)

    def __repr__(self) -> str:
        return f"<NotificationOutbox size={len(self._queue)} capacity={self.capacity}>"
