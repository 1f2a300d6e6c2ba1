"""Tests for the notification outbox."""

from __future__ import annotations

import pytest

from board_automation.providers.notifications import (
    Notification,
    NotificationOutbox,
    NotificationSink,
)


def _notification(message: str = "hi") -> Notification:
    return Notification(channel="email", recipient="team", message=message)


class TestNotification:
    """Tests for Notification."""

    def test_defaults(self) -> None:
        """Test generated id and timestamp."""
        notification = _notification()
        assert notification.id
        assert notification.created_at.tzinfo is not None

    def test_channel_required(self) -> None:
        """Test that an empty channel is rejected."""
        with pytest.raises(ValueError):
            Notification(channel="", recipient="team", message="hi")


class TestNotificationOutbox:
    """Tests for NotificationOutbox."""

    def test_satisfies_protocol(self) -> None:
        """Test that the outbox is a NotificationSink."""
        assert isinstance(NotificationOutbox(), NotificationSink)

    @pytest.mark.anyio
    async def test_enqueue_and_drain(self) -> None:
        """Test queueing and draining in order."""
        outbox = NotificationOutbox()
        await outbox.enqueue(_notification("one"))
        await outbox.enqueue(_notification("two"))
        assert [n.message for n in outbox.pending()] == ["one", "two"]
        assert [n.message for n in outbox.drain()] == ["one", "two"]
        assert len(outbox) == 0
        assert outbox.get_stats()["total_drained"] == 2

    @pytest.mark.anyio
    async def test_drops_oldest_when_full(self) -> None:
        """Test the bounded capacity."""
        outbox = NotificationOutbox(capacity=2)
        for message in ("a", "b", "c"):
            await outbox.enqueue(_notification(message))
        assert [n.message for n in outbox.pending()] == ["b", "c"]
        stats = outbox.get_stats()
        assert stats["total_dropped"] == 1
        assert stats["total_enqueued"] == 3
        assert stats["current_size"] == 2

    def test_capacity_must_be_positive(self) -> None:
        """Test that zero capacity is rejected."""
        with pytest.raises(ValueError):
            NotificationOutbox(capacity=0)
