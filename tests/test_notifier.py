"""
Tests for the notification channel.
"""

from expense_tracker.errors import RemoteFailureError
from expense_tracker.models import NotificationLevel
from expense_tracker.notifications import Notifier


class TestNotifier:
    """Tests for history and listeners."""

    def test_history_is_bounded(self):
        """Test that old notifications fall off."""
        notifier = Notifier(history_size=2)

        for title in ("one", "two", "three"):
            notifier.success(title)

        assert [n.title for n in notifier.history] == ["two", "three"]
        assert notifier.last.title == "three"

    def test_default_history_size_from_settings(self, monkeypatch):
        """Test the configured size."""
        monkeypatch.setenv("NOTIFICATION_HISTORY_SIZE", "1")
        notifier = Notifier()

        notifier.success("a")
        notifier.success("b")

        assert len(notifier.history) == 1

    def test_error_carries_code(self):
        """Test error notifications."""
        notifier = Notifier(history_size=10)

        note = notifier.error("Failed to delete expense", RemoteFailureError("timeout"))

        assert note.level == NotificationLevel.ERROR
        assert note.title == "Error"
        assert note.error_code == "remote_failure"
        assert note.error_message == "timeout"
        assert notifier.errors == [note]

    def test_listeners_and_unsubscribe(self):
        """Test fan-out to listeners."""
        notifier = Notifier(history_size=10)
        received = []
        unsubscribe = notifier.subscribe(received.append)

        notifier.success("first")
        unsubscribe()
        notifier.success("second")

        assert [n.title for n in received] == ["first"]

    def test_failing_listener_does_not_break_notify(self):
        """Test that a raising listener is contained."""
        notifier = Notifier(history_size=10)
        received = []

        def broken(_):
            raise RuntimeError("display gone")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)

        notifier.success("still delivered")

        assert [n.title for n in received] == ["still delivered"]

    def test_clear(self):
        """Test clearing history."""
        notifier = Notifier(history_size=10)
        notifier.success("x")

        notifier.clear()

        assert notifier.history == []
        assert notifier.last is None
