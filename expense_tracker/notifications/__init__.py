"""Transient notification channel."""

from expense_tracker.notifications.notifier import Notifier

__all__ = ["Notifier"]
