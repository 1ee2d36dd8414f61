"""
Notifier

DESIGN DECISION: Every container operation reports its outcome here
instead of raising. This provides:
1. One error channel for the presentation layer (toasts)
2. A structured log line for every user-visible outcome
3. A way for tests to assert what the user was told

The notifier:
- Always logs through structlog
- Keeps a bounded history of recent notifications
- Calls registered listeners; a failing listener is logged, never raised
"""

from collections import deque
from typing import Callable, Optional

import structlog

from expense_tracker.config import get_settings
from expense_tracker.errors import ExpenseTrackerError
from expense_tracker.models.notification import (
    Notification,
    NotificationBuilder,
    NotificationLevel,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


Listener = Callable[[Notification], None]


class Notifier:
    """
    Central notification service.

    Logs notifications to:
    1. Structured local log (for debugging)
    2. Registered listeners (for display)
    """

    def __init__(self, history_size: Optional[int] = None):
        """
        Initialize notifier.

        Args:
            history_size: How many notifications to keep.
                          Defaults to the configured size.
        """
        if history_size is None:
            history_size = get_settings().app.notification_history_size
        self._history: deque[Notification] = deque(maxlen=history_size)
        self._listeners: list[Listener] = []
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, notification: Notification) -> Notification:
        """
        Publish a notification.

        Always logs locally, then records and fans out to listeners.
        """
        log_dict = notification.to_log_dict()

        if notification.level == NotificationLevel.ERROR:
            self._logger.error("notification", **log_dict)
        elif notification.level == NotificationLevel.WARNING:
            self._logger.warning("notification", **log_dict)
        else:
            self._logger.info("notification", **log_dict)

        self._history.append(notification)

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                self._logger.error(
                    "notification_listener_failed",
                    error=str(e),
                    notification_id=str(notification.notification_id),
                )

        return notification

    def success(self, title: str, description: str = "") -> Notification:
        return self.notify(NotificationBuilder.success(title, description))

    def error(
        self,
        description: str,
        error: ExpenseTrackerError,
        title: Optional[str] = None,
    ) -> Notification:
        """Report a failed operation."""
        return self.notify(NotificationBuilder.failure(description, error, title=title))

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    @property
    def last(self) -> Optional[Notification]:
        return self._history[-1] if self._history else None

    @property
    def errors(self) -> list[Notification]:
        return [n for n in self._history if n.is_error]

    def clear(self) -> None:
        self._history.clear()
