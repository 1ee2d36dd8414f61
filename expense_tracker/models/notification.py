"""
Notification Models

Every user-visible outcome of a container operation becomes one
Notification: a success message, or an error carrying the error code
from ``expense_tracker.errors``. These are transient; nothing is stored
beyond the notifier's in-memory history.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_tracker.errors import ExpenseTrackerError


class NotificationLevel(str, Enum):
    """How a notification should be shown."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A single transient notification."""

    notification_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the notification was raised (UTC)"
    )
    level: NotificationLevel = NotificationLevel.INFO
    title: str = Field(..., max_length=100)
    description: str = Field(default="", max_length=500)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.level == NotificationLevel.ERROR

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "notification_id": str(self.notification_id),
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "title": self.title,
            "description": self.description,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "details": self.details,
        }


class NotificationBuilder:
    """
    Helper class to build notifications with common patterns.

    Usage:
        note = NotificationBuilder.expense_deleted("Lunch")
        note = NotificationBuilder.failure("Failed to delete expense", error)
    """

    @staticmethod
    def success(title: str, description: str = "", **details: Any) -> Notification:
        return Notification(
            level=NotificationLevel.SUCCESS,
            title=title,
            description=description,
            details=details,
        )

    @staticmethod
    def failure(
        description: str,
        error: ExpenseTrackerError,
        title: Optional[str] = None,
    ) -> Notification:
        if title is None:
            title = {
                "auth_required": "Authentication required",
                "permission_denied": "Permission Denied",
                "not_authorized": "Permission Denied",
                "validation_failure": "Invalid input",
            }.get(error.code, "Error")
        return Notification(
            level=NotificationLevel.ERROR,
            title=title,
            description=description,
            error_code=error.code,
            error_message=str(error),
        )

    @staticmethod
    def expense_added(title: str, amount: str, currency: str) -> Notification:
        return NotificationBuilder.success(
            "Expense added",
            f"{currency} {amount} for {title}",
            expense_title=title,
            amount=amount,
            currency=currency,
        )

    @staticmethod
    def expense_updated(title: str) -> Notification:
        return NotificationBuilder.success("Expense Updated", f"Updated {title}")

    @staticmethod
    def expense_deleted(title: str) -> Notification:
        return NotificationBuilder.success("Expense Deleted", f"Removed {title}")

    @staticmethod
    def category_added(category: str) -> Notification:
        return NotificationBuilder.success(
            "Category added",
            f'Added "{category}" to your categories',
        )

    @staticmethod
    def group_created(name: str) -> Notification:
        return NotificationBuilder.success(
            "Group Created",
            f"Successfully created the {name} group",
        )

    @staticmethod
    def group_updated() -> Notification:
        return NotificationBuilder.success(
            "Group Updated",
            "Successfully updated the group details",
        )

    @staticmethod
    def group_deleted() -> Notification:
        return NotificationBuilder.success(
            "Group Deleted",
            "The group has been deleted successfully",
        )

    @staticmethod
    def invitations_sent(count: int) -> Notification:
        return NotificationBuilder.success(
            "Invitations Sent",
            f"{count} members have been invited to join the group.",
            count=count,
        )

    @staticmethod
    def invitation_accepted() -> Notification:
        return NotificationBuilder.success(
            "Invitation Accepted",
            "You've been added to the group",
        )

    @staticmethod
    def invitation_rejected() -> Notification:
        return NotificationBuilder.success(
            "Invitation Rejected",
            "You've declined the group invitation",
        )

    @staticmethod
    def member_removed() -> Notification:
        return NotificationBuilder.success(
            "Member Removed",
            "Successfully removed member from the group",
        )

    @staticmethod
    def left_group() -> Notification:
        return NotificationBuilder.success(
            "Left Group",
            "You have successfully left the group",
        )
