"""
Data Models Package

This package contains all Pydantic models used in the Expense Tracker.
All data flowing between the backend and the containers conforms to these schemas.
"""

from expense_tracker.models.expense import (
    DEFAULT_CATEGORIES,
    Expense,
    ExpenseDraft,
    ExpenseUpdate,
)
from expense_tracker.models.group import (
    Group,
    GroupDraft,
    GroupInvitation,
    GroupMember,
    GroupUpdate,
    InvitationStatus,
)
from expense_tracker.models.profile import (
    AuthSession,
    AuthUser,
    DisplayName,
    NameSource,
    Profile,
    ProfileUpdate,
    resolve_display_name,
)
from expense_tracker.models.analytics import (
    CategoryInsight,
    ExpenseSummary,
    MonthlyTrendPoint,
)
from expense_tracker.models.notification import (
    Notification,
    NotificationBuilder,
    NotificationLevel,
)

__all__ = [
    # Expense models
    "DEFAULT_CATEGORIES",
    "Expense",
    "ExpenseDraft",
    "ExpenseUpdate",
    # Group models
    "Group",
    "GroupDraft",
    "GroupInvitation",
    "GroupMember",
    "GroupUpdate",
    "InvitationStatus",
    # Identity models
    "AuthSession",
    "AuthUser",
    "DisplayName",
    "NameSource",
    "Profile",
    "ProfileUpdate",
    "resolve_display_name",
    # Analytics models
    "CategoryInsight",
    "ExpenseSummary",
    "MonthlyTrendPoint",
    # Notification models
    "Notification",
    "NotificationBuilder",
    "NotificationLevel",
]
