"""
Abstract Backend Interface

DESIGN DECISION: The hosted backend is a black box behind two small
interfaces. This allows us to:
1. Use the hosted service in production
2. Use in-memory storage for testing
3. Keep the state containers unaware of any SDK

Tables are reached through four operations (select, insert, update,
delete) plus a subscription that fires when rows of a table change.
Change events carry NO payload: a subscriber must refetch.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from pydantic import BaseModel

from expense_tracker.errors import (
    NotFoundError,
    RemoteFailureError,
    UniqueViolationError,
)
from expense_tracker.models.profile import AuthSession, AuthUser


# Table names
EXPENSES = "expenses"
GROUPS = "groups"
GROUP_MEMBERS = "group_members"
PROFILES = "profiles"
EXPENSE_CATEGORIES = "expense_categories"
GROUP_INVITATIONS = "group_invitations"


ChangeCallback = Callable[[str], Any]
SessionCallback = Callable[[Optional[AuthSession]], Any]


class TableWatch(BaseModel):
    """
    One table to watch on a subscription.

    ``filter`` is an equality filter ({"user_id": "..."}); the callback
    receives only the table name.
    """

    table: str
    filter: Optional[dict[str, str]] = None
    callback: ChangeCallback


class Subscription(ABC):
    """Handle for a live subscription. Closing it twice is harmless."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering events and release the underlying channel."""
        pass


class TableBackend(ABC):
    """
    Abstract interface for table operations.

    Every method raises RemoteFailureError when the backend reports an
    error (UniqueViolationError for uniqueness constraint violations).
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        eq: Optional[dict[str, Any]] = None,
        in_: Optional[dict[str, list[Any]]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> list[dict]:
        """
        Select rows.

        Args:
            table: Table name
            columns: Column list, "*" for all
            eq: Column -> value equality filters
            in_: Column -> allowed values filters
            order_by: Column to sort by
            ascending: Sort direction

        Returns:
            Matching rows as dicts
        """
        pass

    @abstractmethod
    async def select_single(
        self,
        table: str,
        *,
        eq: dict[str, Any],
        columns: str = "*",
    ) -> dict:
        """
        Select exactly one row.

        Raises:
            NotFoundError: If no row matches
            RemoteFailureError: If the call fails
        """
        pass

    @abstractmethod
    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        """
        Insert one or more rows (all-or-nothing).

        Returns:
            The inserted rows, including server-assigned columns
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        eq: dict[str, Any],
    ) -> list[dict]:
        """Update matching rows; returns the updated rows."""
        pass

    @abstractmethod
    async def delete(self, table: str, *, eq: dict[str, Any]) -> list[dict]:
        """Delete matching rows; returns the deleted rows."""
        pass

    @abstractmethod
    async def subscribe(self, channel: str, watches: list[TableWatch]) -> Subscription:
        """Open one subscription covering all ``watches``."""
        pass


class AuthBackend(ABC):
    """Abstract interface for the authentication collaborator."""

    @abstractmethod
    async def get_current_session(self) -> Optional[AuthSession]:
        pass

    @abstractmethod
    def on_session_change(self, callback: SessionCallback) -> Subscription:
        """Register for session pushes (new session, or None on sign-out)."""
        pass

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: str,
        default_currency: str,
    ) -> Optional[AuthUser]:
        pass

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    async def get_current_user_email(self) -> Optional[str]:
        pass


class Backend(TableBackend, AuthBackend, ABC):
    """A hosted service that provides both tables and auth."""


__all__ = [
    "AuthBackend",
    "Backend",
    "ChangeCallback",
    "EXPENSES",
    "EXPENSE_CATEGORIES",
    "GROUPS",
    "GROUP_INVITATIONS",
    "GROUP_MEMBERS",
    "NotFoundError",
    "PROFILES",
    "RemoteFailureError",
    "SessionCallback",
    "Subscription",
    "TableBackend",
    "TableWatch",
    "UniqueViolationError",
]
