"""
Group and Invitation Models

A group is a named pool of expenses shared by its members under one
budget. Only the creator may edit it, delete it or remove members;
any member may add expenses.

DESIGN DECISION: ``total_expenses`` sums raw amounts without currency
conversion. ``currencies`` records which currencies went into that sum
so callers can flag a mixed-currency total as display-only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from expense_tracker.models.expense import to_decimal
from expense_tracker.models.profile import NameSource


class InvitationStatus(str, Enum):
    """
    Invitation lifecycle.

    pending -> accepted or pending -> rejected, exactly once.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class GroupMember(BaseModel):
    """A member as shown in a group's member list."""

    id: str
    name: str
    initials: str
    name_source: NameSource = NameSource.PLACEHOLDER


class Group(BaseModel):
    """A group mirrored from the backend, with derived totals."""

    id: str
    name: str
    budget: Decimal = Field(default=Decimal("0"), ge=0)
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    member_ids: set[str] = Field(default_factory=set)
    members: list[GroupMember] = Field(default_factory=list)

    # Derived
    total_expenses: Decimal = Decimal("0")
    currencies: set[str] = Field(default_factory=set)

    @property
    def is_mixed_currency(self) -> bool:
        """True when the total adds up amounts in more than one currency."""
        return len(self.currencies) > 1

    @property
    def remaining_budget(self) -> Decimal:
        return self.budget - self.total_expenses

    def is_creator(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.created_by == user_id

    def has_access(self, user_id: Optional[str]) -> bool:
        return user_id is not None and (user_id in self.member_ids or self.is_creator(user_id))

    @classmethod
    def from_row(cls, row: dict) -> "Group":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            budget=to_decimal(row.get("budget")),
            created_at=_parse_timestamp(row.get("created_at")),
            created_by=row.get("created_by"),
        )


class GroupDraft(BaseModel):
    """Input for creating a group; member emails receive invitations."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    budget: Decimal = Field(default=Decimal("0"), ge=0)
    member_emails: list[str] = Field(default_factory=list)


class GroupUpdate(BaseModel):
    """Only name and budget of a group are mutable."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    budget: Optional[Decimal] = Field(default=None, ge=0)


class GroupInvitation(BaseModel):
    """An offer for one email address to join one group."""

    id: str
    group_id: str
    group_name: str = "Unknown Group"
    email: str
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: Optional[datetime] = None
    invited_by: Optional[str] = None
    inviter_name: str = "Unknown User"

    @classmethod
    def from_row(
        cls,
        row: dict,
        group_name: Optional[str] = None,
        inviter_name: Optional[str] = None,
    ) -> "GroupInvitation":
        return cls(
            id=str(row["id"]),
            group_id=str(row["group_id"]),
            group_name=group_name or "Unknown Group",
            email=row.get("email") or "",
            status=InvitationStatus(row.get("status") or "pending"),
            created_at=_parse_timestamp(row.get("created_at")),
            invited_by=row.get("invited_by"),
            inviter_name=inviter_name or "Unknown User",
        )
