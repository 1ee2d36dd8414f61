"""
Expense Models

An expense belongs to exactly one user and optionally to one group.
Amounts are Decimal in the expense's own currency; nothing here converts.

DESIGN DECISION: Categories are free-form strings, not an enum.
Users extend their own category list at will, so the model only
insists that a category is non-empty.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Placeholder categories shown when nothing exists remotely
DEFAULT_CATEGORIES = ("Food", "Rent", "Travel", "Shopping", "Other")

# Group selector values that mean "not in a group"
NO_GROUP_VALUES = {"", "none"}


def normalize_currency_code(v: Optional[str]) -> Optional[str]:
    """Upper-case a currency code and insist on three letters."""
    if v is None:
        return v
    v = v.strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError(f"Currency must be a three-letter code, got {v!r}")
    return v


def to_decimal(value: Any) -> Decimal:
    """Convert a backend numeric (str, int, float) to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _blank_group_to_none(v: Optional[str]) -> Optional[str]:
    if v is not None and v.strip().lower() in NO_GROUP_VALUES:
        return None
    return v


class Expense(BaseModel):
    """A single expense as mirrored from the backend."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique expense ID"
    )
    title: str = Field(default="", description="Kept as stored, even when blank")
    amount: Decimal = Field(..., description="Amount in the expense's own currency")
    date: dt.date
    category: str = Field(..., min_length=1)
    currency: str = Field(default="USD")
    owner_user_id: Optional[str] = None
    group_id: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def check_currency(cls, v: str) -> str:
        return normalize_currency_code(v)

    @classmethod
    def from_row(cls, row: dict) -> "Expense":
        """Build an Expense from an ``expenses`` table row."""
        raw_date = row.get("date")
        if isinstance(raw_date, str):
            raw_date = dt.date.fromisoformat(raw_date[:10])
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            amount=to_decimal(row.get("amount")),
            date=raw_date,
            category=row.get("category") or "Other",
            currency=row.get("currency") or "USD",
            owner_user_id=row.get("user_id"),
            group_id=row.get("group_id"),
        )

    def to_row(self) -> dict:
        """Convert to an ``expenses`` table row."""
        return {
            "id": self.id,
            "title": self.title,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "category": self.category,
            "currency": self.currency,
            "user_id": self.owner_user_id,
            "group_id": self.group_id,
        }


class ExpenseDraft(BaseModel):
    """
    Input for creating an expense.

    The group may be given by name (what the user picks) or by id.
    A missing currency is filled in with the user's display currency.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, description="Amount must be greater than 0")
    category: str = Field(..., min_length=1)
    currency: Optional[str] = None
    date: dt.date = Field(default_factory=dt.date.today)
    group: Optional[str] = Field(default=None, description="Group name")
    group_id: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def check_currency(cls, v: Optional[str]) -> Optional[str]:
        return normalize_currency_code(v)

    @field_validator('group')
    @classmethod
    def blank_group_is_none(cls, v: Optional[str]) -> Optional[str]:
        return _blank_group_to_none(v)


class ExpenseUpdate(BaseModel):
    """
    Partial update for an expense.

    Only fields that were explicitly set are applied. Setting ``group``
    to None (or "none") explicitly detaches the expense from its group.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1)
    currency: Optional[str] = None
    date: Optional[dt.date] = None
    group: Optional[str] = None
    group_id: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def check_currency(cls, v: Optional[str]) -> Optional[str]:
        return normalize_currency_code(v)

    @field_validator('group')
    @classmethod
    def blank_group_is_none(cls, v: Optional[str]) -> Optional[str]:
        return _blank_group_to_none(v)

    @property
    def touches_group(self) -> bool:
        """Was the group assignment part of this update?"""
        return bool({"group", "group_id"} & self.model_fields_set)
