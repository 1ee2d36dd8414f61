"""
Identity Models

Profiles are created out-of-band at sign-up and are one-to-one with an
authenticated user. Every field except the id is optional, so anything
that shows a person's name must go through ``resolve_display_name``.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NameSource(str, Enum):
    """Which piece of a profile a display name came from, in resolution order."""
    FULL_NAME = "full_name"
    USERNAME = "username"
    PLACEHOLDER = "placeholder"


class Profile(BaseModel):
    """A user's profile row."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    default_currency: str = Field(default="INR", min_length=3, max_length=3)

    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_row(cls, row: dict) -> "Profile":
        return cls(
            id=str(row["id"]),
            username=row.get("username") or None,
            full_name=row.get("full_name") or None,
            avatar_url=row.get("avatar_url") or None,
            default_currency=row.get("default_currency") or "INR",
        )


class ProfileUpdate(BaseModel):
    """Editable profile fields. Only explicitly set fields are sent."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    username: Optional[str] = Field(default=None, min_length=1, max_length=50)
    full_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None
    default_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class AuthUser(BaseModel):
    """The authenticated user behind a session."""

    id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    """An authenticated session as reported by the auth backend."""

    access_token: str
    user: AuthUser


class DisplayName(BaseModel):
    """A resolved display name and the initials shown in avatars."""

    name: str
    initials: str
    source: NameSource


def resolve_display_name(
    profile: Optional[Profile],
    user_id: Optional[str] = None,
) -> DisplayName:
    """
    Resolve how to show a user.

    Order: full name, then username, then a "User <id-prefix>" placeholder.
    ``user_id`` is used when there is no profile row at all.
    """
    if profile is not None:
        if profile.full_name and profile.full_name.split():
            initials = "".join(part[0] for part in profile.full_name.split())
            return DisplayName(
                name=profile.full_name,
                initials=initials.upper(),
                source=NameSource.FULL_NAME,
            )
        if profile.username:
            return DisplayName(
                name=profile.username,
                initials=profile.username[:2].upper(),
                source=NameSource.USERNAME,
            )
        user_id = user_id or profile.id

    if user_id:
        return DisplayName(
            name=f"User {user_id[:6]}",
            initials=user_id[:2].upper(),
            source=NameSource.PLACEHOLDER,
        )
    return DisplayName(name="Unknown User", initials="XX", source=NameSource.PLACEHOLDER)
