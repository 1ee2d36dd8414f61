"""
Backend Services Package

Provides the abstract backend interfaces and concrete implementations.
Supabase is the hosted backend; the in-memory backend serves tests and
local runs.
"""

from expense_tracker.services.backend.interface import (
    EXPENSE_CATEGORIES,
    EXPENSES,
    GROUP_INVITATIONS,
    GROUP_MEMBERS,
    GROUPS,
    PROFILES,
    AuthBackend,
    Backend,
    NotFoundError,
    RemoteFailureError,
    Subscription,
    TableBackend,
    TableWatch,
    UniqueViolationError,
)
from expense_tracker.services.backend.memory import InMemoryBackend
from expense_tracker.services.backend.supabase_backend import (
    SupabaseBackend,
    SupabaseClient,
)

__all__ = [
    # Tables
    "EXPENSE_CATEGORIES",
    "EXPENSES",
    "GROUP_INVITATIONS",
    "GROUP_MEMBERS",
    "GROUPS",
    "PROFILES",
    # Interfaces
    "AuthBackend",
    "Backend",
    "Subscription",
    "TableBackend",
    "TableWatch",
    # Exceptions
    "NotFoundError",
    "RemoteFailureError",
    "UniqueViolationError",
    # Implementations
    "InMemoryBackend",
    "SupabaseBackend",
    "SupabaseClient",
]
