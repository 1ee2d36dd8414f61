"""Services package."""

from expense_tracker.services.backend import (
    AuthBackend,
    Backend,
    InMemoryBackend,
    NotFoundError,
    RemoteFailureError,
    SupabaseBackend,
    SupabaseClient,
    Subscription,
    TableBackend,
    TableWatch,
    UniqueViolationError,
)

__all__ = [
    "AuthBackend",
    "Backend",
    "InMemoryBackend",
    "NotFoundError",
    "RemoteFailureError",
    "SupabaseBackend",
    "SupabaseClient",
    "Subscription",
    "TableBackend",
    "TableWatch",
    "UniqueViolationError",
]
