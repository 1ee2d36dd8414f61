"""
Error taxonomy for Expense Tracker.

Every error the containers can report derives from ExpenseTrackerError
and carries a stable ``code`` so the notification channel (and tests)
can tell them apart without string matching.

Backends raise RemoteFailureError. Containers catch ExpenseTrackerError
at the operation boundary and report it; nothing escapes to the caller.
"""

from typing import Optional


class ExpenseTrackerError(Exception):
    """Base exception for all expense tracker errors."""

    code = "error"


class AuthRequiredError(ExpenseTrackerError):
    """Operation needs a signed-in user."""

    code = "auth_required"


class PermissionDeniedError(ExpenseTrackerError):
    """Non-creator attempting a creator-only action."""

    code = "permission_denied"


class NotAuthorizedError(PermissionDeniedError):
    """Requester is neither a member nor the creator of a group."""

    code = "not_authorized"


class NotFoundError(ExpenseTrackerError):
    """Referenced group, expense or invitation is absent."""

    code = "not_found"


class ValidationFailureError(ExpenseTrackerError):
    """Malformed input caught before any remote call."""

    code = "validation_failure"


class RemoteFailureError(ExpenseTrackerError):
    """
    Backend call returned an error.

    ``remote_code`` holds the backend's own error code when it sent one
    (e.g. a Postgres SQLSTATE such as "23505").
    """

    code = "remote_failure"

    def __init__(self, message: str, remote_code: Optional[str] = None):
        self.remote_code = remote_code
        super().__init__(message)


class UniqueViolationError(RemoteFailureError):
    """Insert rejected by a uniqueness constraint."""

    code = "unique_violation"

    SQLSTATE = "23505"

    def __init__(self, message: str):
        super().__init__(message, remote_code=self.SQLSTATE)
