"""
State Containers Package

AuthStore owns the session; ExpenseStore owns one signed-in user's
expenses, groups, categories and invitations.
"""

from expense_tracker.state.expense_store import (
    CHANGES_CHANNEL,
    ExpenseStore,
    SessionState,
)
from expense_tracker.state.auth_store import AuthStore

__all__ = [
    "AuthStore",
    "CHANGES_CHANNEL",
    "ExpenseStore",
    "SessionState",
]
