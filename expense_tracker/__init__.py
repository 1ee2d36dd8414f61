"""
Expense Tracker - Source Package

Personal and group expense tracking on top of a hosted backend
(auth, table storage, change notifications).

DESIGN PRINCIPLES:
1. Remote truth wins - local state is a mirror, rebuilt on every change event
2. One container per signed-in session, torn down on sign-out
3. Aggregates are recomputed, never patched
4. No operation is allowed to crash the session
"""

__version__ = "1.0.0"
__author__ = "Expense Tracker Team"
