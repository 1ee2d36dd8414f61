"""
In-Memory Backend Implementation

Behaves like the hosted backend closely enough to drive the state
containers without a network:
- rows are plain dicts keyed by table name
- ids and created_at are assigned on insert
- uniqueness constraints raise UniqueViolationError (SQLSTATE 23505)
- deleting a group cascades to its members and invitations and
  detaches its expenses
- every mutation fires the matching change subscriptions, with no payload

Failures can be injected per table and operation to exercise error paths.
"""

import asyncio
import copy
import inspect
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import structlog

from expense_tracker.models.profile import AuthSession, AuthUser
from expense_tracker.services.backend.interface import (
    EXPENSE_CATEGORIES,
    EXPENSES,
    GROUP_INVITATIONS,
    GROUP_MEMBERS,
    GROUPS,
    PROFILES,
    Backend,
    NotFoundError,
    RemoteFailureError,
    SessionCallback,
    Subscription,
    TableWatch,
    UniqueViolationError,
)


logger = structlog.get_logger(__name__)

# Column tuples that must be unique per table (besides "id")
UNIQUE_CONSTRAINTS: dict[str, list[tuple[str, ...]]] = {
    EXPENSE_CATEGORIES: [("user_id", "name")],
    GROUP_MEMBERS: [("group_id", "user_id")],
}

# Tables whose rows get a created_at timestamp on insert
TIMESTAMPED_TABLES = {GROUPS, GROUP_MEMBERS, GROUP_INVITATIONS, EXPENSE_CATEGORIES}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(row: dict, eq: Optional[dict], in_: Optional[dict] = None) -> bool:
    for column, value in (eq or {}).items():
        if row.get(column) != value:
            return False
    for column, values in (in_ or {}).items():
        if row.get(column) not in values:
            return False
    return True


def _project(row: dict, columns: str) -> dict:
    if columns.strip() == "*":
        return copy.deepcopy(row)
    wanted = [c.strip() for c in columns.split(",")]
    return {c: copy.deepcopy(row.get(c)) for c in wanted}


class InMemorySubscription(Subscription):
    """A subscription registered on an InMemoryBackend."""

    def __init__(self, backend: "InMemoryBackend", watches: list[TableWatch]):
        self._backend = backend
        self.watches = watches
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    async def close(self) -> None:
        self.close_count += 1
        self._backend._detach(self)


class SessionListener(Subscription):
    """Handle for an auth session listener."""

    def __init__(self, backend: "InMemoryBackend", callback: SessionCallback):
        self._backend = backend
        self.callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        if self in self._backend._session_listeners:
            self._backend._session_listeners.remove(self)


class InMemoryBackend(Backend):
    """
    In-memory implementation of the table and auth interfaces.

    Useful for tests and local runs without a hosted project.
    """

    def __init__(self, notify_on_write: bool = True):
        self.tables: dict[str, list[dict]] = {
            EXPENSES: [],
            GROUPS: [],
            GROUP_MEMBERS: [],
            PROFILES: [],
            EXPENSE_CATEGORIES: [],
            GROUP_INVITATIONS: [],
        }
        self.notify_on_write = notify_on_write
        self.calls: list[tuple[str, str]] = []
        self._failures: list[tuple[str, str, Exception]] = []
        self._subscriptions: list[InMemorySubscription] = []
        self._session_listeners: list[SessionListener] = []

        # Auth state
        self._users: dict[str, dict] = {}
        self._session: Optional[AuthSession] = None

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail(
        self,
        table: str,
        operation: str,
        error: Optional[Exception] = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` on ``table`` fail."""
        error = error or RemoteFailureError(f"Injected {operation} failure on {table}")
        for _ in range(times):
            self._failures.append((table, operation, error))

    def seed(self, table: str, *rows: dict) -> list[dict]:
        """Insert rows directly, bypassing constraints and notifications."""
        stored = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid4()))
            if table in TIMESTAMPED_TABLES:
                row.setdefault("created_at", _now_iso())
            self.tables.setdefault(table, []).append(row)
            stored.append(copy.deepcopy(row))
        return stored

    def rows(self, table: str, **eq: Any) -> list[dict]:
        """Current rows of ``table`` matching ``eq``."""
        return [copy.deepcopy(r) for r in self.tables.get(table, []) if _matches(r, eq)]

    def emit(self, table: str, row: Optional[dict] = None) -> int:
        """
        Fire change subscriptions for ``table`` as if ``row`` had changed.

        Returns the number of callbacks invoked.
        """
        return self._deliver(table, [row] if row is not None else [])

    @property
    def subscriptions(self) -> list[InMemorySubscription]:
        return list(self._subscriptions)

    def register_user(
        self,
        email: str,
        password: str = "password",
        *,
        user_id: Optional[str] = None,
        full_name: Optional[str] = None,
        username: Optional[str] = None,
        default_currency: str = "INR",
        with_profile: bool = True,
    ) -> AuthUser:
        """Create an account (and its profile row) directly."""
        user = AuthUser(id=user_id or str(uuid4()), email=email.lower())
        self._users[user.email] = {"id": user.id, "email": user.email, "password": password}
        if with_profile:
            self.seed(PROFILES, {
                "id": user.id,
                "username": username,
                "full_name": full_name,
                "avatar_url": None,
                "default_currency": default_currency,
            })
        return user

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_failure(self, table: str, operation: str) -> None:
        self.calls.append((operation, table))
        for index, (f_table, f_operation, error) in enumerate(self._failures):
            if f_table == table and f_operation == operation:
                del self._failures[index]
                raise error

    def _check_unique(self, table: str, candidates: list[dict]) -> None:
        existing = self.tables.get(table, [])
        seen_ids = {r.get("id") for r in existing}
        for row in candidates:
            if row["id"] in seen_ids:
                raise UniqueViolationError(f"duplicate key value violates unique constraint \"{table}_pkey\"")
            seen_ids.add(row["id"])
        for columns in UNIQUE_CONSTRAINTS.get(table, []):
            keys = {tuple(r.get(c) for c in columns) for r in existing}
            for row in candidates:
                key = tuple(row.get(c) for c in columns)
                if key in keys:
                    raise UniqueViolationError(
                        f"duplicate key value violates unique constraint on {table} {columns}"
                    )
                keys.add(key)

    def _deliver(self, table: str, rows: list[dict]) -> int:
        delivered = 0
        for subscription in list(self._subscriptions):
            for watch in subscription.watches:
                if watch.table != table:
                    continue
                if watch.filter and rows and not any(_matches(r, watch.filter) for r in rows):
                    continue
                result = watch.callback(table)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
                delivered += 1
        return delivered

    def _changed(self, table: str, rows: list[dict]) -> None:
        if self.notify_on_write and rows:
            self._deliver(table, rows)

    def _detach(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    # ------------------------------------------------------------------
    # TableBackend
    # ------------------------------------------------------------------

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
        self._check_failure(table, "select")
        rows = [r for r in self.tables.get(table, []) if _matches(r, eq, in_)]
        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: str(r[order_by]), reverse=not ascending)
            rows = present + missing
        return [_project(r, columns) for r in rows]

    async def select_single(
        self,
        table: str,
        *,
        eq: dict[str, Any],
        columns: str = "*",
    ) -> dict:
        rows = await self.select(table, columns=columns, eq=eq)
        if not rows:
            raise NotFoundError(f"No row in {table} matching {eq}")
        if len(rows) > 1:
            raise RemoteFailureError(f"Multiple rows in {table} matching {eq}")
        return rows[0]

    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        self._check_failure(table, "insert")
        batch = [dict(r) for r in (rows if isinstance(rows, list) else [rows])]
        for row in batch:
            row.setdefault("id", str(uuid4()))
            if table in TIMESTAMPED_TABLES:
                row.setdefault("created_at", _now_iso())
        self._check_unique(table, batch)
        self.tables.setdefault(table, []).extend(batch)
        logger.debug("memory_insert", table=table, count=len(batch))
        self._changed(table, batch)
        return copy.deepcopy(batch)

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        eq: dict[str, Any],
    ) -> list[dict]:
        self._check_failure(table, "update")
        updated = []
        for row in self.tables.get(table, []):
            if _matches(row, eq):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        self._changed(table, updated)
        return updated

    async def delete(self, table: str, *, eq: dict[str, Any]) -> list[dict]:
        self._check_failure(table, "delete")
        kept, removed = [], []
        for row in self.tables.get(table, []):
            (removed if _matches(row, eq) else kept).append(row)
        self.tables[table] = kept

        if table == GROUPS:
            for group in removed:
                self._cascade_group_delete(group["id"])

        self._changed(table, removed)
        return copy.deepcopy(removed)

    def _cascade_group_delete(self, group_id: str) -> None:
        for child in (GROUP_MEMBERS, GROUP_INVITATIONS):
            gone = [r for r in self.tables[child] if r.get("group_id") == group_id]
            self.tables[child] = [r for r in self.tables[child] if r.get("group_id") != group_id]
            self._changed(child, gone)
        detached = []
        for expense in self.tables[EXPENSES]:
            if expense.get("group_id") == group_id:
                expense["group_id"] = None
                detached.append(copy.deepcopy(expense))
        self._changed(EXPENSES, detached)

    async def subscribe(self, channel: str, watches: list[TableWatch]) -> Subscription:
        self.calls.append(("subscribe", channel))
        subscription = InMemorySubscription(self, watches)
        self._subscriptions.append(subscription)
        return subscription

    # ------------------------------------------------------------------
    # AuthBackend
    # ------------------------------------------------------------------

    async def get_current_session(self) -> Optional[AuthSession]:
        return self._session

    def on_session_change(self, callback: SessionCallback) -> Subscription:
        listener = SessionListener(self, callback)
        self._session_listeners.append(listener)
        return listener

    async def _push_session(self) -> None:
        for listener in list(self._session_listeners):
            result = listener.callback(self._session)
            if inspect.isawaitable(result):
                await result

    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: str,
        default_currency: str,
    ) -> Optional[AuthUser]:
        self._check_failure("auth", "sign_up")
        email = email.strip().lower()
        if email in self._users:
            raise RemoteFailureError("User already registered")
        if len(password) < 6:
            raise RemoteFailureError("Password should be at least 6 characters")
        return self.register_user(
            email,
            password,
            full_name=display_name,
            default_currency=default_currency,
        )

    async def sign_in(self, email: str, password: str) -> AuthSession:
        self._check_failure("auth", "sign_in")
        account = self._users.get(email.strip().lower())
        if account is None or account["password"] != password:
            raise RemoteFailureError("Invalid login credentials")
        self._session = AuthSession(
            access_token=str(uuid4()),
            user=AuthUser(id=account["id"], email=account["email"]),
        )
        await self._push_session()
        return self._session

    async def sign_out(self) -> None:
        self._check_failure("auth", "sign_out")
        self._session = None
        await self._push_session()

    async def get_current_user_email(self) -> Optional[str]:
        return self._session.user.email if self._session else None
