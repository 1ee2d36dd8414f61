"""
Expense/Group State Container

This module ties together the backend, the analytics and the notifier
and defines the per-session flows for:
1. Loading (four parallel fetches + one change subscription)
2. Expense CRUD with an optimistic add
3. Groups, members and invitations
4. Derived views (trend, category breakdown, totals)

DESIGN DECISION: One ExpenseStore per authenticated session.
- open() acquires the change subscription, close() releases it exactly once
- Every async result is checked against the session before it is applied,
  so a late response after sign-out never repopulates state
- Group totals are recomputed from the full expense set after every change,
  never adjusted incrementally

Operations never raise. Failures go to the Notifier and the operation
returns None/False.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from expense_tracker.analytics import group_totals, summarize
from expense_tracker.config import AppSettings, get_settings
from expense_tracker.errors import (
    AuthRequiredError,
    ExpenseTrackerError,
    NotAuthorizedError,
    NotFoundError,
    PermissionDeniedError,
    UniqueViolationError,
    ValidationFailureError,
)
from expense_tracker.models import (
    DEFAULT_CATEGORIES,
    AuthUser,
    CategoryInsight,
    Expense,
    ExpenseDraft,
    ExpenseSummary,
    ExpenseUpdate,
    Group,
    GroupDraft,
    GroupInvitation,
    GroupMember,
    GroupUpdate,
    InvitationStatus,
    MonthlyTrendPoint,
    NotificationBuilder,
    Profile,
    resolve_display_name,
)
from expense_tracker.notifications import Notifier
from expense_tracker.services.backend import (
    EXPENSE_CATEGORIES,
    EXPENSES,
    GROUP_INVITATIONS,
    GROUP_MEMBERS,
    GROUPS,
    PROFILES,
    Backend,
    Subscription,
    TableWatch,
)
from expense_tracker.validation import normalize_emails, parse_input


logger = structlog.get_logger(__name__)

CHANGES_CHANNEL = "expenses-groups-changes"

# Which collections to refetch when a table reports a change
REFETCH_ON_CHANGE: dict[str, tuple[str, ...]] = {
    EXPENSES: ("fetch_expenses",),
    GROUPS: ("fetch_groups",),
    GROUP_MEMBERS: ("fetch_groups",),
    EXPENSE_CATEGORIES: ("fetch_categories",),
    GROUP_INVITATIONS: ("fetch_invitations",),
}

REPORTABLE = (ExpenseTrackerError, ValidationError)


class SessionState(str, Enum):
    """Lifecycle of an ExpenseStore."""
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    READY = "ready"


def _row_values(values: dict[str, Any]) -> dict[str, Any]:
    """Convert model values into what the tables store."""
    row = {}
    for key, value in values.items():
        if isinstance(value, Decimal):
            value = str(value)
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        row[key] = value
    return row


def _parse_expenses(rows: list[dict]) -> list[Expense]:
    """Map expense rows, skipping any row that cannot be parsed."""
    expenses = []
    for row in rows:
        try:
            expenses.append(Expense.from_row(row))
        except (ValidationError, ValueError, InvalidOperation, KeyError, TypeError) as e:
            logger.warning("expense_row_skipped", expense_id=row.get("id"), error=str(e))
    return expenses


def _build_members(
    member_ids: list[str],
    profiles: dict[str, dict],
) -> list[GroupMember]:
    members = []
    for user_id in member_ids:
        row = profiles.get(user_id)
        profile = Profile.from_row(row) if row else None
        display = resolve_display_name(profile, user_id)
        members.append(GroupMember(
            id=user_id,
            name=display.name,
            initials=display.initials,
            name_source=display.source,
        ))
    return members


def _build_group(row: dict, member_rows: list[dict], profiles: dict[str, dict]) -> Group:
    group = Group.from_row(row)
    group.member_ids = {m["user_id"] for m in member_rows if m.get("group_id") == group.id}
    shown = list(dict.fromkeys(
        [m["user_id"] for m in member_rows if m.get("group_id") == group.id]
        + ([group.created_by] if group.created_by else [])
    ))
    group.members = _build_members(shown, profiles)
    return group


class ExpenseStore:
    """
    Single source of truth for one signed-in user's data.

    Flow:
    1. open() -> LOADING, subscribe, fetch everything
    2. READY once expenses and groups have loaded
    3. Mutations call the backend and update local state
    4. Change events trigger refetches
    5. close() -> UNAUTHENTICATED, everything cleared

    Usage:
        async with ExpenseStore(backend, user, notifier) as store:
            await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
    """

    def __init__(
        self,
        backend: Backend,
        user: AuthUser,
        notifier: Optional[Notifier] = None,
        display_currency: Optional[str] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().app
        self._backend = backend
        self._user = user
        self._notifier = notifier or Notifier()
        self._display_currency = (display_currency or self._settings.default_currency).upper()
        self._default_categories = (
            self._settings.default_categories_list or list(DEFAULT_CATEGORIES)
        )

        self.state = SessionState.UNAUTHENTICATED
        self._active = False
        self._subscription: Optional[Subscription] = None
        self._tasks: set[asyncio.Task] = set()

        self._expenses: list[Expense] = []
        self._group_expenses: dict[str, Expense] = {}
        self._groups: list[Group] = []
        self._categories: list[str] = list(self._default_categories)
        self._invitations: list[GroupInvitation] = []
        self._current_group: Optional[Group] = None
        self._summary = summarize([], self._display_currency)

        self._loading = False
        self._groups_loading = False
        self._invitations_loading = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> "ExpenseStore":
        """Start the session: subscribe, fetch, and wait for expenses + groups."""
        if self._active:
            return self

        self._active = True
        self.state = SessionState.LOADING
        self._loading = True
        logger.info("expense_store_opening", user_id=self._user.id)

        user_filter = {"user_id": self._user.id}
        watches = [
            TableWatch(table=EXPENSES, filter=user_filter, callback=self._on_change),
            TableWatch(table=GROUPS, callback=self._on_change),
            TableWatch(table=GROUP_MEMBERS, callback=self._on_change),
            TableWatch(table=EXPENSE_CATEGORIES, filter=user_filter, callback=self._on_change),
            TableWatch(table=GROUP_INVITATIONS, callback=self._on_change),
        ]
        try:
            self._subscription = await self._backend.subscribe(CHANGES_CHANNEL, watches)
        except REPORTABLE as e:
            self._report("Failed to subscribe to live updates", e)

        expenses_task = self._spawn(self.fetch_expenses())
        groups_task = self._spawn(self.fetch_groups())
        self._spawn(self.fetch_categories())
        self._spawn(self.fetch_invitations())

        await asyncio.gather(expenses_task, groups_task, return_exceptions=True)

        if self._active:
            self.state = SessionState.READY
            self._loading = False
            logger.info("expense_store_ready", user_id=self._user.id)
        return self

    async def close(self) -> None:
        """End the session: release the subscription, cancel work, clear state."""
        if not self._active and self.state == SessionState.UNAUTHENTICATED:
            return

        self._active = False
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        self._expenses = []
        self._group_expenses = {}
        self._groups = []
        self._categories = []
        self._invitations = []
        self._current_group = None
        self._summary = summarize([], self._display_currency)
        self._loading = False
        self._groups_loading = False
        self._invitations_loading = False
        self.state = SessionState.UNAUTHENTICATED
        logger.info("expense_store_closed", user_id=self._user.id)

    async def __aenter__(self) -> "ExpenseStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def wait_idle(self) -> None:
        """Wait until no background fetch is outstanding."""
        while True:
            pending = [t for t in self._tasks if t is not asyncio.current_task()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        if not self._active:
            coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_change(self, table: str) -> None:
        if not self._active:
            return
        logger.debug("change_event_received", table=table, user_id=self._user.id)
        for name in REFETCH_ON_CHANGE.get(table, ()):
            self._spawn(getattr(self, name)())

    def _is_current(self, user_id: str) -> bool:
        return self._active and self._user.id == user_id

    def _require_session(self, action: str) -> str:
        if not self._active:
            raise AuthRequiredError(f"You must be logged in to {action}")
        return self._user.id

    def _report(self, description: str, error: Exception, title: Optional[str] = None) -> None:
        if isinstance(error, ValidationError):
            error = ValidationFailureError(str(error))
        logger.warning(
            "operation_failed",
            description=description,
            error_code=error.code,
            error=str(error),
            user_id=self._user.id,
        )
        self._notifier.error(description, error, title=title)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        """Rebuild group totals and the summary from every known expense."""
        known = dict(self._group_expenses)
        known.update((e.id, e) for e in self._expenses)
        totals = group_totals(known.values())

        for group in self._groups:
            total, currencies = totals.get(group.id, (Decimal("0"), set()))
            group.total_expenses = total
            group.currencies = currencies

        if self._current_group is not None:
            cached = self._find_group(self._current_group.id)
            if cached is not None:
                self._current_group = cached

        self._summary = summarize(self._expenses, self._display_currency)

    def set_display_currency(self, currency: str) -> None:
        """Change the currency the dashboard total is shown in."""
        self._display_currency = currency.upper()
        self._recompute()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def user(self) -> AuthUser:
        return self._user

    @property
    def display_currency(self) -> str:
        return self._display_currency

    @property
    def expenses(self) -> list[Expense]:
        return list(self._expenses)

    @property
    def groups(self) -> list[Group]:
        return list(self._groups)

    @property
    def categories(self) -> list[str]:
        return list(self._categories)

    @property
    def pending_invitations(self) -> list[GroupInvitation]:
        return list(self._invitations)

    @property
    def current_group(self) -> Optional[Group]:
        return self._current_group

    @property
    def summary(self) -> ExpenseSummary:
        return self._summary

    @property
    def monthly_trend(self) -> list[MonthlyTrendPoint]:
        return self._summary.monthly_trend

    @property
    def category_breakdown(self) -> list[CategoryInsight]:
        return self._summary.category_breakdown

    @property
    def total_expense_amount(self) -> Decimal:
        """Sum of all own expenses converted into the display currency."""
        return self._summary.total_amount

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def groups_loading(self) -> bool:
        return self._groups_loading

    @property
    def invitations_loading(self) -> bool:
        return self._invitations_loading

    def group_name_for(self, expense: Expense) -> Optional[str]:
        if not expense.group_id:
            return None
        group = self._find_group(expense.group_id)
        return group.name if group else None

    def _find_group(self, group_id: str) -> Optional[Group]:
        return next((g for g in self._groups if g.id == group_id), None)

    def _find_group_by_name(self, name: str) -> Optional[Group]:
        return next((g for g in self._groups if g.name == name), None)

    def _find_expense(self, expense_id: str) -> Optional[Expense]:
        return next((e for e in self._expenses if e.id == expense_id), None)

    # ------------------------------------------------------------------
    # Fetches
    # ------------------------------------------------------------------

    async def fetch_expenses(self) -> None:
        """Reload the user's own expenses, newest first."""
        user_id = self._user.id
        if not self._is_current(user_id):
            return
        try:
            rows = await self._backend.select(
                EXPENSES,
                eq={"user_id": user_id},
                order_by="date",
                ascending=False,
            )
            expenses = _parse_expenses(rows)
        except REPORTABLE as e:
            if self._is_current(user_id):
                self._report("Failed to fetch expenses", e)
            return

        if not self._is_current(user_id):
            logger.debug("stale_result_discarded", collection="expenses", user_id=user_id)
            return

        own_ids = {e.id for e in expenses}
        self._group_expenses = {
            expense_id: expense
            for expense_id, expense in self._group_expenses.items()
            if expense.owner_user_id != user_id or expense_id in own_ids
        }
        self._expenses = expenses
        self._recompute()

    async def fetch_groups(self) -> None:
        """
        Reload every group the user belongs to or created.

        Members, their profiles and all group expenses are loaded with
        the groups so totals cover expenses added by other members.
        """
        user_id = self._user.id
        if not self._is_current(user_id):
            return
        self._groups_loading = True
        try:
            memberships = await self._backend.select(
                GROUP_MEMBERS,
                columns="group_id",
                eq={"user_id": user_id},
            )
            created = await self._backend.select(
                GROUPS,
                columns="id",
                eq={"created_by": user_id},
            )
            group_ids = list(dict.fromkeys(
                [m["group_id"] for m in memberships] + [g["id"] for g in created]
            ))

            groups: list[Group] = []
            group_expenses: dict[str, Expense] = {}
            if group_ids:
                group_rows = await self._backend.select(
                    GROUPS,
                    in_={"id": group_ids},
                    order_by="created_at",
                )
                member_rows = await self._backend.select(
                    GROUP_MEMBERS,
                    in_={"group_id": group_ids},
                )
                user_ids = list(dict.fromkeys(
                    [m["user_id"] for m in member_rows]
                    + [g["created_by"] for g in group_rows if g.get("created_by")]
                ))
                profile_rows = await self._backend.select(PROFILES, in_={"id": user_ids})
                expense_rows = await self._backend.select(
                    EXPENSES,
                    in_={"group_id": group_ids},
                    order_by="date",
                    ascending=False,
                )
                profiles = {p["id"]: p for p in profile_rows}
                groups = [_build_group(row, member_rows, profiles) for row in group_rows]
                for expense in _parse_expenses(expense_rows):
                    group_expenses[expense.id] = expense
        except REPORTABLE as e:
            if self._is_current(user_id):
                self._groups_loading = False
                self._report("Failed to fetch groups", e)
            return

        if not self._is_current(user_id):
            logger.debug("stale_result_discarded", collection="groups", user_id=user_id)
            return

        self._groups = groups
        self._group_expenses = group_expenses
        self._groups_loading = False
        self._recompute()

    async def fetch_categories(self) -> None:
        """Reload the user's categories; falls back to the default seed set."""
        user_id = self._user.id
        if not self._is_current(user_id):
            return
        try:
            rows = await self._backend.select(
                EXPENSE_CATEGORIES,
                columns="name",
                eq={"user_id": user_id},
                order_by="name",
            )
            names = [r["name"] for r in rows if r.get("name")]
        except REPORTABLE as e:
            if self._is_current(user_id):
                self._report("Failed to fetch categories", e)
                self._categories = list(self._default_categories)
            return

        if not self._is_current(user_id):
            return
        self._categories = names or list(self._default_categories)

    async def fetch_invitations(self) -> None:
        """Reload pending invitations addressed to the user's email."""
        user_id = self._user.id
        if not self._is_current(user_id):
            return
        self._invitations_loading = True
        try:
            email = await self._current_email()
            invitations: list[GroupInvitation] = []
            if email:
                rows = await self._backend.select(
                    GROUP_INVITATIONS,
                    eq={"email": email, "status": InvitationStatus.PENDING.value},
                    order_by="created_at",
                    ascending=False,
                )
                group_ids = list(dict.fromkeys(r["group_id"] for r in rows))
                inviter_ids = list(dict.fromkeys(r["invited_by"] for r in rows if r.get("invited_by")))

                names: dict[str, str] = {}
                if group_ids:
                    group_rows = await self._backend.select(
                        GROUPS,
                        columns="id,name",
                        in_={"id": group_ids},
                    )
                    names = {g["id"]: g["name"] for g in group_rows}

                inviters: dict[str, dict] = {}
                if inviter_ids:
                    profile_rows = await self._backend.select(PROFILES, in_={"id": inviter_ids})
                    inviters = {p["id"]: p for p in profile_rows}

                for row in rows:
                    inviter_id = row.get("invited_by")
                    inviter_name = None
                    if inviter_id:
                        profile_row = inviters.get(inviter_id)
                        profile = Profile.from_row(profile_row) if profile_row else None
                        inviter_name = resolve_display_name(profile, inviter_id).name
                    invitations.append(GroupInvitation.from_row(
                        row,
                        group_name=names.get(row["group_id"]),
                        inviter_name=inviter_name,
                    ))
        except REPORTABLE as e:
            if self._is_current(user_id):
                self._invitations_loading = False
                self._report("Failed to fetch invitations", e)
            return

        if not self._is_current(user_id):
            return
        self._invitations = invitations
        self._invitations_loading = False

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def _resolve_group_id(self, group_name: Optional[str], group_id: Optional[str]) -> Optional[str]:
        if group_id:
            return group_id
        if group_name is None:
            return None
        group = self._find_group_by_name(group_name)
        if group is None:
            raise NotFoundError(f"Group not found: {group_name}")
        return group.id

    async def add_expense(self, draft: ExpenseDraft | dict) -> Optional[Expense]:
        """
        Add an expense optimistically.

        The expense is visible locally before the insert completes. If
        the insert fails it is removed again and the failure reported.
        """
        try:
            user_id = self._require_session("add an expense")
            draft = parse_input(ExpenseDraft, draft)
            expense = Expense(
                title=draft.title,
                amount=draft.amount,
                date=draft.date,
                category=draft.category,
                currency=draft.currency or self._display_currency,
                owner_user_id=user_id,
                group_id=self._resolve_group_id(draft.group, draft.group_id),
            )
        except REPORTABLE as e:
            self._report("Failed to add expense", e)
            return None

        self._expenses.insert(0, expense)
        self._recompute()

        try:
            await self._backend.insert(EXPENSES, expense.to_row())
        except REPORTABLE as e:
            self._expenses = [x for x in self._expenses if x.id != expense.id]
            self._recompute()
            self._report("Failed to add expense", e)
            return None

        logger.info("expense_added", expense_id=expense.id, group_id=expense.group_id)
        self._notifier.notify(NotificationBuilder.expense_added(
            expense.title, str(expense.amount), expense.currency,
        ))
        return expense

    async def update_expense(self, expense_id: str, changes: ExpenseUpdate | dict) -> Optional[Expense]:
        """
        Apply a partial update to one of the user's expenses.

        An unknown id is a silent no-op. A group given by name is sent
        as its id; an unknown name detaches the expense.
        """
        existing = self._find_expense(expense_id)
        if existing is None:
            logger.info("expense_update_skipped", expense_id=expense_id, reason="not_found")
            return None

        try:
            self._require_session("update an expense")
            changes = parse_input(ExpenseUpdate, changes)
            values = {
                key: value
                for key, value in changes.model_dump(exclude_unset=True, exclude={"group", "group_id"}).items()
                if value is not None
            }
            if changes.touches_group:
                if "group_id" in changes.model_fields_set:
                    values["group_id"] = changes.group_id
                else:
                    group = self._find_group_by_name(changes.group) if changes.group else None
                    values["group_id"] = group.id if group else None

            if values:
                await self._backend.update(EXPENSES, _row_values(values), eq={"id": expense_id})
        except REPORTABLE as e:
            self._report("Failed to update expense", e)
            return None

        # Other writes may have landed while the update was in flight
        current = self._find_expense(expense_id)
        if current is None:
            logger.info("expense_update_skipped", expense_id=expense_id, reason="removed_during_update")
            return None
        updated = current.model_copy(update=values)
        self._expenses = [updated if e.id == expense_id else e for e in self._expenses]
        if expense_id in self._group_expenses:
            self._group_expenses[expense_id] = updated
        self._recompute()

        logger.info("expense_updated", expense_id=expense_id, fields=sorted(values))
        self._notifier.notify(NotificationBuilder.expense_updated(existing.title))
        return updated

    async def delete_expense(self, expense_id: str) -> bool:
        """Delete remotely first; local state changes only on success."""
        existing = self._find_expense(expense_id)
        if existing is None:
            return False

        try:
            self._require_session("delete an expense")
            await self._backend.delete(EXPENSES, eq={"id": expense_id})
        except REPORTABLE as e:
            self._report("Failed to delete expense", e)
            return False

        self._expenses = [e for e in self._expenses if e.id != expense_id]
        self._group_expenses.pop(expense_id, None)
        self._recompute()

        logger.info("expense_deleted", expense_id=expense_id)
        self._notifier.notify(NotificationBuilder.expense_deleted(existing.title))
        return True

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def add_category(self, name: str) -> bool:
        """
        Add a category. Idempotent: an existing name is a no-op, and a
        uniqueness violation from the backend counts as success.
        """
        try:
            user_id = self._require_session("add a category")
            name = (name or "").strip()
            if not name:
                raise ValidationFailureError("Category name cannot be empty")
        except REPORTABLE as e:
            self._report("Failed to add category", e)
            return False

        if name in self._categories:
            return True

        try:
            await self._backend.insert(EXPENSE_CATEGORIES, {"user_id": user_id, "name": name})
        except UniqueViolationError:
            logger.info("category_already_exists", category=name)
        except REPORTABLE as e:
            self._report("Failed to add category", e)
            return False

        if name not in self._categories:
            self._categories.append(name)
        self._notifier.notify(NotificationBuilder.category_added(name))
        return True

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def _load_group(self, group_id: str) -> Group:
        cached = self._find_group(group_id)
        if cached is not None:
            return cached
        row = await self._backend.select_single(GROUPS, eq={"id": group_id})
        return Group.from_row(row)

    async def create_group(self, draft: GroupDraft | dict) -> Optional[str]:
        """
        Create a group, the creator's membership and pending invitations.

        Partial success: once the group row exists its id is returned
        even if the membership or the invitations fail (those failures
        are reported).
        """
        try:
            user_id = self._require_session("create a group")
            draft = parse_input(GroupDraft, draft)
            emails = normalize_emails(draft.member_emails)
            rows = await self._backend.insert(GROUPS, {
                "name": draft.name,
                "budget": str(draft.budget),
                "created_by": user_id,
                "description": "",
            })
            group = Group.from_row(rows[0])
        except REPORTABLE as e:
            self._report("Failed to create group", e)
            return None

        try:
            await self._backend.insert(GROUP_MEMBERS, {"group_id": group.id, "user_id": user_id})
            group.member_ids.add(user_id)
        except REPORTABLE as e:
            self._report("Created group but couldn't add you as a member", e)

        if emails:
            invitations = [
                {
                    "group_id": group.id,
                    "email": email,
                    "status": InvitationStatus.PENDING.value,
                    "invited_by": user_id,
                }
                for email in emails
            ]
            try:
                await self._backend.insert(GROUP_INVITATIONS, invitations)
                self._notifier.notify(NotificationBuilder.invitations_sent(len(emails)))
            except REPORTABLE as e:
                self._report(
                    "Created group but couldn't send all invitations",
                    e,
                    title="Invitation Error",
                )

        if self._active:
            self._groups = [g for g in self._groups if g.id != group.id] + [group]
            self._recompute()

        logger.info("group_created", group_id=group.id, invitations=len(emails))
        self._notifier.notify(NotificationBuilder.group_created(group.name))
        return group.id

    async def update_group(self, group_id: str, changes: GroupUpdate | dict) -> bool:
        """Change a group's name and/or budget. Creator only."""
        try:
            user_id = self._require_session("update a group")
            changes = parse_input(GroupUpdate, changes)
            values = changes.model_dump(exclude_unset=True, exclude_none=True)
            cached = self._find_group(group_id)
            if cached is not None and not cached.is_creator(user_id):
                raise PermissionDeniedError("Only the group creator can edit this group")
            if values:
                await self._backend.update(GROUPS, _row_values(values), eq={"id": group_id})
        except REPORTABLE as e:
            self._report("Failed to update group", e)
            return False

        for group in self._groups:
            if group.id == group_id:
                for key, value in values.items():
                    setattr(group, key, value)
        if self._current_group is not None and self._current_group.id == group_id:
            for key, value in values.items():
                setattr(self._current_group, key, value)

        self._notifier.notify(NotificationBuilder.group_updated())
        return True

    async def delete_group(self, group_id: str) -> bool:
        """
        Delete a group after confirming, remotely, that the user created it.

        The check and the delete are two separate calls; there is no
        transaction between them.
        """
        try:
            user_id = self._require_session("delete a group")
            row = await self._backend.select_single(
                GROUPS,
                columns="created_by",
                eq={"id": group_id},
            )
            if row.get("created_by") != user_id:
                raise PermissionDeniedError("Only the group creator can delete this group")
            await self._backend.delete(GROUPS, eq={"id": group_id})
        except REPORTABLE as e:
            self._report("Failed to delete group", e)
            return False

        self._groups = [g for g in self._groups if g.id != group_id]
        self._group_expenses = {
            k: v for k, v in self._group_expenses.items() if v.group_id != group_id
        }
        self._expenses = [
            e.model_copy(update={"group_id": None}) if e.group_id == group_id else e
            for e in self._expenses
        ]
        if self._current_group is not None and self._current_group.id == group_id:
            self._current_group = None
        self._recompute()

        logger.info("group_deleted", group_id=group_id)
        self._notifier.notify(NotificationBuilder.group_deleted())
        return True

    async def get_group_by_id(self, group_id: str) -> Optional[Group]:
        """
        Focus a group, from cache when possible.

        A remote load verifies the user is a member or the creator.
        """
        cached = self._find_group(group_id)
        if cached is not None:
            self._current_group = cached
            return cached

        self._groups_loading = True
        try:
            user_id = self._require_session("view a group")
            row = await self._backend.select_single(GROUPS, eq={"id": group_id})
            member_rows = await self._backend.select(GROUP_MEMBERS, eq={"group_id": group_id})
            member_ids = [m["user_id"] for m in member_rows]
            if user_id not in member_ids and row.get("created_by") != user_id:
                raise NotAuthorizedError("You are not a member of this group")

            user_ids = list(dict.fromkeys(member_ids + ([row["created_by"]] if row.get("created_by") else [])))
            profile_rows = await self._backend.select(PROFILES, in_={"id": user_ids})
            expense_rows = await self._backend.select(
                EXPENSES,
                eq={"group_id": group_id},
                order_by="date",
                ascending=False,
            )
            group = _build_group(row, member_rows, {p["id"]: p for p in profile_rows})
            expenses = _parse_expenses(expense_rows)
        except REPORTABLE as e:
            self._groups_loading = False
            self._report("Failed to load group", e)
            return None

        self._groups_loading = False
        if not self._active:
            return None

        total, currencies = group_totals(expenses).get(group.id, (Decimal("0"), set()))
        group.total_expenses = total
        group.currencies = currencies
        self._current_group = group
        return group

    async def get_group_expenses(self, group_id: str) -> list[Expense]:
        """Every expense assigned to a group, newest first."""
        try:
            self._require_session("view group expenses")
            rows = await self._backend.select(
                EXPENSES,
                eq={"group_id": group_id},
                order_by="date",
                ascending=False,
            )
            return _parse_expenses(rows)
        except REPORTABLE as e:
            self._report("Failed to load group expenses", e)
            return []

    # ------------------------------------------------------------------
    # Members and invitations
    # ------------------------------------------------------------------

    async def invite_members(self, group_id: str, emails: list[str]) -> int:
        """
        Invite people to a group by email. Creator only.

        Addresses that already have an invitation for the group are
        skipped. Returns how many invitations were sent.
        """
        try:
            user_id = self._require_session("invite members")
            group = await self._load_group(group_id)
            if not group.is_creator(user_id):
                raise PermissionDeniedError("Only the group creator can invite members")
            emails = normalize_emails(emails)
            if not emails:
                raise ValidationFailureError("Please enter at least one email address")

            existing = await self._backend.select(
                GROUP_INVITATIONS,
                columns="email",
                eq={"group_id": group_id},
            )
            already_invited = {(r.get("email") or "").lower() for r in existing}
            fresh = [email for email in emails if email not in already_invited]

            if fresh:
                await self._backend.insert(GROUP_INVITATIONS, [
                    {
                        "group_id": group_id,
                        "email": email,
                        "status": InvitationStatus.PENDING.value,
                        "invited_by": user_id,
                    }
                    for email in fresh
                ])
        except REPORTABLE as e:
            self._report("Failed to send invitations", e)
            return 0

        if not fresh:
            self._notifier.success(
                "No new invitations",
                "Everyone on the list has already been invited",
            )
            return 0

        logger.info("members_invited", group_id=group_id, count=len(fresh))
        self._notifier.notify(NotificationBuilder.invitations_sent(len(fresh)))
        return len(fresh)

    async def remove_member(self, group_id: str, member_id: str) -> bool:
        """Remove someone from a group. Creator only; the creator stays."""
        try:
            user_id = self._require_session("remove members")
            group = await self._load_group(group_id)
            if not group.is_creator(user_id):
                raise PermissionDeniedError("Only the group creator can remove members")
            if member_id == group.created_by:
                raise PermissionDeniedError("The group creator cannot be removed")
            await self._backend.delete(
                GROUP_MEMBERS,
                eq={"group_id": group_id, "user_id": member_id},
            )
        except REPORTABLE as e:
            self._report("Failed to remove member", e)
            return False

        current = self._current_group
        if current is not None and current.id == group_id and self._find_group(group_id) is None:
            current.member_ids.discard(member_id)
            current.members = [m for m in current.members if m.id != member_id]

        self._notifier.notify(NotificationBuilder.member_removed())
        await self.fetch_groups()
        return True

    async def leave_group(self, group_id: str) -> bool:
        """Leave a group the user did not create."""
        try:
            user_id = self._require_session("leave a group")
            group = await self._load_group(group_id)
            if group.is_creator(user_id):
                raise PermissionDeniedError(
                    "The group creator cannot leave the group; delete it instead"
                )
            await self._backend.delete(
                GROUP_MEMBERS,
                eq={"group_id": group_id, "user_id": user_id},
            )
        except REPORTABLE as e:
            self._report("Failed to leave group", e)
            return False

        self._groups = [g for g in self._groups if g.id != group_id]
        self._group_expenses = {
            k: v for k, v in self._group_expenses.items() if v.group_id != group_id
        }
        if self._current_group is not None and self._current_group.id == group_id:
            self._current_group = None
        self._recompute()

        self._notifier.notify(NotificationBuilder.left_group())
        return True

    async def _current_email(self) -> Optional[str]:
        email = await self._backend.get_current_user_email() or self._user.email
        return email.strip().lower() if email else None

    async def _load_invitation(self, invitation_id: str) -> GroupInvitation:
        """
        Load a pending invitation addressed to the signed-in user.

        Raises:
            PermissionDeniedError: If the invitation is for another address
            ValidationFailureError: If it has already been answered
        """
        invitation = next((i for i in self._invitations if i.id == invitation_id), None)
        if invitation is None:
            row = await self._backend.select_single(GROUP_INVITATIONS, eq={"id": invitation_id})
            invitation = GroupInvitation.from_row(row)

        email = await self._current_email()
        if email is None or invitation.email.strip().lower() != email:
            raise PermissionDeniedError("This invitation was sent to a different email address")
        if invitation.status != InvitationStatus.PENDING:
            raise ValidationFailureError(
                f"Invitation has already been {invitation.status.value}"
            )
        return invitation

    async def accept_invitation(self, invitation_id: str) -> bool:
        """
        Accept an invitation and join its group.

        The membership row is inserted before the status changes; an
        existing membership counts as success.
        """
        try:
            user_id = self._require_session("accept an invitation")
            invitation = await self._load_invitation(invitation_id)
            try:
                await self._backend.insert(GROUP_MEMBERS, {
                    "group_id": invitation.group_id,
                    "user_id": user_id,
                })
            except UniqueViolationError:
                logger.info("membership_already_exists", group_id=invitation.group_id)
            await self._backend.update(
                GROUP_INVITATIONS,
                {"status": InvitationStatus.ACCEPTED.value},
                eq={"id": invitation_id},
            )
        except REPORTABLE as e:
            self._report("Failed to accept invitation", e)
            return False

        logger.info("invitation_accepted", invitation_id=invitation_id, group_id=invitation.group_id)
        self._notifier.notify(NotificationBuilder.invitation_accepted())
        await self.fetch_invitations()
        await self.fetch_groups()
        return True

    async def reject_invitation(self, invitation_id: str) -> bool:
        """Decline an invitation."""
        try:
            self._require_session("reject an invitation")
            await self._load_invitation(invitation_id)
            await self._backend.update(
                GROUP_INVITATIONS,
                {"status": InvitationStatus.REJECTED.value},
                eq={"id": invitation_id},
            )
        except REPORTABLE as e:
            self._report("Failed to reject invitation", e)
            return False

        logger.info("invitation_rejected", invitation_id=invitation_id)
        self._notifier.notify(NotificationBuilder.invitation_rejected())
        await self.fetch_invitations()
        return True
