"""
Tests for the ExpenseStore.

Test strategy:
1. Session lifecycle (open, ready, close, late results)
2. Expense CRUD and the group totals derived from it
3. Categories, groups and their permission rules
4. Change events from the backend
"""

import asyncio
from decimal import Decimal

import pytest

from expense_tracker.errors import RemoteFailureError, UniqueViolationError
from expense_tracker.services.backend import (
    EXPENSE_CATEGORIES,
    EXPENSES,
    GROUP_INVITATIONS,
    GROUP_MEMBERS,
    GROUPS,
    InMemoryBackend,
)
from expense_tracker.state import CHANGES_CHANNEL, ExpenseStore, SessionState


def _group(store, group_id):
    return next(g for g in store.groups if g.id == group_id)


class GatedBackend(InMemoryBackend):
    """Holds expense selects until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.gated = False

    async def select(self, table, **kwargs):
        if self.gated and table == EXPENSES:
            await self.gate.wait()
        return await super().select(table, **kwargs)


class TestLifecycle:
    """Tests for opening and closing a session."""

    async def test_open_reaches_ready_with_one_subscription(self, store, backend):
        """Test that open() subscribes once and ends READY."""
        assert store.state == SessionState.READY
        assert not store.is_loading
        assert backend.calls.count(("subscribe", CHANGES_CHANNEL)) == 1
        assert len(backend.subscriptions) == 1

        watched = {w.table for w in backend.subscriptions[0].watches}
        assert watched == {EXPENSES, GROUPS, GROUP_MEMBERS, EXPENSE_CATEGORIES, GROUP_INVITATIONS}

    async def test_open_loads_existing_expenses_newest_first(
        self, backend, alice, notifier, settings, make_expense_row
    ):
        """Test that existing rows are loaded on open."""
        backend.seed(
            EXPENSES,
            make_expense_row(id="old", title="Old", date="2024-01-01"),
            make_expense_row(id="new", title="New", date="2024-05-01"),
            make_expense_row(id="other", user_id="bob-0002"),
        )
        store = ExpenseStore(backend, alice, notifier, settings=settings)
        await store.open()

        assert [e.id for e in store.expenses] == ["new", "old"]
        await store.close()

    async def test_close_releases_subscription_exactly_once(self, store, backend):
        """Test that closing twice releases the channel only once."""
        subscription = backend.subscriptions[0]

        await store.close()
        await store.close()

        assert subscription.close_count == 1
        assert backend.subscriptions == []
        assert store.state == SessionState.UNAUTHENTICATED

    async def test_close_clears_all_state(self, store):
        """Test that nothing survives a close."""
        await store.add_expense({"title": "Coffee", "amount": 3, "category": "Food"})
        await store.create_group({"name": "Flat", "budget": 100})

        await store.close()

        assert store.expenses == []
        assert store.groups == []
        assert store.categories == []
        assert store.pending_invitations == []
        assert store.current_group is None
        assert store.total_expense_amount == Decimal("0")

    async def test_late_result_after_close_is_discarded(
        self, alice, notifier, settings, make_expense_row
    ):
        """Test that a fetch finishing after close does not repopulate state."""
        backend = GatedBackend()
        store = ExpenseStore(backend, alice, notifier, settings=settings)
        await store.open()

        backend.seed(EXPENSES, make_expense_row(id="late"))
        backend.gated = True
        pending = asyncio.ensure_future(store.fetch_expenses())
        await asyncio.sleep(0)

        await store.close()
        backend.gate.set()
        await pending

        assert store.expenses == []
        assert store.state == SessionState.UNAUTHENTICATED

    async def test_change_events_after_close_are_ignored(self, store, backend, make_expense_row):
        """Test that a closed store neither refetches nor receives events."""
        await store.close()
        backend.seed(EXPENSES, make_expense_row(id="x"))

        assert backend.emit(EXPENSES) == 0
        assert store.expenses == []


class TestAddExpense:
    """Tests for the optimistic add."""

    async def test_add_is_visible_before_remote_insert(self, store, backend, monkeypatch):
        """Test that the local list shows the expense before the insert runs."""
        seen = []
        original_insert = backend.insert

        async def spy(table, rows):
            if table == EXPENSES:
                seen.append([e.title for e in store.expenses])
            return await original_insert(table, rows)

        monkeypatch.setattr(backend, "insert", spy)

        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})

        assert seen == [["Lunch"]]
        assert expense is not None
        assert backend.rows(EXPENSES, id=expense.id)[0]["title"] == "Lunch"

    async def test_add_uses_display_currency_by_default(self, store, backend):
        """Test that a missing currency becomes the display currency."""
        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})

        assert expense.currency == "USD"
        assert expense.owner_user_id == "alice-0001"
        assert backend.rows(EXPENSES)[0]["currency"] == "USD"

    async def test_add_prepends(self, store):
        """Test that the newest expense comes first."""
        await store.add_expense({"title": "First", "amount": 1, "category": "Food"})
        await store.add_expense({"title": "Second", "amount": 2, "category": "Food"})

        assert [e.title for e in store.expenses] == ["Second", "First"]

    async def test_failed_insert_rolls_back(self, store, backend, notifier):
        """Test that a failed remote insert removes the optimistic entry."""
        backend.fail(EXPENSES, "insert")

        result = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})

        assert result is None
        assert store.expenses == []
        assert store.total_expense_amount == Decimal("0")
        assert notifier.last.error_code == "remote_failure"
        assert notifier.last.description == "Failed to add expense"

    async def test_invalid_draft_never_reaches_backend(self, store, backend, notifier):
        """Test that a non-positive amount is rejected before any call."""
        result = await store.add_expense({"title": "Lunch", "amount": 0, "category": "Food"})

        assert result is None
        assert ("insert", EXPENSES) not in backend.calls
        assert notifier.last.error_code == "validation_failure"

    async def test_unknown_group_name_is_reported(self, store, backend, notifier):
        """Test that a group name that does not exist is refused."""
        result = await store.add_expense({
            "title": "Lunch", "amount": 20, "category": "Food", "group": "Nope",
        })

        assert result is None
        assert backend.rows(EXPENSES) == []
        assert notifier.last.error_code == "not_found"

    async def test_group_none_means_no_group(self, store):
        """Test that the "none" selector value leaves the expense ungrouped."""
        expense = await store.add_expense({
            "title": "Lunch", "amount": 20, "category": "Food", "group": "none",
        })

        assert expense.group_id is None

    async def test_closed_store_requires_auth(self, store, notifier):
        """Test that mutations after close report AuthRequired."""
        await store.close()

        result = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})

        assert result is None
        assert notifier.last.error_code == "auth_required"


class TestGroupTotals:
    """Tests for group totals following expense changes."""

    async def test_lunch_scenario(self, store):
        """Test create group, add 20, edit to 50, delete: totals 20, 50, 0."""
        group_id = await store.create_group({"name": "Weekend", "budget": 500})
        assert group_id is not None

        expense = await store.add_expense({
            "title": "Lunch", "amount": 20, "category": "Food", "group": "Weekend",
        })
        assert _group(store, group_id).total_expenses == Decimal("20")
        await store.wait_idle()
        assert _group(store, group_id).total_expenses == Decimal("20")

        await store.update_expense(expense.id, {"amount": 50})
        assert _group(store, group_id).total_expenses == Decimal("50")
        await store.wait_idle()
        assert _group(store, group_id).total_expenses == Decimal("50")

        assert await store.delete_expense(expense.id) is True
        assert _group(store, group_id).total_expenses == Decimal("0")
        await store.wait_idle()
        assert _group(store, group_id).total_expenses == Decimal("0")
        assert _group(store, group_id).remaining_budget == Decimal("500")

    async def test_total_matches_sum_after_mixed_sequence(self, store):
        """Test that the total is always the sum of assigned expenses."""
        group_id = await store.create_group({"name": "Trip", "budget": 1000})
        ids = []
        for amount in (10, 25, 40):
            expense = await store.add_expense({
                "title": f"Item {amount}", "amount": amount, "category": "Travel", "group": "Trip",
            })
            ids.append(expense.id)
        await store.add_expense({"title": "Solo", "amount": 99, "category": "Food"})
        await store.delete_expense(ids[1])
        await store.wait_idle()

        assert _group(store, group_id).total_expenses == Decimal("50")

    async def test_moving_and_repricing_does_not_double_apply(self, store):
        """Test changing group and amount in one update."""
        first = await store.create_group({"name": "First", "budget": 100})
        second = await store.create_group({"name": "Second", "budget": 100})
        expense = await store.add_expense({
            "title": "Lunch", "amount": 20, "category": "Food", "group": "First",
        })

        await store.update_expense(expense.id, {"amount": 35, "group": "Second"})

        assert _group(store, first).total_expenses == Decimal("0")
        assert _group(store, second).total_expenses == Decimal("35")
        await store.wait_idle()
        assert _group(store, first).total_expenses == Decimal("0")
        assert _group(store, second).total_expenses == Decimal("35")

    async def test_totals_include_other_members_expenses(
        self, backend, alice, bob, notifier, settings, make_expense_row
    ):
        """Test that a shared group's total covers every member's expenses."""
        backend.seed(GROUPS, {"id": "g1", "name": "Flat", "budget": "300", "created_by": bob.id})
        backend.seed(
            GROUP_MEMBERS,
            {"group_id": "g1", "user_id": bob.id},
            {"group_id": "g1", "user_id": alice.id},
        )
        backend.seed(
            EXPENSES,
            make_expense_row(id="b1", amount="30", user_id=bob.id, group_id="g1"),
            make_expense_row(id="a1", amount="12.50", user_id=alice.id, group_id="g1"),
        )
        store = ExpenseStore(backend, alice, notifier, settings=settings)
        await store.open()

        group = _group(store, "g1")
        assert group.total_expenses == Decimal("42.50")
        assert group.currencies == {"USD"}
        assert not group.is_mixed_currency
        assert [m.name for m in group.members] == ["Bob Jones", "Alice Smith"]
        await store.close()

    async def test_mixed_currency_total_is_tagged(self, store):
        """Test that a group total over two currencies is flagged."""
        group_id = await store.create_group({"name": "Trip", "budget": 0})
        await store.add_expense({
            "title": "Hotel", "amount": 100, "category": "Travel", "group": "Trip", "currency": "EUR",
        })
        await store.add_expense({
            "title": "Taxi", "amount": 20, "category": "Travel", "group": "Trip", "currency": "USD",
        })

        group = _group(store, group_id)
        assert group.total_expenses == Decimal("120")
        assert group.is_mixed_currency


class TestUpdateAndDelete:
    """Tests for editing and removing expenses."""

    async def test_update_unknown_id_is_silent_noop(self, store, backend, notifier):
        """Test that updating a missing expense does nothing."""
        result = await store.update_expense("missing", {"amount": 5})

        assert result is None
        assert ("update", EXPENSES) not in backend.calls
        assert notifier.history == []

    async def test_update_detaches_group(self, store, backend):
        """Test that an explicit "none" group removes the assignment."""
        group_id = await store.create_group({"name": "Flat", "budget": 10})
        expense = await store.add_expense({
            "title": "Rent", "amount": 5, "category": "Rent", "group": "Flat",
        })

        updated = await store.update_expense(expense.id, {"group": "none"})

        assert updated.group_id is None
        assert backend.rows(EXPENSES, id=expense.id)[0]["group_id"] is None
        assert _group(store, group_id).total_expenses == Decimal("0")

    async def test_update_sends_only_changed_columns(self, store, backend, monkeypatch):
        """Test that the remote update carries the changed fields only."""
        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
        sent = []
        original_update = backend.update

        async def spy(table, values, *, eq):
            sent.append(values)
            return await original_update(table, values, eq=eq)

        monkeypatch.setattr(backend, "update", spy)

        await store.update_expense(expense.id, {"title": "Dinner"})

        assert sent == [{"title": "Dinner"}]

    async def test_failed_update_keeps_local_state(self, store, backend, notifier):
        """Test that a failed remote update changes nothing locally."""
        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
        backend.fail(EXPENSES, "update")

        result = await store.update_expense(expense.id, {"amount": 99})

        assert result is None
        assert store.expenses[0].amount == Decimal("20")
        assert notifier.last.description == "Failed to update expense"

    async def test_failed_delete_keeps_expense(self, store, backend, notifier):
        """Test that local removal waits for the remote delete."""
        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
        backend.fail(EXPENSES, "delete")

        assert await store.delete_expense(expense.id) is False
        assert [e.id for e in store.expenses] == [expense.id]
        assert notifier.last.error_code == "remote_failure"

    async def test_delete_unknown_id_returns_false(self, store, backend):
        """Test that deleting a missing expense is a no-op."""
        assert await store.delete_expense("missing") is False
        assert ("delete", EXPENSES) not in backend.calls


class TestDerivedViews:
    """Tests for trend, breakdown and total views."""

    async def test_category_breakdown_percentages(self, store):
        """Test the 25/75 split."""
        await store.add_expense({"title": "Groceries", "amount": 100, "category": "Food"})
        await store.add_expense({"title": "March rent", "amount": 300, "category": "Rent"})

        shares = {c.category: c.percentage for c in store.category_breakdown}
        assert shares == {"Food": 25, "Rent": 75}

    async def test_monthly_trend_ignores_year(self, store):
        """Test that March of two different years share one bucket."""
        await store.add_expense({
            "title": "A", "amount": 10, "category": "Food", "date": "2023-03-05",
        })
        await store.add_expense({
            "title": "B", "amount": 15, "category": "Food", "date": "2024-03-20",
        })

        march = next(p for p in store.monthly_trend if p.month == "Mar")
        assert march.amount == Decimal("25")
        assert len(store.monthly_trend) == 12

    async def test_total_is_converted_to_display_currency(self, store):
        """Test that the dashboard total normalizes every currency."""
        await store.add_expense({"title": "Chai", "amount": "83.51", "category": "Food", "currency": "INR"})
        await store.add_expense({"title": "Coffee", "amount": 10, "category": "Food", "currency": "USD"})

        assert store.total_expense_amount == Decimal("11.00")
        assert store.summary.mixed_currency

    async def test_set_display_currency_recomputes_total(self, store):
        """Test switching the display currency."""
        await store.add_expense({"title": "Coffee", "amount": 10, "category": "Food", "currency": "USD"})

        store.set_display_currency("inr")

        assert store.display_currency == "INR"
        assert store.total_expense_amount == Decimal("835.10")

    async def test_group_name_for(self, store):
        """Test resolving an expense's group name."""
        await store.create_group({"name": "Flat", "budget": 10})
        expense = await store.add_expense({
            "title": "Rent", "amount": 5, "category": "Rent", "group": "Flat",
        })
        solo = await store.add_expense({"title": "Snack", "amount": 1, "category": "Food"})

        assert store.group_name_for(expense) == "Flat"
        assert store.group_name_for(solo) is None


class TestCategories:
    """Tests for the category list."""

    async def test_seed_categories_when_none_exist(self, store):
        """Test the default set when nothing exists remotely."""
        assert store.categories == ["Food", "Rent", "Travel", "Shopping", "Other"]

    async def test_add_category_is_idempotent(self, store, backend):
        """Test that adding the same name twice keeps one entry."""
        assert await store.add_category("Gym") is True
        assert await store.add_category("Gym") is True

        assert store.categories.count("Gym") == 1
        assert len(backend.rows(EXPENSE_CATEGORIES, name="Gym")) == 1

    async def test_add_category_is_case_sensitive(self, store):
        """Test that "gym" and "Gym" are different categories."""
        await store.add_category("Gym")
        await store.add_category("gym")

        assert "Gym" in store.categories
        assert "gym" in store.categories

    async def test_unique_violation_counts_as_success(self, store, backend, notifier):
        """Test that a duplicate insert is downgraded to success."""
        backend.fail(EXPENSE_CATEGORIES, "insert", UniqueViolationError("duplicate key"))

        assert await store.add_category("Gym") is True
        assert "Gym" in store.categories
        assert notifier.errors == []

    async def test_other_failure_is_reported(self, store, backend, notifier):
        """Test that any other insert failure leaves the list unchanged."""
        backend.fail(EXPENSE_CATEGORIES, "insert", RemoteFailureError("boom"))

        assert await store.add_category("Gym") is False
        assert "Gym" not in store.categories
        assert notifier.last.error_code == "remote_failure"

    async def test_remote_categories_replace_seed(self, store):
        """Test that once a real category exists the seed set is gone."""
        await store.add_category("Gym")
        await store.wait_idle()

        assert store.categories == ["Gym"]

    async def test_failed_fetch_falls_back_to_seed(self, store, backend, notifier):
        """Test the seed set after a failed category fetch."""
        await store.add_category("Gym")
        await store.wait_idle()
        backend.fail(EXPENSE_CATEGORIES, "select")

        await store.fetch_categories()

        assert store.categories == ["Food", "Rent", "Travel", "Shopping", "Other"]
        assert notifier.last.description == "Failed to fetch categories"


class TestReadFailures:
    """Tests for failed refetches."""

    async def test_failed_expense_fetch_keeps_cache(self, store, backend, notifier):
        """Test that a read failure leaves the cached list untouched."""
        await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
        await store.wait_idle()
        backend.fail(EXPENSES, "select")

        await store.fetch_expenses()

        assert [e.title for e in store.expenses] == ["Lunch"]
        assert notifier.last.description == "Failed to fetch expenses"

    async def test_failed_group_fetch_keeps_cache(self, store, backend):
        """Test that groups survive a failed refetch."""
        await store.create_group({"name": "Flat", "budget": 10})
        await store.wait_idle()
        backend.fail(GROUP_MEMBERS, "select")

        await store.fetch_groups()

        assert [g.name for g in store.groups] == ["Flat"]
        assert not store.groups_loading

    async def test_unusual_rows_do_not_sink_the_fetch(self, store, backend, notifier, make_expense_row):
        """Test that a blank title is kept and an unparseable row is skipped."""
        backend.seed(
            EXPENSES,
            make_expense_row(id="blank", title="", date="2024-03-10"),
            make_expense_row(id="bad-currency", currency="dollars", date="2024-03-11"),
            make_expense_row(id="good", title="Tea", date="2024-03-12"),
        )

        await store.fetch_expenses()

        assert [(e.id, e.title) for e in store.expenses] == [("good", "Tea"), ("blank", "")]
        assert notifier.errors == []


class TestChangeEvents:
    """Tests for refetching on backend change events."""

    async def test_event_triggers_refetch(self, store, backend, make_expense_row):
        """Test that an event makes the store reload from the backend."""
        row = backend.seed(EXPENSES, make_expense_row(id="remote", title="From elsewhere"))[0]

        assert backend.emit(EXPENSES, row) == 1
        await store.wait_idle()

        assert [e.id for e in store.expenses] == ["remote"]

    async def test_event_for_other_user_is_filtered(self, store, backend, make_expense_row):
        """Test that expense events for another user are not delivered."""
        row = backend.seed(EXPENSES, make_expense_row(id="theirs", user_id="bob-0002"))[0]

        assert backend.emit(EXPENSES, row) == 0
        await store.wait_idle()
        assert store.expenses == []

    async def test_remote_truth_replaces_local(self, store, backend):
        """Test that a refetch overwrites local edits with server rows."""
        expense = await store.add_expense({"title": "Lunch", "amount": 20, "category": "Food"})
        await store.wait_idle()
        backend.tables[EXPENSES][0]["title"] = "Edited elsewhere"

        backend.emit(EXPENSES)
        await store.wait_idle()

        assert store.expenses[0].id == expense.id
        assert store.expenses[0].title == "Edited elsewhere"
