"""
Shared fixtures.

Every test runs against the InMemoryBackend; no real API calls.
"""

import pytest

from expense_tracker.config import AppSettings, get_settings
from expense_tracker.notifications import Notifier
from expense_tracker.services.backend import InMemoryBackend
from expense_tracker.state import ExpenseStore


ENV_VARS = (
    "DEFAULT_CURRENCY",
    "DEFAULT_CATEGORIES",
    "NOTIFICATION_HISTORY_SIZE",
    "REMOTE_RETRY_ATTEMPTS",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SCHEMA_NAME",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate tests from the host environment and the settings cache."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return AppSettings(_env_file=None)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def notifier():
    return Notifier(history_size=100)


@pytest.fixture
def alice(backend):
    return backend.register_user(
        "alice@example.com",
        user_id="alice-0001",
        full_name="Alice Smith",
        default_currency="USD",
    )


@pytest.fixture
def bob(backend):
    return backend.register_user(
        "bob@example.com",
        user_id="bob-0002",
        full_name="Bob Jones",
    )


@pytest.fixture
def make_expense_row():
    """Factory for ``expenses`` table rows."""
    def _make(**overrides):
        row = {
            "title": "Lunch",
            "amount": "20",
            "date": "2024-03-15",
            "category": "Food",
            "currency": "USD",
            "user_id": "alice-0001",
            "group_id": None,
        }
        row.update(overrides)
        return row
    return _make


@pytest.fixture
async def store(backend, alice, notifier, settings):
    """An opened ExpenseStore for Alice, shown in USD."""
    expense_store = ExpenseStore(
        backend,
        alice,
        notifier,
        display_currency="USD",
        settings=settings,
    )
    await expense_store.open()
    yield expense_store
    await expense_store.close()
