"""
Auth State Container

Holds the session, the user and their profile, and owns the
ExpenseStore for whoever is signed in.

DESIGN DECISION: Session changes are the only place an ExpenseStore is
created or closed. A sign-in (or a pushed session for a different user)
closes the previous store before a fresh one is opened, so no state
survives from one user to the next.
"""

import asyncio
from typing import Optional

import structlog
from pydantic import ValidationError

from expense_tracker.config import AppSettings, get_settings
from expense_tracker.errors import (
    AuthRequiredError,
    ExpenseTrackerError,
    NotFoundError,
    ValidationFailureError,
)
from expense_tracker.models import (
    DEFAULT_CATEGORIES,
    AuthSession,
    AuthUser,
    DisplayName,
    Profile,
    ProfileUpdate,
    resolve_display_name,
)
from expense_tracker.models.expense import normalize_currency_code
from expense_tracker.notifications import Notifier
from expense_tracker.services.backend import PROFILES, Backend, Subscription
from expense_tracker.state.expense_store import ExpenseStore
from expense_tracker.validation import is_valid_email, normalize_email, parse_input


logger = structlog.get_logger(__name__)

REPORTABLE = (ExpenseTrackerError, ValidationError)


class AuthStore:
    """
    Session, user and profile for the presentation layer.

    Usage:
        auth = AuthStore(backend, notifier)
        await auth.start()
        await auth.sign_in("me@example.com", "secret")
        await auth.expenses.add_expense(...)
    """

    def __init__(
        self,
        backend: Backend,
        notifier: Optional[Notifier] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._backend = backend
        self._notifier = notifier or Notifier()
        self._settings = settings or get_settings().app

        self._session: Optional[AuthSession] = None
        self._profile: Optional[Profile] = None
        self._store: Optional[ExpenseStore] = None
        self._listener: Optional[Subscription] = None
        self._loading = True
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Pick up an existing session and listen for session changes."""
        try:
            session = await self._backend.get_current_session()
        except REPORTABLE as e:
            self._report("Unable to restore session.", e)
            session = None

        try:
            self._listener = self._backend.on_session_change(self._apply_session)
        except REPORTABLE as e:
            self._report("Unable to listen for session changes.", e)
        await self._apply_session(session)
        self._loading = False

    async def close(self) -> None:
        """Stop listening and close the current ExpenseStore."""
        if self._listener is not None:
            await self._listener.close()
            self._listener = None
        async with self._lock:
            if self._store is not None:
                await self._store.close()
                self._store = None
            self._session = None
            self._profile = None

    async def _apply_session(self, session: Optional[AuthSession]) -> None:
        async with self._lock:
            previous = self._session.user.id if self._session else None
            self._session = session

            if session is not None and session.user.id == previous and self._store is not None:
                return

            if self._store is not None:
                await self._store.close()
                self._store = None
            self._profile = None

            if session is None:
                logger.info("session_cleared", previous_user_id=previous)
                return

            logger.info("session_started", user_id=session.user.id)
            self._profile = await self._fetch_profile(session.user)
            currency = (
                self._profile.default_currency
                if self._profile
                else self._settings.default_currency
            )
            store = ExpenseStore(
                self._backend,
                session.user,
                self._notifier,
                display_currency=currency,
                settings=self._settings,
            )
            self._store = store
            await store.open()

    async def _fetch_profile(self, user: AuthUser) -> Optional[Profile]:
        try:
            row = await self._backend.select_single(PROFILES, eq={"id": user.id})
            return Profile.from_row(row)
        except NotFoundError:
            logger.info("profile_missing", user_id=user.id)
            return None
        except REPORTABLE as e:
            self._report("Unable to load user profile.", e)
            return None

    def _report(self, description: str, error: Exception) -> None:
        if isinstance(error, ValidationError):
            error = ValidationFailureError(str(error))
        logger.warning(
            "auth_operation_failed",
            description=description,
            error_code=error.code,
            error=str(error),
        )
        self._notifier.error(description, error)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        default_currency: Optional[str] = None,
    ) -> bool:
        """
        Create an account. Does not sign in.

        The display name defaults to the part of the email before "@".
        """
        self._loading = True
        try:
            email = normalize_email(email)
            if not is_valid_email(email):
                raise ValidationFailureError("Please enter a valid email address")
            try:
                currency = normalize_currency_code(
                    default_currency or self._settings.default_currency
                )
            except ValueError as e:
                raise ValidationFailureError(str(e))
            name = (display_name or "").strip() or email.split("@")[0]
            await self._backend.sign_up(email, password, name, currency)
        except REPORTABLE as e:
            self._report(str(e) or "An error occurred during sign up.", e)
            return False
        finally:
            self._loading = False

        self._notifier.success(
            "Sign up successful!",
            "You can now sign in with your new account.",
        )
        return True

    async def sign_in(self, email: str, password: str) -> bool:
        self._loading = True
        try:
            session = await self._backend.sign_in(normalize_email(email), password)
            await self._apply_session(session)
        except REPORTABLE as e:
            self._report(str(e) or "Invalid login credentials.", e)
            return False
        finally:
            self._loading = False

        self._notifier.success("Welcome back!", "You've successfully signed in.")
        return True

    async def sign_out(self) -> bool:
        self._loading = True
        try:
            await self._backend.sign_out()
            await self._apply_session(None)
        except REPORTABLE as e:
            self._report("An error occurred while signing out.", e)
            return False
        finally:
            self._loading = False

        self._notifier.success("Signed out successfully")
        return True

    async def update_profile(self, changes: ProfileUpdate | dict) -> bool:
        """
        Update the signed-in user's profile.

        A new default currency also becomes the display currency of the
        live ExpenseStore.
        """
        self._loading = True
        try:
            if self.user is None:
                raise AuthRequiredError("No user logged in")
            changes = parse_input(ProfileUpdate, changes)
            values = changes.model_dump(exclude_unset=True)
            if values.get("default_currency") is None:
                values.pop("default_currency", None)
            if values:
                await self._backend.update(PROFILES, values, eq={"id": self.user.id})
        except REPORTABLE as e:
            self._report("Failed to update profile.", e)
            return False
        finally:
            self._loading = False

        base = self._profile or Profile(id=self.user.id)
        self._profile = base.model_copy(update=values)
        if "default_currency" in values and self._store is not None:
            self._store.set_display_currency(values["default_currency"])

        logger.info("profile_updated", user_id=self.user.id, fields=sorted(values))
        self._notifier.success("Profile updated successfully")
        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def user(self) -> Optional[AuthUser]:
        return self._session.user if self._session else None

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def display_name(self) -> DisplayName:
        return resolve_display_name(self._profile, self.user.id if self.user else None)

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def expenses(self) -> Optional[ExpenseStore]:
        """The ExpenseStore of the signed-in user, or None."""
        return self._store

    @property
    def categories(self) -> list[str]:
        if self._store is None:
            return self._settings.default_categories_list or list(DEFAULT_CATEGORIES)
        return self._store.categories
