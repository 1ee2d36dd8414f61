"""
Supabase Backend Implementation

DESIGN DECISION: Supabase is the hosted backend because:
1. Auth, Postgres tables and realtime change feeds in one service
2. Row-level security keeps each user's rows private without extra code
3. The same project can sit behind a plain forwarding relay

TRADEOFFS:
- Realtime events are used only as "something changed" signals;
  their payloads are ignored and the caller refetches
- No multi-statement transactions from the client (we order writes carefully)

The implementation follows the abstract interface, so the containers
never touch the SDK directly.
"""

import asyncio
import inspect
from typing import Any, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_tracker.config import get_settings
from expense_tracker.models.profile import AuthSession, AuthUser
from expense_tracker.services.backend.interface import (
    Backend,
    NotFoundError,
    RemoteFailureError,
    SessionCallback,
    Subscription,
    TableWatch,
    UniqueViolationError,
)


logger = structlog.get_logger(__name__)

# Errors that a retry cannot fix
NON_RETRYABLE = (UniqueViolationError, NotFoundError)


def _wrap_api_error(error: APIError, action: str) -> RemoteFailureError:
    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error)
    if code == UniqueViolationError.SQLSTATE:
        return UniqueViolationError(f"Failed to {action}: {message}")
    return RemoteFailureError(f"Failed to {action}: {message}", remote_code=code)


def _to_session(session: Any) -> Optional[AuthSession]:
    if session is None or getattr(session, "user", None) is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        user=AuthUser(id=str(session.user.id), email=session.user.email),
    )


class SupabaseClient:
    """
    Low-level Supabase client wrapper.

    Handles lazy connection and provides retry logic for connecting.
    """

    def __init__(self):
        self._client: Optional[AsyncClient] = None
        self._settings = get_settings().supabase

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> AsyncClient:
        """Create the async client on first use."""
        if self._client is None:
            try:
                self._client = await acreate_client(
                    self._settings.url,
                    self._settings.anon_key,
                )
            except Exception as e:
                raise RemoteFailureError(f"Failed to connect to Supabase: {e}")
        return self._client

    @property
    def connected(self) -> AsyncClient:
        """The connected client; connect() must have been awaited."""
        if self._client is None:
            raise RemoteFailureError("Supabase client is not connected")
        return self._client

    @property
    def schema_name(self) -> str:
        return self._settings.schema_name


class SupabaseSubscription(Subscription):
    """A realtime channel owned by one container."""

    def __init__(self, client: AsyncClient, channel: Any):
        self._client = client
        self._channel = channel
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            logger.warning("realtime_channel_release_failed", error=str(e))


class SupabaseAuthListener(Subscription):
    """Handle for an auth state listener."""

    def __init__(self, subscription: Any):
        self._subscription = subscription
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._subscription.unsubscribe()


class SupabaseBackend(Backend):
    """
    Supabase implementation of the table and auth interfaces.

    Every table call is retried with exponential backoff; uniqueness
    violations and missing rows are returned immediately.
    """

    def __init__(
        self,
        client: Optional[SupabaseClient] = None,
        retry_attempts: Optional[int] = None,
    ):
        self._client = client or SupabaseClient()
        if retry_attempts is None:
            retry_attempts = get_settings().app.remote_retry_attempts
        self._retry_attempts = retry_attempts

    async def _execute(self, table: str, action: str, build) -> list[dict]:
        """
        Run one query built by ``build`` against ``table`` with retries.

        Uniqueness violations and missing rows are not retried.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_not_exception_type(NON_RETRYABLE),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        ):
            with attempt:
                client = await self._client.connect()
                try:
                    response = await build(client.table(table)).execute()
                except APIError as e:
                    raise _wrap_api_error(e, f"{action} {table}")
                except httpx.HTTPError as e:
                    raise RemoteFailureError(f"Failed to {action} {table}: {e}")
                return list(response.data or [])
        return []

    @staticmethod
    def _apply_filters(query, eq: Optional[dict], in_: Optional[dict] = None):
        for column, value in (eq or {}).items():
            query = query.eq(column, value)
        for column, values in (in_ or {}).items():
            query = query.in_(column, list(values))
        return query

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
        """Select rows from a table."""
        def build(query):
            query = self._apply_filters(query.select(columns), eq, in_)
            if order_by:
                query = query.order(order_by, desc=not ascending)
            return query

        return await self._execute(table, "select from", build)

    async def select_single(
        self,
        table: str,
        *,
        eq: dict[str, Any],
        columns: str = "*",
    ) -> dict:
        """Select exactly one row."""
        rows = await self.select(table, columns=columns, eq=eq)
        if not rows:
            raise NotFoundError(f"No row in {table} matching {eq}")
        if len(rows) > 1:
            raise RemoteFailureError(f"Multiple rows in {table} matching {eq}")
        return rows[0]

    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        """Insert rows and return them as stored."""
        return await self._execute(table, "insert into", lambda q: q.insert(rows))

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        eq: dict[str, Any],
    ) -> list[dict]:
        """Update matching rows."""
        return await self._execute(
            table,
            "update",
            lambda q: self._apply_filters(q.update(values), eq),
        )

    async def delete(self, table: str, *, eq: dict[str, Any]) -> list[dict]:
        """Delete matching rows."""
        return await self._execute(
            table,
            "delete from",
            lambda q: self._apply_filters(q.delete(), eq),
        )

    async def subscribe(self, channel: str, watches: list[TableWatch]) -> Subscription:
        """Open one realtime channel with a postgres_changes listener per watch."""
        client = await self._client.connect()
        realtime_channel = client.channel(channel)

        for watch in watches:
            filter_expr = None
            if watch.filter:
                column, value = next(iter(watch.filter.items()))
                filter_expr = f"{column}=eq.{value}"

            def _handler(_payload, _watch=watch):
                # Subscribers refetch; the payload is not used
                _watch.callback(_watch.table)

            realtime_channel.on_postgres_changes(
                event="*",
                schema=self._client.schema_name,
                table=watch.table,
                filter=filter_expr,
                callback=_handler,
            )

        try:
            await realtime_channel.subscribe()
        except Exception as e:
            raise RemoteFailureError(f"Failed to subscribe to {channel}: {e}")

        logger.info("realtime_subscribed", channel=channel, tables=[w.table for w in watches])
        return SupabaseSubscription(client, realtime_channel)

    # ------------------------------------------------------------------
    # AuthBackend
    # ------------------------------------------------------------------

    async def get_current_session(self) -> Optional[AuthSession]:
        client = await self._client.connect()
        try:
            return _to_session(await client.auth.get_session())
        except Exception as e:
            raise RemoteFailureError(f"Failed to read session: {e}")

    def on_session_change(self, callback: SessionCallback) -> Subscription:
        client = self._client.connected

        def _handler(_event, session):
            result = callback(_to_session(session))
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

        subscription = client.auth.on_auth_state_change(_handler)
        return SupabaseAuthListener(subscription)

    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: str,
        default_currency: str,
    ) -> Optional[AuthUser]:
        client = await self._client.connect()
        try:
            response = await client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {
                    "data": {
                        "full_name": display_name,
                        "default_currency": default_currency,
                    }
                },
            })
        except Exception as e:
            raise RemoteFailureError(str(e) or "An error occurred during sign up.")
        user = getattr(response, "user", None)
        return AuthUser(id=str(user.id), email=user.email) if user else None

    async def sign_in(self, email: str, password: str) -> AuthSession:
        client = await self._client.connect()
        try:
            response = await client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as e:
            raise RemoteFailureError(str(e) or "Invalid login credentials.")
        session = _to_session(getattr(response, "session", None))
        if session is None:
            raise RemoteFailureError("Invalid login credentials.")
        return session

    async def sign_out(self) -> None:
        client = await self._client.connect()
        try:
            await client.auth.sign_out()
        except Exception as e:
            raise RemoteFailureError(f"Failed to sign out: {e}")

    async def get_current_user_email(self) -> Optional[str]:
        client = await self._client.connect()
        try:
            response = await client.auth.get_user()
        except Exception as e:
            raise RemoteFailureError(f"Failed to read current user: {e}")
        user = getattr(response, "user", None) if response else None
        return user.email if user else None
