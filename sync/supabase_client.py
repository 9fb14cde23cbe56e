"""
Supabase-backed account service and record store.

Handles:
- Email/password sign up, sign in and sign out
- Auth token storage on disk and session restore at start-up
- Session change notifications
- Single-row reads and writes against PostgREST tables

All file paths use config.AUTH_FILE for cross-platform support.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from postgrest.exceptions import APIError

import config
from core.models import (
    Account,
    Session,
    StoreError,
    StoreFailure,
    failure_result,
    success_result,
)

logger = logging.getLogger(__name__)

# Events after which the stored tokens are stale and must be rewritten
_TOKEN_EVENTS = ("SIGNED_IN", "TOKEN_REFRESHED", "USER_UPDATED", "INITIAL_SESSION")


def _to_session(raw_session) -> Optional[Session]:
    """Convert a Supabase auth session into our Session."""
    if raw_session is None or raw_session.user is None:
        return None
    user = raw_session.user
    return Session(
        user_id=user.id,
        email=user.email or "",
        metadata=dict(user.user_metadata or {}),
    )


def _to_store_failure(error: Exception) -> StoreFailure:
    """Map a PostgREST / transport exception onto a StoreFailure."""
    if isinstance(error, APIError):
        return StoreFailure(
            code=str(error.code or ""),
            message=error.message or str(error),
            details=error.details,
        )
    return StoreFailure(code="network", message=str(error))


class SupabaseAccountService:
    """
    Supabase auth wrapper.

    Persists tokens to config.AUTH_FILE so a session survives restarts.
    """

    def __init__(self, client, auth_file: Optional[Path] = None) -> None:
        """
        Args:
            client: supabase AsyncClient.
            auth_file: Where tokens are stored (falls back to config).
        """
        self._client = client
        self.auth_file: Path = auth_file or config.AUTH_FILE

    # ------------------------------------------------------------------
    # Auth token persistence
    # ------------------------------------------------------------------

    def _save_tokens(self, raw_session) -> None:
        """
        Save auth tokens to local storage.

        Args:
            raw_session: Supabase auth session object.
        """
        try:
            self.auth_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "access_token": raw_session.access_token,
                "refresh_token": raw_session.refresh_token,
                "user_id": raw_session.user.id,
                "email": raw_session.user.email,
                "expires_at": raw_session.expires_at,
            }
            self.auth_file.write_text(json.dumps(data, indent=2))
            logger.debug(f"Auth session saved for {raw_session.user.email}")
        except Exception as e:
            logger.warning(f"Failed to save auth session: {e}")

    def _clear_tokens(self) -> None:
        if self.auth_file.exists():
            try:
                self.auth_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove stored auth session: {e}")

    async def _restore_stored_session(self):
        """Load stored tokens and hand them back to the auth client."""
        if not self.auth_file.exists():
            return None
        try:
            data = json.loads(self.auth_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read stored session: {e}")
            return None

        access_token = data.get("access_token", "")
        refresh_token = data.get("refresh_token", "")
        if not access_token or not refresh_token:
            return None

        try:
            response = await self._client.auth.set_session(access_token, refresh_token)
        except Exception as e:
            logger.warning(f"Stored session for {data.get('email', 'unknown')} is no longer valid: {e}")
            self._clear_tokens()
            return None

        logger.info(f"Loaded stored session for {data.get('email', 'unknown')}")
        return response.session

    # ------------------------------------------------------------------
    # Account service
    # ------------------------------------------------------------------

    async def create_account(self, email: str, password: str, metadata: Dict[str, Any]) -> Dict:
        """
        Sign up with email and password.

        Args:
            metadata: Stored as user metadata on the auth user, not the profile.

        Returns:
            Result dict; data is an Account.
        """
        try:
            response = await self._client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata},
            })
        except Exception as e:
            return failure_result(str(e), config.ERROR_AUTH)

        if response.session is not None:
            self._save_tokens(response.session)
        user = response.user
        return success_result(Account(
            user_id=user.id if user else "",
            email=(user.email if user else email) or email,
            needs_confirmation=response.session is None,
        ))

    async def authenticate(self, email: str, password: str) -> Dict:
        """
        Sign in with email and password.

        Returns:
            Result dict; data is the issued Session.
        """
        try:
            response = await self._client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as e:
            return failure_result(str(e), config.ERROR_AUTH)

        self._save_tokens(response.session)
        return success_result(_to_session(response.session))

    async def end_session(self) -> Dict:
        """Sign out and clear stored tokens."""
        try:
            await self._client.auth.sign_out()
        except Exception as e:
            return failure_result(str(e), config.ERROR_AUTH)

        self._clear_tokens()
        logger.info("Logged out and cleared local tokens")
        return success_result()

    async def current_session(self) -> Optional[Session]:
        """
        Return the active session, restoring stored tokens if needed.

        Failures are logged and reported as "no session".
        """
        try:
            raw_session = await self._client.auth.get_session()
            if raw_session is None:
                raw_session = await self._restore_stored_session()
        except Exception as e:
            logger.warning(f"Failed to read current session: {e}")
            return None
        return _to_session(raw_session)

    def on_session_change(self, listener: Callable[[str, Optional[Session]], None]) -> Callable[[], None]:
        """
        Register a session change listener.

        Args:
            listener: Called with (event name, Session or None).

        Returns:
            Callable that removes the listener.
        """
        def _callback(event, raw_session) -> None:
            event_name = getattr(event, "value", event)
            if raw_session is not None and event_name in _TOKEN_EVENTS:
                self._save_tokens(raw_session)
            listener(event_name, _to_session(raw_session))

        subscription = self._client.auth.on_auth_state_change(_callback)
        return subscription.unsubscribe


class SupabaseRecordStore:
    """Single-row reads and writes on PostgREST tables."""

    def __init__(self, client) -> None:
        """
        Args:
            client: supabase AsyncClient.
        """
        self._client = client

    def _filtered(self, query, key: Dict[str, Any]):
        for column, value in key.items():
            query = query.eq(column, value)
        return query

    async def fetch_one(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Fetch the row matching key.

        Returns:
            The row, or None when no row matches.

        Raises:
            StoreError: If the query fails.
        """
        try:
            query = self._filtered(self._client.table(table).select("*"), key)
            response = await query.limit(1).execute()
        except Exception as e:
            raise StoreError(_to_store_failure(e)) from e
        return response.data[0] if response.data else None

    async def update_one(self, table: str, key: Dict[str, Any], fields: Dict[str, Any]) -> Dict:
        """
        Update the row matching key.

        Returns:
            Result dict; data is the updated row, error a StoreFailure.
        """
        try:
            query = self._filtered(self._client.table(table).update(fields), key)
            response = await query.execute()
        except Exception as e:
            return failure_result(_to_store_failure(e), config.ERROR_STORE)

        if not response.data:
            return failure_result(
                StoreFailure(code=config.ERROR_NOT_FOUND, message=f"No {table} row matched {key}"),
                config.ERROR_NOT_FOUND,
            )
        return success_result(response.data[0])

    async def insert_one(self, table: str, fields: Dict[str, Any]) -> Dict:
        """
        Insert one row.

        Returns:
            Result dict; data is the inserted row, error a StoreFailure.
        """
        try:
            response = await self._client.table(table).insert(fields).execute()
        except Exception as e:
            return failure_result(_to_store_failure(e), config.ERROR_STORE)

        if not response.data:
            return failure_result(
                StoreFailure(code="empty", message=f"Insert into {table} returned no row"),
                config.ERROR_STORE,
            )
        return success_result(response.data[0])


async def create_supabase_services(
    supabase_url: str = "", supabase_key: str = ""
) -> Tuple[SupabaseAccountService, SupabaseRecordStore]:
    """
    Create the Supabase client and both service wrappers.

    Args:
        supabase_url: Supabase project URL (falls back to config).
        supabase_key: Supabase anon/public key (falls back to config).

    Raises:
        ValueError: If no credentials are configured.
    """
    from supabase import acreate_client

    url = supabase_url or config.SUPABASE_URL
    key = supabase_key or config.SUPABASE_ANON_KEY
    if not url or not key:
        raise ValueError("Supabase credentials not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")

    client = await acreate_client(url, key)
    logger.info("Supabase client initialised")
    return SupabaseAccountService(client), SupabaseRecordStore(client)
