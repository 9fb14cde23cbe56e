"""
ProfileSynchronizer — keeps the remote profiles row in step with
locally edited profile fields.

Writes use update-or-insert keyed by an existence check, and recover
from schema drift: when the store rejects a write because a column
doesn't exist yet (client shipped ahead of the migration), that column
is stripped and the write retried with what remains.
"""

import logging
from typing import Any, Dict, Optional, Set

import config
from core.models import Session, StoreError, StoreFailure, success_result, failure_result

logger = logging.getLogger(__name__)


class ProfileSynchronizer:
    """
    Update-or-insert writer for the profiles table.

    Does not hold the current profile itself; callers decide whether a
    returned record still belongs to the active session.
    """

    def __init__(
        self,
        store,
        table: str = config.PROFILES_TABLE,
        optional_fields_supported: Optional[bool] = config.PROFILE_OPTIONAL_FIELDS_SUPPORTED,
    ) -> None:
        """
        Initialise the synchronizer.

        Args:
            store: Record store exposing fetch_one / update_one / insert_one.
            table: Profiles table name.
            optional_fields_supported: Whether the store has the optional
                extension columns. None means unknown: attempt them and
                learn from the outcome.
        """
        self._store = store
        self.table = table
        self.optional_fields_supported = optional_fields_supported

    # ------------------------------------------------------------------
    # Field filtering
    # ------------------------------------------------------------------

    def filter_update_set(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Reduce caller input to columns the profiles table may accept.

        Args:
            updates: Raw field -> value mapping from the caller.

        Returns:
            New dict with allowed fields, plus optional extension fields
            unless they are known to be unsupported.
        """
        clean: Dict[str, Any] = {}
        dropped = []
        for key, value in updates.items():
            if key in config.PROFILE_ALLOWED_FIELDS:
                clean[key] = value
            elif key in config.PROFILE_OPTIONAL_FIELDS and self.optional_fields_supported is not False:
                clean[key] = value
            else:
                dropped.append(key)

        if dropped:
            logger.info(f"Filtered out profile fields (may need SQL migration): {sorted(dropped)}")
        return clean

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, user_id: str) -> Dict:
        """
        Fetch the profile row for a user.

        Returns:
            Result dict; data is the profile record. error_type is
            "not_found" when the user has no row yet.
        """
        try:
            record = await self._store.fetch_one(self.table, self._key(user_id))
        except StoreError as e:
            logger.error(f"Error fetching profile for {user_id}: {e.failure}")
            return failure_result(str(e.failure), config.ERROR_STORE)

        if record is None:
            return failure_result(f"No profile for user {user_id}", config.ERROR_NOT_FOUND)
        return success_result(record)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, session: Session, updates: Dict[str, Any]) -> Dict:
        """
        Write profile fields for the session's user.

        Each attempt re-checks existence and then updates or inserts.
        A schema drift failure naming a column still in the update set
        strips that column and retries; every retry therefore works on a
        strictly smaller set and the loop ends after at most len(fields)
        retries. Anything else is a permanent failure.

        Args:
            session: Session of the user whose row is written.
            updates: Field -> value mapping.

        Returns:
            Result dict; data is the stored record on success.
        """
        fields = self.filter_update_set(updates)
        if not fields:
            return failure_result("No profile fields to save", config.ERROR_STORE)

        stripped: Set[str] = set()
        while True:
            result = await self._write_once(session, fields)
            if result["success"]:
                self._note_optional_fields_written(fields)
                if stripped:
                    logger.info(f"Profile saved without unsupported columns: {sorted(stripped)}")
                return success_result(result["data"])

            failure = result["error"]
            column = failure.missing_column() if isinstance(failure, StoreFailure) else None
            if column is None or column in stripped or column not in fields:
                logger.error(f"Error updating profile for {session.user_id}: {failure}")
                return failure_result(str(failure), config.ERROR_STORE)

            logger.warning(f"Column '{column}' not found in schema, removing it and retrying")
            stripped.add(column)
            # An explicitly configured flag is left alone
            if column in config.PROFILE_OPTIONAL_FIELDS and self.optional_fields_supported is None:
                self.optional_fields_supported = False
            fields = {key: value for key, value in fields.items() if key != column}

            if not fields:
                logger.error(f"Every profile field was rejected by the store: {sorted(stripped)}")
                return failure_result(
                    f"Store rejected all profile fields: {', '.join(sorted(stripped))}",
                    config.ERROR_SCHEMA_DRIFT_EXHAUSTED,
                )

    async def _write_once(self, session: Session, fields: Dict[str, Any]) -> Dict:
        """One existence check followed by one update or insert."""
        key = self._key(session.user_id)
        try:
            existing = await self._store.fetch_one(self.table, key)
        except StoreError as e:
            return failure_result(e.failure, config.ERROR_STORE)

        if existing is not None:
            return await self._store.update_one(self.table, key, fields)

        row = {
            config.PROFILE_KEY_COLUMN: session.user_id,
            "full_name": session.display_name_fallback(),
            **fields,
        }
        return await self._store.insert_one(self.table, row)

    def _note_optional_fields_written(self, fields: Dict[str, Any]) -> None:
        """A successful write containing optional columns proves they exist."""
        if self.optional_fields_supported is None and config.PROFILE_OPTIONAL_FIELDS & fields.keys():
            self.optional_fields_supported = True
            logger.info("Optional profile columns confirmed by the store")

    @staticmethod
    def _key(user_id: str) -> Dict[str, str]:
        return {config.PROFILE_KEY_COLUMN: user_id}
