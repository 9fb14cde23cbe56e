"""
Tests for sync/supabase_client.py using a mocked Supabase AsyncClient.
"""

import json
import sys
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from postgrest.exceptions import APIError

import config
from core.models import Account, Session, StoreError
from sync.supabase_client import SupabaseAccountService, SupabaseRecordStore


def make_raw_session(user_id="u1", email="ann@example.com", metadata=None):
    user = SimpleNamespace(id=user_id, email=email, user_metadata=metadata or {"full_name": "Ann"})
    return SimpleNamespace(
        access_token="access-123",
        refresh_token="refresh-456",
        expires_at=1700000000,
        user=user,
    )


def make_query(data=None, error=None):
    """Chainable PostgREST query builder whose execute() returns data or raises."""
    query = MagicMock()
    for method in ("select", "eq", "limit", "update", "insert"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=SimpleNamespace(data=data))
    return query


class AccountServiceTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.auth_file = Path(self.tmpdir.name) / "auth.json"
        self.client = MagicMock()
        self.service = SupabaseAccountService(self.client, auth_file=self.auth_file)

    def tearDown(self):
        self.tmpdir.cleanup()


class TestAuthentication(AccountServiceTestCase):

    async def test_sign_in_returns_session_and_saves_tokens(self):
        raw = make_raw_session()
        self.client.auth.sign_in_with_password = AsyncMock(
            return_value=SimpleNamespace(session=raw, user=raw.user)
        )

        result = await self.service.authenticate("ann@example.com", "secret")

        self.assertTrue(result["success"])
        self.assertEqual(result["data"], Session("u1", "ann@example.com", {"full_name": "Ann"}))
        stored = json.loads(self.auth_file.read_text())
        self.assertEqual(stored["access_token"], "access-123")
        self.assertEqual(stored["refresh_token"], "refresh-456")

    async def test_sign_in_failure_is_a_result(self):
        self.client.auth.sign_in_with_password = AsyncMock(
            side_effect=Exception("Invalid login credentials")
        )
        result = await self.service.authenticate("bad@x.com", "wrong")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], config.ERROR_AUTH)
        self.assertIn("Invalid login credentials", result["error"])
        self.assertFalse(self.auth_file.exists())

    async def test_sign_up_passes_metadata(self):
        user = SimpleNamespace(id="u7", email="cat@example.com", user_metadata={})
        self.client.auth.sign_up = AsyncMock(return_value=SimpleNamespace(user=user, session=None))

        result = await self.service.create_account("cat@example.com", "pw", {"full_name": "Cat"})

        self.assertTrue(result["success"])
        self.assertEqual(result["data"], Account("u7", "cat@example.com", needs_confirmation=True))
        sent = self.client.auth.sign_up.call_args[0][0]
        self.assertEqual(sent["options"]["data"], {"full_name": "Cat"})

    async def test_sign_out_clears_tokens(self):
        self.auth_file.write_text(json.dumps({"access_token": "a", "refresh_token": "r"}))
        self.client.auth.sign_out = AsyncMock(return_value=None)

        result = await self.service.end_session()
        self.assertTrue(result["success"])
        self.assertFalse(self.auth_file.exists())

    async def test_failed_sign_out_keeps_tokens(self):
        self.auth_file.write_text(json.dumps({"access_token": "a", "refresh_token": "r"}))
        self.client.auth.sign_out = AsyncMock(side_effect=Exception("offline"))

        result = await self.service.end_session()
        self.assertFalse(result["success"])
        self.assertTrue(self.auth_file.exists())


class TestSessionRestore(AccountServiceTestCase):

    async def test_in_memory_session(self):
        self.client.auth.get_session = AsyncMock(return_value=make_raw_session())
        session = await self.service.current_session()
        self.assertEqual(session.user_id, "u1")

    async def test_restores_stored_tokens(self):
        self.auth_file.write_text(json.dumps({
            "access_token": "a", "refresh_token": "r", "email": "ann@example.com",
        }))
        self.client.auth.get_session = AsyncMock(return_value=None)
        self.client.auth.set_session = AsyncMock(
            return_value=SimpleNamespace(session=make_raw_session())
        )

        session = await self.service.current_session()

        self.client.auth.set_session.assert_awaited_once_with("a", "r")
        self.assertEqual(session.email, "ann@example.com")

    async def test_invalid_stored_tokens_are_removed(self):
        self.auth_file.write_text(json.dumps({"access_token": "a", "refresh_token": "r"}))
        self.client.auth.get_session = AsyncMock(return_value=None)
        self.client.auth.set_session = AsyncMock(side_effect=Exception("Invalid Refresh Token"))

        self.assertIsNone(await self.service.current_session())
        self.assertFalse(self.auth_file.exists())

    async def test_no_stored_tokens(self):
        self.client.auth.get_session = AsyncMock(return_value=None)
        self.assertIsNone(await self.service.current_session())


class TestSessionChangeListener(AccountServiceTestCase):

    def test_listener_receives_converted_sessions(self):
        unsubscribe = MagicMock()
        self.client.auth.on_auth_state_change.return_value = SimpleNamespace(unsubscribe=unsubscribe)
        received = []

        release = self.service.on_session_change(lambda event, session: received.append((event, session)))
        callback = self.client.auth.on_auth_state_change.call_args[0][0]
        callback("TOKEN_REFRESHED", make_raw_session())
        callback("SIGNED_OUT", None)

        self.assertEqual(received[0][0], "TOKEN_REFRESHED")
        self.assertEqual(received[0][1].user_id, "u1")
        self.assertEqual(received[1], ("SIGNED_OUT", None))
        self.assertTrue(self.auth_file.exists())

        release()
        unsubscribe.assert_called_once()


class TestRecordStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.client = MagicMock()
        self.store = SupabaseRecordStore(self.client)

    async def test_fetch_one_found(self):
        query = make_query(data=[{"id": "u1", "age": 30}])
        self.client.table.return_value = query

        row = await self.store.fetch_one("profiles", {"id": "u1"})

        self.assertEqual(row, {"id": "u1", "age": 30})
        self.client.table.assert_called_with("profiles")
        query.eq.assert_called_with("id", "u1")

    async def test_fetch_one_missing(self):
        self.client.table.return_value = make_query(data=[])
        self.assertIsNone(await self.store.fetch_one("profiles", {"id": "u1"}))

    async def test_fetch_one_raises_store_error(self):
        error = APIError({"code": "42501", "message": "permission denied", "details": None, "hint": None})
        self.client.table.return_value = make_query(error=error)
        with self.assertRaises(StoreError) as ctx:
            await self.store.fetch_one("profiles", {"id": "u1"})
        self.assertEqual(ctx.exception.failure.code, "42501")

    async def test_update_one_schema_drift(self):
        error = APIError({
            "code": "PGRST204",
            "message": "Could not find the 'allergies' column of 'profiles' in the schema cache",
            "details": None,
            "hint": None,
        })
        self.client.table.return_value = make_query(error=error)

        result = await self.store.update_one("profiles", {"id": "u1"}, {"allergies": []})

        self.assertFalse(result["success"])
        failure = result["error"]
        self.assertTrue(failure.is_schema_drift)
        self.assertEqual(failure.missing_column(), "allergies")

    async def test_update_one_no_matching_row(self):
        self.client.table.return_value = make_query(data=[])
        result = await self.store.update_one("profiles", {"id": "u1"}, {"age": 41})
        self.assertEqual(result["error_type"], config.ERROR_NOT_FOUND)

    async def test_insert_one(self):
        query = make_query(data=[{"id": "u1", "age": 41}])
        self.client.table.return_value = query

        result = await self.store.insert_one("profiles", {"id": "u1", "age": 41})

        self.assertTrue(result["success"])
        self.assertEqual(result["data"]["age"], 41)
        query.insert.assert_called_with({"id": "u1", "age": 41})

    async def test_transport_error(self):
        self.client.table.return_value = make_query(error=ConnectionError("connection reset"))
        result = await self.store.insert_one("profiles", {"id": "u1"})
        self.assertEqual(result["error"].code, "network")


class TestInstalledSupabase(unittest.TestCase):

    def test_async_client_factory_available(self):
        import supabase

        self.assertTrue(callable(getattr(supabase, "acreate_client", None)))


if __name__ == "__main__":
    unittest.main()
