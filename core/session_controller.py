"""
SessionController — owns the current session and profile.

The account service reports session changes (sign in, token refresh,
sign out, expiry) through a listener. Notifications are queued and
handled one at a time in the order they were emitted. Each handled
session kicks off a profile load tagged with its user_id; a load whose
user is no longer current when it finishes is discarded.

State:
    unauthenticated -> authenticating -> profile_loading -> ready
    ready / profile_loading -> unauthenticated on logout or expiry
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple

import config
from core.models import AuthSnapshot, Session, failure_result

logger = logging.getLogger(__name__)


class SessionController:
    """
    Single writer for the current session / profile pair.

    Use as an async context manager (or call subscribe_to_session_changes()
    and close() yourself) so the session listener is always released.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self, account_service, synchronizer) -> None:
        """
        Initialise the controller.

        Args:
            account_service: Remote account service (create_account,
                authenticate, end_session, current_session, on_session_change).
            synchronizer: ProfileSynchronizer used for profile reads/writes.
        """
        self._accounts = account_service
        self._sync = synchronizer

        self._session: Optional[Session] = None
        self._profile: Optional[Dict[str, Any]] = None
        self._is_loading: bool = True
        self._state: str = config.STATE_UNAUTHENTICATED
        self._auth_calls_in_flight: int = 0

        # Session change notifications, drained in order by one consumer task
        self._queue: "asyncio.Queue[Tuple[str, Optional[Session]]]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._consumer: Optional[asyncio.Task] = None
        self._load_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "SessionController":
        self.subscribe_to_session_changes()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def profile(self) -> Optional[Dict[str, Any]]:
        return self._profile

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def state(self) -> str:
        return self._state

    def snapshot(self) -> AuthSnapshot:
        """Current session, profile, loading flag and state as one value."""
        return AuthSnapshot(
            user=self._session,
            profile=self._profile,
            is_loading=self._is_loading,
            state=self._state,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def bootstrap(self) -> None:
        """
        Restore a previously issued session, if any, and load its profile.

        is_loading stays True until the profile load settles.
        """
        session = await self._accounts.current_session()
        if session is None:
            logger.info("No stored session found")
            # A sign-in notification may have landed while we were waiting
            if self._session is None:
                self._clear()
            return

        logger.info(f"Restored session for {session.email or session.user_id}")
        self._apply_session(session)
        await self._load_profile(session.user_id)

    def subscribe_to_session_changes(self) -> None:
        """Register the session listener and start the notification consumer."""
        if self._unsubscribe is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._consumer = asyncio.create_task(self._consume_notifications())
        self._unsubscribe = self._accounts.on_session_change(self._on_session_change)
        logger.debug("Subscribed to session changes")

    async def close(self) -> None:
        """Release the session listener and stop background work."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("Unsubscribed from session changes")

        tasks = list(self._load_tasks)
        if self._consumer is not None:
            tasks.append(self._consumer)
            self._consumer = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_until_idle(self) -> None:
        """Wait for queued notifications and in-flight profile loads to finish."""
        await self._queue.join()
        while self._load_tasks:
            await asyncio.gather(*list(self._load_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Account operations
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, display_name: str) -> Dict:
        """
        Create an account. The display name travels as account metadata.

        The resulting session (if any) arrives through the listener.

        Returns:
            Result dict; data is the created Account.
        """
        self._begin_auth_call()
        try:
            result = await self._accounts.create_account(
                email, password, {"full_name": display_name}
            )
        finally:
            self._end_auth_call()

        if not result["success"]:
            logger.warning(f"Sign up failed for {email}: {result['error']}")
        return result

    async def login(self, email: str, password: str) -> Dict:
        """
        Authenticate with email and password.

        Returns:
            Result dict; data is the issued Session.
        """
        self._begin_auth_call()
        try:
            result = await self._accounts.authenticate(email, password)
        finally:
            self._end_auth_call()

        if not result["success"]:
            logger.warning(f"Sign in failed for {email}: {result['error']}")
        return result

    async def logout(self) -> Dict:
        """
        End the session.

        Clears local state on success even if the service never sends a
        sign-out notification. The clear is queued behind notifications
        already received, so a pending sign-in can't undo it. A failed
        sign-out leaves the user logged in.
        """
        result = await self._accounts.end_session()
        if not result["success"]:
            logger.error(f"Error signing out: {result['error']}")
            return result

        if self._consumer is not None:
            self._queue.put_nowait(("SIGNED_OUT", None))
            await self._queue.join()
        else:
            self._clear()
        logger.info("Signed out")
        return result

    # ------------------------------------------------------------------
    # Profile operations
    # ------------------------------------------------------------------

    async def save_profile(self, updates: Dict[str, Any]) -> Dict:
        """
        Write profile fields for the current user.

        Returns:
            Result dict; error_type "no_session" when nobody is logged in.
        """
        session = self._session
        if session is None:
            return failure_result("No user logged in", config.ERROR_NO_SESSION)

        result = await self._sync.save(session, updates)
        if result["success"]:
            if self._is_current(session.user_id):
                self._profile = result["data"]
            else:
                logger.info(f"Session changed during save; not applying profile for {session.user_id}")
        return result

    async def refresh_profile(self) -> Dict:
        """Re-fetch the current user's profile."""
        session = self._session
        if session is None:
            return failure_result("No user logged in", config.ERROR_NO_SESSION)
        return await self._load_profile(session.user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_session_change(self, event: str, session: Optional[Session]) -> None:
        """Listener handed to the account service; may be called from any thread."""
        item = (event, session)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._queue.put_nowait(item)
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def _consume_notifications(self) -> None:
        while True:
            event, session = await self._queue.get()
            try:
                self._handle_notification(event, session)
            finally:
                self._queue.task_done()

    def _handle_notification(self, event: str, session: Optional[Session]) -> None:
        logger.debug(f"Session change: {event}")
        if session is None:
            if self._session is not None:
                logger.info(f"Session ended ({event})")
            self._clear()
            return

        self._apply_session(session)
        task = asyncio.create_task(self._load_profile(session.user_id))
        self._load_tasks.add(task)
        task.add_done_callback(self._load_tasks.discard)

    def _apply_session(self, session: Session) -> None:
        previous = self._session
        self._session = session
        if previous is None or previous.user_id != session.user_id:
            self._profile = None
            self._is_loading = True
            self._state = config.STATE_PROFILE_LOADING

    async def _load_profile(self, user_id: str) -> Dict:
        """
        Load the profile for user_id and apply it if that user is still current.

        Failures are logged; is_loading is cleared either way.
        """
        try:
            result = await self._sync.load(user_id)
        except Exception as e:
            logger.exception(f"Error fetching profile: {e}")
            result = failure_result(str(e), config.ERROR_STORE)

        if not self._is_current(user_id):
            logger.info(f"Discarding profile load for {user_id}; session changed")
            return result

        if result["success"]:
            self._profile = result["data"]
        elif result["error_type"] == config.ERROR_NOT_FOUND:
            self._profile = None
            logger.info(f"No profile row yet for {user_id}")
        else:
            logger.error(f"Error fetching profile: {result['error']}")

        # Profile is final before loading clears
        self._is_loading = False
        self._state = config.STATE_READY
        return result

    def _is_current(self, user_id: str) -> bool:
        return self._session is not None and self._session.user_id == user_id

    def _clear(self) -> None:
        self._session = None
        self._profile = None
        self._is_loading = False
        self._state = (
            config.STATE_AUTHENTICATING if self._auth_calls_in_flight else config.STATE_UNAUTHENTICATED
        )

    def _begin_auth_call(self) -> None:
        self._auth_calls_in_flight += 1
        if self._state == config.STATE_UNAUTHENTICATED:
            self._state = config.STATE_AUTHENTICATING

    def _end_auth_call(self) -> None:
        self._auth_calls_in_flight -= 1
        if not self._auth_calls_in_flight and self._state == config.STATE_AUTHENTICATING:
            self._state = config.STATE_UNAUTHENTICATED
