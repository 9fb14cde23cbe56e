"""
AuthManager — the surface screens talk to.

Wraps the SessionController and ProfileSynchronizer and exposes the
current user, current profile and loading flag together with the
register / login / logout / save_profile operations. Every operation
returns a result dict; nothing raises across this boundary.
"""

import logging
import math
import re
from typing import Any, Dict, Optional

import config
from core.calories import calculate_calorie_goal
from core.models import AuthSnapshot, Session
from core.profile_sync import ProfileSynchronizer
from core.session_controller import SessionController

logger = logging.getLogger(__name__)


# Leading number of a form answer, e.g. "70kg" -> "70", " 41.5 " -> "41.5"
_LEADING_NUMBER_RE = re.compile(r"\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))")


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_NUMBER_RE.match(str(value))
    return float(match.group(1)) if match else None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def build_onboarding_update(form: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn onboarding form answers into a profile update set.

    Numeric answers are coerced, the daily calorie goal is computed from
    them, and the optional health columns are only included when the
    user actually picked something.

    Args:
        form: Raw answers (age, weight, height, weight_goal, gender,
            activity_level, dietary_preferences, health_conditions, allergies).

    Returns:
        Field -> value mapping ready for save_profile().
    """
    age = _to_int(form.get("age"))
    weight = _to_float(form.get("weight"))
    height = _to_float(form.get("height"))
    gender = form.get("gender")
    activity_level = form.get("activity_level")

    update = {
        "age": age,
        "weight": weight,
        "height": height,
        "weight_goal": _to_float(form.get("weight_goal")),
        "gender": gender,
        "activity_level": activity_level,
        "dietary_preferences": list(form.get("dietary_preferences") or []),
        "daily_calorie_goal": calculate_calorie_goal(weight, height, age, gender, activity_level),
    }
    for field_name in sorted(config.PROFILE_OPTIONAL_FIELDS):
        values = form.get(field_name)
        if values:
            update[field_name] = list(values)
    return update


class AuthManager:
    """
    Session and profile facade.

    Usage:
        async with await AuthManager.from_config() as auth:
            await auth.login(email, password)
            await auth.save_profile({"age": 41})
    """

    def __init__(self, account_service, record_store, synchronizer: Optional[ProfileSynchronizer] = None) -> None:
        """
        Initialise the facade.

        Args:
            account_service: Remote account service.
            record_store: Remote record store holding the profiles table.
            synchronizer: Optional pre-built synchronizer (defaults to one
                over record_store using config settings).
        """
        self._sync = synchronizer or ProfileSynchronizer(record_store)
        self._controller = SessionController(account_service, self._sync)

    @classmethod
    async def from_config(cls, supabase_url: str = "", supabase_key: str = "") -> "AuthManager":
        """
        Build a manager backed by Supabase.

        Args:
            supabase_url: Supabase project URL (falls back to config).
            supabase_key: Supabase anon/public key (falls back to config).
        """
        from sync.supabase_client import create_supabase_services

        accounts, store = await create_supabase_services(supabase_url, supabase_key)
        return cls(accounts, store)

    async def __aenter__(self) -> "AuthManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Listen for session changes, then restore any stored session."""
        self._controller.subscribe_to_session_changes()
        await self._controller.bootstrap()

    async def close(self) -> None:
        await self._controller.close()

    async def wait_until_idle(self) -> None:
        await self._controller.wait_until_idle()

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> Optional[Session]:
        return self._controller.session

    @property
    def current_profile(self) -> Optional[Dict[str, Any]]:
        return self._controller.profile

    @property
    def is_loading(self) -> bool:
        return self._controller.is_loading

    @property
    def state(self) -> str:
        return self._controller.state

    def snapshot(self) -> AuthSnapshot:
        return self._controller.snapshot()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, display_name: str) -> Dict:
        return await self._controller.register(email, password, display_name)

    async def login(self, email: str, password: str) -> Dict:
        return await self._controller.login(email, password)

    async def logout(self) -> Dict:
        return await self._controller.logout()

    async def save_profile(self, updates: Dict[str, Any]) -> Dict:
        return await self._controller.save_profile(updates)

    async def refresh_profile(self) -> Dict:
        return await self._controller.refresh_profile()

    async def complete_onboarding(self, form: Dict[str, Any]) -> Dict:
        """
        Save onboarding answers, including the computed calorie goal.

        Returns:
            Result dict from save_profile().
        """
        update = build_onboarding_update(form)
        logger.info(f"Saving onboarding profile (calorie goal {update['daily_calorie_goal']})")
        return await self.save_profile(update)
