"""Configuration settings for NutriTrack."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (stored auth tokens).

    For development: BASE_DIR/data
    For bundled apps: A dedicated folder in the user's home directory
                      so the stored session survives updates.

    Returns:
        Path to the user data directory.
    """
    if not is_bundled():
        return Path(__file__).parent / "data"

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/NutriTrack
        return Path.home() / "Library" / "Application Support" / "NutriTrack"
    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "NutriTrack"
        return Path.home() / "AppData" / "Roaming" / "NutriTrack"
    # Linux: ~/.local/share/NutriTrack
    return Path.home() / ".local" / "share" / "NutriTrack"


def _parse_optional_fields_flag(value: str):
    """
    Parse the PROFILE_OPTIONAL_FIELDS setting.

    Args:
        value: "true", "false" or "auto" (case-insensitive).

    Returns:
        True / False when explicitly configured, None for "auto"
        (learn from the first write that touches those columns).
    """
    value = (value or "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return None


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# User data directory (stored auth session)
USER_DATA_DIR = get_user_data_dir()
AUTH_FILE = USER_DATA_DIR / "auth.json"

# Supabase Configuration (auth + profiles table)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Profiles table
PROFILES_TABLE = "profiles"
PROFILE_KEY_COLUMN = "id"

# Columns the client knows the profiles table has
PROFILE_ALLOWED_FIELDS = frozenset({
    "age",
    "gender",
    "weight",
    "height",
    "weight_goal",
    "activity_level",
    "dietary_preferences",
    "daily_calorie_goal",
    "full_name",
    "avatar_url",
    "bio",
})

# Columns added by a later migration; may be missing server-side
PROFILE_OPTIONAL_FIELDS = frozenset({
    "health_conditions",
    "allergies",
})

# "auto" (default) learns support from the first write that includes them
PROFILE_OPTIONAL_FIELDS_SUPPORTED = _parse_optional_fields_flag(
    os.getenv("PROFILE_OPTIONAL_FIELDS", "auto")
)

# Store error codes meaning "this column does not exist"
# PGRST204: PostgREST schema cache miss, 42703: Postgres undefined_column
SCHEMA_DRIFT_CODES = frozenset({"PGRST204", "42703"})

# Name used for new profile rows when the session carries none
DEFAULT_DISPLAY_NAME = "User"

# Calorie goal (Mifflin-St Jeor)
DEFAULT_CALORIE_GOAL = 2000
DEFAULT_ACTIVITY_MULTIPLIER = 1.5
ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}

# Session states
STATE_UNAUTHENTICATED = "unauthenticated"
STATE_AUTHENTICATING = "authenticating"
STATE_PROFILE_LOADING = "profile_loading"
STATE_READY = "ready"

# Failure types carried in result dicts
ERROR_AUTH = "auth"
ERROR_NO_SESSION = "no_session"
ERROR_STORE = "store"
ERROR_SCHEMA_DRIFT_EXHAUSTED = "schema_drift_exhausted"
ERROR_NOT_FOUND = "not_found"
