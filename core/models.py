"""
Data types shared by the session controller, profile synchronizer
and the remote service adapters.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import config

# "column 'bio'" / 'column "bio" of relation "profiles" does not exist'
_COLUMN_AFTER_WORD = re.compile(r"""column\s+['"](\w+)['"]""", re.IGNORECASE)
# PostgREST: "Could not find the 'bio' column of 'profiles' in the schema cache"
_COLUMN_BEFORE_WORD = re.compile(r"""['"](\w+)['"]\s+column\b""", re.IGNORECASE)


@dataclass(frozen=True)
class Session:
    """Authenticated principal issued by the account service."""

    user_id: str
    email: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def display_name_fallback(self) -> str:
        """
        Name used when a profile row has to be created for this user.

        Returns:
            metadata full_name, else the email local part, else the default.
        """
        name = (self.metadata or {}).get("full_name")
        if name:
            return name
        if self.email:
            local_part = self.email.split("@")[0]
            if local_part:
                return local_part
        return config.DEFAULT_DISPLAY_NAME


@dataclass(frozen=True)
class Account:
    """Handle for a newly created account."""

    user_id: str
    email: str = ""
    needs_confirmation: bool = False


@dataclass(frozen=True)
class StoreFailure:
    """A failed read or write against the record store."""

    code: str
    message: str
    details: Optional[str] = None

    @property
    def is_schema_drift(self) -> bool:
        """True if the store rejected the write over an unknown column."""
        return self.code in config.SCHEMA_DRIFT_CODES

    def missing_column(self) -> Optional[str]:
        """
        Extract the offending column name from a schema drift failure.

        Returns:
            The column name, or None if this isn't schema drift or the
            message carries no recognisable column identifier.
        """
        if not self.is_schema_drift:
            return None
        for text in (self.message, self.details):
            if not text:
                continue
            for pattern in (_COLUMN_AFTER_WORD, _COLUMN_BEFORE_WORD):
                match = pattern.search(text)
                if match:
                    return match.group(1)
        return None

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class StoreError(Exception):
    """Raised by record store reads that fail."""

    def __init__(self, failure: StoreFailure) -> None:
        super().__init__(str(failure))
        self.failure = failure


@dataclass(frozen=True)
class AuthSnapshot:
    """Consistent view of the session/profile pair handed to callers."""

    user: Optional[Session]
    profile: Optional[Dict[str, Any]]
    is_loading: bool
    state: str


def success_result(data: Any = None) -> Dict:
    """Build a success result dict."""
    return {"success": True, "data": data, "error": None, "error_type": None}


def failure_result(error: Any, error_type: str) -> Dict:
    """
    Build a failure result dict.

    Args:
        error: Human-readable message or a StoreFailure.
        error_type: One of the config.ERROR_* values.
    """
    return {"success": False, "data": None, "error": error, "error_type": error_type}
