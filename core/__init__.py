"""
Core package for NutriTrack session and profile handling.

Contains the SessionController, the ProfileSynchronizer and the
AuthManager facade used by the app screens. No Supabase imports here;
remote services are passed in.
"""

from core.auth_manager import AuthManager
from core.profile_sync import ProfileSynchronizer
from core.session_controller import SessionController

__all__ = ["AuthManager", "ProfileSynchronizer", "SessionController"]
