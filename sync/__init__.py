"""
Sync package — Supabase authentication and profile storage.

Provides the account service and record store used by core.AuthManager.
"""

from sync.supabase_client import (
    SupabaseAccountService,
    SupabaseRecordStore,
    create_supabase_services,
)

__all__ = ["SupabaseAccountService", "SupabaseRecordStore", "create_supabase_services"]
