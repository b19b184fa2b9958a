"""Database access for Salesister."""

from salesister.db.call_store import CallStore, get_call_store
from salesister.db.supabase import SupabaseClient, get_supabase_client
from salesister.db.sync_status_store import SyncStatusStore, get_sync_status_store

__all__ = [
    "CallStore",
    "SupabaseClient",
    "SyncStatusStore",
    "get_call_store",
    "get_supabase_client",
    "get_sync_status_store",
]
