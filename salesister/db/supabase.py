"""Supabase client module for database operations.

Tables used by the pipeline:

- ``calls``: one row per finished call (transcript frozen at insert).
- ``actionables``: normalized tickets/deals extracted from a call.
- ``crm_sync_status``: one row per synced entity (call, actionable, contact).
- ``user_settings``: per-user extraction context and HubSpot credentials.
"""

import logging

from supabase import Client, create_client

from salesister.core.config import settings
from salesister.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Singleton Supabase client for backend operations."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create the Supabase client singleton.

        Returns:
            Initialized Supabase client.

        Raises:
            DatabaseError: If client initialization fails.
        """
        if cls._client is None:
            try:
                cls._client = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                logger.exception("Failed to initialize Supabase client")
                raise DatabaseError(f"Failed to initialize database connection: {e}") from e
        return cls._client

    @classmethod
    def reset_client(cls) -> None:
        """Reset the client singleton (useful for testing)."""
        cls._client = None


def get_supabase_client() -> Client:
    """Convenience accessor for the shared Supabase client."""
    return SupabaseClient.get_client()
