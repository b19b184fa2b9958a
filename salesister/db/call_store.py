"""Persistence for calls, actionables and user settings."""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from salesister.core.exceptions import CallNotFoundError, DatabaseError
from salesister.db.supabase import SupabaseClient
from salesister.models.call import (
    MAX_PROCESSING_ATTEMPTS,
    Actionable,
    ActionableType,
    Call,
    ProcessingStatus,
    UserSettings,
)

logger = logging.getLogger(__name__)

CALLS_TABLE = "calls"
ACTIONABLES_TABLE = "actionables"
USER_SETTINGS_TABLE = "user_settings"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CallStore:
    """Supabase-backed store for the ``calls``, ``actionables`` and
    ``user_settings`` tables.

    Args:
        client: Supabase client; defaults to the shared singleton.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        client: Any = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._clock = clock

    def _get_supabase_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            return SupabaseClient.get_client()
        except Exception as e:
            raise DatabaseError(f"Failed to get Supabase client: {e}") from e

    # Calls

    async def create_call(
        self,
        user_id: str,
        title: str,
        transcription: str,
        participants: str = "[]",
        duration: float | None = None,
        recording_url: str | None = None,
    ) -> Call:
        """Insert a new, unprocessed call.

        Raises:
            DatabaseError: If the insert fails.
        """
        call = Call(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            transcription=transcription,
            participants=participants,
            duration=duration,
            recording_url=recording_url,
            created_at=self._clock(),
        )
        try:
            client = self._get_supabase_client()
            response = client.table(CALLS_TABLE).insert(call.to_dict()).execute()
            if not response.data:
                raise DatabaseError("Failed to create call: no data returned")
            logger.info("Call created", extra={"call_id": call.id, "user_id": user_id})
            return Call.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to create call")
            raise DatabaseError(f"Failed to create call: {e}") from e

    async def get_call(self, call_id: str) -> Call:
        """Fetch a call.

        Raises:
            CallNotFoundError: If no call has this id.
            DatabaseError: If the query fails.
        """
        try:
            client = self._get_supabase_client()
            response = client.table(CALLS_TABLE).select("*").eq("id", call_id).limit(1).execute()
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to get call")
            raise DatabaseError(f"Failed to get call: {e}") from e
        if not response.data:
            raise CallNotFoundError(call_id)
        return Call.from_dict(response.data[0])

    async def list_unprocessed(self, limit: int) -> list[Call]:
        """Unprocessed calls with a transcript and attempts left, oldest first."""
        try:
            client = self._get_supabase_client()
            response = (
                client.table(CALLS_TABLE)
                .select("*")
                .eq("processed", False)
                .neq("transcription", "")
                .lt("processing_attempts", MAX_PROCESSING_ATTEMPTS)
                .order("created_at")
                .limit(limit)
                .execute()
            )
            return [Call.from_dict(row) for row in response.data or []]
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to list unprocessed calls")
            raise DatabaseError(f"Failed to list unprocessed calls: {e}") from e

    async def update_call(self, call_id: str, updates: dict[str, Any]) -> None:
        """Patch a call row.

        Raises:
            DatabaseError: If the update fails.
        """
        try:
            client = self._get_supabase_client()
            client.table(CALLS_TABLE).update(updates).eq("id", call_id).execute()
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to update call")
            raise DatabaseError(f"Failed to update call: {e}") from e

    async def mark_processing(self, call_id: str) -> None:
        await self.update_call(call_id, {"processing_status": ProcessingStatus.PROCESSING.value})

    async def mark_processed(
        self,
        call_id: str,
        summary: str | None,
        topics: list[str],
        participants: str,
        crm_contact_ids: list[str],
        note: dict[str, Any],
        meeting: dict[str, Any],
    ) -> None:
        """Flip ``processed`` and store what extraction derived."""
        await self.update_call(
            call_id,
            {
                "processed": True,
                "processing_status": ProcessingStatus.COMPLETED.value,
                "processing_error": None,
                "summary": summary,
                "topics": topics,
                "participants": participants,
                "crm_contact_ids": crm_contact_ids,
                "note": note,
                "meeting": meeting,
            },
        )

    async def record_processing_failure(self, call: Call, error: str) -> int:
        """Count a failed processing attempt.

        The call stays unprocessed so the sweep picks it up again, until
        the attempt cap is reached; then it is parked as processed/failed.

        Returns:
            The new attempt count.
        """
        attempts = call.processing_attempts + 1
        updates: dict[str, Any] = {
            "processing_status": ProcessingStatus.FAILED.value,
            "processing_error": error,
            "processing_attempts": attempts,
        }
        if attempts >= MAX_PROCESSING_ATTEMPTS:
            updates["processed"] = True
            logger.warning(
                "Call processing gave up",
                extra={"call_id": call.id, "attempts": attempts, "error": error},
            )
        await self.update_call(call.id, updates)
        return attempts

    # Actionables

    async def create_actionable(
        self,
        call: Call,
        actionable_type: ActionableType,
        title: str,
        properties: dict[str, Any],
    ) -> Actionable:
        """Persist one normalized ticket or deal for a call."""
        actionable = Actionable(
            id=str(uuid.uuid4()),
            user_id=call.user_id,
            call_id=call.id,
            type=actionable_type,
            title=title,
            properties=properties,
        )
        try:
            client = self._get_supabase_client()
            response = client.table(ACTIONABLES_TABLE).insert(actionable.to_dict()).execute()
            if not response.data:
                raise DatabaseError("Failed to create actionable: no data returned")
            return Actionable.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to create actionable")
            raise DatabaseError(f"Failed to create actionable: {e}") from e

    async def get_actionable(self, actionable_id: str) -> Actionable | None:
        try:
            client = self._get_supabase_client()
            response = (
                client.table(ACTIONABLES_TABLE)
                .select("*")
                .eq("id", actionable_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            return Actionable.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to get actionable")
            raise DatabaseError(f"Failed to get actionable: {e}") from e

    async def mark_actionable_synced(self, actionable_id: str, crm_entity_id: str) -> None:
        try:
            client = self._get_supabase_client()
            client.table(ACTIONABLES_TABLE).update(
                {"synced": True, "crm_entity_id": crm_entity_id}
            ).eq("id", actionable_id).execute()
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to mark actionable synced")
            raise DatabaseError(f"Failed to mark actionable synced: {e}") from e

    # User settings

    async def get_user_settings(self, user_id: str) -> UserSettings | None:
        """Extraction context and CRM credentials for a user, if stored."""
        try:
            client = self._get_supabase_client()
            response = (
                client.table(USER_SETTINGS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            return UserSettings.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to get user settings")
            raise DatabaseError(f"Failed to get user settings: {e}") from e


_store: CallStore | None = None


def get_call_store() -> CallStore:
    """Get or create the shared CallStore."""
    global _store
    if _store is None:
        _store = CallStore()
    return _store
