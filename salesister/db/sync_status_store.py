"""Persistence for CRM sync status records (``crm_sync_status`` table)."""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from salesister.core.exceptions import DatabaseError
from salesister.db.supabase import SupabaseClient
from salesister.models.sync_status import (
    CrmObjectType,
    SyncEntityType,
    SyncState,
    SyncStatusRecord,
)

logger = logging.getLogger(__name__)

TABLE = "crm_sync_status"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncStatusStore:
    """Reads and writes sync status records.

    There is at most one record per ``entity_id``: ``upsert`` looks the
    entity up first and patches the existing row instead of inserting a
    second one.

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
        """Get the Supabase client instance.

        Raises:
            DatabaseError: If client initialization fails.
        """
        if self._client is not None:
            return self._client
        try:
            return SupabaseClient.get_client()
        except Exception as e:
            raise DatabaseError(f"Failed to get Supabase client: {e}") from e

    async def get(self, sync_id: str) -> SyncStatusRecord | None:
        """Fetch a record by its id."""
        try:
            client = self._get_supabase_client()
            response = client.table(TABLE).select("*").eq("id", sync_id).limit(1).execute()
            if not response.data:
                return None
            return SyncStatusRecord.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to get sync status")
            raise DatabaseError(f"Failed to get sync status: {e}") from e

    async def get_by_entity(self, entity_id: str) -> SyncStatusRecord | None:
        """Fetch the record tracking a local entity, if any."""
        try:
            client = self._get_supabase_client()
            response = (
                client.table(TABLE).select("*").eq("entity_id", entity_id).limit(1).execute()
            )
            if not response.data:
                return None
            return SyncStatusRecord.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to get sync status by entity")
            raise DatabaseError(f"Failed to get sync status: {e}") from e

    async def upsert(
        self,
        user_id: str,
        entity_type: SyncEntityType,
        entity_id: str,
        sync_status: SyncState,
        crm_entity_id: str | None = None,
        crm_entity_type: CrmObjectType | None = None,
        error_message: str | None = None,
    ) -> SyncStatusRecord:
        """Record the outcome of a sync attempt.

        ``retry_count`` is never changed here: failures leave it as is and
        only ``claim_retry`` increments it. A completed outcome clears any
        previous error message.

        Returns:
            The stored record.

        Raises:
            DatabaseError: If the write fails.
        """
        now = self._clock().isoformat()
        patch: dict[str, Any] = {
            "sync_status": sync_status.value,
            "last_attempt": now,
            "updated_at": now,
            "error_message": None if sync_status == SyncState.COMPLETED else error_message,
        }
        if crm_entity_id is not None:
            patch["crm_entity_id"] = crm_entity_id
        if crm_entity_type is not None:
            patch["crm_entity_type"] = crm_entity_type.value

        try:
            client = self._get_supabase_client()
            existing = await self.get_by_entity(entity_id)

            if existing is not None:
                response = client.table(TABLE).update(patch).eq("id", existing.id).execute()
            else:
                row = {
                    "id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                    "retry_count": 0,
                    "created_at": now,
                    **patch,
                }
                response = client.table(TABLE).insert(row).execute()

            if not response.data:
                raise DatabaseError("Failed to upsert sync status: no data returned")

            logger.info(
                "Sync status recorded",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                    "sync_status": sync_status.value,
                    "created": existing is None,
                },
            )
            return SyncStatusRecord.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to upsert sync status")
            raise DatabaseError(f"Failed to upsert sync status: {e}") from e

    async def list_failed(
        self,
        max_retries: int,
        entity_types: tuple[SyncEntityType, ...] = (
            SyncEntityType.CALL,
            SyncEntityType.ACTIONABLE,
        ),
    ) -> list[SyncStatusRecord]:
        """Failed records that still have retry budget left."""
        try:
            client = self._get_supabase_client()
            response = (
                client.table(TABLE)
                .select("*")
                .eq("sync_status", SyncState.FAILED.value)
                .lt("retry_count", max_retries)
                .order("last_attempt")
                .execute()
            )
            records = [SyncStatusRecord.from_dict(row) for row in response.data or []]
            return [r for r in records if r.entity_type in entity_types]
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to list failed syncs")
            raise DatabaseError(f"Failed to list failed syncs: {e}") from e

    async def claim_retry(self, record: SyncStatusRecord) -> SyncStatusRecord | None:
        """Atomically take a failed record for retry.

        A single conditional update bumps ``retry_count`` and ``last_attempt``
        on a ``failed`` row that still has the observed count. The row stays
        ``failed`` until the redo writes its outcome, so an interrupted retry
        is picked up again once its backoff elapses and still counts against
        the budget.

        Returns:
            The claimed record, or None if another worker got there first.
        """
        now = self._clock().isoformat()
        try:
            client = self._get_supabase_client()
            response = (
                client.table(TABLE)
                .update(
                    {
                        "retry_count": record.retry_count + 1,
                        "last_attempt": now,
                        "updated_at": now,
                    }
                )
                .eq("id", record.id)
                .eq("retry_count", record.retry_count)
                .eq("sync_status", SyncState.FAILED.value)
                .execute()
            )
            if not response.data:
                logger.info("Retry already claimed", extra={"sync_id": record.id})
                return None
            return SyncStatusRecord.from_dict(response.data[0])
        except DatabaseError:
            raise
        except Exception as e:
            logger.exception("Failed to claim sync retry")
            raise DatabaseError(f"Failed to claim sync retry: {e}") from e


_store: SyncStatusStore | None = None


def get_sync_status_store() -> SyncStatusStore:
    """Get or create the shared SyncStatusStore."""
    global _store
    if _store is None:
        _store = SyncStatusStore()
    return _store
