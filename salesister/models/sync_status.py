"""Domain models for CRM sync status tracking."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SyncModelError(Exception):
    """Error raised when sync status model validation fails."""

    pass


class SyncEntityType(str, Enum):
    """Local entity whose CRM projection is being tracked."""

    CALL = "call"  # note + meeting for one call
    ACTIONABLE = "actionable"  # one ticket or deal
    CONTACT = "contact"  # one resolved participant


class SyncState(str, Enum):
    """Sync state machine states.

    State transitions:
    - pending -> completed (CRM write succeeded)
    - pending -> failed (CRM write raised)
    - failed -> failed (retry claimed, retry_count incremented)
    - failed -> completed (retry succeeded)

    ``syncing`` is accepted when read but never written.
    """

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class CrmObjectType(str, Enum):
    """CRM object types the engine writes."""

    CONTACT = "contact"
    TICKET = "ticket"
    DEAL = "deal"
    NOTE = "note"
    MEETING = "meeting"


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a datetime value from string or datetime object.

    Args:
        value: Either an ISO format string, datetime object, or None.

    Returns:
        Parsed datetime or None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class SyncStatusRecord:
    """Sync status for one local entity. At most one record per entity_id."""

    id: str
    user_id: str
    entity_type: SyncEntityType
    entity_id: str
    sync_status: SyncState
    retry_count: int = 0
    last_attempt: datetime | None = None
    crm_entity_id: str | None = None
    crm_entity_type: CrmObjectType | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate the dataclass after initialization."""
        if self.retry_count < 0:
            raise SyncModelError(f"retry_count must be non-negative, got {self.retry_count}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the record to a database row."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "sync_status": self.sync_status.value,
            "retry_count": self.retry_count,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "crm_entity_id": self.crm_entity_id,
            "crm_entity_type": self.crm_entity_type.value if self.crm_entity_type else None,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncStatusRecord":
        """Create a SyncStatusRecord from a database row.

        Raises:
            SyncModelError: If required fields are missing or invalid.
        """
        required_fields = ["id", "user_id", "entity_type", "entity_id", "sync_status"]
        missing_fields = [f for f in required_fields if f not in data]
        if missing_fields:
            raise SyncModelError(f"Missing required fields: {', '.join(missing_fields)}")

        try:
            return cls(
                id=data["id"],
                user_id=data["user_id"],
                entity_type=SyncEntityType(data["entity_type"]),
                entity_id=data["entity_id"],
                sync_status=SyncState(data["sync_status"]),
                retry_count=data.get("retry_count") or 0,
                last_attempt=_parse_datetime(data.get("last_attempt")),
                crm_entity_id=data.get("crm_entity_id"),
                crm_entity_type=CrmObjectType(data["crm_entity_type"])
                if data.get("crm_entity_type")
                else None,
                error_message=data.get("error_message"),
                created_at=_parse_datetime(data.get("created_at")),
                updated_at=_parse_datetime(data.get("updated_at")),
            )
        except ValueError as e:
            raise SyncModelError(f"Invalid field value: {e}") from e
