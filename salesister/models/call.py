"""Domain models for persisted calls, actionables and user settings."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from salesister.models.sync_status import _parse_datetime

logger = logging.getLogger(__name__)

# Extraction attempts before a call is parked as permanently failed
MAX_PROCESSING_ATTEMPTS = 3


class ProcessingStatus(str, Enum):
    """Lifecycle of server-side processing for one call."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionableType(str, Enum):
    """Kinds of actionable projected into the CRM."""

    TICKET = "ticket"
    DEAL = "deal"


def parse_participants(participants_json: str | None) -> list[dict[str, Any]]:
    """Parse a participants JSON string, tolerating bad input.

    Anything that is not a JSON array of objects yields an empty list.
    """
    if not participants_json:
        return []
    try:
        parsed = json.loads(participants_json)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable participants JSON")
        return []
    if not isinstance(parsed, list):
        return []
    return [p for p in parsed if isinstance(p, dict)]


@dataclass
class Call:
    """A finished call. The transcript is frozen at creation."""

    id: str
    user_id: str
    title: str
    transcription: str
    participants: str = "[]"
    duration: float | None = None
    recording_url: str | None = None
    processed: bool = False
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_error: str | None = None
    processing_attempts: int = 0
    summary: str | None = None
    topics: list[str] = field(default_factory=list)
    crm_contact_ids: list[str] = field(default_factory=list)
    note: dict[str, Any] | None = None
    meeting: dict[str, Any] | None = None
    created_at: datetime | None = None

    @property
    def participant_list(self) -> list[dict[str, Any]]:
        return parse_participants(self.participants)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the call to a database row."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "transcription": self.transcription,
            "participants": self.participants,
            "duration": self.duration,
            "recording_url": self.recording_url,
            "processed": self.processed,
            "processing_status": self.processing_status.value,
            "processing_error": self.processing_error,
            "processing_attempts": self.processing_attempts,
            "summary": self.summary,
            "topics": self.topics,
            "crm_contact_ids": self.crm_contact_ids,
            "note": self.note,
            "meeting": self.meeting,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Call":
        """Create a Call from a database row."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title") or "",
            transcription=data.get("transcription") or "",
            participants=data.get("participants") or "[]",
            duration=data.get("duration"),
            recording_url=data.get("recording_url"),
            processed=bool(data.get("processed")),
            processing_status=ProcessingStatus(data.get("processing_status") or "pending"),
            processing_error=data.get("processing_error"),
            processing_attempts=data.get("processing_attempts") or 0,
            summary=data.get("summary"),
            topics=list(data.get("topics") or []),
            crm_contact_ids=list(data.get("crm_contact_ids") or []),
            note=data.get("note"),
            meeting=data.get("meeting"),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass
class Actionable:
    """A normalized ticket or deal extracted from a call."""

    id: str
    user_id: str
    call_id: str
    type: ActionableType
    title: str
    properties: dict[str, Any] = field(default_factory=dict)
    crm_entity_id: str | None = None
    synced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "call_id": self.call_id,
            "type": self.type.value,
            "title": self.title,
            "properties": self.properties,
            "crm_entity_id": self.crm_entity_id,
            "synced": self.synced,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Actionable":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            call_id=data["call_id"],
            type=ActionableType(data["type"]),
            title=data.get("title") or "",
            properties=dict(data.get("properties") or {}),
            crm_entity_id=data.get("crm_entity_id"),
            synced=bool(data.get("synced")),
        )


@dataclass
class UserSettings:
    """Per-user extraction context and CRM credentials."""

    user_id: str
    system_prompt: str | None = None
    sales_script: str | None = None
    company_docs: str | None = None
    hubspot_api_key: str | None = None
    hubspot_enabled: bool = False

    @property
    def crm_configured(self) -> bool:
        """True when HubSpot sync should run for this user."""
        return bool(self.hubspot_enabled and self.hubspot_api_key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserSettings":
        return cls(
            user_id=data["user_id"],
            system_prompt=data.get("system_prompt"),
            sales_script=data.get("sales_script"),
            company_docs=data.get("company_docs"),
            hubspot_api_key=data.get("hubspot_api_key"),
            hubspot_enabled=bool(data.get("hubspot_enabled")),
        )
