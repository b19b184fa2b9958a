"""Models package for Salesister."""

from salesister.models.call import (
    MAX_PROCESSING_ATTEMPTS,
    Actionable,
    ActionableType,
    Call,
    ProcessingStatus,
    UserSettings,
    parse_participants,
)
from salesister.models.extraction import (
    DealDraft,
    ExtractedBundle,
    ExtractedContact,
    MeetingDraft,
    NoteDraft,
    RawExtraction,
    TicketDraft,
    TicketPriority,
)
from salesister.models.sync_status import (
    CrmObjectType,
    SyncEntityType,
    SyncModelError,
    SyncState,
    SyncStatusRecord,
)

__all__ = [
    "MAX_PROCESSING_ATTEMPTS",
    "Actionable",
    "ActionableType",
    "Call",
    "CrmObjectType",
    "DealDraft",
    "ExtractedBundle",
    "ExtractedContact",
    "MeetingDraft",
    "NoteDraft",
    "ProcessingStatus",
    "RawExtraction",
    "SyncEntityType",
    "SyncModelError",
    "SyncState",
    "SyncStatusRecord",
    "TicketDraft",
    "TicketPriority",
    "UserSettings",
    "parse_participants",
]
