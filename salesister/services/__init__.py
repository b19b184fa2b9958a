"""Services package."""

from salesister.services.call_processing import (
    CallProcessor,
    ProcessingReport,
    get_call_processor,
)
from salesister.services.crm_sync import (
    CallSyncReport,
    CrmSyncEngine,
    SyncRetryService,
    get_sync_retry_service,
)
from salesister.services.extraction import EntityExtractor, get_entity_extractor

__all__ = [
    "CallProcessor",
    "CallSyncReport",
    "CrmSyncEngine",
    "EntityExtractor",
    "ProcessingReport",
    "SyncRetryService",
    "get_call_processor",
    "get_entity_extractor",
    "get_sync_retry_service",
]
