"""Server-side processing of finished calls.

extraction -> actionables persisted -> CRM sync (when configured) -> call
marked processed. Extraction failures are counted on the call; after
MAX_PROCESSING_ATTEMPTS the call is parked and the sweep stops selecting it.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from salesister.core.config import settings
from salesister.db.call_store import CallStore, get_call_store
from salesister.db.sync_status_store import SyncStatusStore, get_sync_status_store
from salesister.integrations.hubspot import CrmClient
from salesister.models.call import Actionable, ActionableType, Call, UserSettings
from salesister.models.extraction import ExtractedBundle
from salesister.services.crm_sync import CrmSyncEngine, hubspot_client_factory
from salesister.services.extraction import EntityExtractor, get_entity_extractor

logger = logging.getLogger(__name__)


@dataclass
class ProcessingReport:
    """Aggregate outcome of processing one call."""

    call_id: str
    processed: bool
    tickets_created: int = 0
    deals_created: int = 0
    crm_synced: bool = False
    contact_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class CallProcessor:
    """Runs extraction and CRM sync for stored calls.

    Args:
        call_store: Store for calls, actionables and user settings.
        sync_store: Store for sync status records.
        extractor: Entity extractor.
        client_factory: Builds a CRM client from a user's settings.
    """

    def __init__(
        self,
        call_store: CallStore | None = None,
        sync_store: SyncStatusStore | None = None,
        extractor: EntityExtractor | None = None,
        client_factory: Callable[[UserSettings], CrmClient] = hubspot_client_factory,
    ) -> None:
        self._calls = call_store or get_call_store()
        self._sync = sync_store or get_sync_status_store()
        self._extractor = extractor
        self._client_factory = client_factory

    @property
    def extractor(self) -> EntityExtractor:
        if self._extractor is None:
            self._extractor = get_entity_extractor()
        return self._extractor

    async def process_call(self, call_id: str) -> ProcessingReport:
        """Process one call end to end.

        Per-entity CRM failures are isolated and recorded for retry; they
        do not stop the call from being marked processed.

        Raises:
            CallNotFoundError: If the call does not exist.
            ExtractionError: If the model output is unusable (attempt counted).
            ExternalServiceError: If the LLM call fails (attempt counted).
        """
        call = await self._calls.get_call(call_id)
        if call.processed:
            logger.info("Call already processed", extra={"call_id": call_id})
            return ProcessingReport(call_id=call_id, processed=True)

        await self._calls.mark_processing(call.id)
        user_settings = await self._calls.get_user_settings(call.user_id)

        try:
            bundle = await self.extractor.extract(
                call.transcription,
                call.participants,
                user_settings,
                call.created_at,
            )
        except Exception as e:
            attempts = await self._calls.record_processing_failure(call, str(e))
            logger.warning(
                "Call extraction failed",
                extra={"call_id": call.id, "attempts": attempts, "error": str(e)},
            )
            raise

        actionables = await self._persist_actionables(call, bundle)
        report = ProcessingReport(call_id=call.id, processed=True)

        if user_settings is not None and user_settings.crm_configured:
            engine = CrmSyncEngine(
                self._client_factory(user_settings),
                call_store=self._calls,
                sync_store=self._sync,
            )
            sync = await engine.sync_call(
                call, bundle.contacts, actionables, bundle.note, bundle.meeting
            )
            report.crm_synced = True
            report.contact_ids = sync.contact_ids
            report.tickets_created = sync.tickets_created
            report.deals_created = sync.deals_created
            report.errors = sync.errors
        else:
            logger.info("CRM sync skipped, not configured", extra={"user_id": call.user_id})

        await self._calls.mark_processed(
            call.id,
            summary=bundle.note.body,
            topics=bundle.topics,
            participants=json.dumps(bundle.contacts),
            crm_contact_ids=report.contact_ids,
            note=bundle.note.model_dump(),
            meeting=bundle.meeting.model_dump(),
        )
        logger.info(
            "Call processed",
            extra={
                "call_id": call.id,
                "tickets_created": report.tickets_created,
                "deals_created": report.deals_created,
                "crm_synced": report.crm_synced,
                "errors": len(report.errors),
            },
        )
        return report

    async def _persist_actionables(self, call: Call, bundle: ExtractedBundle) -> list[Actionable]:
        drafts: list[tuple[ActionableType, str, dict[str, Any]]] = [
            (ActionableType.TICKET, t.subject, t.to_crm_properties()) for t in bundle.tickets
        ]
        drafts += [(ActionableType.DEAL, d.dealname, d.to_crm_properties()) for d in bundle.deals]

        actionables: list[Actionable] = []
        for actionable_type, title, properties in drafts:
            try:
                actionables.append(
                    await self._calls.create_actionable(call, actionable_type, title, properties)
                )
            except Exception as e:
                logger.warning(
                    "Failed to store actionable",
                    extra={"call_id": call.id, "title": title, "error": str(e)},
                )
        return actionables

    async def process_unprocessed_calls(self, limit: int | None = None) -> dict[str, Any]:
        """Sweep unprocessed calls, oldest first.

        Returns:
            Dict with statistics about the sweep.
        """
        stats = {"total_checked": 0, "processed": 0, "failed": 0}
        calls = await self._calls.list_unprocessed(limit or settings.UNPROCESSED_CALL_BATCH_SIZE)
        stats["total_checked"] = len(calls)

        for call in calls:
            try:
                await self.process_call(call.id)
                stats["processed"] += 1
            except Exception as e:
                stats["failed"] += 1
                logger.warning(
                    "Sweep could not process call",
                    extra={"call_id": call.id, "error": str(e)},
                )
        return stats


_processor: CallProcessor | None = None


def get_call_processor() -> CallProcessor:
    """Get or create the shared CallProcessor."""
    global _processor
    if _processor is None:
        _processor = CallProcessor()
    return _processor
