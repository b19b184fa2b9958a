"""CRM synchronization engine.

Projects one processed call into HubSpot and tracks the outcome per local
entity in ``crm_sync_status``:

- ``call``: the summary note and the meeting (crm entity = the note)
- ``actionable``: one ticket or deal
- ``contact``: one resolved participant (informational only)

Order for a call: contacts, tickets, deals, note, meeting. Every entity is
written independently; one failure is recorded and never stops the rest.

Failed ``call`` and ``actionable`` records are retried by a periodic sweep
with a 5/15/45 minute backoff and at most three retries. A retry redoes the
whole entity sync. CRM writes are create-only, so a retry after a partial
failure can leave duplicates in the CRM (for example a second note when only
the meeting had failed).
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from salesister.core.exceptions import CRMNotConfiguredError
from salesister.core.result import ErrorKind, Result
from salesister.db.call_store import CallStore, get_call_store
from salesister.db.sync_status_store import SyncStatusStore, get_sync_status_store
from salesister.integrations.hubspot import (
    DEAL_TO_CONTACT,
    MEETING_TO_CONTACT,
    NOTE_TO_CONTACT,
    TICKET_TO_CONTACT,
    CrmClient,
    HubSpotClient,
    associations_for,
)
from salesister.models.call import Actionable, ActionableType, Call, UserSettings
from salesister.models.extraction import DealDraft, MeetingDraft, NoteDraft, TicketDraft
from salesister.models.sync_status import (
    CrmObjectType,
    SyncEntityType,
    SyncState,
    SyncStatusRecord,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BACKOFF_MINUTES = (5, 15, 45)

_CONTACT_FIELDS = ("email", "firstname", "lastname", "company", "jobtitle", "phone")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def backoff_minutes(retry_count: int) -> int:
    """Minutes to wait after the last attempt before retry number ``retry_count + 1``."""
    if 0 <= retry_count < len(BACKOFF_MINUTES):
        return BACKOFF_MINUTES[retry_count]
    return BACKOFF_MINUTES[-1]


def retry_block_reason(record: SyncStatusRecord, now: datetime) -> str | None:
    """Why a failed record cannot be retried right now, or None if it can."""
    if record.retry_count >= MAX_RETRIES:
        return "Max retries exceeded"
    if record.last_attempt is not None:
        last_attempt = record.last_attempt
        if last_attempt.tzinfo is None:
            last_attempt = last_attempt.replace(tzinfo=UTC)
        if now - last_attempt < timedelta(minutes=backoff_minutes(record.retry_count)):
            return "Backoff period not elapsed"
    return None


def is_retry_eligible(record: SyncStatusRecord, now: datetime) -> bool:
    """True when a failed record has budget left and its backoff has elapsed."""
    return record.sync_status == SyncState.FAILED and retry_block_reason(record, now) is None


def contact_properties(participant: dict[str, Any]) -> dict[str, str] | None:
    """Map a participant record to HubSpot contact properties.

    ``name`` is split into ``firstname`` (first word) and ``lastname`` (the
    rest) unless those are already present; ``role`` becomes ``jobtitle``.

    Returns:
        The properties, or None when the participant has neither an email
        nor a name.
    """
    properties = {
        key: str(participant[key]).strip()
        for key in _CONTACT_FIELDS
        if participant.get(key) and str(participant[key]).strip()
    }
    name = str(participant.get("name") or "").strip()
    if name:
        first, _, rest = name.partition(" ")
        properties.setdefault("firstname", first)
        if rest.strip():
            properties.setdefault("lastname", rest.strip())
    role = str(participant.get("role") or "").strip()
    if role:
        properties.setdefault("jobtitle", role)

    if not properties.get("email") and not properties.get("firstname"):
        return None
    return properties


def _contact_key(properties: dict[str, str]) -> str:
    if properties.get("email"):
        return properties["email"].lower()
    return " ".join(
        part for part in (properties.get("firstname"), properties.get("lastname")) if part
    ).lower()


@dataclass
class ContactResolution:
    """Outcome of find-or-create for one contact."""

    id: str
    created: bool


@dataclass
class CallSyncReport:
    """What one call's CRM sync produced."""

    contact_ids: list[str] = field(default_factory=list)
    tickets_created: int = 0
    deals_created: int = 0
    note_id: str | None = None
    meeting_id: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors


class CrmSyncEngine:
    """Writes one user's call entities to the CRM.

    Args:
        crm: CRM client authenticated as the call's owner.
        call_store: Store for calls and actionables.
        sync_store: Store for sync status records.
    """

    def __init__(
        self,
        crm: CrmClient,
        call_store: CallStore | None = None,
        sync_store: SyncStatusStore | None = None,
    ) -> None:
        self._crm = crm
        self._calls = call_store or get_call_store()
        self._sync = sync_store or get_sync_status_store()

    # Contacts

    async def find_or_create_contact(self, properties: dict[str, str]) -> ContactResolution:
        """Find a contact by email and fill its empty fields, or create it.

        Fields already populated on the CRM contact are never overwritten.
        """
        email = properties.get("email")
        if email:
            existing = await self._crm.find_contact_by_email(email)
            if existing is not None:
                current = existing.get("properties") or {}
                missing = {
                    key: value
                    for key, value in properties.items()
                    if value and not current.get(key)
                }
                if missing:
                    await self._crm.update_contact(existing["id"], missing)
                return ContactResolution(id=existing["id"], created=False)

        contact_id = await self._crm.create_object("contacts", properties)
        return ContactResolution(id=contact_id, created=True)

    async def resolve_contacts(self, call: Call, participants: list[dict[str, Any]]) -> list[str]:
        """Resolve every usable participant to a CRM contact id.

        Each participant is handled on its own; failures are logged,
        recorded and skipped.
        """
        contact_ids: list[str] = []
        for participant in participants:
            properties = contact_properties(participant)
            if properties is None:
                continue
            entity_id = f"{call.id}:contact:{_contact_key(properties)}"
            try:
                resolution = await self.find_or_create_contact(properties)
            except Exception as e:
                logger.warning(
                    "Contact sync failed",
                    extra={"call_id": call.id, "entity_id": entity_id, "error": str(e)},
                )
                await self._sync.upsert(
                    call.user_id,
                    SyncEntityType.CONTACT,
                    entity_id,
                    SyncState.FAILED,
                    error_message=str(e),
                )
                continue
            if resolution.id not in contact_ids:
                contact_ids.append(resolution.id)
            await self._sync.upsert(
                call.user_id,
                SyncEntityType.CONTACT,
                entity_id,
                SyncState.COMPLETED,
                crm_entity_id=resolution.id,
                crm_entity_type=CrmObjectType.CONTACT,
            )
        return contact_ids

    # Object creation

    async def create_ticket(self, ticket: TicketDraft, contact_ids: list[str]) -> str:
        return await self._crm.create_object(
            "tickets",
            ticket.to_crm_properties(),
            associations_for(contact_ids, TICKET_TO_CONTACT),
        )

    async def create_deal(self, deal: DealDraft, contact_ids: list[str]) -> str:
        return await self._crm.create_object(
            "deals",
            deal.to_crm_properties(),
            associations_for(contact_ids, DEAL_TO_CONTACT),
        )

    async def create_note(
        self, note: NoteDraft, contact_ids: list[str], timestamp: datetime | None = None
    ) -> str:
        properties = {
            "hs_note_body": f"{note.subject}\n\n{note.body}",
            "hs_timestamp": (timestamp or _utcnow()).isoformat(),
        }
        return await self._crm.create_object(
            "notes", properties, associations_for(contact_ids, NOTE_TO_CONTACT)
        )

    async def create_meeting(self, meeting: MeetingDraft, contact_ids: list[str]) -> str:
        properties = {
            "hs_meeting_title": meeting.title,
            "hs_meeting_body": meeting.body,
            "hs_timestamp": meeting.start_time or _utcnow().isoformat(),
        }
        if meeting.start_time:
            properties["hs_meeting_start_time"] = meeting.start_time
        if meeting.end_time:
            properties["hs_meeting_end_time"] = meeting.end_time
        return await self._crm.create_object(
            "meetings", properties, associations_for(contact_ids, MEETING_TO_CONTACT)
        )

    # Entity syncs

    async def sync_actionable(self, actionable: Actionable, contact_ids: list[str]) -> Result[str]:
        """Create one ticket or deal and record its sync status."""
        try:
            if actionable.type == ActionableType.TICKET:
                crm_type = CrmObjectType.TICKET
                crm_id = await self.create_ticket(
                    TicketDraft.model_validate(actionable.properties), contact_ids
                )
            else:
                crm_type = CrmObjectType.DEAL
                crm_id = await self.create_deal(
                    DealDraft.model_validate(actionable.properties), contact_ids
                )
        except Exception as e:
            logger.warning(
                "Actionable sync failed",
                extra={
                    "actionable_id": actionable.id,
                    "type": actionable.type.value,
                    "error": str(e),
                },
            )
            await self._sync.upsert(
                actionable.user_id,
                SyncEntityType.ACTIONABLE,
                actionable.id,
                SyncState.FAILED,
                error_message=str(e),
            )
            return Result.from_exception(e, entity_id=actionable.id)

        await self._calls.mark_actionable_synced(actionable.id, crm_id)
        await self._sync.upsert(
            actionable.user_id,
            SyncEntityType.ACTIONABLE,
            actionable.id,
            SyncState.COMPLETED,
            crm_entity_id=crm_id,
            crm_entity_type=crm_type,
        )
        return Result.success(crm_id, entity_id=actionable.id)

    async def sync_engagements(
        self,
        call: Call,
        note: NoteDraft,
        meeting: MeetingDraft,
        contact_ids: list[str],
    ) -> Result[dict[str, str | None]]:
        """Create the note and the meeting, each attempted independently.

        The ``call`` sync record is completed only when both succeed.
        """
        created: dict[str, str | None] = {"note": None, "meeting": None}
        errors: list[str] = []

        try:
            created["note"] = await self.create_note(note, contact_ids, call.created_at)
        except Exception as e:
            logger.warning("Note creation failed", extra={"call_id": call.id, "error": str(e)})
            errors.append(f"note: {e}")

        try:
            created["meeting"] = await self.create_meeting(meeting, contact_ids)
        except Exception as e:
            logger.warning("Meeting creation failed", extra={"call_id": call.id, "error": str(e)})
            errors.append(f"meeting: {e}")

        if errors:
            message = "; ".join(errors)
            await self._sync.upsert(
                call.user_id,
                SyncEntityType.CALL,
                call.id,
                SyncState.FAILED,
                error_message=message,
            )
            if created["note"] or created["meeting"]:
                return Result.partial(created, message, call_id=call.id)
            return Result.failure(message, ErrorKind.EXTERNAL_SERVICE, call_id=call.id)

        await self._sync.upsert(
            call.user_id,
            SyncEntityType.CALL,
            call.id,
            SyncState.COMPLETED,
            crm_entity_id=created["note"],
            crm_entity_type=CrmObjectType.NOTE,
        )
        return Result.success(created, call_id=call.id)

    async def sync_call(
        self,
        call: Call,
        participants: list[dict[str, Any]],
        actionables: list[Actionable],
        note: NoteDraft,
        meeting: MeetingDraft,
    ) -> CallSyncReport:
        """Project a processed call into the CRM.

        Contacts are resolved first so every other object can be associated
        with them. Tickets, deals, note and meeting follow, each isolated.
        """
        report = CallSyncReport()
        report.contact_ids = await self.resolve_contacts(call, participants)

        ordered = sorted(actionables, key=lambda a: a.type != ActionableType.TICKET)
        for actionable in ordered:
            result = await self.sync_actionable(actionable, report.contact_ids)
            if not result.ok:
                report.errors.append(f"{actionable.type.value} '{actionable.title}': {result.error}")
                continue
            if actionable.type == ActionableType.TICKET:
                report.tickets_created += 1
            else:
                report.deals_created += 1

        engagements = await self.sync_engagements(call, note, meeting, report.contact_ids)
        if engagements.value:
            report.note_id = engagements.value.get("note")
            report.meeting_id = engagements.value.get("meeting")
        if engagements.error:
            report.errors.append(engagements.error)

        logger.info(
            "Call synced to CRM",
            extra={
                "call_id": call.id,
                "contacts": len(report.contact_ids),
                "tickets_created": report.tickets_created,
                "deals_created": report.deals_created,
                "errors": len(report.errors),
            },
        )
        return report

    async def redo(self, record: SyncStatusRecord) -> Result[Any]:
        """Re-run the full sync for the entity a record tracks."""
        if record.entity_type == SyncEntityType.CALL:
            call = await self._calls.get_call(record.entity_id)
            if not call.note or not call.meeting:
                message = "Call has no extracted note or meeting to sync"
                await self._sync.upsert(
                    call.user_id,
                    SyncEntityType.CALL,
                    call.id,
                    SyncState.FAILED,
                    error_message=message,
                )
                return Result.failure(message, ErrorKind.INVALID_INPUT)
            contact_ids = await self.resolve_contacts(call, call.participant_list)
            return await self.sync_engagements(
                call,
                NoteDraft.model_validate(call.note),
                MeetingDraft.model_validate(call.meeting),
                contact_ids,
            )

        if record.entity_type == SyncEntityType.ACTIONABLE:
            actionable = await self._calls.get_actionable(record.entity_id)
            if actionable is None:
                message = "Actionable not found"
                await self._sync.upsert(
                    record.user_id,
                    SyncEntityType.ACTIONABLE,
                    record.entity_id,
                    SyncState.FAILED,
                    error_message=message,
                )
                return Result.failure(message, ErrorKind.INVALID_INPUT)
            call = await self._calls.get_call(actionable.call_id)
            return await self.sync_actionable(actionable, call.crm_contact_ids)

        return Result.failure(
            f"{record.entity_type.value} records are not retried", ErrorKind.INVALID_INPUT
        )


ClientFactory = Callable[[UserSettings], CrmClient]


def hubspot_client_factory(user_settings: UserSettings) -> CrmClient:
    """Build a HubSpot client from a user's stored credentials."""
    return HubSpotClient(api_key=user_settings.hubspot_api_key or "")


class SyncRetryService:
    """Retries failed sync records with backoff and an atomic claim.

    Args:
        call_store: Store for calls, actionables and user settings.
        sync_store: Store for sync status records.
        client_factory: Builds a CRM client for a user's settings.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        call_store: CallStore | None = None,
        sync_store: SyncStatusStore | None = None,
        client_factory: ClientFactory = hubspot_client_factory,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._calls = call_store or get_call_store()
        self._sync = sync_store or get_sync_status_store()
        self._client_factory = client_factory
        self._clock = clock

    async def engine_for(self, user_id: str) -> CrmSyncEngine:
        """Build an engine authenticated as ``user_id``.

        Raises:
            CRMNotConfiguredError: If the user has no enabled HubSpot key.
        """
        user_settings = await self._calls.get_user_settings(user_id)
        if user_settings is None or not user_settings.crm_configured:
            raise CRMNotConfiguredError(user_id)
        return CrmSyncEngine(
            self._client_factory(user_settings),
            call_store=self._calls,
            sync_store=self._sync,
        )

    async def retry_failed_sync(self, record: SyncStatusRecord) -> Result[Any]:
        """Retry one failed record if its budget and backoff allow it.

        The retry count is incremented by the claim, before the sync runs.
        """
        reason = retry_block_reason(record, self._clock())
        if reason is not None:
            return Result.failure(reason, ErrorKind.RATE_LIMITED, sync_id=record.id)

        try:
            engine = await self.engine_for(record.user_id)
        except CRMNotConfiguredError as e:
            return Result.from_exception(e, sync_id=record.id)

        claimed = await self._sync.claim_retry(record)
        if claimed is None:
            return Result.failure("Retry already claimed", ErrorKind.RATE_LIMITED, sync_id=record.id)

        logger.info(
            "Retrying failed sync",
            extra={
                "sync_id": record.id,
                "entity_type": record.entity_type.value,
                "entity_id": record.entity_id,
                "retry_count": claimed.retry_count,
            },
        )
        try:
            return await engine.redo(claimed)
        except Exception as e:
            logger.exception("Sync retry failed", extra={"sync_id": record.id})
            await self._sync.upsert(
                record.user_id,
                record.entity_type,
                record.entity_id,
                SyncState.FAILED,
                error_message=str(e),
            )
            return Result.from_exception(e, sync_id=record.id)

    async def process_failed_syncs(self) -> dict[str, Any]:
        """Sweep all failed records and retry the eligible ones concurrently."""
        stats = {"total_checked": 0, "retried": 0, "succeeded": 0, "skipped": 0, "errors": 0}

        records = await self._sync.list_failed(MAX_RETRIES)
        stats["total_checked"] = len(records)
        if not records:
            return stats

        outcomes = await asyncio.gather(
            *(self.retry_failed_sync(record) for record in records),
            return_exceptions=True,
        )
        for record, outcome in zip(records, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                stats["errors"] += 1
                logger.error(
                    "Sync retry crashed",
                    extra={"sync_id": record.id, "error": str(outcome)},
                )
            elif outcome.error_kind in (ErrorKind.RATE_LIMITED, ErrorKind.NOT_CONFIGURED):
                stats["skipped"] += 1
            else:
                stats["retried"] += 1
                if outcome.ok:
                    stats["succeeded"] += 1
        return stats


_retry_service: SyncRetryService | None = None


def get_sync_retry_service() -> SyncRetryService:
    """Get or create the shared SyncRetryService."""
    global _retry_service
    if _retry_service is None:
        _retry_service = SyncRetryService()
    return _retry_service
