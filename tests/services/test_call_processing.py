"""Tests for server-side call processing."""

import json
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from salesister.core.exceptions import CallNotFoundError, ExtractionError
from salesister.db.call_store import ACTIONABLES_TABLE, USER_SETTINGS_TABLE, CallStore
from salesister.db.sync_status_store import SyncStatusStore
from salesister.models.call import ProcessingStatus
from salesister.models.extraction import (
    DealDraft,
    ExtractedBundle,
    MeetingDraft,
    NoteDraft,
    TicketDraft,
)
from salesister.services.call_processing import CallProcessor


def make_bundle(tickets: int = 1, deals: int = 1) -> ExtractedBundle:
    return ExtractedBundle(
        contacts=[{"name": "Jane Doe", "email": "jane@acme.com"}],
        tickets=[TicketDraft(subject=f"Ticket {i + 1}") for i in range(tickets)],
        deals=[DealDraft(dealname=f"Deal {i + 1}") for i in range(deals)],
        note=NoteDraft(body="Jane asked about SSO."),
        meeting=MeetingDraft(title="Discovery", start_time="2026-03-02T15:00:00+00:00"),
        topics=["SSO"],
    )


@pytest.fixture
def call_store(fake_db: Any, fixed_now: datetime) -> CallStore:
    return CallStore(client=fake_db, clock=lambda: fixed_now)


@pytest.fixture
def extractor() -> MagicMock:
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=make_bundle())
    return mock


@pytest.fixture
def processor(
    fake_db: Any, fixed_now: datetime, call_store: CallStore, extractor: MagicMock, fake_crm: Any
) -> CallProcessor:
    return CallProcessor(
        call_store=call_store,
        sync_store=SyncStatusStore(client=fake_db, clock=lambda: fixed_now),
        extractor=extractor,
        client_factory=lambda _settings: fake_crm,
    )


def configure_crm(fake_db: Any, user_id: str = "user-1") -> None:
    fake_db.rows(USER_SETTINGS_TABLE).append(
        {"user_id": user_id, "hubspot_api_key": "pat", "hubspot_enabled": True}
    )


class TestProcessCall:
    """Processing one stored call."""

    @pytest.mark.asyncio
    async def test_full_pipeline_with_crm(
        self, processor: CallProcessor, call_store: CallStore, fake_db: Any, fake_crm: Any
    ) -> None:
        configure_crm(fake_db)
        call = await call_store.create_call("user-1", "Acme", "Jane: We need SSO.")

        report = await processor.process_call(call.id)

        assert report.processed
        assert report.crm_synced
        assert report.tickets_created == 1
        assert report.deals_created == 1
        assert len(report.contact_ids) == 1
        stored = await call_store.get_call(call.id)
        assert stored.processed
        assert stored.processing_status == ProcessingStatus.COMPLETED
        assert stored.summary == "Jane asked about SSO."
        assert stored.topics == ["SSO"]
        assert stored.crm_contact_ids == report.contact_ids
        assert json.loads(stored.participants) == [{"name": "Jane Doe", "email": "jane@acme.com"}]
        assert stored.meeting is not None and stored.meeting["title"] == "Discovery"
        assert len(fake_db.rows(ACTIONABLES_TABLE)) == 2

    @pytest.mark.asyncio
    async def test_failed_ticket_still_marks_call_processed(
        self,
        processor: CallProcessor,
        call_store: CallStore,
        extractor: MagicMock,
        fake_db: Any,
        fake_crm: Any,
    ) -> None:
        configure_crm(fake_db)
        extractor.extract.return_value = make_bundle(tickets=3, deals=0)
        fake_crm.fail_when = lambda kind, props: (
            kind == "tickets" and props["subject"] == "Ticket 2"
        )
        call = await call_store.create_call("user-1", "Acme", "Jane: We need SSO.")

        report = await processor.process_call(call.id)

        assert report.tickets_created == 2
        assert len(report.errors) == 1
        assert len(fake_crm.created_of("notes")) == 1
        assert len(fake_crm.created_of("meetings")) == 1
        assert (await call_store.get_call(call.id)).processed

    @pytest.mark.asyncio
    async def test_crm_not_configured_skips_sync(
        self, processor: CallProcessor, call_store: CallStore, fake_crm: Any
    ) -> None:
        call = await call_store.create_call("user-1", "Acme", "Jane: hi")

        report = await processor.process_call(call.id)

        assert report.processed
        assert report.crm_synced is False
        assert report.tickets_created == 0
        assert fake_crm.created == []
        assert (await call_store.get_call(call.id)).processed

    @pytest.mark.asyncio
    async def test_already_processed_call_is_skipped(
        self, processor: CallProcessor, call_store: CallStore, extractor: MagicMock
    ) -> None:
        call = await call_store.create_call("user-1", "Acme", "Jane: hi")
        await call_store.update_call(call.id, {"processed": True})

        report = await processor.process_call(call.id)

        assert report.processed
        extractor.extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_call(self, processor: CallProcessor) -> None:
        with pytest.raises(CallNotFoundError):
            await processor.process_call("nope")

    @pytest.mark.asyncio
    async def test_extraction_failure_counts_attempt(
        self, processor: CallProcessor, call_store: CallStore, extractor: MagicMock
    ) -> None:
        extractor.extract.side_effect = ExtractionError("response is not valid JSON")
        call = await call_store.create_call("user-1", "Acme", "Jane: hi")

        with pytest.raises(ExtractionError):
            await processor.process_call(call.id)

        stored = await call_store.get_call(call.id)
        assert stored.processed is False
        assert stored.processing_attempts == 1
        assert stored.processing_status == ProcessingStatus.FAILED
        assert stored.processing_error == "Extraction failed: response is not valid JSON"

    @pytest.mark.asyncio
    async def test_third_extraction_failure_parks_call(
        self, processor: CallProcessor, call_store: CallStore, extractor: MagicMock
    ) -> None:
        extractor.extract.side_effect = ExtractionError("bad")
        call = await call_store.create_call("user-1", "Acme", "Jane: hi")

        for _ in range(3):
            with pytest.raises(ExtractionError):
                await processor.process_call(call.id)

        stored = await call_store.get_call(call.id)
        assert stored.processing_attempts == 3
        assert stored.processed is True
        assert await call_store.list_unprocessed(limit=10) == []


class TestSweep:
    """Processing the unprocessed backlog."""

    @pytest.mark.asyncio
    async def test_sweep_processes_and_counts_failures(
        self, processor: CallProcessor, call_store: CallStore, extractor: MagicMock
    ) -> None:
        good = await call_store.create_call("user-1", "Good", "Jane: hi")
        bad = await call_store.create_call("user-1", "Bad", "Bob: hi")

        async def extract(transcription: str, *_args: Any) -> ExtractedBundle:
            if transcription.startswith("Bob"):
                raise ExtractionError("bad")
            return make_bundle()

        extractor.extract.side_effect = extract

        stats = await processor.process_unprocessed_calls(limit=10)

        assert stats == {"total_checked": 2, "processed": 1, "failed": 1}
        assert (await call_store.get_call(good.id)).processed
        assert (await call_store.get_call(bad.id)).processing_attempts == 1

    @pytest.mark.asyncio
    async def test_empty_sweep(self, processor: CallProcessor) -> None:
        stats = await processor.process_unprocessed_calls(limit=5)

        assert stats == {"total_checked": 0, "processed": 0, "failed": 0}
