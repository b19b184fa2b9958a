"""Tests for the call ingestion route."""

from collections.abc import Iterator
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from salesister.core.exceptions import ExtractionError
from salesister.db.call_store import CALLS_TABLE, CallStore, get_call_store
from salesister.main import app
from salesister.services.call_processing import ProcessingReport, get_call_processor

URL = "/api/calls/create"

VALID_BODY = {
    "userId": "user-1",
    "title": "Acme discovery",
    "transcription": "Jane Doe: We need SSO.",
    "participants": '[{"name": "Jane Doe"}]',
    "duration": 312.5,
}


@pytest.fixture
def processor() -> MagicMock:
    mock = MagicMock()
    mock.process_call = AsyncMock(
        side_effect=lambda call_id: ProcessingReport(
            call_id=call_id, processed=True, tickets_created=1, deals_created=1, crm_synced=True
        )
    )
    return mock


@pytest.fixture
def test_client(fake_db: Any, fixed_now: datetime, processor: MagicMock) -> Iterator[TestClient]:
    """Test client with an in-memory store and a mocked processor."""
    store = CallStore(client=fake_db, clock=lambda: fixed_now)
    app.dependency_overrides[get_call_store] = lambda: store
    app.dependency_overrides[get_call_processor] = lambda: processor
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_call_stores_and_processes(
    test_client: TestClient, fake_db: Any, processor: MagicMock
) -> None:
    """A valid call is stored, processed inline and reported."""
    response = test_client.post(URL, json=VALID_BODY)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    assert data["processed"] is True
    assert data["ticketsCreated"] == 1
    assert data["dealsCreated"] == 1
    assert data["hubspotSyncEnabled"] is True
    assert data["message"] == "Call created and processed successfully!"
    rows = fake_db.rows(CALLS_TABLE)
    assert len(rows) == 1
    assert rows[0]["id"] == data["callId"]
    assert rows[0]["duration"] == 312.5
    processor.process_call.assert_awaited_once_with(data["callId"])
    assert response.headers["access-control-allow-origin"] == "*"


def test_missing_title_is_rejected(test_client: TestClient, fake_db: Any) -> None:
    """A body without a title is rejected and nothing is stored."""
    body = {k: v for k, v in VALID_BODY.items() if k != "title"}

    response = test_client.post(URL, json=body)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"success": False, "error": "title is required"}
    assert fake_db.rows(CALLS_TABLE) == []
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.parametrize("field", ["userId", "transcription"])
def test_other_required_fields(test_client: TestClient, field: str) -> None:
    response = test_client.post(URL, json={**VALID_BODY, field: ""})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == f"{field} is required"


def test_invalid_json_is_rejected(test_client: TestClient) -> None:
    response = test_client.post(
        URL, content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["success"] is False


def test_participants_list_is_accepted(test_client: TestClient, fake_db: Any) -> None:
    response = test_client.post(URL, json={**VALID_BODY, "participants": [{"name": "Jane Doe"}]})

    assert response.status_code == status.HTTP_200_OK
    assert fake_db.rows(CALLS_TABLE)[0]["participants"] == '[{"name": "Jane Doe"}]'


def test_processing_failure_still_succeeds(
    test_client: TestClient, fake_db: Any, processor: MagicMock
) -> None:
    """The call is stored even when inline processing fails."""
    processor.process_call.side_effect = ExtractionError("response is not valid JSON")

    response = test_client.post(URL, json=VALID_BODY)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    assert data["processed"] is False
    assert data["processingError"] == "Extraction failed: response is not valid JSON"
    assert "processed again automatically" in data["message"]
    assert len(fake_db.rows(CALLS_TABLE)) == 1


def test_store_failure_is_500(test_client: TestClient, fake_db: Any) -> None:
    fake_db.failing_tables.add(CALLS_TABLE)

    response = test_client.post(URL, json=VALID_BODY)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {
        "success": False,
        "error": "A database error occurred. Please try again.",
    }
    assert response.headers["access-control-allow-origin"] == "*"


def test_preflight(test_client: TestClient) -> None:
    response = test_client.options(URL)

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type"
