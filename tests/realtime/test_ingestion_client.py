"""Tests for the call submission client."""

import json

import httpx
import pytest

from salesister.realtime.ingestion_client import ERROR_NO_USER_ID, CallPayload, IngestionClient

ENDPOINT = "http://testserver/api/calls/create"


def make_payload() -> CallPayload:
    return CallPayload(
        title="Acme discovery",
        transcription="Jane Doe: We need SSO.",
        participants='[{"name": "Jane Doe"}]',
        duration=312.5,
    )


class TestSubmit:
    """Submitting finished calls."""

    @pytest.mark.asyncio
    async def test_refuses_without_user_id(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = IngestionClient(ENDPOINT, user_id="", transport=httpx.MockTransport(handler))

        result = await client.submit(make_payload())

        assert result == {"success": False, "error": ERROR_NO_USER_ID}
        assert not client.has_user_id()

    @pytest.mark.asyncio
    async def test_posts_camel_case_body(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "callId": "call-1", "processed": True})

        client = IngestionClient(ENDPOINT, user_id="user-1", transport=httpx.MockTransport(handler))

        result = await client.submit(make_payload())

        assert result["callId"] == "call-1"
        assert seen == {
            "userId": "user-1",
            "title": "Acme discovery",
            "transcription": "Jane Doe: We need SSO.",
            "participants": '[{"name": "Jane Doe"}]',
            "duration": 312.5,
        }

    @pytest.mark.asyncio
    async def test_rejection_returns_endpoint_error(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"success": False, "error": "title is required"})

        client = IngestionClient(ENDPOINT, user_id="user-1", transport=httpx.MockTransport(handler))

        result = await client.submit(make_payload())

        assert result == {"success": False, "error": "title is required"}

    @pytest.mark.asyncio
    async def test_non_json_failure(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        client = IngestionClient(ENDPOINT, user_id="user-1", transport=httpx.MockTransport(handler))

        result = await client.submit(make_payload())

        assert result == {"success": False, "error": "Failed to submit call"}

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = IngestionClient(ENDPOINT, user_id="user-1", transport=httpx.MockTransport(handler))

        result = await client.submit(make_payload())

        assert result["success"] is False
        assert "connection refused" in result["error"]
