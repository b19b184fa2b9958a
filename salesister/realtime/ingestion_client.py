"""Client that submits a finished call to the ingestion endpoint."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from salesister.core.config import settings

logger = logging.getLogger(__name__)

ERROR_NO_USER_ID = "User ID not configured"


@dataclass(frozen=True)
class CallPayload:
    """A finished call as produced by a CallSession (user id added on submit)."""

    title: str
    transcription: str
    participants: str = "[]"
    duration: float | None = None
    recording_url: str | None = None

    def to_request_body(self, user_id: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "userId": user_id,
            "title": self.title,
            "transcription": self.transcription,
            "participants": self.participants,
        }
        if self.duration is not None:
            body["duration"] = self.duration
        if self.recording_url:
            body["recordingUrl"] = self.recording_url
        return body


class IngestionClient:
    """Posts finished calls to ``POST /api/calls/create``.

    Args:
        endpoint: Full URL of the ingestion endpoint.
        user_id: Account the calls belong to; submission is refused without one.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        endpoint: str | None = None,
        user_id: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint or settings.INGESTION_ENDPOINT
        self.user_id = user_id if user_id is not None else (settings.INGESTION_USER_ID or None)
        self._timeout = timeout
        self._transport = transport

    def has_user_id(self) -> bool:
        return bool(self.user_id)

    async def submit(self, payload: CallPayload) -> dict[str, Any]:
        """Submit a call.

        Returns:
            The endpoint's JSON body on success, otherwise
            ``{"success": False, "error": ...}``. Never raises.
        """
        if not self.user_id:
            return {"success": False, "error": ERROR_NO_USER_ID}

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.endpoint,
                    json=payload.to_request_body(self.user_id),
                    timeout=self._timeout,
                )
        except httpx.RequestError as e:
            logger.error("Call submission failed: %s", str(e))
            return {"success": False, "error": str(e) or type(e).__name__}

        try:
            data: dict[str, Any] = response.json()
        except ValueError:
            data = {}

        if response.is_success and data.get("success"):
            logger.info("Call submitted", extra={"call_id": data.get("callId")})
            return data

        logger.error(
            "Call submission rejected",
            extra={"status_code": response.status_code, "error": data.get("error")},
        )
        return {"success": False, "error": data.get("error") or "Failed to submit call"}
