"""Request and response models for the call ingestion API."""

import json
from typing import Any

from pydantic import BaseModel, Field

from salesister.core.exceptions import ValidationError

REQUIRED_STRING_FIELDS = ("userId", "title", "transcription")


class CreateCallRequest(BaseModel):
    """Body of ``POST /api/calls/create``."""

    user_id: str = Field(..., description="Owner of the call")
    title: str = Field(..., description="Call title")
    transcription: str = Field(..., description="Full speaker-attributed transcript")
    participants: str = Field("[]", description="Participants as a JSON array string")
    duration: float | None = Field(None, description="Call length in seconds")
    recording_url: str | None = Field(None, description="Link to the call recording")

    @classmethod
    def from_body(cls, body: Any) -> "CreateCallRequest":
        """Validate a decoded JSON body.

        Raises:
            ValidationError: ``"<field> is required"`` for the first required
                field that is missing or not a non-empty string.
        """
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        for name in REQUIRED_STRING_FIELDS:
            value = body.get(name)
            if not isinstance(value, str) or not value:
                raise ValidationError(f"{name} is required", field=name)

        participants = body.get("participants")
        if isinstance(participants, list):
            participants = json.dumps(participants)
        elif not isinstance(participants, str) or not participants:
            participants = "[]"

        duration = body.get("duration")
        if isinstance(duration, bool) or not isinstance(duration, int | float):
            duration = None

        recording_url = body.get("recordingUrl")
        if not isinstance(recording_url, str) or not recording_url:
            recording_url = None

        return cls(
            user_id=body["userId"],
            title=body["title"],
            transcription=body["transcription"],
            participants=participants,
            duration=duration,
            recording_url=recording_url,
        )


class CreateCallResponse(BaseModel):
    """Response of ``POST /api/calls/create``.

    ``success`` reports persistence; ``processed`` reports extraction and
    CRM sync, which may fail independently.
    """

    success: bool = Field(True, description="The call was stored")
    call_id: str = Field(..., serialization_alias="callId")
    processed: bool = Field(..., description="Extraction and sync ran to completion")
    tickets_created: int | None = Field(None, serialization_alias="ticketsCreated")
    deals_created: int | None = Field(None, serialization_alias="dealsCreated")
    hubspot_sync_enabled: bool | None = Field(None, serialization_alias="hubspotSyncEnabled")
    processing_error: str | None = Field(None, serialization_alias="processingError")
    message: str = ""

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
