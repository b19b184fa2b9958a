"""Pydantic models for the entity bundle extracted from a call transcript.

The model's JSON is validated here before anything downstream touches it:
``note`` and ``meeting`` are mandatory, tickets and deals are normalized
with CRM defaults so create calls never miss required properties.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_TICKET_SUBJECT = "Untitled Ticket"
DEFAULT_TICKET_PIPELINE = "0"
DEFAULT_TICKET_STAGE = "1"
DEFAULT_DEAL_NAME = "Untitled Deal"
DEFAULT_DEAL_STAGE = "appointmentscheduled"
DEFAULT_DEAL_PIPELINE = "default"
DEFAULT_NOTE_SUBJECT = "Call Summary"


class TicketPriority(str, Enum):
    """HubSpot ticket priorities."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


def _drop_empty(data: Any) -> Any:
    """Remove None / blank-string values so field defaults apply."""
    if not isinstance(data, dict):
        return data
    return {
        key: value
        for key, value in data.items()
        if value is not None and not (isinstance(value, str) and not value.strip())
    }


def _as_object_list(value: Any) -> list[dict[str, Any]]:
    """Coerce an optional array of objects; anything else becomes empty."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class ExtractedContact(BaseModel):
    """A contact the model found in the conversation."""

    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    company: str | None = None
    jobtitle: str | None = None
    phone: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        data = _drop_empty(data)
        if not isinstance(data, dict):
            return data
        # Phone numbers often come back as bare numbers; nested values are unusable.
        for key in list(data):
            if isinstance(data[key], int | float):
                data[key] = str(data[key])
            elif isinstance(data[key], dict | list):
                del data[key]
        return data

    @property
    def full_name(self) -> str | None:
        """``"firstname lastname"`` when both parts are known."""
        if self.firstname and self.lastname:
            return f"{self.firstname} {self.lastname}"
        return None

    def populated_fields(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class TicketDraft(BaseModel):
    """Normalized ticket ready for CRM creation."""

    model_config = ConfigDict(extra="ignore")

    subject: str = DEFAULT_TICKET_SUBJECT
    content: str = ""
    hs_ticket_priority: TicketPriority = TicketPriority.MEDIUM
    hs_pipeline: str = DEFAULT_TICKET_PIPELINE
    hs_pipeline_stage: str = DEFAULT_TICKET_STAGE

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        data = _drop_empty(data)
        if not isinstance(data, dict):
            return data
        priority = str(data.get("hs_ticket_priority", "")).upper()
        if priority in TicketPriority.__members__:
            data["hs_ticket_priority"] = priority
        else:
            data.pop("hs_ticket_priority", None)
        for key in ("hs_pipeline", "hs_pipeline_stage"):
            if key in data:
                data[key] = str(data[key])
        if "content" not in data:
            data["content"] = data.get("subject", DEFAULT_TICKET_SUBJECT)
        return data

    def to_crm_properties(self) -> dict[str, str]:
        return {
            "subject": self.subject,
            "content": self.content,
            "hs_ticket_priority": self.hs_ticket_priority.value,
            "hs_pipeline": self.hs_pipeline,
            "hs_pipeline_stage": self.hs_pipeline_stage,
        }


class DealDraft(BaseModel):
    """Normalized deal ready for CRM creation."""

    model_config = ConfigDict(extra="ignore")

    dealname: str = DEFAULT_DEAL_NAME
    dealstage: str = DEFAULT_DEAL_STAGE
    pipeline: str = DEFAULT_DEAL_PIPELINE
    amount: str | None = None
    closedate: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        data = _drop_empty(data)
        if isinstance(data, dict) and isinstance(data.get("amount"), int | float):
            data["amount"] = str(data["amount"])
        return data

    def to_crm_properties(self) -> dict[str, str]:
        properties = {
            "dealname": self.dealname,
            "dealstage": self.dealstage,
            "pipeline": self.pipeline,
        }
        if self.amount is not None:
            properties["amount"] = self.amount
        if self.closedate is not None:
            properties["closedate"] = self.closedate
        return properties


class NoteDraft(BaseModel):
    """Call summary note. The body is mandatory."""

    subject: str = DEFAULT_NOTE_SUBJECT
    body: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        return _drop_empty(data)


class MeetingDraft(BaseModel):
    """Meeting entry logging the call. The title is mandatory."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    body: str = ""
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        data = _drop_empty(data)
        if isinstance(data, dict) and "body" not in data and "title" in data:
            data["body"] = data["title"]
        return data


class RawExtraction(BaseModel):
    """The model's response, validated before contact merging."""

    model_config = ConfigDict(extra="ignore")

    contacts: list[ExtractedContact] = Field(default_factory=list)
    tickets: list[TicketDraft] = Field(default_factory=list)
    deals: list[DealDraft] = Field(default_factory=list)
    note: NoteDraft
    meeting: MeetingDraft
    topics: list[str] = Field(default_factory=list)

    @field_validator("contacts", "tickets", "deals", mode="before")
    @classmethod
    def _optional_arrays(cls, value: Any) -> list[dict[str, Any]]:
        return _as_object_list(value)

    @field_validator("topics", mode="before")
    @classmethod
    def _topic_strings(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(t).strip() for t in value if isinstance(t, str | int | float) and str(t).strip()]


class ExtractedBundle(BaseModel):
    """Everything one call projects into the CRM.

    ``contacts`` are participant records after merging (free-form dicts:
    participant keys such as ``name``/``role`` next to CRM keys such as
    ``firstname``/``jobtitle``).
    """

    contacts: list[dict[str, Any]] = Field(default_factory=list)
    tickets: list[TicketDraft] = Field(default_factory=list)
    deals: list[DealDraft] = Field(default_factory=list)
    note: NoteDraft
    meeting: MeetingDraft
    topics: list[str] = Field(default_factory=list)
