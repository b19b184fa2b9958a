"""Entity extraction from a finished call transcript.

One LLM call turns the transcript into CRM-ready entities. The response is
validated with pydantic before anything is returned; a response without a
note or a meeting, or one that is not JSON at all, fails the whole
extraction.
"""

import json
import logging
import re
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from salesister.core.config import settings
from salesister.core.exceptions import ExtractionError
from salesister.core.llm import LLMClient
from salesister.models.call import UserSettings, parse_participants
from salesister.models.extraction import ExtractedBundle, ExtractedContact, RawExtraction

logger = logging.getLogger(__name__)

EXTRACTION_MAX_TOKENS = 4096

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = """You review sales call transcripts and decide what should be recorded in HubSpot CRM.

From the transcript, work out:

1. TICKETS, only for things that need follow-up work: customer questions or
   problems left open, technical issues, support or feature requests, bugs.
   Routine scheduling and general sales talk are not tickets.
2. DEALS, only when there is real buying intent: pricing or product
   discussion, budget, timeline or procurement steps, agreement to move
   forward, contract terms. Discovery calls without clear intent are not deals.
3. NOTE, always: a 2-3 sentence summary of the call and what was shared.
4. MEETING, always: an entry that logs the call, titled from the call content,
   with the main discussion points in the body.
5. CONTACTS: people who took part, with any details mentioned in the call.
6. TOPICS: a short list of the subjects discussed.
{context}
Respond with one JSON object shaped exactly like this:
{{
  "contacts": [{{"email": "", "firstname": "", "lastname": "", "company": "", "jobtitle": "", "phone": ""}}],
  "tickets": [{{"subject": "", "content": "", "hs_ticket_priority": "LOW|MEDIUM|HIGH|URGENT", "hs_pipeline": "0", "hs_pipeline_stage": "1"}}],
  "deals": [{{"dealname": "", "dealstage": "appointmentscheduled", "pipeline": "default", "amount": "", "closedate": "YYYY-MM-DD"}}],
  "note": {{"subject": "Call Summary", "body": ""}},
  "meeting": {{"title": "", "body": "", "startTime": "ISO 8601", "endTime": "ISO 8601"}},
  "topics": [""]
}}

Rules:
- Be conservative. Creating too few tickets or deals is better than too many.
- note and meeting are required in every response.
- Use MEDIUM ticket priority when unsure.
- Deal stages: appointmentscheduled, qualifiedtobuy, presentationscheduled,
  decisionmakerboughtin, closedwon, closedlost. The deal pipeline is "default".
- Return JSON only, without markdown or code fences."""


def build_context(user_settings: UserSettings | None) -> str:
    """Render the user's optional context sections for the system prompt."""
    if user_settings is None:
        return ""
    sections = [
        ("System Context", user_settings.system_prompt),
        ("Sales Script", user_settings.sales_script),
        ("Company Documentation", user_settings.company_docs),
    ]
    rendered = "".join(f"\n{title}:\n{text}\n" for title, text in sections if text)
    return rendered


def build_user_prompt(
    transcription: str,
    participants: list[dict[str, Any]],
    call_time: str,
) -> str:
    lines = [
        "Analyze this sales call and decide which HubSpot entities to create.",
        "",
        f"Call Time: {call_time}",
    ]
    if participants:
        lines.append(f"Known participants: {json.dumps(participants)}")
    lines.extend(["", "Transcription:", transcription])
    return "\n".join(lines)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = _CODE_FENCE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _matches(participant: dict[str, Any], contact: ExtractedContact) -> bool:
    if contact.email and participant.get("email") == contact.email:
        return True
    full_name = contact.full_name
    return bool(full_name and participant.get("name") == full_name)


def merge_contacts(
    participants: list[dict[str, Any]],
    contacts: list[ExtractedContact],
) -> list[dict[str, Any]]:
    """Merge extracted contacts into the known participants.

    A contact matches a participant on email, otherwise on the exact
    ``"firstname lastname"`` string against the participant's ``name``.
    Matched participants only gain fields they do not already have.
    Unmatched contacts are appended.

    Returns:
        A new list; the input dicts are not mutated.
    """
    merged = [dict(p) for p in participants]
    for contact in contacts:
        target = next((p for p in merged if _matches(p, contact)), None)
        fields = contact.populated_fields()
        if target is None:
            if fields:
                merged.append(fields)
            continue
        for key, value in fields.items():
            if not target.get(key):
                target[key] = value
    return merged


class EntityExtractor:
    """Turns a transcript into an ExtractedBundle with one LLM call.

    Args:
        llm_client: Client used for the completion; built from settings
            when omitted.
    """

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self._llm = llm_client or LLMClient(
            model=settings.EXTRACTION_MODEL,
            api_key=settings.LLM_API_KEY.get_secret_value() or None,
        )

    async def extract(
        self,
        transcription: str,
        participants_json: str | None = "[]",
        user_settings: UserSettings | None = None,
        call_timestamp: datetime | None = None,
    ) -> ExtractedBundle:
        """Extract contacts, tickets, deals, note, meeting and topics.

        Args:
            transcription: The full call transcript.
            participants_json: Known participants as a JSON array string.
            user_settings: Optional context (system prompt, script, docs).
            call_timestamp: When the call happened; defaults to now.

        Returns:
            The validated bundle with contacts merged into the participants.

        Raises:
            ExtractionError: If the response is empty, not JSON, or misses
                the mandatory note or meeting.
            ExternalServiceError: If the LLM call itself fails.
        """
        participants = parse_participants(participants_json)
        call_time = (call_timestamp or datetime.now(UTC)).isoformat()

        system_prompt = SYSTEM_PROMPT.format(context=build_context(user_settings))
        user_prompt = build_user_prompt(transcription, participants, call_time)

        raw_text = await self._llm.generate_json(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=EXTRACTION_MAX_TOKENS,
            temperature=settings.EXTRACTION_TEMPERATURE,
        )
        raw = self._parse(raw_text)

        meeting = raw.meeting
        if meeting.start_time is None or meeting.end_time is None:
            meeting = meeting.model_copy(
                update={
                    "start_time": meeting.start_time or call_time,
                    "end_time": meeting.end_time or call_time,
                }
            )

        bundle = ExtractedBundle(
            contacts=merge_contacts(participants, raw.contacts),
            tickets=raw.tickets,
            deals=raw.deals,
            note=raw.note,
            meeting=meeting,
            topics=raw.topics,
        )
        logger.info(
            "Entities extracted",
            extra={
                "contacts": len(bundle.contacts),
                "tickets": len(bundle.tickets),
                "deals": len(bundle.deals),
                "topics": len(bundle.topics),
            },
        )
        return bundle

    def _parse(self, raw_text: str) -> RawExtraction:
        text = strip_code_fences(raw_text or "")
        if not text:
            raise ExtractionError("empty response from model")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ExtractionError(f"response is not valid JSON: {e}", raw_response=text) from e
        if not isinstance(data, dict):
            raise ExtractionError("response is not a JSON object", raw_response=text)
        try:
            return RawExtraction.model_validate(data)
        except PydanticValidationError as e:
            problems = ", ".join(
                ".".join(str(part) for part in err["loc"]) or "response" for err in e.errors()
            )
            raise ExtractionError(f"invalid or missing fields: {problems}", raw_response=text) from e


_extractor: EntityExtractor | None = None


def get_entity_extractor() -> EntityExtractor:
    """Get or create the shared EntityExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = EntityExtractor()
    return _extractor
