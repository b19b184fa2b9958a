"""Live suggestion generation for the other party's utterances.

Each request is gated by a fail-fast minimum interval (no queueing), keeps a
rolling conversation summary so prompts stay bounded on long calls, and
parses model output tolerantly.
"""

import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from salesister.core.config import Settings
from salesister.core.exceptions import ExternalServiceError
from salesister.core.llm import LLMClient
from salesister.core.result import ErrorKind
from salesister.realtime.models import SuggestionResult, UtteranceChunk
from salesister.realtime.timers import monotonic_ms

logger = logging.getLogger(__name__)

MIN_REQUEST_INTERVAL_MS = 5000
MAX_SUGGESTIONS = 3
SUMMARY_HISTORY_THRESHOLD = 3
SUMMARY_FOLD_WINDOW = 3

ERROR_RATE_LIMITED = "Rate limited"
ERROR_NO_API_KEY = "No suggestions API key configured"
ERROR_EMPTY_TEXT = "Empty caption text"
ERROR_PARSE_FAILED = "Failed to parse suggestions"

FALLBACK_SUGGESTIONS: tuple[str, ...] = (
    "Could you elaborate on that?",
    "That's interesting, tell me more",
    "What are the next steps?",
)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")

SUGGESTION_SYSTEM_PROMPT = """You assist a salesperson during a live call.
You receive the latest statement made by the prospect and, when available,
a summary of the conversation so far and the seller's own context.

First decide whether the statement is actionable: a real question about the
product, pricing or implementation, an objection, a buying signal, a concrete
use case, or a request for information or next steps. Greetings,
acknowledgements, filler, meeting logistics and fragments are NOT actionable.
When in doubt, treat it as not actionable.

If it is not actionable, reply with exactly: ["", "", ""]

If it is actionable, reply with a JSON array of exactly 3 short informative
statements (10-15 words each) the salesperson could say next. Statements,
not questions. Reply with the JSON array only."""

SUMMARY_SYSTEM_PROMPT = """You maintain a running summary of a sales call.
Write at most 3 sentences covering who is involved, what the prospect needs,
objections raised and agreed next steps. Reply with the summary text only."""


@dataclass(frozen=True)
class SuggestionConfig:
    """Immutable configuration for a SuggestionPipeline."""

    suggestions_api_key: str | None
    summary_api_key: str | None
    model: str
    min_request_interval_ms: int = MIN_REQUEST_INTERVAL_MS
    sales_context: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, sales_context: str | None = None) -> "SuggestionConfig":
        return cls(
            suggestions_api_key=settings.suggestions_api_key,
            summary_api_key=settings.summary_api_key,
            model=settings.SUGGESTIONS_MODEL,
            min_request_interval_ms=settings.SUGGESTIONS_MIN_INTERVAL_MS,
            sales_context=sales_context,
        )


def parse_suggestions(text: str) -> list[str] | None:
    """Parse model output into suggestion strings.

    Tries the outermost JSON array first, then newline splitting when at
    least three usable lines exist.

    Returns:
        The non-empty suggestions (possibly an empty list when the model
        returned only blanks), or None when the output is unparseable.
    """
    match = _JSON_ARRAY.search(text)
    if match:
        try:
            parsed: Any = json.loads(match.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [s.strip() for s in parsed if isinstance(s, str) and s.strip()]

    lines = [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith(("{", "["))
    ]
    if len(lines) >= MAX_SUGGESTIONS:
        return lines[:MAX_SUGGESTIONS]
    return None


def _format_history(chunks: Sequence[UtteranceChunk]) -> str:
    return "\n".join(chunk.as_transcript_line() for chunk in chunks)


class SuggestionPipeline:
    """Rate-limited suggestion generation with a rolling summary.

    Build it with ``await SuggestionPipeline.create(loader)`` when the
    configuration has to be loaded asynchronously; a pipeline never exists
    in a half-configured state.

    Args:
        config: Frozen pipeline configuration.
        suggestion_client: LLM client for suggestions (built from config if None).
        summary_client: LLM client for summaries (built from config if None).
        clock: Monotonic clock in milliseconds.
    """

    def __init__(
        self,
        config: SuggestionConfig,
        suggestion_client: LLMClient | None = None,
        summary_client: LLMClient | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self._config = config
        self._suggestion_client = suggestion_client or LLMClient(
            model=config.model, api_key=config.suggestions_api_key
        )
        self._summary_client = summary_client or LLMClient(
            model=config.model, api_key=config.summary_api_key
        )
        self._clock = clock
        self._last_request: float | None = None

    @classmethod
    async def create(
        cls,
        loader: Callable[[], Awaitable[SuggestionConfig]],
        **kwargs: Any,
    ) -> "SuggestionPipeline":
        """Await the configuration, then construct the pipeline."""
        config = await loader()
        return cls(config, **kwargs)

    @property
    def config(self) -> SuggestionConfig:
        return self._config

    def can_make_request(self) -> bool:
        """True if the minimum interval since the last request has elapsed."""
        if self._last_request is None:
            return True
        return self._clock() - self._last_request >= self._config.min_request_interval_ms

    async def generate(
        self,
        chunk: UtteranceChunk,
        history: Sequence[UtteranceChunk] = (),
        summary: str | None = None,
    ) -> SuggestionResult:
        """Generate up to three suggestions for one utterance.

        Args:
            chunk: The utterance to respond to.
            history: Earlier chunks of this call (most recent last).
            summary: Current conversation summary, if any.

        Returns:
            A SuggestionResult. Never raises.
        """
        if not self.can_make_request():
            return SuggestionResult(
                summary=summary, error=ERROR_RATE_LIMITED, error_kind=ErrorKind.RATE_LIMITED
            )
        if not self._config.suggestions_api_key:
            return SuggestionResult(
                summary=summary, error=ERROR_NO_API_KEY, error_kind=ErrorKind.NOT_CONFIGURED
            )
        if not chunk.text.strip():
            return SuggestionResult(
                summary=summary, error=ERROR_EMPTY_TEXT, error_kind=ErrorKind.INVALID_INPUT
            )

        self._last_request = self._clock()

        new_summary = await self._maintain_summary(history, summary)

        try:
            raw = await self._suggestion_client.generate_response(
                messages=[{"role": "user", "content": self._build_prompt(chunk, new_summary)}],
                system_prompt=SUGGESTION_SYSTEM_PROMPT,
                max_tokens=200,
                temperature=0.7,
                top_p=0.9,
            )
        except Exception as e:
            logger.warning("Suggestion request failed", extra={"error": str(e)})
            # A provider that answered with an error status gets no fallback
            rejected = isinstance(e, ExternalServiceError) and "upstream_status" in e.details
            return SuggestionResult(
                suggestions=() if rejected else FALLBACK_SUGGESTIONS,
                summary=new_summary,
                error=str(e),
                error_kind=ErrorKind.EXTERNAL_SERVICE,
            )

        suggestions = parse_suggestions(raw)
        if suggestions is None:
            logger.warning("Unparseable suggestion response", extra={"response": raw[:200]})
            return SuggestionResult(
                suggestions=FALLBACK_SUGGESTIONS,
                summary=new_summary,
                error=ERROR_PARSE_FAILED,
                error_kind=ErrorKind.PARSE_ERROR,
            )

        return SuggestionResult(
            suggestions=tuple(suggestions[:MAX_SUGGESTIONS]),
            summary=new_summary,
        )

    async def _maintain_summary(
        self,
        history: Sequence[UtteranceChunk],
        summary: str | None,
    ) -> str | None:
        """Generate or fold the summary once enough history exists.

        Failures keep the previous summary.
        """
        if len(history) < SUMMARY_HISTORY_THRESHOLD or not self._config.summary_api_key:
            return summary

        if summary:
            recent = history[-SUMMARY_FOLD_WINDOW:]
            prompt = (
                f"Current summary:\n{summary}\n\n"
                f"New conversation:\n{_format_history(recent)}\n\n"
                "Update the summary to include the new conversation."
            )
        else:
            prompt = f"Conversation:\n{_format_history(history)}\n\nSummarize this conversation."

        try:
            updated = await self._summary_client.generate_response(
                messages=[{"role": "user", "content": prompt}],
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                max_tokens=150,
                temperature=0.3,
            )
        except Exception:
            logger.warning("Summary update failed; keeping previous summary", exc_info=True)
            return summary

        return updated.strip() or summary

    def _build_prompt(self, chunk: UtteranceChunk, summary: str | None) -> str:
        sections = []
        if self._config.sales_context:
            sections.append(f"## Seller context\n{self._config.sales_context}")
        if summary:
            sections.append(f"## Conversation summary so far\n{summary}")
        sections.append(f'## Current statement\nThe prospect just said: "{chunk.text}"')
        return "\n\n".join(sections)
