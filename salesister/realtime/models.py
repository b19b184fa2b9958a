"""Value objects flowing through the live-call pipeline."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from salesister.core.result import ErrorKind

UNKNOWN_SPEAKER = "Unknown"


@dataclass(frozen=True)
class CaptionSample:
    """One visible caption line at the moment of a surface mutation."""

    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    speaker_label: str = UNKNOWN_SPEAKER


@dataclass(frozen=True)
class UtteranceChunk:
    """One speaker's contiguous spoken segment. Immutable once emitted."""

    text: str
    speaker: str
    completed_at: datetime

    def as_transcript_line(self) -> str:
        return f"{self.speaker}: {self.text}"


@dataclass(frozen=True)
class Suggestion:
    """A single suggestion surfaced to the user."""

    text: str
    generated_at: datetime


@dataclass(frozen=True)
class SuggestionResult:
    """Outcome of one suggestion request.

    ``suggestions`` holds at most three non-empty strings. ``summary`` is the
    conversation summary to carry forward (updated, or the previous one).
    ``error`` is set for every non-success path, including the fallback
    triple returned on unparseable output.
    """

    suggestions: tuple[str, ...] = ()
    summary: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_suggestions(self, generated_at: datetime | None = None) -> list[Suggestion]:
        stamp = generated_at or datetime.now(UTC)
        return [Suggestion(text=text, generated_at=stamp) for text in self.suggestions]
