"""Per-call session wiring captions, suggestions and the final transcript."""

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from salesister.realtime.ingestion_client import CallPayload
from salesister.realtime.models import UNKNOWN_SPEAKER, SuggestionResult, UtteranceChunk
from salesister.realtime.segmenter import CaptionSegmenter
from salesister.realtime.suggestions import SuggestionPipeline
from salesister.realtime.timers import TimerScheduler, monotonic_ms

logger = logging.getLogger(__name__)

MAX_HISTORY = 10

SuggestionCallback = Callable[[UtteranceChunk, SuggestionResult], None]


class CallSession:
    """Owns one call's segmenter, rolling history, summary and transcript.

    Suggestions are requested only for chunks spoken by someone other than
    the local user (and never for an unattributed speaker). Requests run as
    background tasks so chunk ingestion never waits on the network.

    Args:
        pipeline: Suggestion pipeline shared for this call.
        title: Call title used in the ingestion payload.
        local_speaker: Caption label of the local user.
        participants: Known participants (name/email/company/role dicts).
        on_suggestions: Called with each chunk's SuggestionResult.
        scheduler: Timer scheduler for the segmenter.
        clock: Monotonic clock in milliseconds.
    """

    def __init__(
        self,
        pipeline: SuggestionPipeline,
        title: str = "Sales call",
        local_speaker: str | None = None,
        participants: list[dict[str, Any]] | None = None,
        on_suggestions: SuggestionCallback | None = None,
        scheduler: TimerScheduler | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self._pipeline = pipeline
        self.title = title
        self.local_speaker = local_speaker
        self._participants = list(participants or [])
        self._on_suggestions = on_suggestions
        self._clock = clock
        self._started_at = clock()
        self._ended_at: float | None = None

        self._history: deque[UtteranceChunk] = deque(maxlen=MAX_HISTORY)
        self._transcript: list[str] = []
        self._summary: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        self.segmenter = CaptionSegmenter(self._handle_chunk, scheduler=scheduler, clock=clock)

    @property
    def history(self) -> list[UtteranceChunk]:
        return list(self._history)

    @property
    def summary(self) -> str | None:
        return self._summary

    @property
    def transcript(self) -> str:
        return "\n\n".join(self._transcript)

    @property
    def pending_requests(self) -> int:
        return len(self._tasks)

    def ingest(self, text: str, speaker: str | None) -> None:
        """Feed one caption snapshot."""
        self.segmenter.ingest(text, speaker)

    def _handle_chunk(self, chunk: UtteranceChunk) -> None:
        previous = list(self._history)
        self._history.append(chunk)
        self._transcript.append(chunk.as_transcript_line())
        self._remember_speaker(chunk.speaker)

        if not self._should_suggest(chunk):
            return
        task = asyncio.create_task(self._request_suggestions(chunk, previous))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _should_suggest(self, chunk: UtteranceChunk) -> bool:
        if chunk.speaker == UNKNOWN_SPEAKER:
            return False
        return not (self.local_speaker and chunk.speaker == self.local_speaker)

    async def _request_suggestions(
        self, chunk: UtteranceChunk, history: list[UtteranceChunk]
    ) -> None:
        result = await self._pipeline.generate(chunk, history, self._summary)
        if result.summary:
            self._summary = result.summary
        if result.error:
            logger.debug("No suggestions this turn", extra={"reason": result.error})
        if self._on_suggestions is None:
            return
        try:
            self._on_suggestions(chunk, result)
        except Exception:
            logger.exception("Suggestion callback failed")

    def _remember_speaker(self, speaker: str) -> None:
        if speaker == UNKNOWN_SPEAKER:
            return
        if any(p.get("name") == speaker for p in self._participants):
            return
        self._participants.append({"name": speaker})

    async def drain(self) -> None:
        """Wait for in-flight suggestion requests to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def end(self) -> CallPayload:
        """Stop segmentation, let in-flight suggestions settle, build the payload."""
        self.segmenter.close()
        if self._ended_at is None:
            self._ended_at = self._clock()
        await self.drain()
        return self.build_payload()

    def build_payload(self, recording_url: str | None = None) -> CallPayload:
        end = self._ended_at if self._ended_at is not None else self._clock()
        return CallPayload(
            title=self.title,
            transcription=self.transcript,
            participants=json.dumps(self._participants),
            duration=round((end - self._started_at) / 1000.0, 3),
            recording_url=recording_url,
        )
