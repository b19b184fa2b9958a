"""Caption segmentation: turns a continuously rewritten caption surface into
discrete, speaker-attributed utterance chunks.

Captions are corrected many times per second, so emitting on every change
would flood downstream consumers. A turn is cut when one of these holds:

- the speaker changes (the previous turn is emitted only if it lasted at
  least ``min_speaking_ms``, otherwise it is dropped as an interjection);
- the text ends a sentence and the turn has lasted ``min_speaking_ms``;
- the turn has lasted ``extended_speaking_ms`` (long monologues);
- the captions stop changing for ``chunk_timeout_ms`` (silence).

One segmenter instance owns the state for one call. It is not thread-safe
and must be driven from a single event loop.
"""

import logging
import re
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import Enum

from salesister.realtime.models import UNKNOWN_SPEAKER, CaptionSample, UtteranceChunk
from salesister.realtime.timers import (
    AsyncioTimerScheduler,
    TimerHandle,
    TimerScheduler,
    monotonic_ms,
)

logger = logging.getLogger(__name__)

MIN_SPEAKING_DURATION_MS = 4000
EXTENDED_SPEAKING_DURATION_MS = 8000
CHUNK_TIMEOUT_MS = 5000

_SENTENCE_END = re.compile(r"[.!?]\s*$")


class SegmenterState(str, Enum):
    """Segmenter lifecycle."""

    IDLE = "idle"  # no current speaker
    ACCUMULATING = "accumulating"  # buffering text for the current speaker
    CLOSED = "closed"  # destroyed; all input ignored


class CaptionSegmenter:
    """Per-call caption segmentation state machine.

    Args:
        on_chunk: Called synchronously with each emitted chunk. Exceptions it
            raises are logged and do not affect segmentation.
        scheduler: Deferred-callback scheduler for the silence timer.
        clock: Monotonic clock in milliseconds.
        wall_clock: Source of ``completed_at`` timestamps.
        min_speaking_ms: Minimum turn length worth emitting.
        extended_speaking_ms: Turn length that forces a cut.
        chunk_timeout_ms: Silence that ends a turn.
    """

    def __init__(
        self,
        on_chunk: Callable[[UtteranceChunk], None],
        scheduler: TimerScheduler | None = None,
        clock: Callable[[], float] = monotonic_ms,
        wall_clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        min_speaking_ms: float = MIN_SPEAKING_DURATION_MS,
        extended_speaking_ms: float = EXTENDED_SPEAKING_DURATION_MS,
        chunk_timeout_ms: float = CHUNK_TIMEOUT_MS,
    ) -> None:
        self._on_chunk = on_chunk
        self._scheduler = scheduler or AsyncioTimerScheduler()
        self._clock = clock
        self._wall_clock = wall_clock
        self._min_speaking_ms = min_speaking_ms
        self._extended_speaking_ms = extended_speaking_ms
        self._chunk_timeout_ms = chunk_timeout_ms

        self._closed = False
        self._current_speaker: str | None = None
        self._caption_buffer = ""
        self._last_caption_text = ""
        self._speaking_start = 0.0
        self._last_update_at = 0.0
        self._timer: TimerHandle | None = None
        self._chunks_emitted = 0

    @property
    def state(self) -> SegmenterState:
        if self._closed:
            return SegmenterState.CLOSED
        if self._current_speaker is None:
            return SegmenterState.IDLE
        return SegmenterState.ACCUMULATING

    @property
    def current_speaker(self) -> str | None:
        return self._current_speaker

    @property
    def buffer(self) -> str:
        return self._caption_buffer

    @property
    def chunks_emitted(self) -> int:
        return self._chunks_emitted

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def ingest_samples(self, samples: Sequence[CaptionSample]) -> None:
        """Process a snapshot of every visible caption line.

        The snapshot text is the space-joined line texts; the speaker is the
        label on the most recent line.
        """
        texts = [s.text.strip() for s in samples if s.text and s.text.strip()]
        if not texts:
            return
        speaker = samples[-1].speaker_label or UNKNOWN_SPEAKER
        self.ingest(" ".join(texts), speaker)

    def ingest(self, current_text: str, speaker: str | None) -> None:
        """Process one caption snapshot. Never blocks; never raises."""
        if self._closed:
            return
        if not current_text.strip() or current_text == self._last_caption_text:
            return

        self._last_caption_text = current_text
        now = self._clock()
        self._last_update_at = now
        speaker = speaker or UNKNOWN_SPEAKER

        if self._current_speaker is None:
            if speaker == UNKNOWN_SPEAKER:
                logger.debug("Ignoring caption with unknown speaker while idle")
                return
            self._start_turn(speaker, now, current_text)
        elif speaker != self._current_speaker and speaker != UNKNOWN_SPEAKER:
            elapsed = now - self._speaking_start
            if self._caption_buffer.strip() and elapsed >= self._min_speaking_ms:
                self._emit(now)
            else:
                logger.debug(
                    "Discarding short turn on speaker change",
                    extra={"speaker": self._current_speaker, "elapsed_ms": elapsed},
                )
            self._start_turn(speaker, now, current_text)
        else:
            self._caption_buffer = current_text

        self._check_triggers(now)

    def close(self) -> None:
        """Stop segmentation: cancel the silence timer and ignore later input."""
        if self._closed:
            return
        self._cancel_timer()
        self._closed = True
        self._caption_buffer = ""
        self._current_speaker = None
        logger.debug("Caption segmenter closed", extra={"chunks_emitted": self._chunks_emitted})

    def _start_turn(self, speaker: str, now: float, text: str) -> None:
        self._cancel_timer()
        self._current_speaker = speaker
        self._speaking_start = now
        self._caption_buffer = text

    def _check_triggers(self, now: float) -> None:
        text = self._caption_buffer.strip()
        if not text:
            return
        elapsed = now - self._speaking_start
        if _SENTENCE_END.search(text) and elapsed >= self._min_speaking_ms:
            self._emit(now)
        elif elapsed >= self._extended_speaking_ms:
            self._emit(now)
        else:
            self._arm_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._chunk_timeout_ms, self._on_silence)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_silence(self) -> None:
        self._timer = None
        if self._closed or self._current_speaker is None:
            return
        # Speaking time ends at the last caption change, not at timer fire
        spoken = self._last_update_at - self._speaking_start
        if self._caption_buffer.strip() and spoken >= self._min_speaking_ms:
            self._emit(self._clock())
        else:
            logger.debug(
                "Discarding short turn after silence",
                extra={"speaker": self._current_speaker, "spoken_ms": spoken},
            )
        self._current_speaker = None
        self._caption_buffer = ""

    def _emit(self, now: float) -> None:
        text = self._caption_buffer.strip()
        speaker = self._current_speaker or UNKNOWN_SPEAKER
        self._caption_buffer = ""
        self._speaking_start = now
        self._cancel_timer()
        if not text:
            return

        chunk = UtteranceChunk(text=text, speaker=speaker, completed_at=self._wall_clock())
        self._chunks_emitted += 1
        try:
            self._on_chunk(chunk)
        except Exception:
            logger.exception("Chunk callback failed", extra={"speaker": speaker})
