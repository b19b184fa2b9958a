"""Live-call side of the pipeline: captions in, chunks and suggestions out."""

from salesister.realtime.caption_source import CaptionSurface, CaptionSurfaceMonitor
from salesister.realtime.ingestion_client import CallPayload, IngestionClient
from salesister.realtime.models import (
    UNKNOWN_SPEAKER,
    CaptionSample,
    Suggestion,
    SuggestionResult,
    UtteranceChunk,
)
from salesister.realtime.segmenter import CaptionSegmenter, SegmenterState
from salesister.realtime.session import CallSession
from salesister.realtime.suggestions import SuggestionConfig, SuggestionPipeline
from salesister.realtime.timers import AsyncioTimerScheduler, TimerScheduler

__all__ = [
    "UNKNOWN_SPEAKER",
    "AsyncioTimerScheduler",
    "CallPayload",
    "CallSession",
    "CaptionSample",
    "CaptionSegmenter",
    "CaptionSurface",
    "CaptionSurfaceMonitor",
    "IngestionClient",
    "SegmenterState",
    "Suggestion",
    "SuggestionConfig",
    "SuggestionPipeline",
    "SuggestionResult",
    "TimerScheduler",
    "UtteranceChunk",
]
