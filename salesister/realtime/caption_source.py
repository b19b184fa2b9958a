"""Caption surface detection and polling.

The caption region of a meeting page may not exist yet when a session
starts. Detection is retried a bounded number of times; if it never
appears, the monitor gives up quietly and the rest of the session keeps
working without captions.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from salesister.realtime.models import CaptionSample
from salesister.realtime.segmenter import CaptionSegmenter

logger = logging.getLogger(__name__)

MAX_DETECTION_ATTEMPTS = 10
DETECTION_RETRY_INTERVAL_MS = 1000
POLL_INTERVAL_MS = 250


class CaptionSurface(Protocol):
    """Read access to a platform's live caption region."""

    def locate(self) -> bool:
        """Return True once the caption region is present."""
        ...

    def read_lines(self) -> Sequence[CaptionSample]:
        """Return every caption line currently visible, oldest first."""
        ...


class CaptionSurfaceMonitor:
    """Finds the caption surface and pumps snapshots into a segmenter.

    Args:
        surface: Caption surface adapter.
        segmenter: Segmenter receiving each snapshot.
        max_attempts: Detection attempts before giving up.
        retry_interval_ms: Delay between detection attempts.
        poll_interval_ms: Delay between snapshot reads once attached.
        sleep: Awaitable sleep in seconds (injectable for tests).
    """

    def __init__(
        self,
        surface: CaptionSurface,
        segmenter: CaptionSegmenter,
        max_attempts: int = MAX_DETECTION_ATTEMPTS,
        retry_interval_ms: int = DETECTION_RETRY_INTERVAL_MS,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._surface = surface
        self._segmenter = segmenter
        self._max_attempts = max_attempts
        self._retry_interval_ms = retry_interval_ms
        self._poll_interval_ms = poll_interval_ms
        self._sleep = sleep
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.attached = False

    async def detect(self) -> bool:
        """Try to locate the caption surface with bounded retries.

        Returns:
            True if found; False after ``max_attempts`` failures (logged,
            never raised).
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                if self._surface.locate():
                    logger.info("Caption surface found", extra={"attempt": attempt})
                    return True
            except Exception:
                logger.warning("Caption surface lookup raised", exc_info=True)
            if attempt < self._max_attempts:
                await self._sleep(self._retry_interval_ms / 1000.0)

        logger.warning(
            "Caption surface not found; continuing without captions",
            extra={"attempts": self._max_attempts},
        )
        return False

    async def start(self) -> bool:
        """Detect the surface and, if found, start polling in the background."""
        if self._running:
            return True
        self.attached = await self.detect()
        if not self.attached:
            return False
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        return True

    async def stop(self) -> None:
        """Stop polling. Safe to call when never started."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    def poll_once(self) -> None:
        """Read the surface once and feed the snapshot to the segmenter."""
        lines = self._surface.read_lines()
        if lines:
            self._segmenter.ingest_samples(lines)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self.poll_once()
            except Exception:
                logger.exception("Error reading caption surface")
            await self._sleep(self._poll_interval_ms / 1000.0)
