"""Clock and cancellable deferred-callback abstractions for the segmenter."""

import asyncio
import time
from collections.abc import Callable
from typing import Protocol


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    """Schedules a callback ``delay_ms`` from now."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioTimerScheduler:
    """TimerScheduler backed by an asyncio event loop.

    Args:
        loop: Loop to schedule on; defaults to the running loop at call time.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay_ms / 1000.0, callback)
