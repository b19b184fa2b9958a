"""Resilience patterns for external service calls.

Provides:
- CircuitBreaker: stops hammering a dependency (LLM, HubSpot, Supabase)
  after consecutive failures and lets a probe through after a cool-down.
- retry: decorator for short in-process retries of transient transport
  errors. Durable, minutes-scale CRM retries are owned by the sync engine.
"""

import asyncio
import enum
import functools
import logging
import random
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, service_name: str, retry_after: float = 0.0) -> None:
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker is open for {service_name}")


_registry: dict[str, "CircuitBreaker"] = {}
_registry_lock = threading.Lock()


def get_all_circuit_breakers() -> dict[str, "CircuitBreaker"]:
    """Return a snapshot of all registered circuit breakers."""
    with _registry_lock:
        return dict(_registry)


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    CLOSED until ``failure_threshold`` failures in a row, then OPEN for
    ``recovery_timeout`` seconds, then HALF_OPEN: the next success closes
    the circuit, the next failure re-opens it.

    Args:
        service_name: Identifier for the protected service (logs / registry).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds spent OPEN before allowing a probe.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._failures = 0
        self._opened_at: float | None = None
        self._lock = threading.Lock()

        with _registry_lock:
            _registry[service_name] = self

    @property
    def state(self) -> CircuitState:
        """Current state, derived from the failure count and open timestamp."""
        with self._lock:
            if self._opened_at is None:
                return CircuitState.CLOSED
            if self._clock() - self._opened_at >= self.recovery_timeout:
                return CircuitState.HALF_OPEN
            return CircuitState.OPEN

    def check(self) -> None:
        """Raise CircuitBreakerOpen if calls are currently refused."""
        if self.state != CircuitState.OPEN:
            return
        assert self._opened_at is not None
        retry_after = max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))
        raise CircuitBreakerOpen(self.service_name, retry_after=retry_after)

    def record_success(self) -> None:
        """Close the circuit and forget past failures."""
        with self._lock:
            if self._opened_at is not None:
                logger.warning("Circuit breaker CLOSED for %s (recovered)", self.service_name)
            self._failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        """Count a failure; open (or re-open) the circuit at the threshold."""
        with self._lock:
            self._failures += 1
            probing = (
                self._opened_at is not None
                and self._clock() - self._opened_at >= self.recovery_timeout
            )
            if probing or self._failures >= self.failure_threshold:
                if self._opened_at is None or probing:
                    logger.warning(
                        "Circuit breaker OPEN for %s after %d consecutive failures",
                        self.service_name,
                        self._failures,
                    )
                self._opened_at = self._clock()

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run an async callable through the breaker.

        Raises:
            CircuitBreakerOpen: If the circuit is open.
            Exception: Whatever ``func`` raised, after recording the failure.
        """
        self.check()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed (tests, admin)."""
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for the health endpoint."""
        return {
            "service": self.service_name,
            "state": self.state.value,
            "failure_count": self._failures,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


llm_circuit_breaker = CircuitBreaker("llm", failure_threshold=5, recovery_timeout=60.0)
hubspot_circuit_breaker = CircuitBreaker("hubspot", failure_threshold=5, recovery_timeout=60.0)


# Transport-level failures that are safe to retry in-process
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)

# Failures where the request never reached the server; the only ones safe for non-idempotent writes
CONNECT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
)


def retry(
    max_retries: int = 2,
    backoff_factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    max_delay: float = 10.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator: retry an async function with exponential backoff and full jitter.

    Args:
        max_retries: Retries after the initial call.
        backoff_factor: Base of the exponential delay.
        retry_on: Exception types that trigger a retry.
        max_delay: Cap on the computed delay in seconds.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "All %d retries exhausted for %s: %s",
                            max_retries,
                            func.__qualname__,
                            exc,
                        )
                        raise
                    delay = random.uniform(0, min(backoff_factor**attempt, max_delay))  # noqa: S311
                    attempt += 1
                    logger.warning(
                        "Retry %d/%d for %s after %s (waiting %.2fs)",
                        attempt,
                        max_retries,
                        func.__qualname__,
                        type(exc).__name__,
                        delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
