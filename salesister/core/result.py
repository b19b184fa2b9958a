"""Typed outcomes for pipeline catch boundaries.

Work that must never raise to its caller (suggestion requests, per-entity
CRM writes, sweep items) reports a ``Result`` instead of a bare dict or a
swallowed exception.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from salesister.core.exceptions import (
    CRMConnectionError,
    CRMNotConfiguredError,
    CRMSyncError,
    DatabaseError,
    ExternalServiceError,
    ExtractionError,
    RateLimitError,
    ValidationError,
)
from salesister.core.resilience import CircuitBreakerOpen

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Coarse failure categories used for logging and retry decisions."""

    RATE_LIMITED = "rate_limited"
    NOT_CONFIGURED = "not_configured"
    INVALID_INPUT = "invalid_input"
    PARSE_ERROR = "parse_error"
    EXTERNAL_SERVICE = "external_service"
    DATABASE = "database"
    UNKNOWN = "unknown"


class Outcome(str, Enum):
    """Aggregate outcome of a unit of work."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: a value, an error, or both for partial success."""

    outcome: Outcome
    value: T | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK

    @classmethod
    def success(cls, value: T | None = None, **details: Any) -> "Result[T]":
        return cls(outcome=Outcome.OK, value=value, details=details)

    @classmethod
    def partial(cls, value: T | None, error: str, **details: Any) -> "Result[T]":
        return cls(
            outcome=Outcome.PARTIAL,
            value=value,
            error=error,
            error_kind=ErrorKind.EXTERNAL_SERVICE,
            details=details,
        )

    @classmethod
    def failure(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        **details: Any,
    ) -> "Result[T]":
        return cls(outcome=Outcome.FAILED, error=error, error_kind=kind, details=details)

    @classmethod
    def from_exception(cls, exc: Exception, **details: Any) -> "Result[T]":
        """Build a failed result, classifying the exception."""
        return cls.failure(str(exc), classify_exception(exc), **details)


def classify_exception(exc: Exception) -> ErrorKind:
    """Map an exception to its ErrorKind."""
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, CRMNotConfiguredError):
        return ErrorKind.NOT_CONFIGURED
    if isinstance(exc, ValidationError):
        return ErrorKind.INVALID_INPUT
    if isinstance(exc, ExtractionError | ValueError):
        return ErrorKind.PARSE_ERROR
    if isinstance(
        exc,
        CRMSyncError | CRMConnectionError | ExternalServiceError | CircuitBreakerOpen,
    ):
        return ErrorKind.EXTERNAL_SERVICE
    if isinstance(exc, DatabaseError):
        return ErrorKind.DATABASE
    return ErrorKind.UNKNOWN
