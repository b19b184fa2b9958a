"""Core configuration, errors and resilience utilities."""

from salesister.core.exceptions import (
    CRMConnectionError,
    CRMNotConfiguredError,
    CRMSyncError,
    DatabaseError,
    ExternalServiceError,
    ExtractionError,
    NotFoundError,
    RateLimitError,
    SalesisterException,
    ValidationError,
    sanitize_error,
)
from salesister.core.result import ErrorKind, Outcome, Result

__all__ = [
    "CRMConnectionError",
    "CRMNotConfiguredError",
    "CRMSyncError",
    "DatabaseError",
    "ErrorKind",
    "ExternalServiceError",
    "ExtractionError",
    "NotFoundError",
    "Outcome",
    "RateLimitError",
    "Result",
    "SalesisterException",
    "ValidationError",
    "sanitize_error",
]
