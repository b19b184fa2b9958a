"""Application exceptions for call ingestion, extraction and CRM sync."""

from typing import Any

# Message shown to API clients per exception type; internal detail stays in logs.
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "DatabaseError": "A database error occurred. Please try again.",
    "ExternalServiceError": "An external service is temporarily unavailable.",
    "ExtractionError": "The call could not be analyzed. It will be retried later.",
    "CRMSyncError": "CRM sync failed. It will be retried automatically.",
    "CRMConnectionError": "The CRM is temporarily unavailable.",
    "CRMNotConfiguredError": "CRM sync is not configured for this account.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "RateLimitError": "Too many requests. Please try again later.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Return the client-safe message for ``e``.

    The exception's own class and its bases are looked up in order, so a
    ``CallNotFoundError`` gets the ``NotFoundError`` message. Unknown types
    get a generic message. Callers log the real error themselves.
    """
    for klass in type(e).__mro__:
        message = _SAFE_MESSAGES.get(klass.__name__)
        if message:
            return message
    return _DEFAULT_MESSAGE


class SalesisterException(Exception):
    """Base class for errors the API knows how to render.

    Args:
        message: Text for logs and, where safe, for the client.
        code: Stable upper-case identifier, e.g. ``CRM_SYNC_ERROR``.
        status_code: HTTP status the exception handler responds with.
        details: Extra structured context.
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(SalesisterException):
    """A record does not exist (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            message,
            "NOT_FOUND",
            404,
            {"resource": resource, "resource_id": resource_id},
        )


class CallNotFoundError(NotFoundError):
    def __init__(self, call_id: str) -> None:
        super().__init__("Call", call_id)


class ValidationError(SalesisterException):
    """Rejected request input (400).

    ``field`` names the offending request field when there is one.
    """

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        context = dict(details or {})
        if field:
            context["field"] = field
        super().__init__(message, "VALIDATION_ERROR", 400, context)


class DatabaseError(SalesisterException):
    """Supabase read or write failed (500)."""

    def __init__(self, message: str = "Database operation failed") -> None:
        super().__init__(message, "DATABASE_ERROR", 500)


class ExternalServiceError(SalesisterException):
    """An upstream API (LLM provider, ingestion server) failed (502).

    ``upstream_status`` is the HTTP status the provider answered with, if it
    answered at all.
    """

    def __init__(
        self, service: str, message: str | None = None, upstream_status: int | None = None
    ) -> None:
        details: dict[str, Any] = {"service": service}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(
            message or f"{service} request failed", "EXTERNAL_SERVICE_ERROR", 502, details
        )


class ExtractionError(SalesisterException):
    """Entity extraction failed on the model's output (422).

    Raised for content/validation failures: a non-JSON body, or a response
    missing the mandatory note or meeting. Never yields a partial bundle.

    Args:
        message: What was wrong with the output.
        raw_response: Model output, kept (truncated) for diagnostics.
    """

    def __init__(self, message: str, raw_response: str | None = None) -> None:
        details: dict[str, Any] = {}
        if raw_response is not None:
            details["raw_response"] = raw_response[:500]
        super().__init__(f"Extraction failed: {message}", "EXTRACTION_ERROR", 422, details)


class CRMSyncError(SalesisterException):
    """The CRM rejected a write or returned something unusable (500).

    ``status_code`` is the CRM's HTTP status, stored as
    ``details["crm_status_code"]``; the exception's own status stays 500.
    """

    def __init__(
        self,
        message: str = "Unknown error",
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if provider:
            details["provider"] = provider
        if status_code is not None:
            details["crm_status_code"] = status_code
        super().__init__(f"CRM sync error: {message}", "CRM_SYNC_ERROR", 500, details)


class CRMConnectionError(SalesisterException):
    """The CRM could not be reached, or its circuit is open (502)."""

    def __init__(self, provider: str, message: str | None = None) -> None:
        super().__init__(
            message or f"{provider} is unreachable",
            "CRM_CONNECTION_ERROR",
            502,
            {"provider": provider},
        )


class CRMNotConfiguredError(SalesisterException):
    """CRM sync requested for a user without CRM credentials (400)."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"CRM sync is not configured for user '{user_id}'",
            "CRM_NOT_CONFIGURED",
            400,
            {"user_id": user_id},
        )


class RateLimitError(SalesisterException):
    """A provider throttled us (429); ``retry_after_ms`` says how long to wait."""

    def __init__(self, retry_after_ms: int, message: str | None = None) -> None:
        super().__init__(
            message or "Rate limited",
            "RATE_LIMIT_EXCEEDED",
            429,
            {"retry_after_ms": retry_after_ms},
        )
