"""HubSpot CRM v3 API client."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, cast

import httpx

from salesister.core.config import settings
from salesister.core.exceptions import CRMConnectionError, CRMSyncError, RateLimitError
from salesister.core.resilience import (
    CONNECT_EXCEPTIONS,
    CircuitBreakerOpen,
    hubspot_circuit_breaker,
    retry,
)

logger = logging.getLogger(__name__)

PROVIDER = "hubspot"

# HubSpot-defined association type ids (object -> contact)
TICKET_TO_CONTACT = 16
DEAL_TO_CONTACT = 3
NOTE_TO_CONTACT = 202
MEETING_TO_CONTACT = 200

CONTACT_PROPERTIES = ["email", "firstname", "lastname", "phone", "company", "jobtitle"]


@dataclass(frozen=True)
class Association:
    """Link from a new CRM object to an existing contact."""

    contact_id: str
    association_type_id: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "to": {"id": self.contact_id},
            "types": [
                {
                    "associationCategory": "HUBSPOT_DEFINED",
                    "associationTypeId": self.association_type_id,
                }
            ],
        }


def associations_for(contact_ids: Sequence[str], association_type_id: int) -> list[Association]:
    """One association per contact id."""
    return [Association(contact_id, association_type_id) for contact_id in contact_ids]


class CrmClient(Protocol):
    """What the sync engine needs from a CRM."""

    async def create_object(
        self,
        object_type: str,
        properties: dict[str, str],
        associations: Sequence[Association] = (),
    ) -> str: ...

    async def find_contact_by_email(self, email: str) -> dict[str, Any] | None: ...

    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None: ...


class HubSpotClient:
    """Client for the HubSpot CRM objects API.

    Args:
        api_key: Private-app access token of the user's HubSpot account.
        base_url: API root (defaults to settings.HUBSPOT_BASE_URL).
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.HUBSPOT_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.HUBSPOT_TIMEOUT_SECONDS
        self._transport = transport
        self.headers: dict[str, str] = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Translate an HTTP error response into an application error.

        Raises:
            RateLimitError: On 429, with the Retry-After delay.
            CRMSyncError: Otherwise, with the API's message when present.
        """
        status_code = error.response.status_code
        try:
            body = error.response.json()
            message = body.get("message", str(body))
        except ValueError:
            message = f"HubSpot API error: {status_code}"

        # 5xx and throttling count against the breaker; other 4xx are our fault
        if status_code >= 500 or status_code == 429:
            hubspot_circuit_breaker.record_failure()
        logger.error("HubSpot API error: status=%s message=%s", status_code, message)
        if status_code == 429:
            retry_after = error.response.headers.get("Retry-After", "")
            retry_after_ms = int(retry_after) * 1000 if retry_after.isdigit() else 10_000
            raise RateLimitError(retry_after_ms, f"HubSpot rate limit: {message}") from error
        raise CRMSyncError(message, provider=PROVIDER, status_code=status_code) from error

    def _handle_connection_error(self, error: httpx.RequestError) -> None:
        hubspot_circuit_breaker.record_failure()
        logger.error("HubSpot connection error: %s", str(error))
        raise CRMConnectionError(PROVIDER, f"Failed to connect to HubSpot API: {error}") from error

    def _check_circuit(self) -> None:
        try:
            hubspot_circuit_breaker.check()
        except CircuitBreakerOpen as e:
            raise CRMConnectionError(
                PROVIDER, "HubSpot circuit breaker is open, service temporarily unavailable"
            ) from e

    async def _send(self, method: str, path: str, payload: dict[str, Any] | None) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
            return response

    @retry(max_retries=2)
    async def _send_idempotent(
        self, method: str, path: str, payload: dict[str, Any] | None
    ) -> httpx.Response:
        return await self._send(method, path, payload)

    @retry(max_retries=2, retry_on=CONNECT_EXCEPTIONS)
    async def _send_create(
        self, method: str, path: str, payload: dict[str, Any] | None
    ) -> httpx.Response:
        # A read timeout may mean the object was created; retrying would duplicate it.
        return await self._send(method, path, payload)

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        idempotent: bool = True,
    ) -> dict[str, Any]:
        self._check_circuit()
        send = self._send_idempotent if idempotent else self._send_create
        try:
            response = await send(method, path, payload)
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
            raise
        except httpx.RequestError as e:
            self._handle_connection_error(e)
            raise
        hubspot_circuit_breaker.record_success()
        if not response.content:
            return {}
        return cast(dict[str, Any], response.json())

    async def create_object(
        self,
        object_type: str,
        properties: dict[str, str],
        associations: Sequence[Association] = (),
    ) -> str:
        """Create a CRM object and return its id.

        Args:
            object_type: ``contacts``, ``tickets``, ``deals``, ``notes`` or ``meetings``.
            properties: Object properties.
            associations: Contacts to associate the new object with.

        Raises:
            CRMSyncError: If HubSpot rejects the request.
            CRMConnectionError: If HubSpot cannot be reached.
        """
        payload: dict[str, Any] = {"properties": properties}
        if associations:
            payload["associations"] = [a.to_payload() for a in associations]
        data = await self._request(
            "POST", f"/crm/v3/objects/{object_type}", payload, idempotent=False
        )
        object_id = str(data.get("id") or "")
        if not object_id:
            raise CRMSyncError(f"HubSpot returned no id for new {object_type}", provider=PROVIDER)
        logger.info(
            "Created HubSpot object",
            extra={
                "object_type": object_type,
                "object_id": object_id,
                "association_count": len(associations),
            },
        )
        return object_id

    async def find_contact_by_email(self, email: str) -> dict[str, Any] | None:
        """Exact-match contact search on email.

        Returns:
            ``{"id": ..., "properties": {...}}`` or None when not found.
        """
        payload = {
            "filterGroups": [
                {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
            ],
            "properties": CONTACT_PROPERTIES,
            "limit": 1,
        }
        try:
            data = await self._request("POST", "/crm/v3/objects/contacts/search", payload)
        except CRMSyncError as e:
            if e.details.get("crm_status_code") == 404:
                return None
            raise
        results = data.get("results") or []
        if not results:
            return None
        contact = results[0]
        return {"id": str(contact["id"]), "properties": contact.get("properties") or {}}

    async def update_contact(self, contact_id: str, properties: dict[str, str]) -> None:
        """Patch contact properties."""
        await self._request(
            "PATCH", f"/crm/v3/objects/contacts/{contact_id}", {"properties": properties}
        )
        logger.info(
            "Updated HubSpot contact",
            extra={"contact_id": contact_id, "fields": sorted(properties)},
        )
