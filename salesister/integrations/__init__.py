"""Integrations with external services."""

from salesister.integrations.hubspot import Association, CrmClient, HubSpotClient

__all__ = ["Association", "CrmClient", "HubSpotClient"]
