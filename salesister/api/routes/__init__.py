"""API route handlers for Salesister."""

from salesister.api.routes import calls as calls
