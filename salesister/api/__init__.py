"""HTTP API for Salesister."""
