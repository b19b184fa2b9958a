"""Salesister: live sales-call segmentation, suggestions and CRM sync."""

__version__ = "1.0.0"
