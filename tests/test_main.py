"""Tests for the application entry point."""

from fastapi import status
from fastapi.testclient import TestClient

from salesister import __version__
from salesister.core.resilience import hubspot_circuit_breaker
from salesister.main import app

client = TestClient(app)


def test_health() -> None:
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "healthy"}


def test_root_reports_version() -> None:
    response = client.get("/")

    assert response.json()["version"] == __version__


def test_dependencies_report_open_circuit() -> None:
    """An open breaker marks the service as degraded."""
    for _ in range(hubspot_circuit_breaker.failure_threshold):
        hubspot_circuit_breaker.record_failure()

    response = client.get("/health/dependencies")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["circuit_breakers"]["hubspot"]["state"] == "open"


def test_dependencies_healthy() -> None:
    response = client.get("/health/dependencies")

    assert response.json()["status"] == "healthy"


def test_dependencies_list_only_guarded_services() -> None:
    """Only breakers that wrap real calls are reported."""
    breakers = client.get("/health/dependencies").json()["circuit_breakers"]

    assert {"llm", "hubspot"} <= set(breakers)
    assert "supabase" not in breakers
