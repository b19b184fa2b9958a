"""Salesister API application entry point."""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pythonjsonlogger.json import JsonFormatter

from salesister import __version__
from salesister.api.routes import calls
from salesister.core.config import settings
from salesister.core.exceptions import SalesisterException
from salesister.core.resilience import get_all_circuit_breakers
from salesister.services.scheduler import start_scheduler, stop_scheduler


def _configure_logging() -> None:
    """Set up root logging from LOG_FORMAT / LOG_LEVEL.

    json: structured output via python-json-logger (production).
    text: human-readable lines (local development).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(
            JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={
                    "asctime": "timestamp",
                    "levelname": "level",
                    "name": "service",
                },
                static_fields={"app": "salesister-api"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Start and stop the background sweeps with the app."""
    logger.info("Starting Salesister API...", extra={"env": settings.APP_ENV})
    if not settings.is_configured:
        logger.warning("Supabase or LLM credentials missing - call processing will fail")
    await start_scheduler()
    yield
    logger.info("Shutting down Salesister API...")
    await stop_scheduler()


app = FastAPI(
    title="Salesister API",
    description="Sales call ingestion, entity extraction and CRM sync",
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.include_router(calls.router, prefix="/api")


@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Liveness check; returns 200 while the process is running."""
    return {"status": "healthy"}


@app.get("/health/dependencies", tags=["system"])
async def health_check_dependencies() -> dict[str, Any]:
    """Circuit breaker state for each external dependency."""
    breakers = {name: cb.to_dict() for name, cb in get_all_circuit_breakers().items()}
    degraded = any(b["state"] != "closed" for b in breakers.values())
    return {"status": "degraded" if degraded else "healthy", "circuit_breakers": breakers}


@app.get("/", tags=["system"])
async def root() -> dict[str, str]:
    """Root endpoint with API information.

    Returns:
        Basic API information.
    """
    return {
        "name": "Salesister API",
        "version": __version__,
        "description": "Sales call ingestion, entity extraction and CRM sync",
    }


@app.exception_handler(SalesisterException)
async def salesister_exception_handler(request: Request, exc: SalesisterException) -> JSONResponse:
    """Render application exceptions with a consistent JSON body.

    Args:
        request: The incoming request.
        exc: The application exception.

    Returns:
        JSON error response.
    """
    request_id = str(uuid.uuid4())
    logger.warning(
        "Salesister exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "request_id": request_id},
    )
