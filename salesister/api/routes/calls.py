"""Call ingestion API routes.

``POST /api/calls/create`` stores a finished call, then tries to process it
inline. Storing always happens first; if processing fails the call stays
unprocessed and the background sweep picks it up later. Every response
allows any origin so the browser extension can post directly.
"""

import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

from salesister.api.deps import CallProcessorDep, CallStoreDep
from salesister.core.exceptions import SalesisterException, ValidationError, sanitize_error
from salesister.models.api import CreateCallRequest, CreateCallResponse

router = APIRouter(prefix="/calls", tags=["calls"])
logger = logging.getLogger(__name__)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

MESSAGE_PROCESSED = "Call created and processed successfully!"
MESSAGE_PROCESSING_FAILED = (
    "Call created but processing failed. It will be processed again automatically."
)


def _respond(body: dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=body, status_code=status_code, headers=CORS_HEADERS)


@router.post("/create")
async def create_call(
    request: Request,
    call_store: CallStoreDep,
    processor: CallProcessorDep,
) -> JSONResponse:
    """Store a finished call and process it inline.

    Args:
        request: Raw request; the JSON body is validated by hand so error
            bodies keep the ``{success, error}`` shape.
        call_store: Store used to persist the call.
        processor: Call processor used for the inline attempt.

    Returns:
        200 with ``success`` (stored) and ``processed`` (extracted and
        synced), 400 for invalid input, 500 if the call could not be stored.
    """
    try:
        body = await request.json()
    except ValueError:
        return _respond(
            {"success": False, "error": "Request body must be valid JSON"},
            status.HTTP_400_BAD_REQUEST,
        )

    try:
        payload = CreateCallRequest.from_body(body)
    except ValidationError as e:
        logger.info("Rejected call ingestion", extra={"error": e.message})
        return _respond({"success": False, "error": e.message}, status.HTTP_400_BAD_REQUEST)

    try:
        call = await call_store.create_call(
            user_id=payload.user_id,
            title=payload.title,
            transcription=payload.transcription,
            participants=payload.participants,
            duration=payload.duration,
            recording_url=payload.recording_url,
        )
    except Exception as e:
        logger.exception("Failed to store call", extra={"user_id": payload.user_id})
        return _respond(
            {"success": False, "error": sanitize_error(e)},
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    try:
        report = await processor.process_call(call.id)
    except Exception as e:
        logger.warning(
            "Inline call processing failed",
            extra={"call_id": call.id, "error": str(e)},
            exc_info=True,
        )
        error = e.message if isinstance(e, SalesisterException) else sanitize_error(e)
        response = CreateCallResponse(
            call_id=call.id,
            processed=False,
            processing_error=error,
            message=MESSAGE_PROCESSING_FAILED,
        )
        return _respond(response.to_body())

    response = CreateCallResponse(
        call_id=call.id,
        processed=report.processed,
        tickets_created=report.tickets_created,
        deals_created=report.deals_created,
        hubspot_sync_enabled=report.crm_synced,
        message=MESSAGE_PROCESSED,
    )
    logger.info(
        "Call ingested",
        extra={
            "call_id": call.id,
            "user_id": payload.user_id,
            "tickets_created": report.tickets_created,
            "deals_created": report.deals_created,
        },
    )
    return _respond(response.to_body())


@router.options("/create")
async def create_call_preflight() -> Response:
    """CORS preflight for the ingestion endpoint."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)
