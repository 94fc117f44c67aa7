"""
Inbound ATS webhook endpoint.

POST /api/v1/webhook/ats always answers 200, even when storing fails, so the ATS
never starts a retry storm. received=false means the body was unusable or the store
was down; duplicates and bad signatures are acknowledged and sorted out by the
ingest service.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import ValidationError

from schedsync.schemas.api_responses import WebhookAckResponse
from schedsync.schemas.records import WebhookPayload
from schedsync.services.webhooks import WebhookIngestService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])

SIGNATURE_HEADER = "X-Icims-Signature"


@router.post(
    "/ats",
    response_model=WebhookAckResponse,
    response_model_exclude_none=True,
)
async def ats_webhook(request: Request) -> WebhookAckResponse:
    """iCIMS delivery: verify, dedup, store, ack."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        payload_dict = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("ATS webhook with malformed JSON body")
        return _rejected("Invalid JSON payload")

    if not isinstance(payload_dict, dict):
        return _rejected("Invalid JSON payload")

    try:
        payload = WebhookPayload.model_validate(payload_dict)
    except ValidationError as e:
        reason = _validation_reason(e)
        logger.warning("ATS webhook rejected: %s", reason)
        return _rejected(reason)

    service: WebhookIngestService = request.app.state.webhook_service
    try:
        receipt = await service.receive_webhook(payload, signature, body)
    except Exception as e:
        logger.error(
            "ATS webhook ingest failed: %s", str(e), exc_info=True,
            extra={"event_id": payload.event_id},
        )
        return _rejected("Webhook could not be stored", event_id=payload.event_id)

    return WebhookAckResponse(
        received=receipt.success,
        webhook_id=receipt.webhook_id,
        event_id=receipt.event_id,
        is_duplicate=receipt.is_duplicate,
        verified=receipt.verified,
        message=receipt.message,
    )


def _rejected(error: str, event_id: Optional[str] = None) -> WebhookAckResponse:
    return WebhookAckResponse(
        received=False,
        event_id=event_id,
        message=f"Event not received: {error}",
        error=error,
    )


def _validation_reason(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "body"
    if first["type"] == "missing":
        return f"Missing required field: {field}"
    return f"Invalid field {field}: {first['msg']}"
