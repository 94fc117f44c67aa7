"""
Inbound ATS webhook ingestion.

Receiving is a fast ack: verify, dedup, store, audit, return. Processing runs
later from the webhook worker and dispatches on event_type.

Dedup order: external event_id first, then a hash of (event_type, data).
Unverified deliveries are still stored (flagged) so ops can see them, but
they are never processed.
"""
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from schedsync.schemas.records import ProcessResult, WebhookEvent, WebhookPayload, WebhookReceipt
from schedsync.services.audit import record_audit, truncate_error
from schedsync.store.base import DuplicateEventError, SchedulingStore
from schedsync.utils.backoff import exponential_run_after
from schedsync.utils.webhook_signatures import compute_payload_hash, validate_hmac_sha256

logger = logging.getLogger(__name__)

MAX_WEBHOOK_ATTEMPTS = 3

WebhookHandler = Callable[[WebhookEvent], Awaitable[None]]


async def _log_application_status_changed(event: WebhookEvent) -> None:
    logger.info(
        "Application status changed: %s", event.payload.get("status"),
        extra={"event_id": event.event_id, "application_id": event.payload.get("applicationId")},
    )


async def _log_candidate_updated(event: WebhookEvent) -> None:
    logger.info("Candidate updated", extra={"event_id": event.event_id})


async def _log_requisition_updated(event: WebhookEvent) -> None:
    logger.info(
        "Requisition updated: %s", event.payload.get("requisitionId"),
        extra={"event_id": event.event_id},
    )


DEFAULT_HANDLERS: dict[str, WebhookHandler] = {
    "application.status_changed": _log_application_status_changed,
    "candidate.updated": _log_candidate_updated,
    "requisition.updated": _log_requisition_updated,
}


class WebhookIngestService:

    def __init__(
        self,
        store: SchedulingStore,
        secret: str,
        handlers: Optional[dict[str, WebhookHandler]] = None,
    ):
        self.store = store
        self.secret = secret
        self.handlers: dict[str, WebhookHandler] = dict(DEFAULT_HANDLERS)
        if handlers:
            self.handlers.update(handlers)

    def register_handler(self, event_type: str, handler: WebhookHandler) -> None:
        self.handlers[event_type] = handler

    def verify_signature(
        self,
        payload: Union[str, bytes],
        signature: Optional[str],
        secret: Optional[str] = None,
    ) -> bool:
        key = self.secret if secret is None else secret
        return validate_hmac_sha256(key, signature or "", payload)

    @staticmethod
    def generate_payload_hash(data) -> str:
        return compute_payload_hash(data)

    async def receive_webhook(
        self,
        payload: WebhookPayload,
        signature: Optional[str],
        raw_payload: Union[str, bytes],
    ) -> WebhookReceipt:
        """Store a delivery exactly once. Always succeeds from the sender's point of view."""
        verified = self.verify_signature(raw_payload, signature)

        if payload.event_id:
            existing = await self.store.find_webhook_event_by_event_id(payload.event_id)
            if existing:
                return await self._deduped(existing, verified, "eventId duplicate")

        payload_hash = self.generate_payload_hash(
            {"eventType": payload.event_type, "data": payload.data}
        )
        existing = await self.store.find_webhook_event_by_payload_hash(payload_hash)
        if existing:
            return await self._deduped(existing, verified, "payload hash duplicate")

        event = WebhookEvent(
            event_id=payload.event_id,
            payload_hash=payload_hash,
            event_type=payload.event_type,
            payload=payload.data,
            signature=signature,
            verified=verified,
            max_attempts=MAX_WEBHOOK_ATTEMPTS,
        )
        try:
            event = await self.store.create_webhook_event(event)
        except DuplicateEventError:
            # Concurrent delivery of the same event_id won the insert
            existing = await self.store.find_webhook_event_by_event_id(payload.event_id)
            if existing is None:
                raise
            return await self._deduped(existing, verified, "eventId duplicate")

        await record_audit(self.store, "webhook_received", {
            "webhook_event_id": str(event.id),
            "external_event_id": event.event_id,
            "event_type": event.event_type,
            "provider": event.provider,
            "verified": verified,
            "payload_hash": payload_hash,
        })

        if not verified:
            logger.warning(
                "Webhook stored with invalid signature: %s", event.event_type,
                extra={"event_id": event.event_id},
            )

        return WebhookReceipt(
            success=True,
            is_duplicate=False,
            verified=verified,
            message=(
                "Event received and queued for processing" if verified
                else "Event received (signature invalid)"
            ),
            webhook_id=event.id,
            event_id=payload.event_id,
        )

    async def _deduped(self, existing: WebhookEvent, verified: bool, reason: str) -> WebhookReceipt:
        await record_audit(self.store, "webhook_deduped", {
            "webhook_event_id": str(existing.id),
            "external_event_id": existing.event_id,
            "event_type": existing.event_type,
            "provider": existing.provider,
            "reason": reason,
        })
        logger.info(
            "Webhook deduped (%s)", reason, extra={"event_id": existing.event_id},
        )
        return WebhookReceipt(
            success=True,
            is_duplicate=True,
            verified=verified,
            message=f"Event already received ({reason})",
            webhook_id=existing.id,
            event_id=existing.event_id,
        )

    async def process_webhook_event(
        self,
        event: WebhookEvent,
        now: Optional[datetime] = None,
    ) -> ProcessResult:
        """
        Run the handler for a stored event.
        Failures retry with 2^attempts minute backoff up to max_attempts, then mark failed.
        """
        if not event.verified:
            return ProcessResult(success=False, error="Webhook signature not verified")

        now = now or datetime.now(timezone.utc)
        handler = self.handlers.get(event.event_type)

        try:
            if handler is None:
                logger.info(
                    "No handler for webhook type %s - accepted", event.event_type,
                    extra={"event_id": event.event_id},
                )
            else:
                await handler(event)
        except Exception as e:
            return await self._handler_failed(event, str(e) or type(e).__name__, now)

        event.status = "processed"
        event.processed_at = now
        event.updated_at = now
        await self.store.update_webhook_event(event)
        await record_audit(self.store, "webhook_processed", self._normalized_fields(event))
        return ProcessResult(success=True)

    async def _handler_failed(self, event: WebhookEvent, message: str, now: datetime) -> ProcessResult:
        attempts = event.attempts + 1
        event.attempts = attempts
        event.last_error = message
        event.updated_at = now

        if attempts >= event.max_attempts:
            event.status = "failed"
            await self.store.update_webhook_event(event)
            await record_audit(self.store, "webhook_failed", {
                "webhook_event_id": str(event.id),
                "event_type": event.event_type,
                "error": truncate_error(message),
                "attempts": attempts,
            })
            logger.error(
                "Webhook %s failed permanently after %d attempts: %s",
                event.event_type, attempts, message[:100],
                extra={"event_id": event.event_id},
            )
        else:
            event.status = "received"
            event.run_after = exponential_run_after(attempts, base=2, now=now)
            await self.store.update_webhook_event(event)
            logger.warning(
                "Webhook %s failed (attempt %d/%d), retry at %s",
                event.event_type, attempts, event.max_attempts, event.run_after.isoformat(),
                extra={"event_id": event.event_id},
            )
        return ProcessResult(success=False, error=message)

    @staticmethod
    def _normalized_fields(event: WebhookEvent) -> dict:
        fields = {"webhook_event_id": str(event.id), "event_type": event.event_type}
        data = event.payload or {}
        if data.get("applicationId"):
            fields["application_id"] = data["applicationId"]
        if data.get("candidateEmail"):
            fields["candidate_email"] = data["candidateEmail"]
        if data.get("requisitionId"):
            fields["requisition_id"] = data["requisitionId"]
        return fields
