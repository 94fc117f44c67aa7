"""
Webhook worker - runs handlers for stored, verified webhook events.
Normal handler failures are retried inside process_webhook_event; an
exception escaping it marks the event failed so it cannot loop forever.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from schedsync.schemas.records import BatchResult, JobOutcome
from schedsync.services.webhooks import WebhookIngestService
from schedsync.store.base import SchedulingStore
from schedsync.workers.polling import run_polling_loop

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 10
BATCH_SIZE = 10


class WebhookWorker:

    def __init__(
        self,
        store: SchedulingStore,
        service: WebhookIngestService,
        batch_size: int = BATCH_SIZE,
    ):
        self.store = store
        self.service = service
        self.batch_size = batch_size

    async def process_batch(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        limit = self.batch_size if limit is None else limit
        events = await self.store.get_pending_webhook_events(limit, now)
        result = BatchResult()

        for event in events:
            if not await self.store.claim_webhook_event(event.id, now):
                result.skipped += 1
                result.outcomes.append(JobOutcome(job_id=event.id, status="skipped"))
                continue

            event.status = "processing"
            try:
                processed = await self.service.process_webhook_event(event, now)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(
                    "Webhook processing crashed: %s", error, exc_info=True,
                    extra={"event_id": event.event_id},
                )
                event.status = "failed"
                event.attempts += 1
                event.last_error = error
                event.updated_at = now
                await self.store.update_webhook_event(event)
                result.failed += 1
                result.outcomes.append(JobOutcome(
                    job_id=event.id, status="failed", attempts=event.attempts, error=error,
                ))
                continue

            if processed.success:
                result.processed += 1
                result.outcomes.append(JobOutcome(job_id=event.id, status="completed"))
            else:
                current = await self.store.get_webhook_event(event.id)
                status = "failed" if current and current.status == "failed" else "retrying"
                result.failed += 1
                result.outcomes.append(JobOutcome(
                    job_id=event.id, status=status,
                    attempts=current.attempts if current else event.attempts,
                    error=processed.error,
                ))

        result.queue_depth = await self.store.count_received_webhook_events()
        return result


async def run_webhook_worker(
    worker: WebhookWorker,
    poll_interval: int = POLL_INTERVAL_SECONDS,
    stop: Optional[asyncio.Event] = None,
):
    """Main webhook worker loop."""
    await run_polling_loop("Webhook worker", worker.process_batch, poll_interval, stop)
