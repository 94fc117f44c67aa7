"""
Notification worker - delivers queued emails through a NotificationSender.
PENDING -> SENDING -> SENT | PENDING (4^attempts minute backoff) | FAILED.
Rendering and the email provider live behind the sender.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from schedsync.schemas.records import BatchResult, JobOutcome, NotificationJob
from schedsync.store.base import SchedulingStore
from schedsync.utils.backoff import exponential_run_after
from schedsync.workers.polling import run_polling_loop
from schedsync.workers.sync_worker import JobPermanentFailure

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5
BATCH_SIZE = 10
NOTIFY_BACKOFF_BASE = 4


class NotificationSender(ABC):

    @abstractmethod
    async def send(self, job: NotificationJob) -> Optional[str]:
        """Deliver one notification. Returns the provider message id; raises on failure."""
        ...


class LoggingNotificationSender(NotificationSender):
    """Local/dev sender: logs instead of emailing."""

    async def send(self, job: NotificationJob) -> Optional[str]:
        logger.info(
            "Notification %s would be sent", job.type,
            extra={"job_id": str(job.id), "entity_id": job.entity_id},
        )
        return f"log-{job.id}"


class NotifyWorker:

    def __init__(
        self,
        store: SchedulingStore,
        sender: NotificationSender,
        batch_size: int = BATCH_SIZE,
        lease_timeout_seconds: int = 0,
    ):
        self.store = store
        self.sender = sender
        self.batch_size = batch_size
        self.lease_timeout_seconds = lease_timeout_seconds

    async def process_batch(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        limit = self.batch_size if limit is None else limit

        if self.lease_timeout_seconds > 0:
            cutoff = now - timedelta(seconds=self.lease_timeout_seconds)
            await self.store.reclaim_stale_notification_jobs(cutoff, now)

        jobs = await self.store.get_pending_notification_jobs(limit, now)
        result = BatchResult()
        for job in jobs:
            outcome = await self._process_job(job, now)
            result.outcomes.append(outcome)
            if outcome.status == "completed":
                result.processed += 1
            elif outcome.status == "skipped":
                result.skipped += 1
            else:
                result.failed += 1

        result.queue_depth = await self.store.count_pending_notification_jobs()
        return result

    async def _process_job(self, job: NotificationJob, now: datetime) -> JobOutcome:
        if not await self.store.claim_notification_job(job.id, now):
            return JobOutcome(job_id=job.id, status="skipped", attempts=job.attempts)

        attempts = job.attempts + 1
        job.status = "SENDING"

        try:
            message_id = await self.sender.send(job)
        except Exception as e:
            try:
                return await self._record_failure(job, attempts, str(e) or type(e).__name__, now)
            except JobPermanentFailure as failure:
                return JobOutcome(
                    job_id=job.id, status="failed", attempts=failure.attempts, error=failure.error,
                )

        job.status = "SENT"
        job.attempts = attempts
        job.sent_at = now
        job.last_error = None
        job.updated_at = now
        await self.store.update_notification_job(job)
        logger.info(
            "Notification %s sent (message_id=%s)", job.type, message_id,
            extra={"job_id": str(job.id)},
        )
        return JobOutcome(job_id=job.id, status="completed", attempts=attempts)

    async def _record_failure(
        self, job: NotificationJob, attempts: int, error: str, now: datetime,
    ) -> JobOutcome:
        job.attempts = attempts
        job.last_error = error
        job.updated_at = now

        if attempts >= job.max_attempts:
            job.status = "FAILED"
            await self.store.update_notification_job(job)
            logger.error(
                "Notification %s FAILED after %d attempts: %s", job.type, attempts, error[:100],
                extra={"job_id": str(job.id)},
            )
            raise JobPermanentFailure(job.id, attempts, error)

        job.status = "PENDING"
        job.run_after = exponential_run_after(attempts, base=NOTIFY_BACKOFF_BASE, now=now)
        await self.store.update_notification_job(job)
        logger.warning(
            "Notification %s failed (attempt %d), retry at %s",
            job.type, attempts, job.run_after.isoformat(),
            extra={"job_id": str(job.id)},
        )
        return JobOutcome(job_id=job.id, status="retrying", attempts=attempts, error=error)


async def run_notify_worker(
    worker: NotifyWorker,
    poll_interval: int = POLL_INTERVAL_SECONDS,
    stop: Optional[asyncio.Event] = None,
):
    """Main notification worker loop."""
    await run_polling_loop("Notify worker", worker.process_batch, poll_interval, stop)
