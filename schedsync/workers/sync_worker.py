"""
Sync worker - replays failed ATS writes from the sync job queue.
process_batch() is the unit of work; run_sync_worker() just calls it on a
poll interval. Anything else (cron, a CLI, tests) can drive process_batch directly.

State machine: pending -> processing -> completed | pending (backoff) | failed.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from schedsync.schemas.records import BatchResult, JobOutcome, SyncJob
from schedsync.services.audit import record_audit, truncate_error
from schedsync.services.writeback import WritebackService, calculate_next_run_after
from schedsync.store.base import SchedulingStore
from schedsync.workers.polling import run_polling_loop

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 60
BATCH_SIZE = 10


class JobPermanentFailure(Exception):
    """A job used its last attempt and is now terminal."""

    def __init__(self, job_id: uuid.UUID, attempts: int, error: str):
        super().__init__(f"Job {job_id} failed permanently after {attempts} attempts: {error}")
        self.job_id = job_id
        self.attempts = attempts
        self.error = error


class SyncWorker:

    def __init__(
        self,
        store: SchedulingStore,
        writeback: WritebackService,
        batch_size: int = BATCH_SIZE,
        lease_timeout_seconds: int = 0,
    ):
        self.store = store
        self.writeback = writeback
        self.batch_size = batch_size
        self.lease_timeout_seconds = lease_timeout_seconds

    async def process_batch(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> BatchResult:
        """Claim and retry every eligible job, one at a time, in run_after order."""
        now = now or datetime.now(timezone.utc)
        limit = self.batch_size if limit is None else limit

        if self.lease_timeout_seconds > 0:
            cutoff = now - timedelta(seconds=self.lease_timeout_seconds)
            await self.store.reclaim_stale_sync_jobs(cutoff, now)

        jobs = await self.store.get_pending_sync_jobs(limit, now)
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

        result.queue_depth = await self.store.count_pending_sync_jobs()
        if jobs:
            logger.info(
                "Sync batch: processed=%d failed=%d skipped=%d queue=%d",
                result.processed, result.failed, result.skipped, result.queue_depth,
            )
        return result

    async def _process_job(self, job: SyncJob, now: datetime) -> JobOutcome:
        if not await self.store.claim_sync_job(job.id, now):
            logger.info("Sync job claimed elsewhere, skipping", extra={"job_id": str(job.id)})
            return JobOutcome(job_id=job.id, status="skipped", attempts=job.attempts)

        job.status = "processing"
        job.updated_at = now

        try:
            result = await self.writeback.retry_job(job)
            error = None if result.success else (result.error or "Unknown error")
        except Exception as e:
            # A crash here must not leave the job stuck in processing
            logger.error(
                "Sync job replay raised: %s", str(e), exc_info=True,
                extra={"job_id": str(job.id)},
            )
            error = str(e) or type(e).__name__

        if error is None:
            job.status = "completed"
            await self.store.update_sync_job(job)
            await self._audit(job, "sync_job_success", job.attempts + 1)
            logger.info("Sync job completed", extra={"job_id": str(job.id)})
            return JobOutcome(job_id=job.id, status="completed", attempts=job.attempts + 1)

        try:
            return await self._record_failure(job, error, now)
        except JobPermanentFailure as e:
            return JobOutcome(job_id=job.id, status="failed", attempts=e.attempts, error=e.error)

    async def _record_failure(self, job: SyncJob, error: str, now: datetime) -> JobOutcome:
        attempts = job.attempts + 1
        job.attempts = attempts
        job.last_error = error
        job.updated_at = now

        if attempts >= job.max_attempts:
            job.status = "failed"
            await self.store.update_sync_job(job)
            await self._audit(job, "sync_job_failed", attempts, error)
            logger.error(
                "Sync job exhausted retries (%d/%d): %s",
                attempts, job.max_attempts, error[:100],
                extra={"job_id": str(job.id), "entity_id": job.entity_id},
            )
            raise JobPermanentFailure(job.id, attempts, error)

        job.status = "pending"
        job.run_after = calculate_next_run_after(attempts, now)
        await self.store.update_sync_job(job)
        logger.info(
            "Sync job retry %d/%d scheduled for %s",
            attempts, job.max_attempts, job.run_after.isoformat(),
            extra={"job_id": str(job.id)},
        )
        return JobOutcome(job_id=job.id, status="retrying", attempts=attempts, error=error)

    async def _audit(self, job: SyncJob, action: str, attempts: int, error: Optional[str] = None) -> None:
        payload = {"sync_job_id": str(job.id), "type": job.type, "attempts": attempts}
        if error:
            payload["error"] = truncate_error(error)
        await record_audit(
            self.store, action, payload,
            request_id=job.entity_id if job.entity_type == "scheduling_request" else None,
            booking_id=job.entity_id if job.entity_type == "booking" else None,
        )

    async def requeue_failed_sync_jobs(
        self,
        entity_id: str,
        job_id: Optional[uuid.UUID] = None,
    ) -> list[SyncJob]:
        """
        Operator retry: queue a fresh pending copy of each failed job for the entity.
        The failed rows stay as they are so the history is kept.
        """
        failed = [
            j for j in await self.store.get_sync_jobs_for_entity(entity_id)
            if j.status == "failed" and (job_id is None or j.id == job_id)
        ]

        now = datetime.now(timezone.utc)
        requeued = []
        for job in failed:
            new_job = await self.store.create_sync_job(SyncJob(
                type=job.type,
                entity_id=job.entity_id,
                entity_type=job.entity_type,
                attempts=0,
                max_attempts=job.max_attempts,
                status="pending",
                payload=job.payload,
                run_after=now,
                created_at=now,
                updated_at=now,
            ))
            requeued.append(new_job)
            logger.info(
                "Requeued failed sync job %s as %s", str(job.id)[:8], str(new_job.id)[:8],
                extra={"job_id": str(new_job.id), "entity_id": entity_id},
            )
        return requeued


async def run_sync_worker(
    worker: SyncWorker,
    poll_interval: int = POLL_INTERVAL_SECONDS,
    stop: Optional[asyncio.Event] = None,
):
    """Main sync worker loop."""
    await run_polling_loop("Sync worker", worker.process_batch, poll_interval, stop)
