"""
Notification queue - enqueue outbound emails as NotificationJobs.

Idempotency key format: {type}:{entity_type}:{entity_id}[:{discriminator}]
  - one-off events (booking confirmation, cancel notice): no discriminator
  - reminders: the target hour bucket, so one reminder per hour slot
Enqueueing the same key twice returns the original job untouched.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from schedsync.schemas.records import NotificationJob
from schedsync.store.base import SchedulingStore

logger = logging.getLogger(__name__)

MAX_NOTIFY_ATTEMPTS = 5


def notification_idempotency_key(
    notification_type: str,
    entity_type: str,
    entity_id: str,
    discriminator: Optional[str] = None,
) -> str:
    parts = [notification_type, entity_type, entity_id]
    if discriminator:
        parts.append(discriminator)
    return ":".join(parts)


def reminder_time_bucket(value: datetime) -> str:
    """UTC hour bucket, e.g. 2024-01-15T14."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


class NotificationQueue:

    def __init__(self, store: SchedulingStore, max_attempts: int = MAX_NOTIFY_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    async def enqueue(
        self,
        notification_type: str,
        entity_type: str,
        entity_id: str,
        to_email: str,
        payload: dict,
        run_after: Optional[datetime] = None,
        discriminator: Optional[str] = None,
    ) -> NotificationJob:
        now = datetime.now(timezone.utc)
        key = notification_idempotency_key(notification_type, entity_type, entity_id, discriminator)
        job = await self.store.create_notification_job(NotificationJob(
            type=notification_type,
            entity_type=entity_type,
            entity_id=entity_id,
            idempotency_key=key,
            to_email=to_email,
            payload=payload,
            max_attempts=self.max_attempts,
            run_after=run_after or now,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            "Notification %s queued (status=%s)", notification_type, job.status,
            extra={"job_id": str(job.id), "entity_id": entity_id},
        )
        return job

    async def enqueue_reminder(
        self,
        notification_type: str,
        booking_id: str,
        to_email: str,
        payload: dict,
        send_at: datetime,
    ) -> NotificationJob:
        return await self.enqueue(
            notification_type, "booking", booking_id, to_email, payload,
            run_after=send_at, discriminator=reminder_time_bucket(send_at),
        )

    async def cancel_pending_for_entity(self, entity_type: str, entity_id: str) -> int:
        """Cancel queued notifications for an entity that no longer needs them."""
        count = await self.store.cancel_pending_notification_jobs(
            entity_type, entity_id, datetime.now(timezone.utc),
        )
        if count:
            logger.info(
                "Cancelled %d pending notifications for %s", count, entity_type,
                extra={"entity_id": entity_id},
            )
        return count
