"""
In-memory SchedulingStore for local runs and tests.
Records are copied on the way in and out so callers never share state with the store.
"""
import uuid
from datetime import datetime
from typing import Optional, TypeVar

from pydantic import BaseModel

from schedsync.schemas.records import AuditLog, NotificationJob, SyncJob, WebhookEvent
from schedsync.store.base import DuplicateEventError, SchedulingStore

R = TypeVar("R", bound=BaseModel)


def _copy(record: R) -> R:
    return record.model_copy(deep=True)


class InMemoryStore(SchedulingStore):

    def __init__(self):
        self.webhook_events: dict[uuid.UUID, WebhookEvent] = {}
        self.sync_jobs: dict[uuid.UUID, SyncJob] = {}
        self.notification_jobs: dict[uuid.UUID, NotificationJob] = {}
        self.audit_logs: list[AuditLog] = []

    def reset(self) -> None:
        self.webhook_events.clear()
        self.sync_jobs.clear()
        self.notification_jobs.clear()
        self.audit_logs.clear()

    # -- Webhook events ----------------------------------------------------

    async def create_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        if event.event_id is not None and await self.find_webhook_event_by_event_id(event.event_id):
            raise DuplicateEventError(event.event_id)
        self.webhook_events[event.id] = _copy(event)
        return _copy(event)

    async def get_webhook_event(self, webhook_id: uuid.UUID) -> Optional[WebhookEvent]:
        event = self.webhook_events.get(webhook_id)
        return _copy(event) if event else None

    async def find_webhook_event_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        for event in self.webhook_events.values():
            if event.event_id == event_id:
                return _copy(event)
        return None

    async def find_webhook_event_by_payload_hash(self, payload_hash: str) -> Optional[WebhookEvent]:
        for event in self.webhook_events.values():
            if event.payload_hash == payload_hash:
                return _copy(event)
        return None

    async def update_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        if event.id not in self.webhook_events:
            raise KeyError(f"Webhook event {event.id} not found")
        self.webhook_events[event.id] = _copy(event)
        return _copy(event)

    async def get_pending_webhook_events(self, limit: int, now: datetime) -> list[WebhookEvent]:
        ready = [
            e for e in self.webhook_events.values()
            if e.status == "received" and e.verified and e.run_after <= now
        ]
        ready.sort(key=lambda e: e.run_after)
        return [_copy(e) for e in ready[:limit]]

    async def claim_webhook_event(self, webhook_id: uuid.UUID, now: datetime) -> bool:
        event = self.webhook_events.get(webhook_id)
        if event is None or event.status != "received":
            return False
        event.status = "processing"
        event.updated_at = now
        return True

    async def count_received_webhook_events(self) -> int:
        return sum(1 for e in self.webhook_events.values() if e.status == "received")

    # -- Sync jobs ---------------------------------------------------------

    async def create_sync_job(self, job: SyncJob) -> SyncJob:
        self.sync_jobs[job.id] = _copy(job)
        return _copy(job)

    async def get_sync_job(self, job_id: uuid.UUID) -> Optional[SyncJob]:
        job = self.sync_jobs.get(job_id)
        return _copy(job) if job else None

    async def update_sync_job(self, job: SyncJob) -> SyncJob:
        if job.id not in self.sync_jobs:
            raise KeyError(f"Sync job {job.id} not found")
        self.sync_jobs[job.id] = _copy(job)
        return _copy(job)

    async def get_pending_sync_jobs(self, limit: int, now: datetime) -> list[SyncJob]:
        ready = [j for j in self.sync_jobs.values() if j.status == "pending" and j.run_after <= now]
        ready.sort(key=lambda j: j.run_after)
        return [_copy(j) for j in ready[:limit]]

    async def claim_sync_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        job = self.sync_jobs.get(job_id)
        if job is None or job.status != "pending":
            return False
        job.status = "processing"
        job.updated_at = now
        return True

    async def count_pending_sync_jobs(self) -> int:
        return sum(1 for j in self.sync_jobs.values() if j.status == "pending")

    async def get_sync_jobs_for_entity(self, entity_id: str) -> list[SyncJob]:
        jobs = [j for j in self.sync_jobs.values() if j.entity_id == entity_id]
        jobs.sort(key=lambda j: j.created_at)
        return [_copy(j) for j in jobs]

    async def reclaim_stale_sync_jobs(self, older_than: datetime, now: datetime) -> int:
        count = 0
        for job in self.sync_jobs.values():
            if job.status == "processing" and job.updated_at < older_than:
                job.status = "pending"
                job.updated_at = now
                count += 1
        return count

    # -- Notification jobs -------------------------------------------------

    async def create_notification_job(self, job: NotificationJob) -> NotificationJob:
        for existing in self.notification_jobs.values():
            if existing.idempotency_key == job.idempotency_key:
                return _copy(existing)
        self.notification_jobs[job.id] = _copy(job)
        return _copy(job)

    async def get_notification_job(self, job_id: uuid.UUID) -> Optional[NotificationJob]:
        job = self.notification_jobs.get(job_id)
        return _copy(job) if job else None

    async def update_notification_job(self, job: NotificationJob) -> NotificationJob:
        if job.id not in self.notification_jobs:
            raise KeyError(f"Notification job {job.id} not found")
        self.notification_jobs[job.id] = _copy(job)
        return _copy(job)

    async def get_pending_notification_jobs(self, limit: int, now: datetime) -> list[NotificationJob]:
        ready = [
            j for j in self.notification_jobs.values()
            if j.status == "PENDING" and j.run_after <= now
        ]
        ready.sort(key=lambda j: j.run_after)
        return [_copy(j) for j in ready[:limit]]

    async def claim_notification_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        job = self.notification_jobs.get(job_id)
        if job is None or job.status != "PENDING":
            return False
        job.status = "SENDING"
        job.updated_at = now
        return True

    async def count_pending_notification_jobs(self) -> int:
        return sum(1 for j in self.notification_jobs.values() if j.status == "PENDING")

    async def reclaim_stale_notification_jobs(self, older_than: datetime, now: datetime) -> int:
        count = 0
        for job in self.notification_jobs.values():
            if job.status == "SENDING" and job.updated_at < older_than:
                job.status = "PENDING"
                job.updated_at = now
                count += 1
        return count

    async def cancel_pending_notification_jobs(self, entity_type: str, entity_id: str, now: datetime) -> int:
        count = 0
        for job in self.notification_jobs.values():
            if job.status == "PENDING" and job.entity_type == entity_type and job.entity_id == entity_id:
                job.status = "CANCELED"
                job.updated_at = now
                count += 1
        return count

    # -- Audit log ---------------------------------------------------------

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        self.audit_logs.append(_copy(entry))
        return _copy(entry)

    async def get_audit_logs(
        self,
        action: Optional[str] = None,
        request_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> list[AuditLog]:
        return [
            _copy(entry) for entry in self.audit_logs
            if (action is None or entry.action == action)
            and (request_id is None or entry.request_id == request_id)
            and (booking_id is None or entry.booking_id == booking_id)
        ]
