"""
Abstract persistence interface - every store implements this.
Services and workers only ever talk to a SchedulingStore, never to a session.

Claim methods are compare-and-swap: they move a row out of its ready state only
if it is still in that state, and report whether this caller won.
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from schedsync.schemas.records import AuditLog, NotificationJob, SyncJob, WebhookEvent


class DuplicateEventError(Exception):
    """A webhook event with the same event_id is already stored."""


class SchedulingStore(ABC):
    """Persistence collaborator for webhook events, job queues and the audit log."""

    # -- Webhook events ----------------------------------------------------

    @abstractmethod
    async def create_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        ...

    @abstractmethod
    async def get_webhook_event(self, webhook_id: uuid.UUID) -> Optional[WebhookEvent]:
        ...

    @abstractmethod
    async def find_webhook_event_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        ...

    @abstractmethod
    async def find_webhook_event_by_payload_hash(self, payload_hash: str) -> Optional[WebhookEvent]:
        ...

    @abstractmethod
    async def update_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        ...

    @abstractmethod
    async def get_pending_webhook_events(self, limit: int, now: datetime) -> list[WebhookEvent]:
        """Verified events in status received with run_after <= now, oldest run_after first."""
        ...

    @abstractmethod
    async def claim_webhook_event(self, webhook_id: uuid.UUID, now: datetime) -> bool:
        """received -> processing. False if another worker got there first."""
        ...

    @abstractmethod
    async def count_received_webhook_events(self) -> int:
        ...

    # -- Sync jobs ---------------------------------------------------------

    @abstractmethod
    async def create_sync_job(self, job: SyncJob) -> SyncJob:
        ...

    @abstractmethod
    async def get_sync_job(self, job_id: uuid.UUID) -> Optional[SyncJob]:
        ...

    @abstractmethod
    async def update_sync_job(self, job: SyncJob) -> SyncJob:
        ...

    @abstractmethod
    async def get_pending_sync_jobs(self, limit: int, now: datetime) -> list[SyncJob]:
        """Jobs in status pending with run_after <= now, oldest run_after first, at most limit."""
        ...

    @abstractmethod
    async def claim_sync_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        """pending -> processing. False if the job is no longer pending."""
        ...

    @abstractmethod
    async def count_pending_sync_jobs(self) -> int:
        ...

    @abstractmethod
    async def get_sync_jobs_for_entity(self, entity_id: str) -> list[SyncJob]:
        ...

    @abstractmethod
    async def reclaim_stale_sync_jobs(self, older_than: datetime, now: datetime) -> int:
        """Return processing jobs untouched since older_than to pending. Returns count."""
        ...

    # -- Notification jobs -------------------------------------------------

    @abstractmethod
    async def create_notification_job(self, job: NotificationJob) -> NotificationJob:
        """Insert, or return the existing job with the same idempotency_key unchanged."""
        ...

    @abstractmethod
    async def get_notification_job(self, job_id: uuid.UUID) -> Optional[NotificationJob]:
        ...

    @abstractmethod
    async def update_notification_job(self, job: NotificationJob) -> NotificationJob:
        ...

    @abstractmethod
    async def get_pending_notification_jobs(self, limit: int, now: datetime) -> list[NotificationJob]:
        ...

    @abstractmethod
    async def claim_notification_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        """PENDING -> SENDING."""
        ...

    @abstractmethod
    async def count_pending_notification_jobs(self) -> int:
        ...

    @abstractmethod
    async def reclaim_stale_notification_jobs(self, older_than: datetime, now: datetime) -> int:
        ...

    @abstractmethod
    async def cancel_pending_notification_jobs(self, entity_type: str, entity_id: str, now: datetime) -> int:
        """PENDING -> CANCELED for every job on the entity. Returns count."""
        ...

    # -- Audit log ---------------------------------------------------------

    @abstractmethod
    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        ...

    @abstractmethod
    async def get_audit_logs(
        self,
        action: Optional[str] = None,
        request_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> list[AuditLog]:
        """Entries matching every given filter, oldest first."""
        ...
