"""
SQLAlchemy-backed SchedulingStore.
Each operation runs in its own session and commits before returning.
Claims are conditional UPDATEs (WHERE id = ? AND status = ?) so two workers
can never both move the same row into processing.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schedsync.database import Base
from schedsync.models import AuditLogRow, NotificationJobRow, SyncJobRow, WebhookEventRow
from schedsync.schemas.records import AuditLog, NotificationJob, SyncJob, WebhookEvent
from schedsync.store.base import DuplicateEventError, SchedulingStore

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)


class SqlAlchemyStore(SchedulingStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -- helpers -----------------------------------------------------------

    async def _insert(self, row_cls: Type[Base], record: R) -> R:
        async with self._session_factory() as session:
            row = row_cls(**record.model_dump())
            session.add(row)
            await session.commit()
            return type(record).model_validate(row)

    async def _get(self, row_cls: Type[Base], record_cls: Type[R], row_id: uuid.UUID) -> Optional[R]:
        async with self._session_factory() as session:
            row = await session.get(row_cls, row_id)
            return record_cls.model_validate(row) if row else None

    async def _first(self, record_cls: Type[R], stmt) -> Optional[R]:
        async with self._session_factory() as session:
            row = (await session.execute(stmt.limit(1))).scalar_one_or_none()
            return record_cls.model_validate(row) if row else None

    async def _all(self, record_cls: Type[R], stmt) -> list[R]:
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [record_cls.model_validate(r) for r in rows]

    async def _save(self, row_cls: Type[Base], record: R) -> R:
        async with self._session_factory() as session:
            row = await session.get(row_cls, record.id)
            if row is None:
                raise KeyError(f"{row_cls.__tablename__} row {record.id} not found")
            for key, value in record.model_dump(exclude={"id"}).items():
                setattr(row, key, value)
            await session.commit()
            return type(record).model_validate(row)

    async def _transition(
        self, row_cls, row_id: uuid.UUID, from_status: str, to_status: str, now: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(row_cls)
                .where(row_cls.id == row_id, row_cls.status == from_status)
                .values(status=to_status, updated_at=now)
            )
            await session.commit()
            return result.rowcount == 1

    async def _count(self, row_cls, status: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(row_cls.id)).where(row_cls.status == status)
            )
            return result.scalar() or 0

    async def _reclaim(
        self, row_cls, lease_status: str, ready_status: str, older_than: datetime, now: datetime,
    ) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(row_cls)
                .where(row_cls.status == lease_status, row_cls.updated_at < older_than)
                .values(status=ready_status, updated_at=now)
            )
            await session.commit()
            if result.rowcount:
                logger.warning(
                    "Reclaimed %d stale %s rows", result.rowcount, row_cls.__tablename__,
                )
            return result.rowcount

    # -- Webhook events ----------------------------------------------------

    async def create_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        try:
            return await self._insert(WebhookEventRow, event)
        except IntegrityError as e:
            raise DuplicateEventError(event.event_id) from e

    async def get_webhook_event(self, webhook_id: uuid.UUID) -> Optional[WebhookEvent]:
        return await self._get(WebhookEventRow, WebhookEvent, webhook_id)

    async def find_webhook_event_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        return await self._first(
            WebhookEvent, select(WebhookEventRow).where(WebhookEventRow.event_id == event_id)
        )

    async def find_webhook_event_by_payload_hash(self, payload_hash: str) -> Optional[WebhookEvent]:
        return await self._first(
            WebhookEvent,
            select(WebhookEventRow)
            .where(WebhookEventRow.payload_hash == payload_hash)
            .order_by(WebhookEventRow.created_at.asc()),
        )

    async def update_webhook_event(self, event: WebhookEvent) -> WebhookEvent:
        return await self._save(WebhookEventRow, event)

    async def get_pending_webhook_events(self, limit: int, now: datetime) -> list[WebhookEvent]:
        return await self._all(
            WebhookEvent,
            select(WebhookEventRow)
            .where(
                WebhookEventRow.status == "received",
                WebhookEventRow.verified.is_(True),
                WebhookEventRow.run_after <= now,
            )
            .order_by(WebhookEventRow.run_after.asc())
            .limit(limit),
        )

    async def claim_webhook_event(self, webhook_id: uuid.UUID, now: datetime) -> bool:
        return await self._transition(WebhookEventRow, webhook_id, "received", "processing", now)

    async def count_received_webhook_events(self) -> int:
        return await self._count(WebhookEventRow, "received")

    # -- Sync jobs ---------------------------------------------------------

    async def create_sync_job(self, job: SyncJob) -> SyncJob:
        return await self._insert(SyncJobRow, job)

    async def get_sync_job(self, job_id: uuid.UUID) -> Optional[SyncJob]:
        return await self._get(SyncJobRow, SyncJob, job_id)

    async def update_sync_job(self, job: SyncJob) -> SyncJob:
        return await self._save(SyncJobRow, job)

    async def get_pending_sync_jobs(self, limit: int, now: datetime) -> list[SyncJob]:
        return await self._all(
            SyncJob,
            select(SyncJobRow)
            .where(SyncJobRow.status == "pending", SyncJobRow.run_after <= now)
            .order_by(SyncJobRow.run_after.asc())
            .limit(limit),
        )

    async def claim_sync_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        return await self._transition(SyncJobRow, job_id, "pending", "processing", now)

    async def count_pending_sync_jobs(self) -> int:
        return await self._count(SyncJobRow, "pending")

    async def get_sync_jobs_for_entity(self, entity_id: str) -> list[SyncJob]:
        return await self._all(
            SyncJob,
            select(SyncJobRow)
            .where(SyncJobRow.entity_id == entity_id)
            .order_by(SyncJobRow.created_at.asc()),
        )

    async def reclaim_stale_sync_jobs(self, older_than: datetime, now: datetime) -> int:
        return await self._reclaim(SyncJobRow, "processing", "pending", older_than, now)

    # -- Notification jobs -------------------------------------------------

    async def create_notification_job(self, job: NotificationJob) -> NotificationJob:
        by_key = select(NotificationJobRow).where(
            NotificationJobRow.idempotency_key == job.idempotency_key
        )
        existing = await self._first(NotificationJob, by_key)
        if existing:
            return existing
        try:
            return await self._insert(NotificationJobRow, job)
        except IntegrityError:
            # Lost an insert race on idempotency_key - the winner's row is the job
            existing = await self._first(NotificationJob, by_key)
            if existing is None:
                raise
            return existing

    async def get_notification_job(self, job_id: uuid.UUID) -> Optional[NotificationJob]:
        return await self._get(NotificationJobRow, NotificationJob, job_id)

    async def update_notification_job(self, job: NotificationJob) -> NotificationJob:
        return await self._save(NotificationJobRow, job)

    async def get_pending_notification_jobs(self, limit: int, now: datetime) -> list[NotificationJob]:
        return await self._all(
            NotificationJob,
            select(NotificationJobRow)
            .where(NotificationJobRow.status == "PENDING", NotificationJobRow.run_after <= now)
            .order_by(NotificationJobRow.run_after.asc())
            .limit(limit),
        )

    async def claim_notification_job(self, job_id: uuid.UUID, now: datetime) -> bool:
        return await self._transition(NotificationJobRow, job_id, "PENDING", "SENDING", now)

    async def count_pending_notification_jobs(self) -> int:
        return await self._count(NotificationJobRow, "PENDING")

    async def reclaim_stale_notification_jobs(self, older_than: datetime, now: datetime) -> int:
        return await self._reclaim(NotificationJobRow, "SENDING", "PENDING", older_than, now)

    async def cancel_pending_notification_jobs(self, entity_type: str, entity_id: str, now: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(NotificationJobRow)
                .where(
                    NotificationJobRow.status == "PENDING",
                    NotificationJobRow.entity_type == entity_type,
                    NotificationJobRow.entity_id == entity_id,
                )
                .values(status="CANCELED", updated_at=now)
            )
            await session.commit()
            return result.rowcount

    # -- Audit log ---------------------------------------------------------

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        return await self._insert(AuditLogRow, entry)

    async def get_audit_logs(
        self,
        action: Optional[str] = None,
        request_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> list[AuditLog]:
        stmt = select(AuditLogRow)
        if action is not None:
            stmt = stmt.where(AuditLogRow.action == action)
        if request_id is not None:
            stmt = stmt.where(AuditLogRow.request_id == request_id)
        if booking_id is not None:
            stmt = stmt.where(AuditLogRow.booking_id == booking_id)
        return await self._all(AuditLog, stmt.order_by(AuditLogRow.created_at.asc()))
