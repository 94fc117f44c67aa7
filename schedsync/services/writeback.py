"""
ATS writeback - scheduling notes on the candidate's application.

CRITICAL: writeback never blocks or fails the scheduling flow. Any client or
token error is audited and turned into a SyncJob that the sync worker replays
on the backoff schedule.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from schedsync.integrations.ats_base import AtsClient
from schedsync.schemas.records import (
    BookedNoteParams,
    CancelledNoteParams,
    LinkCreatedNoteParams,
    RescheduledNoteParams,
    SyncJob,
    WritebackResult,
)
from schedsync.services.audit import record_audit, truncate_error
from schedsync.services.note_formatter import (
    format_booked_note,
    format_cancelled_note,
    format_link_created_note,
    format_rescheduled_note,
)
from schedsync.store.base import SchedulingStore
from schedsync.utils.backoff import next_sync_run_after

logger = logging.getLogger(__name__)

MAX_SYNC_ATTEMPTS = 5
SYNC_JOB_TYPE = "icims_note"


def calculate_next_run_after(attempt_index: int, now: Optional[datetime] = None) -> datetime:
    """+1, +5, +15, +30, +60 minutes for attempt 0..4; later attempts stay at +60."""
    return next_sync_run_after(attempt_index, now)


class WritebackService:

    def __init__(
        self,
        store: SchedulingStore,
        client: AtsClient,
        max_attempts: int = MAX_SYNC_ATTEMPTS,
    ):
        self.store = store
        self.client = client
        self.max_attempts = max_attempts

    calculate_next_run_after = staticmethod(calculate_next_run_after)

    async def write_link_created_note(self, params: LinkCreatedNoteParams) -> WritebackResult:
        if not params.application_id:
            return WritebackResult(success=True)
        return await self._write_note(
            params.application_id, "link_created", format_link_created_note(params),
            params.scheduling_request_id, "scheduling_request", params,
        )

    async def write_booked_note(self, params: BookedNoteParams) -> WritebackResult:
        if not params.application_id:
            return WritebackResult(success=True)
        return await self._write_note(
            params.application_id, "booked", format_booked_note(params),
            params.booking_id, "booking", params,
        )

    async def write_cancelled_note(self, params: CancelledNoteParams) -> WritebackResult:
        if not params.application_id:
            return WritebackResult(success=True)
        return await self._write_note(
            params.application_id, "cancelled", format_cancelled_note(params),
            params.scheduling_request_id, "scheduling_request", params,
        )

    async def write_rescheduled_note(self, params: RescheduledNoteParams) -> WritebackResult:
        if not params.application_id:
            return WritebackResult(success=True)
        return await self._write_note(
            params.application_id, "rescheduled", format_rescheduled_note(params),
            params.booking_id, "booking", params,
        )

    async def retry_job(self, job: SyncJob) -> WritebackResult:
        """Replay the note stored on a sync job. Never mutates the job."""
        payload = job.payload or {}
        application_id = payload.get("application_id")
        note_text = payload.get("note_text")
        note_type = payload.get("note_type", "unknown")
        if not application_id or not note_text:
            return WritebackResult(
                success=False, error="Sync job payload missing application_id or note_text",
            )

        error = await self._send(application_id, note_type, note_text, job.entity_id)
        if error is None:
            return WritebackResult(success=True)
        return WritebackResult(success=False, error=error)

    async def _write_note(
        self,
        application_id: str,
        note_type: str,
        note_text: str,
        entity_id: str,
        entity_type: str,
        params: BaseModel,
    ) -> WritebackResult:
        error = await self._send(application_id, note_type, note_text, entity_id)
        if error is None:
            return WritebackResult(success=True)

        job = await self._create_retry_job(
            entity_id, entity_type, note_type, application_id, note_text, params, error,
        )
        return WritebackResult(success=False, error=error, sync_job_id=job.id)

    async def _send(
        self,
        application_id: str,
        note_type: str,
        note_text: str,
        entity_id: str,
    ) -> Optional[str]:
        """One audited write. Returns None on success, the error text on failure."""
        audit_payload = {
            "application_id": application_id,
            "note_type": note_type,
            "entity_id": entity_id,
        }
        await record_audit(self.store, "icims_note_attempt", audit_payload)

        try:
            await self.client.add_application_note(application_id, note_text)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(
                "ATS %s note failed: %s", note_type, message[:200],
                extra={"application_id": application_id, "entity_id": entity_id},
            )
            await record_audit(
                self.store, "icims_note_failed",
                {**audit_payload, "error": truncate_error(message)},
            )
            return message

        await record_audit(self.store, "icims_note_success", audit_payload)
        return None

    async def _create_retry_job(
        self,
        entity_id: str,
        entity_type: str,
        note_type: str,
        application_id: str,
        note_text: str,
        params: BaseModel,
        last_error: str,
    ) -> SyncJob:
        now = datetime.now(timezone.utc)
        job = await self.store.create_sync_job(SyncJob(
            type=SYNC_JOB_TYPE,
            entity_id=entity_id,
            entity_type=entity_type,
            attempts=0,
            max_attempts=self.max_attempts,
            status="pending",
            last_error=last_error,
            payload={
                **params.model_dump(mode="json"),
                "application_id": application_id,
                "note_text": note_text,
                "note_type": note_type,
            },
            run_after=calculate_next_run_after(0, now),
            created_at=now,
            updated_at=now,
        ))

        await record_audit(
            self.store, "sync_job_created",
            {
                "sync_job_id": str(job.id),
                "note_type": note_type,
                "application_id": application_id,
                "reason": truncate_error(last_error),
            },
            request_id=entity_id if entity_type == "scheduling_request" else None,
            booking_id=entity_id if entity_type == "booking" else None,
        )
        logger.info(
            "Sync job created for %s %s", entity_type, entity_id,
            extra={"job_id": str(job.id), "entity_id": entity_id},
        )
        return job
