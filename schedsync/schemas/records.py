"""
Domain records - the typed shapes that flow between store, services and workers.
The SQL store maps these onto the tables in schedsync.models; the in-memory store
holds them directly.
"""
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


WebhookStatus = Literal["received", "processing", "processed", "failed"]
SyncJobStatus = Literal["pending", "processing", "completed", "failed"]
NotificationStatus = Literal["PENDING", "SENDING", "SENT", "FAILED", "CANCELED"]
EntityType = Literal["scheduling_request", "booking"]
ActorType = Literal["coordinator", "candidate", "system"]


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------

class WebhookEvent(_Record):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    provider: str = "icims"
    event_id: Optional[str] = None
    payload_hash: str
    event_type: str
    payload: dict = Field(default_factory=dict)
    signature: Optional[str] = None
    verified: bool = False
    status: WebhookStatus = "received"
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    run_after: UtcDatetime = Field(default_factory=utcnow)
    processed_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class SyncJob(_Record):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    type: str = "icims_note"
    entity_id: str
    entity_type: EntityType
    attempts: int = 0
    max_attempts: int = 5
    status: SyncJobStatus = "pending"
    last_error: Optional[str] = None
    payload: dict = Field(default_factory=dict)
    run_after: UtcDatetime = Field(default_factory=utcnow)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class NotificationJob(_Record):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    type: str
    entity_type: str
    entity_id: str
    idempotency_key: str
    to_email: str
    payload: dict = Field(default_factory=dict)
    status: NotificationStatus = "PENDING"
    attempts: int = 0
    max_attempts: int = 5
    last_error: Optional[str] = None
    run_after: UtcDatetime = Field(default_factory=utcnow)
    sent_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class AuditLog(_Record):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    action: str
    actor_type: ActorType = "system"
    actor_id: Optional[str] = None
    request_id: Optional[str] = None
    booking_id: Optional[str] = None
    payload: dict = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Inbound webhook body
# ---------------------------------------------------------------------------

class WebhookPayload(BaseModel):
    """Body of an ATS webhook delivery. eventType is the only required field."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event_id: Optional[str] = Field(default=None, alias="eventId")
    event_type: str = Field(..., alias="eventType", min_length=1)
    timestamp: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _null_data_is_empty(cls, value):
        return {} if value is None else value


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class WebhookReceipt(BaseModel):
    success: bool
    is_duplicate: bool
    verified: bool
    message: str
    webhook_id: Optional[uuid.UUID] = None
    event_id: Optional[str] = None


class ProcessResult(BaseModel):
    success: bool
    error: Optional[str] = None


class WritebackResult(BaseModel):
    success: bool
    error: Optional[str] = None
    sync_job_id: Optional[uuid.UUID] = None


class ApplicationRecord(BaseModel):
    """Canonical ATS application, whichever response shape it came from."""
    id: str
    candidate_name: str = ""
    candidate_email: str = ""
    requisition_id: str = ""
    requisition_title: str = ""
    status: str = ""


class TokenStatus(BaseModel):
    valid: bool
    expires_at: Optional[datetime] = None
    expires_in_seconds: Optional[int] = None


JobOutcomeStatus = Literal["completed", "retrying", "failed", "skipped"]


class JobOutcome(BaseModel):
    job_id: uuid.UUID
    status: JobOutcomeStatus
    attempts: int = 0
    error: Optional[str] = None


class BatchResult(BaseModel):
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    queue_depth: int = 0
    outcomes: list[JobOutcome] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Writeback note parameters
# ---------------------------------------------------------------------------

class LinkCreatedNoteParams(BaseModel):
    scheduling_request_id: str
    application_id: Optional[str] = None
    public_link: str
    interviewer_emails: list[str] = Field(default_factory=list)
    organizer_email: str
    interview_type: str
    duration_minutes: int
    window_start: datetime
    window_end: datetime
    candidate_timezone: str


class BookedNoteParams(BaseModel):
    scheduling_request_id: str
    booking_id: str
    application_id: Optional[str] = None
    interviewer_emails: list[str] = Field(default_factory=list)
    organizer_email: str
    scheduled_start_utc: datetime
    scheduled_end_utc: datetime
    candidate_timezone: str
    calendar_event_id: Optional[str] = None
    join_url: Optional[str] = None


class CancelledNoteParams(BaseModel):
    scheduling_request_id: str
    booking_id: Optional[str] = None
    application_id: Optional[str] = None
    interviewer_emails: list[str] = Field(default_factory=list)
    organizer_email: str
    reason: str
    cancelled_by: str


class RescheduledNoteParams(BaseModel):
    scheduling_request_id: str
    booking_id: str
    application_id: Optional[str] = None
    interviewer_emails: list[str] = Field(default_factory=list)
    organizer_email: str
    old_start_utc: datetime
    old_end_utc: datetime
    new_start_utc: datetime
    new_end_utc: datetime
    candidate_timezone: str
    calendar_event_id: Optional[str] = None
    reason: Optional[str] = None
