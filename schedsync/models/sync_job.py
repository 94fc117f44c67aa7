"""
SyncJob - durable retry record for an external write that failed.
Created by the writeback service, mutated only by the sync worker.
Terminal at completed or failed (attempts exhausted, needs a human).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from schedsync.database import Base


class SyncJobRow(Base):
    __tablename__ = "sync_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="icims_note")
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # scheduling_request, booking

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )  # pending, processing, completed, failed
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    # Everything needed to replay the write
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)

    run_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_sync_jobs_processing", "status", "run_after"),
        Index("ix_sync_jobs_entity_id", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<SyncJob {self.type} {self.entity_type}:{self.entity_id} ({self.status})>"
