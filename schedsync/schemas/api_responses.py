"""
API response schemas for the webhook and health endpoints.
Field names go out in camelCase to match what the ATS and ops tooling expect.
"""
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookAckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    received: bool
    webhook_id: Optional[uuid.UUID] = Field(default=None, alias="webhookId")
    event_id: Optional[str] = Field(default=None, alias="eventId")
    is_duplicate: bool = Field(default=False, alias="isDuplicate")
    verified: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


class QueueDepthResponse(BaseModel):
    sync_jobs_pending: int
    notification_jobs_pending: int
    webhook_events_received: int


class IntegrationHealthResponse(BaseModel):
    status: str
    timestamp: str
    ats: dict
    graph_token: Optional[dict] = None
    queues: QueueDepthResponse
