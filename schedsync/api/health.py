"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health              - basic liveness (always 200 if app running)
- GET /health/integrations - ATS API health, Graph token status, queue depths
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from schedsync.config import ats_config_summary, get_settings
from schedsync.integrations.ats_client import IcimsClient
from schedsync.schemas.api_responses import IntegrationHealthResponse, QueueDepthResponse
from schedsync.store.base import SchedulingStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

STATUS_RANK = {"healthy": 0, "degraded": 1, "down": 2}


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/health/integrations", response_model=IntegrationHealthResponse)
async def integrations_health(request: Request) -> IntegrationHealthResponse:
    """
    External integration health.
    Overall status is the worst of the ATS status and the token status.
    """
    state = request.app.state
    store: SchedulingStore = state.store
    summary = ats_config_summary(get_settings())

    client = state.ats_client
    if isinstance(client, IcimsClient):
        ats = client.metrics.full_health(summary)
    else:
        ats = {"status": "healthy", "config": summary}

    overall = ats["status"]
    graph_token = None
    token_manager = getattr(state, "token_manager", None)
    if token_manager is not None:
        token_status = token_manager.get_token_status()
        metrics = token_manager.get_metrics()
        graph_token = {
            **token_status.model_dump(mode="json"),
            "token_refreshes": metrics.token_refreshes,
            "token_failures": metrics.token_failures,
            "last_error": metrics.last_error,
        }
        if not token_status.valid and metrics.last_error:
            overall = "degraded" if STATUS_RANK[overall] < STATUS_RANK["degraded"] else overall

    queues = QueueDepthResponse(
        sync_jobs_pending=await store.count_pending_sync_jobs(),
        notification_jobs_pending=await store.count_pending_notification_jobs(),
        webhook_events_received=await store.count_received_webhook_events(),
    )

    return IntegrationHealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc).isoformat(),
        ats=ats,
        graph_token=graph_token,
        queues=queues,
    )
