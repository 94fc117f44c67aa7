"""
schedsync - external integration core for interview scheduling.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from schedsync.api.router import api_router
from schedsync.config import Settings, get_settings, validate_graph_config
from schedsync.database import create_all, create_engine_from_settings, create_session_factory
from schedsync.integrations.ats_client import build_ats_client
from schedsync.integrations.graph_token import GraphTokenManager
from schedsync.services.notifications import NotificationQueue
from schedsync.services.webhooks import WebhookIngestService
from schedsync.services.writeback import WritebackService
from schedsync.store.base import SchedulingStore
from schedsync.store.sql import SqlAlchemyStore
from schedsync.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from schedsync.workers.notify_worker import LoggingNotificationSender, NotifyWorker, run_notify_worker
from schedsync.workers.sync_worker import SyncWorker, run_sync_worker
from schedsync.workers.webhook_worker import WebhookWorker, run_webhook_worker

logger = logging.getLogger("schedsync")

SHUTDOWN_TIMEOUT_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def build_services(app: FastAPI, settings: Settings, store: SchedulingStore) -> None:
    """
    Wire every component onto app.state.
    Config problems raise ConfigError here so the app never starts half-configured.
    """
    if settings.graph_mode == "real":
        app.state.token_manager = GraphTokenManager(validate_graph_config(settings))
    else:
        app.state.token_manager = None

    ats_client = build_ats_client(settings)
    if not settings.webhook_secret:
        logger.warning(
            "WEBHOOK_SECRET not set - every ATS webhook will be stored as unverified "
            "and never processed."
        )

    writeback = WritebackService(store, ats_client, max_attempts=settings.sync_max_attempts)
    webhook_service = WebhookIngestService(store, settings.webhook_secret)

    app.state.store = store
    app.state.ats_client = ats_client
    app.state.webhook_service = webhook_service
    app.state.writeback = writeback
    app.state.notifications = NotificationQueue(store, max_attempts=settings.notify_max_attempts)
    app.state.sync_worker = SyncWorker(
        store, writeback,
        batch_size=settings.sync_batch_size,
        lease_timeout_seconds=settings.job_lease_timeout_seconds,
    )
    app.state.notify_worker = NotifyWorker(
        store, LoggingNotificationSender(),
        batch_size=settings.sync_batch_size,
        lease_timeout_seconds=settings.job_lease_timeout_seconds,
    )
    app.state.webhook_worker = WebhookWorker(
        store, webhook_service, batch_size=settings.sync_batch_size,
    )


def start_workers(app: FastAPI, settings: Settings, stop: asyncio.Event) -> list[asyncio.Task]:
    interval = settings.worker_poll_interval_seconds
    worker_tasks = [
        asyncio.create_task(run_sync_worker(app.state.sync_worker, interval, stop)),
        asyncio.create_task(run_notify_worker(app.state.notify_worker, interval, stop)),
        asyncio.create_task(run_webhook_worker(app.state.webhook_worker, interval, stop)),
    ]
    logger.info("Background workers started (sync, notify, webhook)")
    return worker_tasks


async def stop_workers(worker_tasks: list[asyncio.Task], stop: Optional[asyncio.Event]) -> None:
    """Graceful shutdown - let workers finish the job in hand, then cancel stragglers."""
    if not worker_tasks:
        return
    if stop is not None:
        stop.set()
    done, pending = await asyncio.wait(worker_tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("schedsync starting up (env=%s)", settings.app_env)

    engine = create_engine_from_settings(settings)
    await create_all(engine)
    store = SqlAlchemyStore(create_session_factory(engine))
    build_services(app, settings, store)

    worker_tasks: list[asyncio.Task] = []
    stop: Optional[asyncio.Event] = None
    if settings.workers_enabled:
        stop = asyncio.Event()
        worker_tasks = start_workers(app, settings, stop)
    else:
        logger.info("Background workers disabled (WORKERS_ENABLED=false)")

    yield

    logger.info("schedsync shutting down - stopping %d workers...", len(worker_tasks))
    await stop_workers(worker_tasks, stop)
    await engine.dispose()
    logger.info("schedsync shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="schedsync",
        description="ATS, calendar and notification integration core for interview scheduling",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
