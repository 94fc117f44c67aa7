"""
Tests for schedsync/workers/webhook_worker.py - processing stored webhook events.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from schedsync.schemas.records import WebhookEvent
from schedsync.services.webhooks import WebhookIngestService
from schedsync.workers.webhook_worker import WebhookWorker

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _event(**overrides) -> WebhookEvent:
    values = dict(
        event_id="evt-1",
        payload_hash="a" * 64,
        event_type="application.status_changed",
        payload={"applicationId": "APP-001", "status": "Interview"},
        verified=True,
        run_after=NOW,
    )
    values.update(overrides)
    return WebhookEvent(**values)


class TestWebhookWorker:
    async def test_processes_verified_events(self, store, webhook_service):
        event = await store.create_webhook_event(_event())
        result = await WebhookWorker(store, webhook_service).process_batch(now=NOW)

        assert result.processed == 1
        assert result.queue_depth == 0
        assert (await store.get_webhook_event(event.id)).status == "processed"

    async def test_unverified_events_never_processed(self, store, webhook_service):
        event = await store.create_webhook_event(_event(verified=False))
        result = await WebhookWorker(store, webhook_service).process_batch(now=NOW)

        assert result.processed == 0
        assert result.failed == 0
        assert (await store.get_webhook_event(event.id)).status == "received"

    async def test_handler_failure_retries_later(self, store):
        service = WebhookIngestService(
            store, "secret",
            handlers={"application.status_changed": AsyncMock(side_effect=RuntimeError("boom"))},
        )
        event = await store.create_webhook_event(_event())
        worker = WebhookWorker(store, service)

        result = await worker.process_batch(now=NOW)
        assert result.failed == 1
        assert result.outcomes[0].status == "retrying"
        assert result.outcomes[0].attempts == 1

        # not due yet
        assert (await worker.process_batch(now=NOW + timedelta(minutes=1))).failed == 0
        result = await worker.process_batch(now=NOW + timedelta(minutes=2))
        assert result.failed == 1
        assert (await store.get_webhook_event(event.id)).attempts == 2

    async def test_exhausted_retries_reported_failed(self, store):
        service = WebhookIngestService(
            store, "secret",
            handlers={"application.status_changed": AsyncMock(side_effect=RuntimeError("boom"))},
        )
        await store.create_webhook_event(_event(attempts=2, max_attempts=3))
        result = await WebhookWorker(store, service).process_batch(now=NOW)
        assert result.outcomes[0].status == "failed"
        assert result.outcomes[0].attempts == 3

    async def test_service_crash_marks_event_failed(self, store, webhook_service):
        event = await store.create_webhook_event(_event())
        webhook_service.process_webhook_event = AsyncMock(side_effect=RuntimeError("store gone"))
        result = await WebhookWorker(store, webhook_service).process_batch(now=NOW)

        assert result.failed == 1
        stored = await store.get_webhook_event(event.id)
        assert stored.status == "failed"
        assert stored.last_error == "store gone"

    async def test_lost_claim_is_skipped(self, store, webhook_service):
        await store.create_webhook_event(_event())
        store.claim_webhook_event = AsyncMock(return_value=False)
        result = await WebhookWorker(store, webhook_service).process_batch(now=NOW)
        assert result.skipped == 1

    async def test_zero_limit_processes_nothing(self, store, webhook_service):
        event = await store.create_webhook_event(_event())
        result = await WebhookWorker(store, webhook_service).process_batch(now=NOW, limit=0)
        assert result.processed == 0
        assert (await store.get_webhook_event(event.id)).status == "received"
