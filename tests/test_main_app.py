"""
Tests for schedsync/main.py - app factory, service wiring, worker lifecycle.
"""
import asyncio
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from schedsync.config import ConfigError, Settings
from schedsync.integrations.ats_client import IcimsClient
from schedsync.integrations.ats_mock import MockAtsClient
from schedsync.integrations.graph_token import GraphTokenManager
from schedsync.main import build_services, create_app, start_workers, stop_workers
from schedsync.services.webhooks import WebhookIngestService
from schedsync.workers.sync_worker import SyncWorker


def _settings(**overrides) -> Settings:
    values = {"webhook_secret": "s", "app_env": "test"}
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# create_app
# ---------------------------------------------------------------------------

class TestCreateApp:
    def test_returns_fastapi_instance(self):
        with patch("schedsync.main.configure_structured_logging"):
            app = create_app()
        assert isinstance(app, FastAPI)
        assert app.title == "schedsync"

    def test_routes_registered(self):
        with patch("schedsync.main.configure_structured_logging"):
            app = create_app()
        paths = {route.path for route in app.routes}
        assert "/api/v1/webhook/ats" in paths
        assert "/health" in paths
        assert "/health/integrations" in paths

    def test_correlation_id_generated(self):
        with patch("schedsync.main.configure_structured_logging"):
            client = TestClient(create_app())
        response = client.get("/health")
        assert len(response.headers["X-Correlation-ID"]) == 32


# ---------------------------------------------------------------------------
# build_services
# ---------------------------------------------------------------------------

class TestBuildServices:
    def test_mock_mode_wiring(self, store):
        app = FastAPI()
        build_services(app, _settings(), store)
        assert app.state.store is store
        assert isinstance(app.state.ats_client, MockAtsClient)
        assert app.state.token_manager is None
        assert isinstance(app.state.webhook_service, WebhookIngestService)
        assert app.state.webhook_service.secret == "s"
        assert isinstance(app.state.sync_worker, SyncWorker)

    def test_real_mode_wiring(self, store):
        app = FastAPI()
        build_services(app, _settings(
            graph_mode="real",
            graph_tenant_id="11111111-2222-3333-4444-555555555555",
            graph_client_id="66666666-7777-8888-9999-000000000000",
            graph_client_secret="super-secret-value",
            ats_mode="real",
            ats_base_url="https://api.icims.test",
            ats_api_key="test-api-key-12345",
        ), store)
        assert isinstance(app.state.token_manager, GraphTokenManager)
        assert isinstance(app.state.ats_client, IcimsClient)

    def test_bad_graph_config_fails_fast(self, store):
        with pytest.raises(ConfigError):
            build_services(FastAPI(), _settings(graph_mode="real"), store)

    def test_settings_flow_into_workers(self, store):
        app = FastAPI()
        build_services(app, _settings(sync_batch_size=3, job_lease_timeout_seconds=120), store)
        assert app.state.sync_worker.batch_size == 3
        assert app.state.sync_worker.lease_timeout_seconds == 120
        assert app.state.notify_worker.lease_timeout_seconds == 120


# ---------------------------------------------------------------------------
# Worker lifecycle
# ---------------------------------------------------------------------------

class TestWorkerLifecycle:
    async def test_start_and_stop(self, store):
        app = FastAPI()
        build_services(app, _settings(worker_poll_interval_seconds=60), store)
        stop = asyncio.Event()

        tasks = start_workers(app, _settings(worker_poll_interval_seconds=60), stop)
        assert len(tasks) == 3
        await asyncio.sleep(0)

        await stop_workers(tasks, stop)
        assert all(task.done() for task in tasks)
        assert stop.is_set()

    async def test_stop_with_no_workers(self):
        await stop_workers([], None)

    async def test_stragglers_cancelled(self):
        async def stuck():
            await asyncio.sleep(3600)

        task = asyncio.create_task(stuck())
        with patch("schedsync.main.SHUTDOWN_TIMEOUT_SECONDS", 0.01):
            await stop_workers([task], asyncio.Event())
        assert task.cancelled()


class TestLifespan:
    def test_startup_wires_state(self):
        with patch("schedsync.main.configure_structured_logging"):
            app = create_app()
        with TestClient(app) as client:
            assert isinstance(app.state.webhook_service, WebhookIngestService)
            assert client.get("/health").json()["status"] == "healthy"
