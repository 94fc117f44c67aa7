"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

# Settings are read at import time by schedsync.main - keep tests off any local .env
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from schedsync.config import AtsConfig, GraphTokenConfig
from schedsync.database import Base
from schedsync.integrations.ats_mock import MockAtsClient
from schedsync.services.webhooks import WebhookIngestService
from schedsync.services.writeback import WritebackService
from schedsync.store.memory import InMemoryStore
from schedsync.store.sql import SqlAlchemyStore
import schedsync.models  # noqa: F401

WEBHOOK_SECRET = "test-webhook-secret"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def session_factory():
    """In-memory SQLite database shared across sessions for one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def mock_ats():
    return MockAtsClient()


@pytest.fixture
def writeback(store, mock_ats):
    return WritebackService(store, mock_ats)


@pytest.fixture
def webhook_service(store):
    return WebhookIngestService(store, WEBHOOK_SECRET)


@pytest.fixture
def ats_config():
    """Real-mode ATS config with fast retries."""
    return AtsConfig(
        mode="real",
        base_url="https://api.icims.test",
        api_key="test-api-key-12345",
        max_retries=3,
        base_delay_ms=10,
        max_delay_ms=100,
        timeout_seconds=5.0,
    )


@pytest.fixture
def graph_config():
    return GraphTokenConfig(
        tenant_id="11111111-2222-3333-4444-555555555555",
        client_id="66666666-7777-8888-9999-000000000000",
        client_secret="super-secret-value",
    )
