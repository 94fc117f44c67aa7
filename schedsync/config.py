"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.

Components never read the environment themselves: the validators below turn
Settings into the typed configs each component is constructed with.
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

DEFAULT_GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""

    def __init__(self, component: str, errors: list[str]):
        self.component = component
        self.errors = errors
        details = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"{component} configuration validation failed:\n{details}")


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    log_level: str = "INFO"
    workers_enabled: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./schedsync.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Microsoft Graph (calendar) OAuth client credentials
    graph_mode: str = "mock"  # mock | real
    graph_tenant_id: str = ""
    graph_client_id: str = ""
    graph_client_secret: str = ""
    graph_token_endpoint: str = ""  # Override for testing / sovereign clouds
    graph_scope: str = DEFAULT_GRAPH_SCOPE
    graph_max_retries: int = 3
    graph_retry_delay_ms: int = 1000

    # Applicant tracking system (iCIMS)
    ats_mode: str = "mock"  # mock | real
    ats_base_url: str = ""
    ats_api_key: str = ""
    ats_max_retries: int = 3
    ats_retry_base_delay_ms: int = 1000
    ats_retry_max_delay_ms: int = 30000
    ats_timeout_seconds: float = 10.0

    # Inbound webhooks
    webhook_secret: str = ""

    # Job queue
    sync_max_attempts: int = 5
    sync_batch_size: int = 10
    notify_max_attempts: int = 5
    worker_poll_interval_seconds: int = 60
    job_lease_timeout_seconds: int = 0  # 0 = stale-lease reclaim disabled

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@dataclass(frozen=True)
class GraphTokenConfig:
    tenant_id: str
    client_id: str
    client_secret: str
    token_endpoint: Optional[str] = None
    scope: str = DEFAULT_GRAPH_SCOPE


@dataclass(frozen=True)
class AtsConfig:
    mode: str
    base_url: str
    api_key: str
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    timeout_seconds: float = 10.0


def validate_graph_config(settings: Settings) -> GraphTokenConfig:
    """
    Build the token manager config from settings.
    Raises ConfigError listing every problem found.
    """
    errors: list[str] = []

    if not settings.graph_tenant_id:
        errors.append("GRAPH_TENANT_ID: Required environment variable is missing")
    elif not UUID_RE.match(settings.graph_tenant_id):
        errors.append("GRAPH_TENANT_ID: Must be a valid UUID")

    if not settings.graph_client_id:
        errors.append("GRAPH_CLIENT_ID: Required environment variable is missing")
    elif not UUID_RE.match(settings.graph_client_id):
        errors.append("GRAPH_CLIENT_ID: Must be a valid UUID")

    if not settings.graph_client_secret:
        errors.append("GRAPH_CLIENT_SECRET: Required environment variable is missing")
    elif len(settings.graph_client_secret) < 10:
        errors.append("GRAPH_CLIENT_SECRET: Client secret appears too short")

    if settings.graph_token_endpoint and not _is_valid_url(settings.graph_token_endpoint):
        errors.append("GRAPH_TOKEN_ENDPOINT: Must be a valid URL")

    if not 0 <= settings.graph_max_retries <= 10:
        errors.append("GRAPH_MAX_RETRIES: Must be a number between 0 and 10")

    if not 100 <= settings.graph_retry_delay_ms <= 60000:
        errors.append("GRAPH_RETRY_DELAY_MS: Must be a number between 100 and 60000")

    if errors:
        raise ConfigError("Graph", errors)

    return GraphTokenConfig(
        tenant_id=settings.graph_tenant_id,
        client_id=settings.graph_client_id,
        client_secret=settings.graph_client_secret,
        token_endpoint=settings.graph_token_endpoint or None,
        scope=settings.graph_scope,
    )


def validate_ats_config(settings: Settings) -> AtsConfig:
    """
    Build the ATS client config from settings.
    Mock mode needs nothing else; real mode needs a base URL and API key.
    """
    mode = settings.ats_mode.strip().lower()
    if mode not in ("mock", "real"):
        raise ConfigError("ATS", [f"ATS_MODE: Invalid mode '{settings.ats_mode}', must be 'mock' or 'real'"])

    if mode == "mock":
        return AtsConfig(mode="mock", base_url="", api_key="")

    errors: list[str] = []
    if not settings.ats_base_url:
        errors.append("ATS_BASE_URL: Required when ATS_MODE=real")
    elif not _is_valid_url(settings.ats_base_url):
        errors.append("ATS_BASE_URL: Must be a valid URL")

    if not settings.ats_api_key:
        errors.append("ATS_API_KEY: Required when ATS_MODE=real")
    elif len(settings.ats_api_key) < 10:
        errors.append("ATS_API_KEY: Appears to be invalid (too short)")

    if settings.ats_max_retries < 0:
        errors.append("ATS_MAX_RETRIES: Must not be negative")

    if errors:
        raise ConfigError("ATS", errors)

    return AtsConfig(
        mode="real",
        base_url=settings.ats_base_url.rstrip("/"),
        api_key=settings.ats_api_key,
        max_retries=settings.ats_max_retries,
        base_delay_ms=settings.ats_retry_base_delay_ms,
        max_delay_ms=settings.ats_retry_max_delay_ms,
        timeout_seconds=settings.ats_timeout_seconds,
    )


def ats_config_summary(settings: Settings) -> dict:
    """Config summary for ops/logging (no secrets)."""
    return {
        "mode": settings.ats_mode,
        "base_url": settings.ats_base_url,
        "has_api_key": bool(settings.ats_api_key),
    }


def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
