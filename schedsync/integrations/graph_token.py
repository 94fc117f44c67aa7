"""
Microsoft Graph OAuth 2.0 client credentials token manager.
Tokens are cached per manager instance and refreshed 5 minutes before expiry.
Concurrent callers that need a refresh share one in-flight request.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

import httpx

from schedsync.config import GraphTokenConfig
from schedsync.schemas.records import TokenStatus

logger = logging.getLogger(__name__)

EARLY_REFRESH_SECONDS = 300
TOKEN_ENDPOINT_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"


class TokenError(Exception):
    """Token acquisition failed. status is the HTTP status, 0 for transport failures."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


@dataclass
class GraphTokenMetrics:
    token_refreshes: int = 0
    token_failures: int = 0
    last_refresh_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None


class GraphTokenManager:

    def __init__(self, config: GraphTokenConfig, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._expires_at: float = 0  # unix seconds
        self._refresh_task: Optional[asyncio.Task] = None
        self._metrics = GraphTokenMetrics()

    @property
    def token_endpoint(self) -> str:
        if self.config.token_endpoint:
            return self.config.token_endpoint
        return TOKEN_ENDPOINT_TEMPLATE.format(tenant_id=self.config.tenant_id)

    async def get_token(self) -> str:
        """
        Return a valid access token, refreshing if absent or inside the early-refresh window.
        Every caller waiting on the same refresh gets the same token or the same TokenError.
        """
        if self._access_token and self._expires_at - EARLY_REFRESH_SECONDS > time.time():
            return self._access_token

        if self._refresh_task is None:
            self._refresh_task = asyncio.get_running_loop().create_task(self._do_refresh())
            self._refresh_task.add_done_callback(self._clear_refresh_task)

        # shield: one cancelled waiter must not cancel the refresh for the others
        return await asyncio.shield(self._refresh_task)

    def _clear_refresh_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    def clear_token(self) -> None:
        """Drop the cached token. Call on a 401 from the API."""
        self._access_token = None
        self._expires_at = 0

    def get_token_status(self) -> TokenStatus:
        now = time.time()
        valid = self._access_token is not None and self._expires_at > now
        if not valid:
            return TokenStatus(valid=False)
        return TokenStatus(
            valid=True,
            expires_at=datetime.fromtimestamp(self._expires_at, tz=timezone.utc),
            expires_in_seconds=int(self._expires_at - now),
        )

    def get_metrics(self) -> GraphTokenMetrics:
        return replace(self._metrics)

    def reset_metrics(self) -> None:
        self._metrics = GraphTokenMetrics()

    async def _do_refresh(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.token_endpoint,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.config.client_id,
                        "client_secret": self.config.client_secret,
                        "scope": self.config.scope,
                    },
                )
        except httpx.HTTPError as e:
            message = f"Token refresh network error: {e}"
            self._record_failure(message)
            raise TokenError(message, 0) from e

        if not 200 <= response.status_code < 300:
            message = f"Token refresh failed: {response.status_code} - {response.text[:200]}"
            self._record_failure(message)
            raise TokenError(message, response.status_code)

        try:
            data = response.json()
            token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            message = f"Token refresh returned an unreadable body: {e}"
            self._record_failure(message)
            raise TokenError(message, response.status_code) from e

        self._access_token = token
        self._expires_at = time.time() + expires_in
        self._metrics.token_refreshes += 1
        self._metrics.last_refresh_at = datetime.now(timezone.utc)
        self._metrics.last_error = None
        logger.info("Graph token refreshed, expires in %ds", expires_in)
        return token

    def _record_failure(self, message: str) -> None:
        self.clear_token()
        self._metrics.token_failures += 1
        self._metrics.last_failure_at = datetime.now(timezone.utc)
        self._metrics.last_error = message
        logger.error("Graph token refresh failed: %s", message)
