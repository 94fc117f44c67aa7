"""
ATS HTTP transport.
Injects auth headers, retries transient failures with capped exponential
backoff plus jitter, honors Retry-After on 429, and records every attempt
in the client's metrics. API keys and note bodies are never logged.
"""
import asyncio
import hashlib
import json
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from schedsync.config import AtsConfig
from schedsync.integrations.ats_errors import (
    AtsError,
    NetworkError,
    RateLimitError,
    classify_error,
)
from schedsync.integrations.ats_metrics import AtsMetrics
from schedsync.utils.metrics import CallTimer

logger = logging.getLogger(__name__)

USER_AGENT = "Sched-Scheduler/1.0"


@dataclass
class AtsResponse:
    data: Any
    status_code: int
    headers: dict = field(default_factory=dict)


def generate_idempotency_key(
    application_id: str,
    note_text: str,
    today: Optional[date] = None,
) -> str:
    """sched-{application_id}-{first 8 hex of sha256(note)}-{YYYY-MM-DD}, UTC date."""
    today = today or datetime.now(timezone.utc).date()
    content_hash = hashlib.sha256(note_text.encode("utf-8")).hexdigest()[:8]
    return f"sched-{application_id}-{content_hash}-{today.isoformat()}"


class AtsHttp:

    def __init__(
        self,
        config: AtsConfig,
        metrics: Optional[AtsMetrics] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.metrics = metrics or AtsMetrics()
        self._sleep = sleep

    def calculate_backoff_ms(self, attempt: int) -> float:
        base = self.config.base_delay_ms
        delay = base * (2 ** attempt) + random.uniform(0, base)
        return min(delay, self.config.max_delay_ms)

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> AtsResponse:
        """
        Send one logical request: the initial attempt plus up to max_retries retries.
        Non-retryable errors raise immediately; exhausted retries raise the last error.
        """
        last_error: Optional[AtsError] = None
        attempt = 0

        while attempt <= self.config.max_retries:
            try:
                with CallTimer() as timer:
                    response = await self._execute(method, path, body, idempotency_key)
            except AtsError as e:
                last_error = e
                self.metrics.record_failure(timer.elapsed_ms, e.status_code, e.message)
            else:
                self.metrics.record_success(timer.elapsed_ms)
                return response

            if not last_error.is_retryable or attempt >= self.config.max_retries:
                break

            if isinstance(last_error, RateLimitError):
                delay_ms = last_error.retry_after_ms
            else:
                delay_ms = self.calculate_backoff_ms(attempt)

            logger.info(
                "ATS retry %d/%d for %s %s after %dms",
                attempt + 1, self.config.max_retries, method, path, delay_ms,
                extra={"status_code": last_error.status_code},
            )
            await self._sleep(delay_ms / 1000)
            attempt += 1

        raise last_error

    async def _execute(
        self,
        method: str,
        path: str,
        body: Optional[dict],
        idempotency_key: Optional[str],
    ) -> AtsResponse:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-API-Key": self.config.api_key,
            "User-Agent": USER_AGENT,
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        kwargs: dict = {"headers": headers}
        if body is not None and method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = body

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.request(method, f"{self.config.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(str(e) or type(e).__name__) from e

        text = response.text or ""
        if not 200 <= response.status_code < 300:
            raise classify_error(response.status_code, text, response.headers.get("Retry-After"))

        data: Any = None
        if text:
            try:
                data = json.loads(text)
            except ValueError:
                data = text

        return AtsResponse(
            data=data,
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
        )
