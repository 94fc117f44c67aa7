"""
ATS API call metrics for the ops dashboard.
Owned by one client instance; reset() restores a clean slate for tests.
"""
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

METRICS_WINDOW = timedelta(hours=24)
AUTH_FAILURE_WINDOW = timedelta(minutes=5)


@dataclass
class AtsApiMetrics:
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    rate_limit_count: int = 0
    server_error_count: int = 0
    auth_failure_count: int = 0
    total_latency_ms: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_auth_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_status: Optional[int] = None


@dataclass
class _Sample:
    timestamp: datetime
    success: bool
    latency_ms: int
    status_code: Optional[int] = None


class AtsMetrics:

    def __init__(self):
        self._metrics = AtsApiMetrics()
        self._recent: deque[_Sample] = deque()

    def record_success(self, latency_ms: int, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        self._metrics.request_count += 1
        self._metrics.success_count += 1
        self._metrics.total_latency_ms += latency_ms
        self._metrics.last_success_at = now
        self._recent.append(_Sample(now, True, latency_ms))
        self._prune(now)

    def record_failure(
        self,
        latency_ms: int,
        status_code: Optional[int],
        message: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or datetime.now(timezone.utc)
        m = self._metrics
        m.request_count += 1
        m.failure_count += 1
        m.total_latency_ms += latency_ms
        m.last_failure_at = now
        m.last_error = message
        m.last_error_status = status_code

        if status_code == 429:
            m.rate_limit_count += 1
        elif status_code is not None and status_code >= 500:
            m.server_error_count += 1
        elif status_code in (401, 403):
            m.auth_failure_count += 1
            m.last_auth_failure_at = now

        self._recent.append(_Sample(now, False, latency_ms, status_code))
        self._prune(now)

    def snapshot(self) -> AtsApiMetrics:
        return replace(self._metrics)

    def window_24h(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        self._prune(now)
        total = len(self._recent)
        successful = sum(1 for s in self._recent if s.success)
        latency = sum(s.latency_ms for s in self._recent)
        return {
            "total_calls": total,
            "successful_calls": successful,
            "failed_calls": total - successful,
            "avg_response_time_ms": round(latency / total) if total else 0,
            "rate_limit_hits": sum(1 for s in self._recent if s.status_code == 429),
        }

    def health_status(self, now: Optional[datetime] = None) -> str:
        """healthy / degraded (<95% success) / down (<80%, or an auth failure in the last 5 min)."""
        now = now or datetime.now(timezone.utc)
        window = self.window_24h(now)
        if window["total_calls"] == 0:
            return "healthy"

        auth_at = self._metrics.last_auth_failure_at
        if auth_at and auth_at > now - AUTH_FAILURE_WINDOW:
            return "down"

        success_rate = window["successful_calls"] / window["total_calls"]
        if success_rate < 0.8:
            return "down"
        if success_rate < 0.95:
            return "degraded"
        return "healthy"

    def full_health(self, config_summary: dict, now: Optional[datetime] = None) -> dict:
        m = self._metrics
        return {
            "status": self.health_status(now),
            "last_successful_call": m.last_success_at.isoformat() if m.last_success_at else None,
            "last_failed_call": m.last_failure_at.isoformat() if m.last_failure_at else None,
            "last_error": m.last_error,
            "metrics_last_24h": self.window_24h(now),
            "config": config_summary,
        }

    def reset(self) -> None:
        self._metrics = AtsApiMetrics()
        self._recent.clear()

    def _prune(self, now: datetime) -> None:
        cutoff = now - METRICS_WINDOW
        while self._recent and self._recent[0].timestamp < cutoff:
            self._recent.popleft()
