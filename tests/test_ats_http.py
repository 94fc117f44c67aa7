"""
Tests for schedsync/integrations/ats_http.py - retries, backoff, headers, idempotency keys.
"""
from contextlib import contextmanager
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from schedsync.integrations.ats_errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    ServerError,
)
from schedsync.integrations.ats_http import AtsHttp, generate_idempotency_key


@contextmanager
def mock_http(*responses):
    """Patch httpx.AsyncClient; each request() call returns the next response (or raises it)."""
    with patch("schedsync.integrations.ats_http.httpx.AsyncClient") as mock_cls:
        client = MagicMock()
        client.request = AsyncMock(side_effect=list(responses))
        mock_cls.return_value.__aenter__.return_value = client
        mock_cls.return_value.__aexit__.return_value = False
        yield client


def _http(ats_config, sleep=None) -> AtsHttp:
    return AtsHttp(ats_config, sleep=sleep or AsyncMock())


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

class TestRequestRetries:
    async def test_success_first_try(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(200, json={"id": "APP-1"})) as client:
            response = await http.request("GET", "/api/v1/applications/APP-1")
        assert response.data == {"id": "APP-1"}
        assert response.status_code == 200
        assert client.request.await_count == 1

    async def test_server_errors_then_success(self, ats_config):
        sleep = AsyncMock()
        http = _http(ats_config, sleep)
        with mock_http(
            httpx.Response(500, text="oops"),
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"ok": True}),
        ) as client:
            response = await http.request("GET", "/x")
        assert response.data == {"ok": True}
        assert client.request.await_count == 3
        assert sleep.await_count == 2

    async def test_503_then_201_makes_two_calls(self, ats_config):
        http = _http(ats_config)
        with mock_http(
            httpx.Response(503, text="unavailable"),
            httpx.Response(201, json={"noteId": "N-1"}),
        ) as client:
            response = await http.request("POST", "/notes", body={"content": "hi"})
        assert response.status_code == 201
        assert client.request.await_count == 2

    async def test_401_is_not_retried(self, ats_config):
        sleep = AsyncMock()
        http = _http(ats_config, sleep)
        with mock_http(httpx.Response(401, text="unauthorized")) as client:
            with pytest.raises(AuthError):
                await http.request("GET", "/x")
        assert client.request.await_count == 1
        sleep.assert_not_awaited()

    async def test_404_is_not_retried(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(404, text="missing")) as client:
            with pytest.raises(NotFoundError):
                await http.request("GET", "/x")
        assert client.request.await_count == 1

    async def test_retries_exhausted_raises_last_error(self, ats_config):
        http = _http(ats_config)
        with mock_http(*[httpx.Response(500, text="still broken")] * 4) as client:
            with pytest.raises(ServerError) as exc:
                await http.request("GET", "/x")
        assert exc.value.message == "still broken"
        # initial attempt + max_retries
        assert client.request.await_count == ats_config.max_retries + 1

    async def test_429_waits_for_retry_after(self, ats_config):
        sleep = AsyncMock()
        http = _http(ats_config, sleep)
        with mock_http(
            httpx.Response(429, headers={"Retry-After": "2"}, text="slow down"),
            httpx.Response(200, json={}),
        ):
            await http.request("GET", "/x")
        sleep.assert_awaited_once_with(2.0)

    async def test_network_error_is_retried(self, ats_config):
        http = _http(ats_config)
        with mock_http(
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={}),
        ) as client:
            await http.request("GET", "/x")
        assert client.request.await_count == 2

    async def test_network_error_exhausted(self, ats_config):
        http = _http(ats_config)
        with mock_http(*[httpx.ReadTimeout("timed out")] * 4):
            with pytest.raises(NetworkError):
                await http.request("GET", "/x")


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------

class TestRequestShape:
    async def test_headers_and_url(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(201, json={})) as client:
            await http.request("POST", "/api/v1/applications/A/notes", body={"content": "x"},
                               idempotency_key="sched-A-deadbeef-2024-01-15")
        args, kwargs = client.request.call_args
        assert args == ("POST", "https://api.icims.test/api/v1/applications/A/notes")
        headers = kwargs["headers"]
        assert headers["X-API-Key"] == "test-api-key-12345"
        assert headers["User-Agent"] == "Sched-Scheduler/1.0"
        assert headers["Idempotency-Key"] == "sched-A-deadbeef-2024-01-15"
        assert kwargs["json"] == {"content": "x"}

    async def test_get_sends_no_body(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(200, json={})) as client:
            await http.request("GET", "/x", body={"ignored": True})
        assert "json" not in client.request.call_args.kwargs
        assert "Idempotency-Key" not in client.request.call_args.kwargs["headers"]

    async def test_empty_body_gives_none(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(204)):
            response = await http.request("POST", "/x", body={})
        assert response.data is None


# ---------------------------------------------------------------------------
# Backoff and metrics
# ---------------------------------------------------------------------------

class TestBackoff:
    def test_first_attempt_within_base_plus_jitter(self, ats_config):
        http = _http(ats_config)
        for _ in range(20):
            delay = http.calculate_backoff_ms(0)
            assert 10 <= delay <= 20

    def test_capped_at_max_delay(self, ats_config):
        assert _http(ats_config).calculate_backoff_ms(10) == 100


class TestMetricsRecording:
    async def test_each_attempt_recorded(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(500, text="x"), httpx.Response(200, json={})):
            await http.request("GET", "/x")
        snapshot = http.metrics.snapshot()
        assert snapshot.request_count == 2
        assert snapshot.success_count == 1
        assert snapshot.failure_count == 1
        assert snapshot.server_error_count == 1

    async def test_rate_limit_counted(self, ats_config):
        http = _http(ats_config)
        with mock_http(httpx.Response(429, headers={"Retry-After": "1"}), httpx.Response(200, json={})):
            await http.request("GET", "/x")
        assert http.metrics.snapshot().rate_limit_count == 1


# ---------------------------------------------------------------------------
# Idempotency keys
# ---------------------------------------------------------------------------

class TestIdempotencyKey:
    def test_format(self):
        key = generate_idempotency_key("APP-001", "note body", today=date(2024, 1, 15))
        assert key.startswith("sched-APP-001-")
        assert key.endswith("-2024-01-15")
        content_hash = key[len("sched-APP-001-"):-len("-2024-01-15")]
        assert len(content_hash) == 8

    def test_same_note_same_day_same_key(self):
        day = date(2024, 1, 15)
        assert generate_idempotency_key("A", "n", day) == generate_idempotency_key("A", "n", day)

    def test_different_note_different_key(self):
        day = date(2024, 1, 15)
        assert generate_idempotency_key("A", "n1", day) != generate_idempotency_key("A", "n2", day)

    def test_different_day_different_key(self):
        assert (
            generate_idempotency_key("A", "n", date(2024, 1, 15))
            != generate_idempotency_key("A", "n", date(2024, 1, 16))
        )
