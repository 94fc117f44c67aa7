"""
Tests for schedsync/integrations/ats_client.py and ats_mock.py.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from schedsync.config import Settings
from schedsync.integrations.ats_client import IcimsClient, build_ats_client, parse_application
from schedsync.integrations.ats_errors import (
    NetworkError,
    NotFoundError,
    UnrecognizedResponseError,
)
from schedsync.integrations.ats_http import AtsResponse
from schedsync.integrations.ats_mock import MOCK_APPLICATIONS, MockAtsClient


# ---------------------------------------------------------------------------
# Response normalization
# ---------------------------------------------------------------------------

class TestParseApplication:
    def test_flat_shape(self):
        record = parse_application({
            "id": "APP-9",
            "candidateName": "Ada Lovelace",
            "candidateEmail": "ada@example.com",
            "requisitionId": "REQ-1",
            "requisitionTitle": "Analyst",
            "status": "Interview",
        }, "APP-9")
        assert record.candidate_name == "Ada Lovelace"
        assert record.candidate_email == "ada@example.com"
        assert record.requisition_id == "REQ-1"
        assert record.requisition_title == "Analyst"
        assert record.status == "Interview"

    def test_nested_shape(self):
        record = parse_application({
            "id": "APP-9",
            "candidate": {"name": "Ada Lovelace", "email": "ada@example.com"},
            "requisition": {"id": 42, "title": "Analyst"},
            "status": "Offer",
        }, "APP-9")
        assert record.candidate_name == "Ada Lovelace"
        assert record.requisition_id == "42"
        assert record.requisition_title == "Analyst"
        assert record.status == "Offer"

    def test_flat_and_nested_normalize_the_same(self):
        flat = parse_application({
            "id": "A", "candidateName": "N", "candidateEmail": "e@x.com",
            "requisitionId": "R", "requisitionTitle": "T", "status": "S",
        }, "A")
        nested = parse_application({
            "id": "A", "candidate": {"name": "N", "email": "e@x.com"},
            "requisition": {"id": "R", "title": "T"}, "status": "S",
        }, "A")
        assert flat == nested

    def test_missing_fields_get_placeholders(self):
        record = parse_application({"id": "APP-7"}, "APP-7")
        assert record.candidate_name == "Candidate APP-7"
        assert record.candidate_email == "candidate-app-7@unknown.com"
        assert record.requisition_id == "REQ-APP-7"
        assert record.requisition_title == "Unknown Position"
        assert record.status == "Unknown"

    @pytest.mark.parametrize("data", [None, [], "text", {"unexpected": True}])
    def test_unrecognized_shape_raises(self, data):
        with pytest.raises(UnrecognizedResponseError):
            parse_application(data, "APP-1")


# ---------------------------------------------------------------------------
# IcimsClient
# ---------------------------------------------------------------------------

def _client(ats_config, response=None, error=None) -> IcimsClient:
    http = MagicMock()
    http.request = AsyncMock(return_value=response, side_effect=error)
    return IcimsClient(ats_config, http=http)


class TestIcimsClient:
    async def test_get_application(self, ats_config):
        client = _client(ats_config, AtsResponse(
            data={"id": "APP-1", "candidateName": "Ada", "status": "Interview"}, status_code=200,
        ))
        record = await client.get_application("APP-1")
        assert record.candidate_name == "Ada"
        client.http.request.assert_awaited_once_with("GET", "/api/v1/applications/APP-1")

    async def test_get_application_not_found(self, ats_config):
        client = _client(ats_config, error=NotFoundError("resource", "unknown"))
        with pytest.raises(NotFoundError) as exc:
            await client.get_application("APP-404")
        assert exc.value.resource_type == "application"
        assert exc.value.resource_id == "APP-404"

    async def test_add_note(self, ats_config):
        client = _client(ats_config, AtsResponse(data={"noteId": "N"}, status_code=201))
        await client.add_application_note("APP-1", "note text")
        args, kwargs = client.http.request.call_args
        assert args == ("POST", "/api/v1/applications/APP-1/notes")
        assert kwargs["body"] == {"content": "note text", "noteType": "scheduling"}
        assert kwargs["idempotency_key"].startswith("sched-APP-1-")

    async def test_add_note_propagates_errors(self, ats_config):
        client = _client(ats_config, error=NetworkError("reset"))
        with pytest.raises(NetworkError):
            await client.add_application_note("APP-1", "note text")

    def test_metrics_come_from_transport(self, ats_config):
        client = IcimsClient(ats_config)
        assert client.metrics is client.http.metrics


# ---------------------------------------------------------------------------
# MockAtsClient
# ---------------------------------------------------------------------------

class TestMockAtsClient:
    async def test_fixture_application(self):
        record = await MockAtsClient().get_application("APP-001")
        assert record == MOCK_APPLICATIONS["APP-001"]

    async def test_unknown_application_generated(self):
        record = await MockAtsClient().get_application("APP-XYZ")
        assert record.candidate_name == "Candidate APP-XYZ"

    async def test_notes_recorded(self):
        client = MockAtsClient()
        await client.add_application_note("APP-001", "first")
        await client.add_application_note("APP-001", "second")
        assert client.get_application_notes("APP-001") == ["first", "second"]
        client.clear_notes()
        assert client.get_application_notes("APP-001") == []

    async def test_fail_next_request_fails_once(self):
        client = MockAtsClient()
        client.fail_next_request = True
        with pytest.raises(NetworkError):
            await client.add_application_note("APP-001", "note")
        await client.add_application_note("APP-001", "note")
        assert client.get_application_notes("APP-001") == ["note"]


class TestBuildAtsClient:
    def test_mock_mode(self):
        assert isinstance(build_ats_client(Settings(ats_mode="mock")), MockAtsClient)

    def test_real_mode(self):
        client = build_ats_client(Settings(
            ats_mode="real", ats_base_url="https://api.icims.test", ats_api_key="test-api-key-12345",
        ))
        assert isinstance(client, IcimsClient)
        assert client.config.base_url == "https://api.icims.test"
