"""
iCIMS API client.
Reads applications and writes scheduling notes. All transport concerns
(auth headers, retries, metrics) live in AtsHttp.
"""
import logging
from typing import Any, Optional

from schedsync.config import AtsConfig, Settings, validate_ats_config
from schedsync.integrations.ats_base import AtsClient
from schedsync.integrations.ats_errors import NotFoundError, UnrecognizedResponseError
from schedsync.integrations.ats_http import AtsHttp, generate_idempotency_key
from schedsync.integrations.ats_metrics import AtsMetrics
from schedsync.integrations.ats_mock import MockAtsClient
from schedsync.schemas.records import ApplicationRecord

logger = logging.getLogger(__name__)

FLAT_FIELDS = ("candidateName", "candidateEmail", "requisitionId", "requisitionTitle")
SCALAR_FIELDS = ("id", "status")


def _detect_shape(data: Any) -> str:
    """Classify an application body as nested, flat, or unrecognized."""
    if not isinstance(data, dict):
        return "unrecognized"
    if isinstance(data.get("candidate"), dict) or isinstance(data.get("requisition"), dict):
        return "nested"
    if any(k in data for k in FLAT_FIELDS + SCALAR_FIELDS):
        return "flat"
    return "unrecognized"


def parse_application(data: Any, application_id: str) -> ApplicationRecord:
    """
    Normalize either response shape into one ApplicationRecord:

      nested: {"id", "candidate": {"name", "email"}, "requisition": {"id", "title"}, "status"}
      flat:   {"id", "candidateName", "candidateEmail", "requisitionId", "requisitionTitle", "status"}

    Missing fields fall back to placeholders derived from the application id.
    """
    shape = _detect_shape(data)
    if shape == "unrecognized":
        raise UnrecognizedResponseError(
            f"Unrecognized application response for {application_id}: "
            f"{type(data).__name__}"
        )

    if shape == "nested":
        candidate = data.get("candidate") or {}
        requisition = data.get("requisition") or {}
        name = candidate.get("name")
        email = candidate.get("email")
        req_id = requisition.get("id")
        req_title = requisition.get("title")
    else:
        name = data.get("candidateName")
        email = data.get("candidateEmail")
        req_id = data.get("requisitionId")
        req_title = data.get("requisitionTitle")

    return ApplicationRecord(
        id=str(data.get("id") or application_id),
        candidate_name=name or f"Candidate {application_id}",
        candidate_email=email or f"candidate-{application_id.lower()}@unknown.com",
        requisition_id=str(req_id or f"REQ-{application_id}"),
        requisition_title=req_title or "Unknown Position",
        status=data.get("status") or "Unknown",
    )


class IcimsClient(AtsClient):
    """Real iCIMS client."""

    def __init__(self, config: AtsConfig, http: Optional[AtsHttp] = None):
        self.config = config
        self.http = http or AtsHttp(config)

    @property
    def metrics(self) -> AtsMetrics:
        return self.http.metrics

    async def get_application(self, application_id: str) -> ApplicationRecord:
        try:
            response = await self.http.request("GET", f"/api/v1/applications/{application_id}")
        except NotFoundError as e:
            raise NotFoundError("application", application_id) from e
        return parse_application(response.data, application_id)

    async def add_application_note(self, application_id: str, note_text: str) -> None:
        await self.http.request(
            "POST",
            f"/api/v1/applications/{application_id}/notes",
            body={"content": note_text, "noteType": "scheduling"},
            idempotency_key=generate_idempotency_key(application_id, note_text),
        )
        logger.info(
            "ATS note added to application %s", application_id,
            extra={"application_id": application_id},
        )


def build_ats_client(settings: Settings) -> AtsClient:
    """Pick the client for ATS_MODE. Raises ConfigError on bad real-mode config."""
    config = validate_ats_config(settings)
    if config.mode == "real":
        logger.info("ATS client mode=real base_url=%s", config.base_url)
        return IcimsClient(config)
    logger.info("ATS client mode=mock")
    return MockAtsClient()
