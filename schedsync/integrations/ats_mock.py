"""
Mock ATS client for local development and tests.
Serves fixture applications and records notes in memory instead of calling out.
"""
import logging
from typing import Optional

from schedsync.integrations.ats_base import AtsClient
from schedsync.integrations.ats_errors import NetworkError
from schedsync.schemas.records import ApplicationRecord

logger = logging.getLogger(__name__)

MOCK_APPLICATIONS = {
    "APP-001": ApplicationRecord(
        id="APP-001",
        candidate_name="John Smith",
        candidate_email="john.smith@example.com",
        requisition_id="REQ-123",
        requisition_title="Senior Software Engineer",
        status="Interview",
    ),
    "APP-002": ApplicationRecord(
        id="APP-002",
        candidate_name="Jane Doe",
        candidate_email="jane.doe@example.com",
        requisition_id="REQ-456",
        requisition_title="Product Manager",
        status="Interview",
    ),
    "APP-003": ApplicationRecord(
        id="APP-003",
        candidate_name="Bob Johnson",
        candidate_email="bob.johnson@example.com",
        requisition_id="REQ-789",
        requisition_title="UX Designer",
        status="Interview",
    ),
}


class MockAtsClient(AtsClient):

    def __init__(self, overrides: Optional[dict[str, ApplicationRecord]] = None):
        self.overrides = dict(overrides or {})
        self.notes: dict[str, list[str]] = {}
        self.fail_next_request = False

    async def get_application(self, application_id: str) -> ApplicationRecord:
        if application_id in self.overrides:
            return self.overrides[application_id]
        if application_id in MOCK_APPLICATIONS:
            return MOCK_APPLICATIONS[application_id]
        return ApplicationRecord(
            id=application_id,
            candidate_name=f"Candidate {application_id}",
            candidate_email=f"candidate-{application_id.lower()}@example.com",
            requisition_id=f"REQ-{application_id}",
            requisition_title="Unknown Position",
            status="Interview",
        )

    async def add_application_note(self, application_id: str, note_text: str) -> None:
        if self.fail_next_request:
            self.fail_next_request = False
            raise NetworkError("Connection refused (mock failure)")
        self.notes.setdefault(application_id, []).append(note_text)
        logger.debug("Mock ATS note recorded for %s", application_id)

    def get_application_notes(self, application_id: str) -> list[str]:
        return list(self.notes.get(application_id, []))

    def clear_notes(self) -> None:
        self.notes.clear()
