"""
Abstract ATS interface - the real and mock clients implement this.
CRITICAL: ATS calls never block the scheduling flow. Failed writes are
queued as sync jobs by the writeback service.
"""
from abc import ABC, abstractmethod

from schedsync.schemas.records import ApplicationRecord


class AtsClient(ABC):
    """Abstract base class for applicant tracking system clients."""

    @abstractmethod
    async def get_application(self, application_id: str) -> ApplicationRecord:
        """
        Fetch one application.
        Raises NotFoundError("application", id) when it does not exist.
        """
        ...

    @abstractmethod
    async def add_application_note(self, application_id: str, note_text: str) -> None:
        """
        Append a scheduling note to an application.
        Safe to repeat on the same day - the write carries an idempotency key.
        """
        ...
