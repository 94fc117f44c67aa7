"""
Audit trail helper - every integration side effect leaves an AuditLog row.
"""
from typing import Optional

from schedsync.schemas.records import AuditLog
from schedsync.store.base import SchedulingStore

MAX_AUDIT_ERROR_LENGTH = 500


def truncate_error(message: str) -> str:
    return message[:MAX_AUDIT_ERROR_LENGTH]


async def record_audit(
    store: SchedulingStore,
    action: str,
    payload: dict,
    request_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
) -> AuditLog:
    return await store.create_audit_log(AuditLog(
        action=action,
        actor_type=actor_type,
        actor_id=actor_id,
        request_id=request_id,
        booking_id=booking_id,
        payload=payload,
    ))
