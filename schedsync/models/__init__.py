"""
Database models - import all models here so Alembic can discover them.
"""
from schedsync.models.webhook_event import WebhookEventRow
from schedsync.models.sync_job import SyncJobRow
from schedsync.models.notification_job import NotificationJobRow
from schedsync.models.audit_log import AuditLogRow

__all__ = [
    "WebhookEventRow",
    "SyncJobRow",
    "NotificationJobRow",
    "AuditLogRow",
]
