"""
Retry schedules for queued side effects.

Sync jobs use a fixed table so an outage costs at most an hour between attempts.
Webhook events and notifications grow exponentially instead.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

# Sync job backoff schedule (minutes), indexed by attempt count
SYNC_RETRY_DELAYS_MINUTES = [1, 5, 15, 30, 60]


def sync_retry_delay(attempt_index: int) -> timedelta:
    """Delay for the given attempt index; anything past the table stays at the last entry."""
    delay_idx = min(max(attempt_index, 0), len(SYNC_RETRY_DELAYS_MINUTES) - 1)
    return timedelta(minutes=SYNC_RETRY_DELAYS_MINUTES[delay_idx])


def next_sync_run_after(attempt_index: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + sync_retry_delay(attempt_index)


def exponential_run_after(
    attempts: int,
    base: int = 2,
    now: Optional[datetime] = None,
) -> datetime:
    """now + base**attempts minutes (webhook events use 2, notifications 4)."""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(minutes=base ** attempts)
