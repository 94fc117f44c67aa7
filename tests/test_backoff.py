"""
Tests for schedsync/utils/backoff.py - retry schedules.
"""
from datetime import datetime, timedelta, timezone

import pytest

from schedsync.utils.backoff import (
    SYNC_RETRY_DELAYS_MINUTES,
    exponential_run_after,
    next_sync_run_after,
    sync_retry_delay,
)

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestSyncSchedule:
    @pytest.mark.parametrize("attempt,minutes", [(0, 1), (1, 5), (2, 15), (3, 30), (4, 60)])
    def test_table(self, attempt, minutes):
        assert next_sync_run_after(attempt, NOW) == NOW + timedelta(minutes=minutes)

    def test_past_table_stays_at_last_entry(self):
        assert sync_retry_delay(5) == timedelta(minutes=60)
        assert sync_retry_delay(50) == timedelta(minutes=60)

    def test_negative_index_uses_first_entry(self):
        assert sync_retry_delay(-1) == timedelta(minutes=1)

    def test_table_values(self):
        assert SYNC_RETRY_DELAYS_MINUTES == [1, 5, 15, 30, 60]

    def test_defaults_to_now(self):
        before = datetime.now(timezone.utc)
        result = next_sync_run_after(0)
        assert before + timedelta(minutes=1) <= result <= datetime.now(timezone.utc) + timedelta(minutes=1)


class TestExponential:
    def test_base_two(self):
        assert exponential_run_after(3, base=2, now=NOW) == NOW + timedelta(minutes=8)

    def test_base_four(self):
        assert exponential_run_after(2, base=4, now=NOW) == NOW + timedelta(minutes=16)
