"""
Tests for schedsync/utils/logging.py - JSON formatter and correlation IDs.
"""
import json
import logging
import sys

import pytest

from schedsync.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    correlation_id_ctx,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def _reset_correlation_id():
    token = correlation_id_ctx.set(None)
    yield
    correlation_id_ctx.reset(token)


def _record(msg="hello", level=logging.INFO, **extras) -> logging.LogRecord:
    record = logging.LogRecord("schedsync.test", level, __file__, 1, msg, None, None)
    for key, value in extras.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    def test_default_none(self):
        assert get_correlation_id() is None

    def test_set_and_get(self):
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"

    def test_generate(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        assert cid != generate_correlation_id()

    def test_scope_binds_and_restores(self):
        set_correlation_id("outer")
        with correlation_scope() as cid:
            assert get_correlation_id() == cid
            assert cid != "outer"
        assert get_correlation_id() == "outer"

    def test_scope_with_given_id(self):
        with correlation_scope("batch-7"):
            assert get_correlation_id() == "batch-7"
        assert get_correlation_id() is None


class TestStructuredJsonFormatter:
    def test_core_fields(self):
        set_correlation_id("cid-1")
        entry = json.loads(StructuredJsonFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["module"] == "schedsync.test"
        assert entry["message"] == "hello"
        assert entry["correlation_id"] == "cid-1"
        assert entry["timestamp"].endswith("Z")

    def test_whitelisted_extras_only(self):
        record = _record(job_id="job-1", status_code=503, note_text="secret body")
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert entry["job_id"] == "job-1"
        assert entry["status_code"] == 503
        assert "note_text" not in entry

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "schedsync.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info(),
            )
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestConfigure:
    def test_single_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_unknown_level_falls_back_to_info(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging("chatty")
            assert root.level == logging.INFO
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
