"""Tests for the structured logging system (workflow_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "workflow_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("step_approved", extra={"step_number": 2, "status": "approved"})

        record = _parse_log(stream)
        assert record["step_number"] == 2
        assert record["status"] == "approved"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(correlation_id="abc-123", instance_id="inst-456")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["instance_id"] == "inst-456"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(actor_id="from-context")
        get_logger("test").info("msg", extra={"actor_id": "from-extra"})

        assert _parse_log(stream)["actor_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from workflow_kernel.exceptions import NoActiveTemplateError

        try:
            raise NoActiveTemplateError("trf")
        except NoActiveTemplateError:
            logger.error("template_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "NO_ACTIVE_TEMPLATE"
        assert record["exc_type"] == "NoActiveTemplateError"
        assert record["exc_module"] == "trf"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "instance_id" not in record

    def test_uuid_and_tuple_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"template_id": uid, "codes": {"A"}})

        record = _parse_log(stream)
        assert record["template_id"] == str(uid)
        assert record["codes"] == ["A"]

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO, so debug is dropped
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", entity_id="TRF-1")
        assert LogContext.get_all() == {"correlation_id": "x", "entity_id": "TRF-1"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "instance_id" not in LogContext.get_all()
        with LogContext.bind(instance_id="temp"):
            assert LogContext.get_all()["instance_id"] == "temp"
        assert "instance_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(module="trf", producer="ignored"):
            assert LogContext.get_all() == {"module": "trf"}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            instance_id="i",
            module="m",
            entity_id="e",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 5
        assert ctx["module"] == "m"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        root = logging.getLogger("workflow_kernel")
        assert len(root.handlers) == 1

    def test_get_logger_returns_child(self):
        logger = get_logger("services.workflow_engine")
        assert logger.name == "workflow_kernel.services.workflow_engine"

    def test_logger_hierarchy(self):
        """Child loggers inherit the workflow_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "workflow_kernel.deep.nested.module"
