"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


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

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "approval_granted", extra={"step_order": 2, "decision": "approved"},
        )

        record = _parse_log(stream)
        assert record["step_order"] == 2
        assert record["decision"] == "approved"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(tenant_id="acme", request_id="req-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["tenant_id"] == "acme"
        assert record["request_id"] == "req-1"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(tenant_id="acme")
        get_logger("test").info("msg", extra={"tenant_id": "other"})

        assert _parse_log(stream)["tenant_id"] == "acme"

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
        assert "exc_code" not in record

    def test_kernel_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        from approval_kernel.exceptions import NoApproverFoundError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise NoApproverFoundError("finance-review", "role", "controller")
        except NoApproverFoundError:
            logger.error("approval_stalled", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "NO_APPROVER_FOUND"
        assert record["exc_type"] == "NoApproverFoundError"
        assert record["exc_step_key"] == "finance-review"
        assert record["exc_selector"] == "controller"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "tenant_id" not in record
        assert "approval_id" not in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"workflow_id": uid})

        assert _parse_log(stream)["workflow_id"] == str(uid)

    def test_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(tenant_id="acme", actor_id="mgr-1")
        assert LogContext.get_all() == {"tenant_id": "acme", "actor_id": "mgr-1"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(request_id="outer")
        with LogContext.bind(request_id="inner"):
            assert LogContext.get_all()["request_id"] == "inner"
        assert LogContext.get_all()["request_id"] == "outer"

    def test_bind_restores_none(self):
        assert "approval_id" not in LogContext.get_all()
        with LogContext.bind(approval_id="temp"):
            assert LogContext.get_all()["approval_id"] == "temp"
        assert "approval_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_and_none_fields(self):
        with LogContext.bind(tenant_id=None, producer="x", actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}

    def test_additive_set(self):
        LogContext.set(tenant_id="a")
        LogContext.set(actor_id="b")
        ctx = LogContext.get_all()
        assert ctx["tenant_id"] == "a"
        assert ctx["actor_id"] == "b"

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            tenant_id="t",
            actor_id="a",
            request_id="r",
            approval_id="p",
            trace_id="x",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["approval_id"] == "p"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        root = logging.getLogger("approval_kernel")
        assert h1 in root.handlers
        assert h2 not in root.handlers

    def test_does_not_propagate(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("approval_kernel").propagate is False

    def test_get_logger_returns_child(self):
        logger = get_logger("services.orchestrator")
        assert logger.name == "approval_kernel.services.orchestrator"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("batch.scheduler").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "approval_kernel.batch.scheduler"
