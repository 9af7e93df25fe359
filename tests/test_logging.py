"""Tests for structured logging and context propagation."""
import json
import logging
import sys

import pytest

from hub.observability import (
    ContextFormatter,
    OperationContext,
    OperationLogger,
    StructuredFormatter,
    current_context,
    generate_correlation_id,
    get_agent,
    get_correlation_id,
    get_run_id,
    get_user_id,
    log_exception,
    setup_logging,
)


def make_record(message="hello", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord("nodebench.test", level, __file__, 10, message, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def captured():
    handler = ListHandler()
    logger = logging.getLogger("nodebench.test.captured")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler.records
    logger.removeHandler(handler)


class TestOperationContext:

    def test_binds_and_restores(self):
        assert get_run_id() is None
        with OperationContext(correlation_id="req-1", run_id="run-1", agent="WebAgent", user_id="u1"):
            assert (get_correlation_id(), get_run_id(), get_agent(), get_user_id()) == ("req-1", "run-1", "WebAgent", "u1")
            with OperationContext(agent="SECAgent"):
                assert get_agent() == "SECAgent"
                assert get_run_id() == "run-1"
            assert get_agent() == "WebAgent"
        assert get_correlation_id() is None
        assert get_user_id() is None

    def test_current_context_omits_unset_ids(self):
        assert current_context() == {}
        with OperationContext(run_id="run-2", tenant="acme"):
            assert current_context() == {"run_id": "run-2", "context": {"tenant": "acme"}}

    def test_auto_generated_correlation(self):
        with OperationContext(auto_generate_correlation=True):
            assert get_correlation_id().startswith("req-")
        assert get_correlation_id() is None

    def test_correlation_id_format(self):
        correlation_id = generate_correlation_id()
        assert correlation_id.startswith("req-")
        assert len(correlation_id) == 16


class TestFormatters:

    def test_structured_formatter_includes_context(self):
        formatter = StructuredFormatter(extra_fields={"service": "nodebench"})
        with OperationContext(correlation_id="req-9", run_id="run-9", tenant="acme"):
            payload = json.loads(formatter.format(make_record(extra_data={"step": 1})))

        assert payload["message"] == "hello"
        assert payload["correlation_id"] == "req-9"
        assert payload["run_id"] == "run-9"
        assert payload["context"] == {"tenant": "acme"}
        assert payload["data"] == {"step": 1}
        assert payload["service"] == "nodebench"
        assert payload["timestamp"].endswith("Z")

    def test_structured_formatter_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())
        payload = json.loads(StructuredFormatter(include_location=False).format(record))
        assert payload["exception"]["type"] == "ValueError"
        assert payload["exception"]["message"] == "bad value"
        assert "location" not in payload

    def test_context_formatter_prefix(self):
        formatter = ContextFormatter(fmt="%(context)s%(message)s")
        with OperationContext(correlation_id="req-1", run_id="0123456789abcdef", agent="Coordinator"):
            assert formatter.format(make_record()) == "[req-1] [run:01234567] [Coordinator] hello"
        assert formatter.format(make_record()) == "hello"


class TestSetupAndHelpers:

    def test_setup_logging_levels(self, restore_root_logger):
        setup_logging(level="WARNING", json_format=True)
        root = restore_root_logger
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

        setup_logging(level="DEBUG")
        assert isinstance(logging.getLogger().handlers[0].formatter, ContextFormatter)

    def test_operation_logger_success(self, captured):
        logger, records = captured
        with OperationLogger(logger, "sync", run_id="run-5"):
            assert get_run_id() == "run-5"
            assert get_correlation_id() is not None

        assert [r.extra_data["event"] for r in records] == ["operation_start", "operation_success"]
        assert get_run_id() is None

    def test_operation_logger_failure(self, captured):
        logger, records = captured
        with pytest.raises(RuntimeError):
            with OperationLogger(logger, "sync"):
                raise RuntimeError("nope")
        assert records[-1].levelno == logging.ERROR
        assert records[-1].extra_data["event"] == "operation_failed"

    def test_log_exception(self, captured):
        logger, records = captured
        log_exception(logger, "failed", ValueError("x"), error_id="e1")
        assert records[0].exc_info[0] is ValueError
        assert records[0].extra_data == {"error_id": "e1"}
