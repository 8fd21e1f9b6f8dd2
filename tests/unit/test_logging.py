"""Unit tests for md-tasker logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import sys
import logging
import pytest

from mdtasker.tasker_logging import (
    setup_logging,
    JsonFormatter,
    PerformanceMonitor,
    log_performance,
    log_operation,
    ObservabilityHooks,
    log_section_change,
    log_error_with_context,
    observability_hooks,
    performance_monitor,
)


def _record(message="Test message", level=logging.INFO, exc_info=None):
    logger = logging.getLogger("test")
    return logger.makeRecord("test", level, __file__, 10, message, (), exc_info)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["message"] == "Test message"
        assert data["logger"] == "test"
        assert "timestamp" in data

    def test_json_formatter_extra_fields(self):
        """Test extra fields are merged into the JSON entry."""
        record = _record()
        record.extra_fields = {"operation": "toggle_task", "line_index": 3}

        data = json.loads(JsonFormatter().format(record))

        assert data["operation"] == "toggle_task"
        assert data["line_index"] == 3

    def test_json_formatter_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(level=logging.ERROR, exc_info=sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_console_and_file_handlers(self, tmp_path):
        log_file = tmp_path / "mdtasker.log"
        setup_logging(logging.DEBUG, log_file)
        logger = logging.getLogger("mdtasker")

        try:
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            assert isinstance(logger.handlers[1].formatter, JsonFormatter)

            for handler in logger.handlers:
                handler.flush()
            first = log_file.read_text(encoding="utf-8").splitlines()[0]
            assert json.loads(first)["message"] == "md-tasker logging initialized"
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)

    def test_string_level(self):
        setup_logging("WARNING")
        logger = logging.getLogger("mdtasker")

        try:
            assert logger.level == logging.WARNING
            assert len(logger.handlers) == 1
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_and_summary(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("parse_duration", 0.5)
        monitor.record_metric("parse_duration", 1.5, {"status": "success"})

        metrics = monitor.get_metrics("parse_duration")["parse_duration"]

        assert len(metrics) == 2
        assert metrics[1]["tags"] == {"status": "success"}
        assert monitor.summary("parse_duration") == {"count": 2, "average": 1.0, "min": 0.5, "max": 1.5}

    def test_empty_summary_and_reset(self):
        monitor = PerformanceMonitor()
        assert monitor.summary("missing") == {"count": 0}

        monitor.record_metric("x", 1)
        monitor.reset()
        assert monitor.get_metrics() == {}


class TestLogPerformance:
    """Test cases for the log_performance decorator."""

    def test_success_recorded(self):
        @log_performance("unit_success_op")
        def work(value):
            return value * 2

        before = len(performance_monitor.get_metrics("unit_success_op_duration")["unit_success_op_duration"])

        assert work(21) == 42
        metrics = performance_monitor.get_metrics("unit_success_op_duration")["unit_success_op_duration"]
        assert len(metrics) == before + 1
        assert metrics[-1]["tags"]["status"] == "success"

    def test_failure_recorded_and_raised(self):
        @log_performance("unit_failing_op")
        def work():
            raise KeyError("nope")

        with pytest.raises(KeyError):
            work()

        metric = performance_monitor.get_metrics("unit_failing_op_duration")["unit_failing_op_duration"][-1]
        assert metric["tags"] == {"status": "error", "error_type": "KeyError"}


class TestLogOperation:
    """Test cases for the log_operation context manager."""

    def test_completed(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="mdtasker.operations"):
            with log_operation("move_section", start_line=1):
                pass

        assert any("Completed operation: move_section" in message for message in caplog.messages)

    def test_failure_reraised(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="mdtasker.operations"):
            with pytest.raises(RuntimeError):
                with log_operation("move_section"):
                    raise RuntimeError("bad")

        assert any("Failed operation: move_section" in message for message in caplog.messages)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_hooks_receive_event_data(self):
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("task_toggled", lambda **data: received.append(data))

        hooks.log_document_event("task_toggled", revision=3, line_index=7)

        assert len(received) == 1
        assert received[0]["revision"] == 3
        assert received[0]["line_index"] == 7
        assert "event_type" not in received[0]

    def test_failing_hook_does_not_propagate(self):
        hooks = ObservabilityHooks()
        calls = []

        def broken(**data):
            raise RuntimeError("subscriber bug")

        hooks.register_hook("section_updated", broken)
        hooks.register_hook("section_updated", lambda **data: calls.append(data))

        hooks.log_document_event("section_updated", revision=1)

        assert len(calls) == 1

    def test_unregister(self):
        hooks = ObservabilityHooks()
        calls = []
        callback = lambda **data: calls.append(data)
        hooks.register_hook("x", callback)
        hooks.unregister_hook("x", callback)

        hooks.log_document_event("x")

        assert calls == []

    def test_log_section_change_uses_global_hooks(self):
        received = []
        callback = lambda **data: received.append(data)
        observability_hooks.register_hook("section_moved", callback)
        try:
            log_section_change("Moved", 2, 5, revision=9, destination_line=0)
        finally:
            observability_hooks.unregister_hook("section_moved", callback)

        assert received[0]["start_line"] == 2
        assert received[0]["end_line"] == 5
        assert received[0]["destination_line"] == 0


class TestErrorLogging:
    """Test cases for log_error_with_context."""

    def test_error_logged_with_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger="mdtasker.errors"):
            log_error_with_context(ValueError("bad range"), {"operation": "update_section"})

        record = caplog.records[-1]
        assert "Error in update_section: bad range" in record.getMessage()
        assert record.extra_fields["context"] == {"operation": "update_section"}
