"""Unit tests for PhaseKit logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from phasekit.phasekit_logging import (
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_error_with_context,
    log_operation,
    log_performance,
    log_phase_changed,
    log_session_applied,
    observability_hooks,
    performance_monitor,
    setup_logging,
)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, __file__, 1, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "line" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logging.getLogger("test").makeRecord(
                "test", logging.ERROR, __file__, 1, "Test message", (), sys.exc_info()
            )

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, __file__, 1, "Test message", (), None)
        record.extra_fields = {"phase": "testing"}

        data = json.loads(formatter.format(record))

        assert data["phase"] == "testing"


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        """Test recording a performance metric."""
        monitor = PerformanceMonitor()

        monitor.record_metric("assemble_context_duration", 0.25, {"status": "success"})

        metrics = monitor.get_metrics("assemble_context_duration")
        assert metrics["assemble_context_duration"][0]["value"] == 0.25
        assert metrics["assemble_context_duration"][0]["tags"]["status"] == "success"

    def test_get_all_metrics_and_clear(self):
        """Test getting all metrics, then clearing them."""
        monitor = PerformanceMonitor()
        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)

        all_metrics = monitor.get_metrics()

        assert [m["value"] for m in all_metrics["metric1"]] == [1, 3]
        assert len(all_metrics["metric2"]) == 1

        monitor.clear()
        assert monitor.get_metrics() == {}


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def test_log_performance_decorator(self):
        """Successful calls record a success duration."""
        @log_performance("test_operation")
        def operation():
            return "result"

        assert operation() == "result"

        metrics = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert len(metrics) == 1
        assert metrics[0]["value"] >= 0
        assert metrics[0]["tags"]["status"] == "success"

    def test_log_performance_decorator_with_exception(self):
        """Failures record an error duration and re-raise."""
        @log_performance("test_operation")
        def operation():
            raise ValueError("Test error")

        with pytest.raises(ValueError):
            operation()

        metrics = performance_monitor.get_metrics("test_operation_duration")["test_operation_duration"]
        assert metrics[0]["tags"] == {"status": "error", "error_type": "ValueError"}

    def test_engine_operations_are_timed(self, store, make_state, config):
        """Context assembly records its duration."""
        from phasekit.assembler import ContextAssembler
        from phasekit.knowledge import KnowledgeIndex

        ContextAssembler(config).assemble(make_state(), KnowledgeIndex(), store)

        assert performance_monitor.get_metrics("assemble_context_duration")["assemble_context_duration"]


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self):
        """Test successful operation logging."""
        with patch("phasekit.phasekit_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with log_operation("mutate_state", path="state.json"):
                pass

            assert mock_logger_instance.info.called
            assert mock_logger_instance.error.called is False

    def test_log_operation_with_exception(self):
        """Test operation logging with exception."""
        with patch("phasekit.phasekit_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with pytest.raises(ValueError):
                with log_operation("mutate_state"):
                    raise ValueError("Test error")

            assert mock_logger_instance.error.called
            assert "Test error" in str(mock_logger_instance.error.call_args)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        """Test registering and triggering hooks."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("phase_changed", lambda **data: received.append(data))

        hooks.trigger_hooks("phase_changed", from_phase="implementation", to_phase="testing")

        assert received == [{"from_phase": "implementation", "to_phase": "testing"}]

    def test_unregister_hook(self):
        """Unregistered hooks stop firing."""
        hooks = ObservabilityHooks()
        received = []

        def callback(**data):
            received.append(data)

        hooks.register_hook("session_applied", callback)
        hooks.unregister_hook("session_applied", callback)
        hooks.trigger_hooks("session_applied", phase="testing")

        assert received == []

    def test_hook_failure_handling(self):
        """A failing hook is logged and later hooks still run."""
        hooks = ObservabilityHooks()
        received = []

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("context_assembled", failing_callback)
        hooks.register_hook("context_assembled", lambda **data: received.append(data))

        hooks.trigger_hooks("context_assembled", phase="testing")

        assert received == [{"phase": "testing"}]

    def test_log_workflow_event_passes_timestamp(self):
        """Hooks receive the event data plus a timestamp."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("transition_evaluated", lambda **data: received.append(data))

        hooks.log_workflow_event("transition_evaluated", phase="implementation", eligible=True)

        assert received[0]["phase"] == "implementation"
        assert received[0]["eligible"] is True
        assert "timestamp" in received[0]
        assert "event_type" not in received[0]


class TestLoggingFunctions:
    """Test cases for logging convenience functions."""

    def test_log_phase_changed(self):
        """Phase changes are emitted as phase_changed events."""
        with patch("phasekit.phasekit_logging.observability_hooks") as mock_hooks:
            log_phase_changed("implementation", "architecture", "rollback", reason="Schema redesign")

            mock_hooks.log_workflow_event.assert_called_once_with(
                "phase_changed",
                from_phase="implementation",
                to_phase="architecture",
                action="rollback",
                reason="Schema redesign",
            )

    def test_log_session_applied(self):
        """Committed sessions are emitted as session_applied events."""
        with patch("phasekit.phasekit_logging.observability_hooks") as mock_hooks:
            log_session_applied("implementation", 2, 0)

            args, kwargs = mock_hooks.log_workflow_event.call_args
            assert args == ("session_applied",)
            assert kwargs["tasks_completed"] == 2

    def test_log_error_with_context(self):
        """Test log_error_with_context function."""
        with patch("phasekit.phasekit_logging.std_logging.getLogger") as mock_logger:
            error = ValueError("Test error")

            log_error_with_context(error, {"operation": "apply_session"}, extra_param="extra_value")

            call_args = mock_logger.return_value.error.call_args
            assert "Test error" in call_args[0][0]
            extra_fields = call_args[1]["extra"]["extra_fields"]
            assert extra_fields["context"]["operation"] == "apply_session"
            assert extra_fields["extra_param"] == "extra_value"
            assert extra_fields["error_type"] == "ValueError"


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_setup_logging(self, tmp_path):
        """Test setting up logging configuration."""
        log_file = tmp_path / "phasekit.log"

        setup_logging(log_level="DEBUG", log_file=log_file)
        logging.getLogger("phasekit.test").info("Test message")

        content = log_file.read_text()
        assert "Test message" in content
        for line in content.strip().split("\n"):
            json.loads(line)

    def test_end_to_end_logging_flow(self, tmp_path):
        """Engine events and metrics reach the log file."""
        log_file = tmp_path / "phasekit.log"
        setup_logging(log_level=logging.DEBUG, log_file=log_file)

        observability_hooks.log_workflow_event("phase_changed", from_phase="a", to_phase="b")
        performance_monitor.record_metric("test_metric", 42)

        content = log_file.read_text()
        assert "Workflow event: phase_changed" in content
        assert "Metric recorded: test_metric=42" in content
