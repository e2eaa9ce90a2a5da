"""Tests for the observability module.

Tests for metrics collection, logging configuration, and error sanitization.
"""
import json
import logging
import tempfile
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from notestore.observability import (
    MetricsCollector,
    _sanitize_error_message,
    configure_logging,
    timed_operation,
    traced,
)


@pytest.fixture
def restore_notestore_logger():
    """Remove handlers added by configure_logging after the test."""
    logger = logging.getLogger("notestore")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


class TestErrorMessageSanitization:
    """Tests for error message sanitization."""

    def test_sanitize_none_returns_none(self):
        """Sanitizing None should return None."""
        assert _sanitize_error_message(None) is None

    def test_sanitize_simple_message(self):
        """Simple messages should pass through unchanged."""
        assert _sanitize_error_message("Simple error") == "Simple error"

    def test_sanitize_removes_home_directory(self):
        """Home directory paths should be replaced with ~."""
        home = str(Path.home())
        message = f"{home}/secret/notes.db: Permission denied"
        result = _sanitize_error_message(message)
        assert home not in result
        assert "~" in result
        assert "secret/notes.db" in result

    def test_sanitize_removes_newlines(self):
        """Newlines should be replaced with spaces."""
        result = _sanitize_error_message("Line 1\nLine 2\r\nLine 3")
        assert "\n" not in result
        assert "\r" not in result
        assert result == "Line 1 Line 2 Line 3"

    def test_sanitize_truncates_long_messages(self):
        """Long messages should be truncated with ellipsis."""
        result = _sanitize_error_message("a" * 300)
        assert len(result) == 200
        assert result.endswith("...")


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def temp_metrics_file(self):
        """Create a temporary file path for metrics storage."""
        with tempfile.TemporaryDirectory() as tmp:
            yield Path(tmp) / "metrics.json"

    @pytest.fixture
    def metrics_collector(self, temp_metrics_file):
        return MetricsCollector(metrics_file=temp_metrics_file)

    def test_record_successful_operation(self, metrics_collector):
        """Test recording a successful operation."""
        metrics_collector.record_operation("create_note", 100.0, True)

        metrics = metrics_collector.get_metrics()
        assert metrics["create_note"]["count"] == 1
        assert metrics["create_note"]["success_count"] == 1
        assert metrics["create_note"]["error_count"] == 0
        assert metrics["create_note"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        """Test recording a failed operation with error."""
        metrics_collector.record_operation("append_patch", 50.0, False, "Capacity exceeded")

        metrics = metrics_collector.get_metrics()
        assert metrics["append_patch"]["error_count"] == 1
        assert metrics["append_patch"]["last_error"] == "Capacity exceeded"
        assert metrics["append_patch"]["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        """Test that multiple operations are aggregated correctly."""
        metrics_collector.record_operation("op", 100.0, True)
        metrics_collector.record_operation("op", 200.0, True)
        metrics_collector.record_operation("op", 300.0, False, "Error")

        metrics = metrics_collector.get_metrics()
        assert metrics["op"]["count"] == 3
        assert metrics["op"]["avg_duration_ms"] == 200.0
        assert metrics["op"]["min_duration_ms"] == 100.0
        assert metrics["op"]["max_duration_ms"] == 300.0

    def test_save_metrics(self, metrics_collector, temp_metrics_file):
        """Saved metrics land in the configured file."""
        metrics_collector.record_operation("op1", 100.0, True)
        assert metrics_collector.save_metrics() is True

        with open(temp_metrics_file) as f:
            data = json.load(f)
        assert "op1" in data["operations"]
        assert not temp_metrics_file.with_suffix(".tmp").exists()

    def test_save_without_file(self):
        """In-memory collectors do not save."""
        assert MetricsCollector().save_metrics() is False

    def test_get_summary(self, metrics_collector):
        metrics_collector.record_operation("op1", 100.0, True)
        metrics_collector.record_operation("op2", 200.0, False, "Error")

        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert summary["operations_tracked"] == ["op1", "op2"]

    def test_errors_grouped_by_kind(self, metrics_collector):
        metrics_collector.record_operation("create_note", 1.0, False, "full", "capacity_exceeded")
        metrics_collector.record_operation("append_patch", 1.0, False, "full", "capacity_exceeded")
        metrics_collector.record_operation("append_patch", 1.0, False, "bad patch", "validation")

        assert metrics_collector.get_metrics()["append_patch"]["errors_by_kind"] == {
            "capacity_exceeded": 1,
            "validation": 1,
        }
        summary = metrics_collector.get_summary()
        assert summary["capacity_rejections"] == 2
        assert summary["errors_by_kind"]["validation"] == 1

    def test_reset_metrics(self, metrics_collector):
        metrics_collector.record_operation("op", 100.0, True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation and traced."""

    def test_timed_operation_records_success(self):
        collector = MetricsCollector()
        with patch("notestore.observability.metrics", collector):
            with timed_operation("test_op") as op:
                time.sleep(0.01)
                op["result_count"] = 3

        metrics = collector.get_metrics()
        assert metrics["test_op"]["success_count"] == 1
        assert metrics["test_op"]["avg_duration_ms"] >= 10

    def test_timed_operation_records_failure(self):
        collector = MetricsCollector()
        with patch("notestore.observability.metrics", collector):
            with pytest.raises(ValueError):
                with timed_operation("test_op"):
                    raise ValueError("Test error")

        metrics = collector.get_metrics()
        assert metrics["test_op"]["error_count"] == 1
        assert "Test error" in metrics["test_op"]["last_error"]

    def test_traced_uses_operation_name(self):
        collector = MetricsCollector()

        class Service:
            @traced("list_things")
            def things(self, prefix):
                return [prefix, prefix]

        with patch("notestore.observability.metrics", collector):
            assert Service().things("x") == ["x", "x"]

        assert collector.get_metrics()["list_things"]["count"] == 1

    def test_service_operations_are_traced(self, note_service):
        collector = MetricsCollector()
        with patch("notestore.observability.metrics", collector):
            note_service.all_notes()
            with pytest.raises(Exception):
                note_service.get_note("00000099")

        metrics = collector.get_metrics()
        assert metrics["all_notes"]["success_count"] == 1
        assert metrics["get_note"]["errors_by_kind"] == {"not_found": 1}

    def test_plain_exceptions_are_unclassified(self):
        collector = MetricsCollector()
        with patch("notestore.observability.metrics", collector):
            with pytest.raises(KeyError):
                with timed_operation("lookup"):
                    raise KeyError("x")
        assert collector.get_metrics()["lookup"]["errors_by_kind"] == {"unclassified": 1}


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_logging_creates_directory(self, restore_notestore_logger):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_dir = Path(temp_dir) / "logs"
            assert configure_logging(log_dir=log_dir, console=False) == log_dir
            assert log_dir.is_dir()

    def test_configure_logging_sets_level(self, restore_notestore_logger):
        with tempfile.TemporaryDirectory() as temp_dir:
            configure_logging(log_dir=Path(temp_dir), level=logging.DEBUG, console=False)
            assert logging.getLogger("notestore").level == logging.DEBUG

    def test_engine_logs_reach_file(self, restore_notestore_logger, note_service):
        with tempfile.TemporaryDirectory() as temp_dir:
            configure_logging(log_dir=Path(temp_dir), level=logging.INFO, console=False)
            note_service.delete_tag("unused")
            for handler in logging.getLogger("notestore").handlers:
                handler.flush()
            log_text = (Path(temp_dir) / "notestore.log").read_text(encoding="utf-8")
            assert "Deleted tag 'unused'" in log_text
