"""
Tests for logger functionality.
"""

import threading

import pytest

from hackertracker.logger import StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test structured logging functionality."""

    def test_logger_creation(self, tmp_path):
        """Logger should be created with default settings."""
        logger = StructuredLogger(
            name="test",
            level="INFO",
            log_dir=tmp_path,
            enable_console=False,
        )

        assert logger.logger.name == "test"
        assert logger.metrics["ticks_attempted"] == 0

    def test_log_methods(self, tmp_path):
        """All log level methods should work."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        # Should not raise exceptions
        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

    def test_log_with_context(self, tmp_path):
        """Context is appended to the message as JSON."""
        logger = StructuredLogger(
            name="test-context",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Published queue item", id="abc", changes=2)

        content = next(tmp_path.glob("*.log")).read_text()
        assert 'Published queue item | Context: {"id": "abc", "changes": 2}' in content

    def test_metrics_tracking(self, tmp_path):
        """Metrics should be tracked correctly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.record_tick_attempt("reputation")
        logger.record_tick_success("reputation", changes=4)

        logger.record_tick_attempt("reports")
        logger.record_tick_failure("reports", "FetchError")

        logger.record_delivery()
        logger.record_delivery(2)

        metrics = logger.get_metrics()

        assert metrics["ticks_attempted"] == 2
        assert metrics["ticks_succeeded"] == 1
        assert metrics["ticks_failed"] == 1
        assert metrics["changes_published"] == 4
        assert metrics["items_delivered"] == 3
        assert metrics["errors_by_type"]["FetchError"] == 1

        # Check resource stats
        assert metrics["resource_success_rate"]["reputation"]["attempts"] == 1
        assert metrics["resource_success_rate"]["reputation"]["successes"] == 1
        assert metrics["resource_success_rate"]["reputation"]["success_rate"] == 1.0
        assert metrics["resource_success_rate"]["reports"]["success_rate"] == 0.0

    def test_success_rate_calculation(self, tmp_path):
        """Success rate should be calculated correctly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        # 3 attempts, 2 successes = 66.7% success rate
        for _ in range(3):
            logger.record_tick_attempt("reports")

        logger.record_tick_success("reports")
        logger.record_tick_success("reports")

        metrics = logger.get_metrics()
        success_rate = metrics["resource_success_rate"]["reports"]["success_rate"]

        assert success_rate == pytest.approx(0.667, rel=0.01)

    def test_metrics_from_many_threads(self, tmp_path):
        """Counters updated from concurrent poller threads add up exactly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        def work(resource):
            for _ in range(2000):
                logger.record_tick_attempt(resource)
                logger.record_tick_success(resource, changes=1)
                logger.record_delivery()

        threads = [threading.Thread(target=work, args=(r,)) for r in ("reputation", "reports") * 4]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        metrics = logger.get_metrics()
        assert metrics["ticks_attempted"] == 16000
        assert metrics["ticks_succeeded"] == 16000
        assert metrics["changes_published"] == 16000
        assert metrics["items_delivered"] == 16000
        assert metrics["resource_success_rate"]["reports"]["attempts"] == 8000

    def test_get_metrics_returns_a_copy(self, tmp_path):
        logger = StructuredLogger(name="test", log_dir=tmp_path, enable_console=False)
        logger.record_tick_attempt("reports")

        logger.get_metrics()["resource_success_rate"]["reports"]["attempts"] = 99

        assert logger.metrics["resource_success_rate"]["reports"]["attempts"] == 1

    def test_log_file_creation(self, tmp_path):
        """Log file should be created in specified directory."""
        logger = StructuredLogger(
            name="test-file",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Test message")

        # Check that a log file was created
        log_files = list(tmp_path.glob("*.log"))
        assert len(log_files) == 1

        # Check that message was written
        log_content = log_files[0].read_text()
        assert "Test message" in log_content

    def test_no_file_without_log_dir(self, tmp_path, monkeypatch):
        """Console-only logging never creates a logs directory."""
        monkeypatch.chdir(tmp_path)
        logger = StructuredLogger(name="test-console", enable_console=False)

        logger.info("Console only")

        assert list(tmp_path.iterdir()) == []
        assert logger.logger.handlers == []

    def test_configure_replaces_handlers(self, tmp_path):
        logger = StructuredLogger(name="test-reconfigure", log_dir=tmp_path)
        assert len(logger.logger.handlers) == 2

        logger.configure(level="DEBUG", enable_file=False)

        assert len(logger.logger.handlers) == 1
        assert logger.logger.level == 10

    def test_metrics_summary(self, tmp_path):
        logger = StructuredLogger(name="test-summary", log_dir=tmp_path, enable_console=False)
        logger.record_tick_attempt("reputation")
        logger.record_tick_failure("reputation", "EmptySnapshotGuard")

        logger.log_metrics_summary()

        content = next(tmp_path.glob("*.log")).read_text()
        assert "Ticks: 0/1 (0.0% success)" in content
        assert "EmptySnapshotGuard: 1" in content


class TestGlobalLogger:
    """Test global logger singleton."""

    def test_get_logger_singleton(self, tmp_path):
        """get_logger should return same instance."""
        reset_logger()  # Start fresh

        logger1 = get_logger(name="test-global", enable_console=False)
        logger2 = get_logger()

        assert logger1 is logger2
        reset_logger()

    def test_reset_logger(self, tmp_path):
        """reset_logger should create new instance."""
        reset_logger()

        logger1 = get_logger(name="test-global", enable_console=False)
        logger1.record_tick_attempt("reputation")

        reset_logger()

        logger2 = get_logger(name="test-global", enable_console=False)

        # Should be different instance with fresh metrics
        assert logger2 is not logger1
        assert logger2.metrics["ticks_attempted"] == 0
        reset_logger()
