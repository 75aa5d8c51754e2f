"""
Structured logging system for hackertracker.

Provides centralized logging with console and file outputs, log levels,
and metrics tracking for monitoring poller and notifier health.
"""

import copy
import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring tick and delivery health per resource type.
    """

    def __init__(
        self,
        name: str = "hackertracker",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (no file output when None)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)

        # Metrics tracking
        self._metrics_lock = threading.Lock()
        self.metrics = {
            "ticks_attempted": 0,
            "ticks_succeeded": 0,
            "ticks_failed": 0,
            "changes_published": 0,
            "items_delivered": 0,
            "errors_by_type": {},
            "resource_success_rate": {},
        }

        self.configure(
            level=level,
            log_dir=log_dir,
            enable_file=enable_file,
            enable_console=enable_console,
        )

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """(Re)build handlers on the underlying logger."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()  # Remove existing handlers
        self.logger.propagate = False

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file and log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"hackertracker_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods (called from poller and notifier threads)

    def record_tick_attempt(self, resource: str):
        """Record a tick attempt for a resource type."""
        with self._metrics_lock:
            self.metrics["ticks_attempted"] += 1
            if resource not in self.metrics["resource_success_rate"]:
                self.metrics["resource_success_rate"][resource] = {
                    "attempts": 0,
                    "successes": 0
                }
            self.metrics["resource_success_rate"][resource]["attempts"] += 1

    def record_tick_success(self, resource: str, changes: int = 0):
        """Record a successful tick and the number of changes it published."""
        with self._metrics_lock:
            self.metrics["ticks_succeeded"] += 1
            self.metrics["changes_published"] += changes
            if resource in self.metrics["resource_success_rate"]:
                self.metrics["resource_success_rate"][resource]["successes"] += 1

    def record_tick_failure(self, resource: str, error_type: str):
        """Record a failed tick."""
        with self._metrics_lock:
            self.metrics["ticks_failed"] += 1

            # Track error types
            if error_type not in self.metrics["errors_by_type"]:
                self.metrics["errors_by_type"][error_type] = 0
            self.metrics["errors_by_type"][error_type] += 1

    def record_delivery(self, count: int = 1):
        """Record queue items delivered downstream."""
        with self._metrics_lock:
            self.metrics["items_delivered"] += count

    def get_metrics(self) -> dict:
        """Return a copy of the current metrics."""
        with self._metrics_lock:
            metrics_copy = copy.deepcopy(self.metrics)

        # Calculate success rates
        for resource, stats in metrics_copy["resource_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total_attempts = metrics["ticks_attempted"]
        total_successes = metrics["ticks_succeeded"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Tracker Session Metrics ===")
        self.info(f"Ticks: {total_successes}/{total_attempts} ({overall_rate}% success)")
        self.info(f"Changes published: {metrics['changes_published']}")
        self.info(f"Items delivered: {metrics['items_delivered']}")

        if metrics["resource_success_rate"]:
            self.info("Resource Success Rates:")
            for resource, stats in metrics["resource_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {resource}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "hackertracker",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def configure_logger(level: str = "INFO", **kwargs) -> StructuredLogger:
    """
    Reconfigure the global logger in place.

    Modules keep the instance they got from get_logger() at import time,
    so the entry point adjusts handlers instead of replacing the instance.
    """
    logger = get_logger()
    logger.configure(level=level, **kwargs)
    return logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
