"""
Structured logging system for crewmatch.

Provides centralized logging with console and file outputs, plus
counters for monitoring routing health, cache efficiency and bookings.
"""

import logging
import sys
import json
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for the recommendation and booking pipeline.
    """

    def __init__(
        self,
        name: str = "crewmatch",
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
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        # Counters are bumped from worker threads
        self._metrics_lock = threading.Lock()
        self.metrics = {
            "routing_calls": 0,
            "routing_failures": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "degraded_fallbacks": 0,
            "recommendations_served": 0,
            "bookings_committed": 0,
            "booking_conflicts": 0,
            "errors_by_type": {},
        }

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            self._add_file_handler(log_dir or Path("logs"))

    def _add_file_handler(self, log_dir: Path):
        log_dir.mkdir(parents=True, exist_ok=True)

        log_file = log_dir / f"crewmatch_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_formatter = logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        self.logger.addHandler(file_handler)

    def set_log_dir(self, log_dir: Path):
        """Move file output to another directory."""
        for handler in list(self.logger.handlers):
            if isinstance(handler, logging.FileHandler):
                self.logger.removeHandler(handler)
                handler.close()
        self._add_file_handler(log_dir)

    def set_level(self, level: str):
        """Change the logger and console level."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(getattr(logging, level.upper()))

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

    # Metric tracking methods

    def _bump(self, key: str, amount: int = 1):
        with self._metrics_lock:
            self.metrics[key] += amount

    def record_routing_call(self):
        """Increment routing provider call counter."""
        self._bump("routing_calls")

    def record_routing_failure(self, error_type: str):
        """Record a routing provider failure by type."""
        with self._metrics_lock:
            self.metrics["routing_failures"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_cache_hit(self):
        self._bump("cache_hits")

    def record_cache_miss(self):
        self._bump("cache_misses")

    def record_degraded(self, count: int = 1):
        """Record ETAs served from the Haversine fallback."""
        self._bump("degraded_fallbacks", count)

    def record_recommendation(self):
        self._bump("recommendations_served")

    def record_booking(self, committed: bool):
        """Record a booking outcome (committed or conflict)."""
        self._bump("bookings_committed" if committed else "booking_conflicts")

    def get_metrics(self) -> dict:
        """Return current metrics, with the cache hit rate when available."""
        with self._metrics_lock:
            metrics_copy = dict(self.metrics)
            metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])

        lookups = metrics_copy["cache_hits"] + metrics_copy["cache_misses"]
        if lookups > 0:
            metrics_copy["cache_hit_rate"] = round(metrics_copy["cache_hits"] / lookups, 3)

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Dispatch Session Metrics ===")
        self.info(f"Recommendations served: {metrics['recommendations_served']}")
        self.info(
            f"Routing calls: {metrics['routing_calls']} "
            f"({metrics['routing_failures']} failed, {metrics['degraded_fallbacks']} degraded ETAs)"
        )
        if "cache_hit_rate" in metrics:
            self.info(f"Distance cache hit rate: {metrics['cache_hit_rate'] * 100:.1f}%")
        self.info(
            f"Bookings: {metrics['bookings_committed']} committed, "
            f"{metrics['booking_conflicts']} conflicts"
        )

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "crewmatch",
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


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
