"""
Tests for logger functionality.
"""

import pytest
from crewmatch.logger import StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test structured logging functionality."""

    @pytest.fixture
    def logger(self, tmp_path):
        return StructuredLogger(name="test", log_dir=tmp_path, enable_console=False)

    def test_logger_creation(self, logger):
        """Logger should be created with zeroed counters."""
        assert logger.logger.name == "test"
        assert logger.metrics["routing_calls"] == 0
        assert logger.metrics["bookings_committed"] == 0

    def test_log_methods(self, logger):
        """All log level methods should work."""
        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

    def test_context_rendered_as_json(self, tmp_path, logger):
        """Keyword context is appended to the message as JSON."""
        logger.info("Booking committed", job_id="j1", flags=["soft_cap"])

        content = next(tmp_path.glob("*.log")).read_text()
        assert 'Booking committed | Context: {"job_id": "j1", "flags": ["soft_cap"]}' in content

    def test_routing_metrics(self, logger):
        logger.record_routing_call()
        logger.record_routing_call()
        logger.record_routing_failure("Timeout")
        logger.record_degraded(3)

        metrics = logger.get_metrics()
        assert metrics["routing_calls"] == 2
        assert metrics["routing_failures"] == 1
        assert metrics["errors_by_type"]["Timeout"] == 1
        assert metrics["degraded_fallbacks"] == 3

    def test_cache_hit_rate(self, logger):
        """Hit rate appears once there has been a lookup."""
        assert "cache_hit_rate" not in logger.get_metrics()

        logger.record_cache_hit()
        logger.record_cache_hit()
        logger.record_cache_miss()

        assert logger.get_metrics()["cache_hit_rate"] == pytest.approx(0.667, rel=0.01)

    def test_booking_metrics(self, logger):
        logger.record_booking(committed=True)
        logger.record_booking(committed=False)
        logger.record_recommendation()

        metrics = logger.get_metrics()
        assert metrics["bookings_committed"] == 1
        assert metrics["booking_conflicts"] == 1
        assert metrics["recommendations_served"] == 1

    def test_metrics_summary(self, tmp_path, logger):
        logger.record_booking(committed=True)
        logger.log_metrics_summary()

        content = next(tmp_path.glob("*.log")).read_text()
        assert "Bookings: 1 committed, 0 conflicts" in content

    def test_log_file_creation(self, tmp_path, logger):
        """Log file should be created in specified directory."""
        logger.info("Test message")

        log_files = list(tmp_path.glob("crewmatch_*.log"))
        assert len(log_files) == 1
        assert "Test message" in log_files[0].read_text()

    def test_set_log_dir_moves_file_output(self, tmp_path, logger):
        other = tmp_path / "other"
        logger.set_log_dir(other)
        logger.info("Moved")

        assert "Moved" in next(other.glob("*.log")).read_text()

    def test_set_level(self, logger):
        logger.set_level("warning")
        assert logger.logger.level == 30


class TestGlobalLogger:
    """Test global logger singleton."""

    def test_get_logger_singleton(self, tmp_path):
        """get_logger should return same instance."""
        reset_logger()

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger2 = get_logger()

        assert logger1 is logger2

    def test_reset_logger(self, tmp_path):
        """reset_logger should create new instance."""
        reset_logger()

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger1.record_routing_call()

        reset_logger()

        logger2 = get_logger(log_dir=tmp_path, enable_console=False)
        assert logger2 is not logger1
        assert logger2.metrics["routing_calls"] == 0
