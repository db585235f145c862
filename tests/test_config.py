"""
Tests for settings and .env loading.
"""

import os
import pytest
from pathlib import Path

from crewmatch.config import Settings
from crewmatch.env import load_env
from crewmatch.errors import ValidationError


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.routing_timeout == 3.5
        assert settings.routing_retries == 2
        assert settings.routing_batch == 8
        assert settings.breaker_threshold == 3
        assert settings.breaker_open_seconds == 30.0
        assert settings.cache_ttl_seconds == 900.0
        assert settings.cache_bucket_minutes == 15
        assert settings.max_radius_km == 80.0
        assert settings.db_path == Path("data/crewmatch.db")
        assert not settings.routing_enabled

    def test_reads_environment(self):
        settings = Settings.from_env({
            "CREWMATCH_ROUTING_API_KEY": "secret",
            "CREWMATCH_MAX_RADIUS_KM": "25",
            "CREWMATCH_LOG_LEVEL": "debug",
            "CREWMATCH_DB_PATH": "/tmp/x.db",
        })

        assert settings.routing_enabled
        assert settings.max_radius_km == 25.0
        assert settings.log_level == "DEBUG"
        assert settings.db_path == Path("/tmp/x.db")

    def test_blank_values_use_defaults(self):
        settings = Settings.from_env({"CREWMATCH_ROUTING_TIMEOUT": "  "})
        assert settings.routing_timeout == 3.5

    def test_refine_top_k_clamped(self):
        assert Settings.from_env({"CREWMATCH_REFINE_TOP_K": "2"}).refine_top_k == 5
        assert Settings.from_env({"CREWMATCH_REFINE_TOP_K": "20"}).refine_top_k == 8

    def test_invalid_number_names_variable(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings.from_env({"CREWMATCH_ROUTING_RETRIES": "two"})
        assert exc_info.value.field == "CREWMATCH_ROUTING_RETRIES"

    def test_refine_deadline_within_overall_deadline(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"CREWMATCH_DEADLINE_MS": "200", "CREWMATCH_REFINE_DEADLINE_MS": "300"})

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"CREWMATCH_LOG_LEVEL": "chatty"})


class TestLoadEnv:
    def test_loads_dotenv_from_cwd(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("CREWMATCH_TEST_VALUE=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("CREWMATCH_TEST_VALUE", raising=False)

        load_env()

        assert os.environ["CREWMATCH_TEST_VALUE"] == "from-dotenv"
        monkeypatch.delenv("CREWMATCH_TEST_VALUE")

    def test_missing_dotenv_is_fine(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        load_env()
