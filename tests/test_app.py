"""
Tests for the command line entry point.
"""

import json
import re
import sys

import pytest

from crewmatch import __version__
from crewmatch.app import main


def first_json(text):
    """Decode the first JSON object printed to stdout."""
    start = re.search(r"^\{", text, re.M).start()
    return json.JSONDecoder().raw_decode(text[start:])[0]


@pytest.fixture
def run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CREWMATCH_DB_PATH", str(tmp_path / "crewmatch.db"))
    monkeypatch.setenv("CREWMATCH_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("CREWMATCH_ROUTING_API_KEY", raising=False)

    def invoke(*argv):
        monkeypatch.setattr(sys, "argv", ["crewmatch", *argv])
        main()
    return invoke


class TestCli:
    def test_version(self, run, capsys):
        run("--version")
        assert __version__ in capsys.readouterr().out

    def test_validate_ok(self, run, capsys, directory_file):
        run("validate", "--data", str(directory_file))
        assert "Valid" in capsys.readouterr().out

    def test_validate_reports_errors(self, run, capsys, tmp_path, directory_data):
        del directory_data["jobs"][0]["timezone"]
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(directory_data))

        with pytest.raises(SystemExit) as exc_info:
            run("validate", "--data", str(path))

        assert exc_info.value.code == 2
        assert "jobs[0]: missing required field: timezone" in capsys.readouterr().out

    def test_missing_file(self, run, tmp_path):
        with pytest.raises(SystemExit):
            run("validate", "--data", str(tmp_path / "nope.json"))

    def test_recommend_json(self, run, capsys, directory_file):
        run("recommend", "--data", str(directory_file), "--job", "j1", "--json")

        response = first_json(capsys.readouterr().out)
        assert response["job_id"] == "j1"
        assert response["config_version"] == 1
        assert {r["contractor_id"] for r in response["recommendations"]} == {"c1", "c2"}

    def test_unknown_job_is_an_error(self, run, directory_file):
        with pytest.raises(SystemExit) as exc_info:
            run("recommend", "--data", str(directory_file), "--job", "nope")
        assert "job not found" in str(exc_info.value.code)

    def test_assign_then_conflict(self, run, capsys, directory_file):
        run(
            "assign", "--data", str(directory_file), "--job", "j1", "--contractor", "c1",
            "--start", "2025-06-02T17:15:00Z", "--end", "2025-06-02T18:15:00Z",
        )
        assert first_json(capsys.readouterr().out)["status"] == "committed"

        with pytest.raises(SystemExit) as exc_info:
            run(
                "assign", "--data", str(directory_file), "--job", "j1", "--contractor", "c1",
                "--start", "2025-06-02T14:30:00Z", "--end", "2025-06-02T15:30:00Z",
            )
        assert exc_info.value.code == 3
        result = first_json(capsys.readouterr().out)
        assert result["conflict"]["conflicting_assignment_id"] == "a1"

    def test_weights_publish_and_rollback(self, run, capsys):
        run("weights", "publish", "--distance", "0.9", "--tie-breakers", "shortest_travel")
        assert "Published weights v2" in capsys.readouterr().out

        run("weights", "show")
        shown = first_json(capsys.readouterr().out)
        assert shown["weights"]["distance"] == 0.9
        assert shown["tie_breakers"] == ["shortest_travel"]

        run("weights", "rollback", "--to", "1")
        assert "Re-published v1 as v3" in capsys.readouterr().out

    def test_rollback_needs_target(self, run):
        with pytest.raises(SystemExit) as exc_info:
            run("weights", "rollback")
        assert exc_info.value.code == 2

    def test_bad_configuration(self, run, monkeypatch):
        monkeypatch.setenv("CREWMATCH_ROUTING_RETRIES", "many")
        with pytest.raises(SystemExit) as exc_info:
            run("weights", "show")
        assert "Configuration error" in str(exc_info.value.code)
