"""Tests for the command line entry point in scripts/run_fix.py."""
from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest

from fixloop.errors import AnalyzerError
from fixloop.services.batch_fix.models import FixRunResult

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "run_fix.py"


@pytest.fixture(scope="module")
def run_fix():
    spec = importlib.util.spec_from_file_location("run_fix", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def fake_run(run_fix, monkeypatch):
    """Replace the orchestrator; set ``fake_run.result`` to what run() should give back."""
    class Fake:
        result = FixRunResult()
        settings = None

        @classmethod
        def from_settings(cls, settings):
            cls.settings = settings
            return cls

        @classmethod
        def run(cls):
            if isinstance(cls.result, Exception):
                raise cls.result
            return cls.result

    monkeypatch.setattr(run_fix, "PassOrchestrator", Fake)
    return Fake


class TestArguments:
    def test_parse_options(self, run_fix):
        assert run_fix._parse_options(["memory-limit=1G", "no-interaction"]) == {
            "memory-limit": "1G",
            "no-interaction": True,
        }
        assert run_fix._parse_options([]) is None

    def test_parse_list(self, run_fix):
        assert run_fix._parse_list("src, lib,,") == ["src", "lib"]
        assert run_fix._parse_list(None) is None

    def test_flags_reach_settings(self, run_fix, fake_run, project):
        run_fix.main(["--project", str(project), "--paths", "app", "--level", "7", "--single-pass", "--no-locking"])
        settings = fake_run.settings
        assert settings.paths == ["app"]
        assert settings.level == 7
        assert settings.smart_mode is False
        assert settings.enable_locking is False


class TestExitCodes:
    def test_clean(self, run_fix, fake_run, project):
        fake_run.result = FixRunResult(status="clean")
        assert run_fix.main(["--project", str(project)]) == run_fix.EXIT_CLEAN

    def test_errors_remaining(self, run_fix, fake_run, project):
        fake_run.result = FixRunResult(status="partial", remaining_count=2)
        assert run_fix.main(["--project", str(project)]) == run_fix.EXIT_REMAINING

    def test_errored_run(self, run_fix, fake_run, project):
        fake_run.result = FixRunResult(status="errored")
        assert run_fix.main(["--project", str(project)]) == run_fix.EXIT_ERRORED

    def test_raised_error(self, run_fix, fake_run, project):
        fake_run.result = AnalyzerError("boom")
        assert run_fix.main(["--project", str(project)]) == run_fix.EXIT_ERRORED

    def test_invalid_level(self, run_fix, fake_run, project):
        assert run_fix.main(["--project", str(project), "--level", "12"]) == run_fix.EXIT_ERRORED

    def test_json_report(self, run_fix, fake_run, project, capsys):
        fake_run.result = FixRunResult(status="clean", messages=["No errors found"])
        run_fix.main(["--project", str(project), "--json"])
        assert json.loads(capsys.readouterr().out)["messages"] == ["No errors found"]
