"""Pytest configuration and fixtures for FixLoop tests."""
from __future__ import annotations

import os

os.environ.setdefault("LOG_TO_FILE", "0")

from pathlib import Path
from typing import Callable, List, Optional

import pytest

from fixloop.domains.fix.base import Fixer, FixContext
from fixloop.domains.scan.base import Scanner
from fixloop.domains.scan.models import Diagnostic
from fixloop.repositories.locks import FileLockManager

MISSING = "# missing"
WEIRD = "# weird"


class MarkerScanner(Scanner):
    """Reports one diagnostic per marker comment found in the project's .py files."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.calls = 0

    def scan(self) -> List[Diagnostic]:
        self.calls += 1
        found = []
        for path in sorted(self.root.glob("*.py")):
            for number, line in enumerate(path.read_text().splitlines(), start=1):
                if MISSING in line:
                    found.append(Diagnostic(path.name, number, f"Missing marker in {path.name}", "marker.missing"))
                elif WEIRD in line:
                    found.append(Diagnostic(path.name, number, f"Weird marker in {path.name}", "marker.weird"))
        return found


class ScriptedScanner(Scanner):
    """Returns a fixed sequence of results, one per call; the last one repeats."""

    def __init__(self, results: List[object]):
        self.results = list(results)
        self.calls = 0

    def scan(self) -> List[Diagnostic]:
        result = self.results[min(self.calls, len(self.results) - 1)]
        self.calls += 1
        if isinstance(result, Exception):
            raise result
        return list(result)


class MarkerFixer(Fixer):
    """Turns ``# missing`` into ``# fixed`` on the reported line."""

    name = "marker"

    def __init__(self, on_fix: Optional[Callable[[Diagnostic, FixContext], None]] = None):
        self.on_fix = on_fix

    def supported_types(self) -> List[str]:
        return []

    def can_fix(self, diagnostic: Diagnostic) -> bool:
        return diagnostic.identifier == "marker.missing"

    def fix(self, content: str, diagnostic: Diagnostic, context: FixContext) -> str:
        lines = content.splitlines(keepends=True)
        index = diagnostic.line - 1
        if 0 <= index < len(lines):
            lines[index] = lines[index].replace(MISSING, "# fixed")
        if self.on_fix:
            self.on_fix(diagnostic, context)
        return "".join(lines)


@pytest.fixture
def project(tmp_path):
    """An empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def lock_manager(project):
    manager = FileLockManager(project / ".fixloop-locks")
    yield manager
    manager.release_all()


@pytest.fixture
def write_py(project):
    """Write a small python module into the project and return its path."""
    def _write(name: str, body: str) -> Path:
        path = project / name
        path.write_text(body)
        return path
    return _write


@pytest.fixture
def marker_scanner(project):
    return MarkerScanner(project)


@pytest.fixture
def marker_fixer():
    return MarkerFixer()


@pytest.fixture
def scripted():
    """Factory for a :class:`ScriptedScanner`."""
    return ScriptedScanner


@pytest.fixture
def make_marker_fixer():
    return MarkerFixer
