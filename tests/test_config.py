"""Tests for settings loading."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from fixloop.config import FixLoopSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PROJECT_ROOT", "PATHS", "OPTIONS", "LEVEL", "MAX_PASSES", "SMART_MODE", "ENABLE_LOCKING"):
        monkeypatch.delenv("FIXLOOP_" + name, raising=False)


def test_locations_default_to_project_root(project):
    settings = FixLoopSettings(project_root=str(project))
    root = project.resolve()
    assert settings.type_cache_file == str(root / ".fixloop-cache.json")
    assert settings.flow_cache_file == str(root / ".fixloop-flow-cache.json")
    assert settings.backup_dir == str(root / ".fixloop-backup")
    assert settings.lock_dir == str(root / ".fixloop-locks")


def test_from_env(project, monkeypatch):
    monkeypatch.setenv("FIXLOOP_PROJECT_ROOT", str(project))
    monkeypatch.setenv("FIXLOOP_PATHS", "src, app")
    monkeypatch.setenv("FIXLOOP_OPTIONS", '{"memory-limit": "2G"}')
    monkeypatch.setenv("FIXLOOP_SMART_MODE", "no")
    settings = FixLoopSettings.from_env()
    assert settings.project_root == str(project.resolve())
    assert settings.paths == ["src", "app"]
    assert settings.options == {"memory-limit": "2G"}
    assert settings.smart_mode is False


def test_overrides_win_and_none_is_ignored(project, monkeypatch):
    monkeypatch.setenv("FIXLOOP_LEVEL", "3")
    settings = FixLoopSettings.from_env(project_root=str(project), level=8, max_passes=None)
    assert settings.level == 8
    assert settings.max_passes == 3


def test_level_is_bounded(project):
    with pytest.raises(ValidationError):
        FixLoopSettings(project_root=str(project), level=11)
