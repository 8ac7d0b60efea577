# fixloop/config.py
from __future__ import annotations
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

ENV_PREFIX = "FIXLOOP_"
TYPE_CACHE_FILE = ".fixloop-cache.json"
FLOW_CACHE_FILE = ".fixloop-flow-cache.json"
LOCK_DIR = ".fixloop-locks"
BACKUP_DIR = ".fixloop-backup"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    return v.strip() if v and v.strip() else default


def _env_bool(name: str, default: bool) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


class FixLoopSettings(BaseModel):
    """Everything a fix run needs. Cache, lock and backup locations default to the project root."""

    project_root: str
    paths: List[str] = Field(default_factory=lambda: ["src"])
    level: int = Field(default=5, ge=0, le=10)
    options: Dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)
    scanner: str = "phpstan"
    max_passes: int = Field(default=3, ge=1)
    phpstan_binary: Optional[str] = None
    php_binary: str = "php"
    analyzer_timeout: float = Field(default=300.0, gt=0)
    lock_timeout: float = Field(default=10.0, ge=0)
    type_cache_file: Optional[str] = None
    flow_cache_file: Optional[str] = None
    backup_dir: Optional[str] = None
    lock_dir: Optional[str] = None
    enable_locking: bool = True
    keep_backups: bool = False
    smart_mode: bool = True

    @model_validator(mode="after")
    def _derive_locations(self) -> "FixLoopSettings":
        root = Path(self.project_root).resolve()
        self.project_root = str(root)
        if not self.type_cache_file:
            self.type_cache_file = str(root / TYPE_CACHE_FILE)
        if not self.flow_cache_file:
            self.flow_cache_file = str(root / FLOW_CACHE_FILE)
        if not self.backup_dir:
            self.backup_dir = str(root / BACKUP_DIR)
        if not self.lock_dir:
            self.lock_dir = str(root / LOCK_DIR)
        return self

    @classmethod
    def from_env(cls, **overrides) -> "FixLoopSettings":
        """Build settings from ``FIXLOOP_*`` variables (``.env`` included); keyword overrides win."""
        load_dotenv()
        values: Dict[str, object] = {
            "project_root": _env("PROJECT_ROOT", os.getcwd()),
            "max_passes": int(_env("MAX_PASSES", "3")),
            "level": int(_env("LEVEL", "5")),
            "scanner": _env("SCANNER", "phpstan"),
            "phpstan_binary": _env("PHPSTAN_BINARY"),
            "php_binary": _env("PHP_BINARY", "php"),
            "analyzer_timeout": float(_env("ANALYZER_TIMEOUT", "300")),
            "lock_timeout": float(_env("LOCK_TIMEOUT", "10")),
            "type_cache_file": _env("TYPE_CACHE_FILE"),
            "flow_cache_file": _env("FLOW_CACHE_FILE"),
            "backup_dir": _env("BACKUP_DIR"),
            "lock_dir": _env("LOCK_DIR"),
            "enable_locking": _env_bool("ENABLE_LOCKING", True),
            "keep_backups": _env_bool("KEEP_BACKUPS", False),
            "smart_mode": _env_bool("SMART_MODE", True),
        }
        paths = _env("PATHS")
        if paths:
            values["paths"] = [p.strip() for p in paths.split(",") if p.strip()]
        options = _env("OPTIONS")
        if options:
            values["options"] = json.loads(options)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
