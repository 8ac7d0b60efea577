# fixloop/repositories/type_cache.py
"""Persistent map of ``Subject::member`` to inferred type descriptors.

Entries are tied to the source file that declares the subject: an entry is
only served while that file's mtime (whole seconds) is not newer than the
entry's timestamp. Stale entries are dropped when they are read.
"""
from __future__ import annotations
import itertools
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union
from fixloop.repositories.json_store import Document, JsonDocumentStore, coerce_timestamp, timestamp_string
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.secure_files import validate_cache_directory, validate_path
from fixloop.services.log_service import logger

CACHE_VERSION = "1.0"
MAX_CACHE_ENTRIES = 50000
CLEANUP_THRESHOLD = 0.8
EVICTION_PERCENTAGE = 0.2
LOCK_TIMEOUT = 10.0
LOCK_DIR_NAME = ".fixloop-locks"

TypeInfo = Dict[str, Any]


def normalize_subject(subject: str) -> str:
    return subject.lstrip("\\")


def generate_key(subject: str, member: str) -> str:
    """``\\App\\User`` + ``$name`` -> ``App\\User::$name``; ``save(`` -> ``App\\User::save()``."""
    subject = normalize_subject(subject)
    if member.startswith("$"):
        return f"{subject}::{member}"
    if "(" in member:
        return f"{subject}::{member.split('(', 1)[0]}()"
    return f"{subject}::{member}"


def entry_is_valid(entry: Dict[str, Any], fallback_file: str = "") -> bool:
    file_path = entry.get("file") or fallback_file
    if not file_path or not isinstance(file_path, str):
        return False
    try:
        mtime = int(os.stat(file_path).st_mtime)
    except OSError:
        return False
    return mtime <= coerce_timestamp(entry.get("timestamp"))


class TypeCache:
    def __init__(
        self,
        cache_file: Union[str, os.PathLike],
        *,
        enable_locking: bool = True,
        lock_manager: Optional[FileLockManager] = None,
        lock_timeout: float = LOCK_TIMEOUT,
    ):
        self.cache_file = Path(validate_path(cache_file))
        validate_cache_directory(self.cache_file.parent)
        if enable_locking and lock_manager is None:
            lock_manager = FileLockManager(self.cache_file.parent / LOCK_DIR_NAME)
        self.lock_manager = lock_manager if enable_locking else None
        self.store = JsonDocumentStore(self.cache_file, self.lock_manager, lock_timeout)

        self._cache: Dict[str, Dict[str, Any]] = {}
        self._access: Dict[str, int] = {}
        self._file_paths: Dict[str, str] = {}
        self._ticks = itertools.count()
        self._load()

    def __len__(self) -> int:
        return len(self._cache)

    # -------------- File association --------------
    def set_file_path_for_class(self, subject: str, file_path: Union[str, os.PathLike]) -> None:
        self._file_paths[normalize_subject(subject)] = os.path.abspath(os.fspath(file_path))

    def get_file_path_for_class(self, subject: str) -> Optional[str]:
        return self._file_paths.get(normalize_subject(subject))

    # -------------- Core API --------------
    def get_type(self, subject: str, member: str) -> Optional[TypeInfo]:
        key = generate_key(subject, member)
        entry = self._cache.get(key)
        if entry is None:
            return None
        registered = self.get_file_path_for_class(subject) or ""
        if not entry_is_valid(entry, registered):
            del self._cache[key]
            self._access.pop(key, None)
            return None
        if not entry.get("file"):
            entry["file"] = registered
        self._touch(key)
        return entry["type"]

    def set_type(self, subject: str, member: str, type_info: TypeInfo) -> None:
        key = generate_key(subject, member)
        if key not in self._cache:
            self._enforce_size_limit()
        self._cache[key] = {
            "type": type_info,
            "timestamp": int(time.time()),
            "file": self.get_file_path_for_class(subject) or "",
        }
        self._touch(key)

    def invalidate(self, subject: str, member: str) -> bool:
        key = generate_key(subject, member)
        self._access.pop(key, None)
        return self._cache.pop(key, None) is not None

    # -------------- Typed helpers --------------
    def set_property_type(self, cls: str, prop: str, doc_type: Optional[str], native_type: Optional[str] = None) -> None:
        self.set_type(cls, "$" + prop.lstrip("$"), {"phpDoc": doc_type, "native": native_type})

    def get_property_type(self, cls: str, prop: str) -> Optional[TypeInfo]:
        return self.get_type(cls, "$" + prop.lstrip("$"))

    def set_method_types(
        self,
        cls: str,
        method: str,
        param_types: Dict[str, Any],
        return_type: Optional[str],
        doc_return_type: Optional[str] = None,
    ) -> None:
        self.set_type(cls, f"{method}()", {
            "params": param_types,
            "return": {"native": return_type, "phpDoc": doc_return_type},
        })

    def get_method_return_type(self, cls: str, method: str) -> Optional[Dict[str, Any]]:
        info = self.get_type(cls, f"{method}()")
        return info.get("return") if info else None

    def get_method_parameter_types(self, cls: str, method: str) -> Optional[Dict[str, Any]]:
        info = self.get_type(cls, f"{method}()")
        return info.get("params") if info else None

    # -------------- Persistence --------------
    def save(self) -> None:
        """Merge with whatever other processes saved and write the document back."""
        self.store.update(self._merge_document)
        logger.debug("Type cache saved: %s entries -> %s", len(self._cache), self.cache_file)

    def clear(self) -> None:
        self._cache.clear()
        self._access.clear()
        self.store.delete()
        logger.info("Type cache cleared: %s", self.cache_file)

    def cleanup_stale_entries(self) -> int:
        stale = [
            key for key, entry in self._cache.items()
            if not entry_is_valid(entry, self._registered_for_key(key))
        ]
        for key in stale:
            del self._cache[key]
            self._access.pop(key, None)
        if stale:
            logger.info("Removed %s stale type cache entries", len(stale))
        return len(stale)

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._cache),
            "max_entries": MAX_CACHE_ENTRIES,
            "usage_percentage": round(len(self._cache) / MAX_CACHE_ENTRIES * 100, 2),
            "registered_files": len(self._file_paths),
            "cache_file": str(self.cache_file),
            "locking_enabled": self.lock_manager is not None,
        }

    def perform_maintenance(self) -> Dict[str, int]:
        removed = self.cleanup_stale_entries()
        locks = self.lock_manager.cleanup_all_locks() if self.lock_manager else 0
        self.save()
        return {"stale_entries_removed": removed, "stale_locks_removed": locks}

    # -------------- Internals --------------
    def _touch(self, key: str) -> None:
        self._access[key] = next(self._ticks)

    def _registered_for_key(self, key: str) -> str:
        subject = key.split("::", 1)[0]
        return self.get_file_path_for_class(subject) or ""

    def _load(self) -> None:
        document = self.store.load()
        if document is None:
            return
        if document.get("version") != CACHE_VERSION:
            logger.warning("Type cache %s has version %r, loading best effort", self.cache_file, document.get("version"))
        entries = document.get("cache")
        if not isinstance(entries, dict):
            return
        for key, entry in entries.items():
            if isinstance(entry, dict) and "type" in entry:
                entry["timestamp"] = coerce_timestamp(entry.get("timestamp"))
                self._cache[key] = entry
                self._touch(key)
        logger.debug("Type cache loaded: %s entries from %s", len(self._cache), self.cache_file)

    def _merge_document(self, on_disk: Optional[Document]) -> Document:
        merged: Dict[str, Dict[str, Any]] = {}
        disk_entries = (on_disk or {}).get("cache")
        if isinstance(disk_entries, dict):
            for key, entry in disk_entries.items():
                if not isinstance(entry, dict) or "type" not in entry:
                    continue
                if entry.get("file") and not entry_is_valid(entry):
                    continue
                entry["timestamp"] = coerce_timestamp(entry.get("timestamp"))
                merged[key] = entry

        for key, entry in self._cache.items():
            theirs = merged.get(key)
            if theirs is None or coerce_timestamp(entry.get("timestamp")) >= coerce_timestamp(theirs.get("timestamp")):
                merged[key] = entry

        self._cache = merged
        for key in merged:
            self._access.setdefault(key, next(self._ticks))
        self._enforce_size_limit()

        return {"version": CACHE_VERSION, "cache": self._cache, "generated_at": timestamp_string()}

    def _enforce_size_limit(self) -> None:
        if len(self._cache) < MAX_CACHE_ENTRIES * CLEANUP_THRESHOLD:
            return
        to_remove = max(1, int(len(self._cache) * EVICTION_PERCENTAGE))
        oldest = sorted(self._cache, key=lambda k: self._access.get(k, -1))[:to_remove]
        for key in oldest:
            del self._cache[key]
            self._access.pop(key, None)
        logger.info("Type cache evicted %s least recently used entries", len(oldest))
