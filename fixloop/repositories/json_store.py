# fixloop/repositories/json_store.py
from __future__ import annotations
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from fixloop.errors import CacheLockError
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.secure_files import read_file, write_file, delete_file, validate_path
from fixloop.services.log_service import logger

Document = Dict[str, Any]


def timestamp_string() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def coerce_timestamp(value: Any) -> int:
    """Entry timestamp as an int; anything unreadable counts as 0, i.e. older than everything."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class JsonDocumentStore:
    """One JSON document on disk, updated with a locked read-merge-write."""

    def __init__(
        self,
        path: Union[str, os.PathLike],
        lock_manager: Optional[FileLockManager] = None,
        lock_timeout: float = 10.0,
    ):
        self.path = Path(validate_path(path))
        self.lock_manager = lock_manager
        self.lock_timeout = lock_timeout

    def load(self) -> Optional[Document]:
        """Return the parsed document, or None when it is missing or unusable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(read_file(self.path))
        except ValueError as e:
            logger.warning(f"Ignoring malformed cache file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring cache file %s: top level is not an object", self.path)
            return None
        return data

    def update(self, merge: Callable[[Optional[Document]], Document]) -> Document:
        """Re-read the on-disk document under the lock, merge, and write atomically."""
        return self._guarded(lambda: self._merge_and_write(merge))

    def delete(self) -> bool:
        return self._guarded(lambda: delete_file(self.path))

    def _guarded(self, action: Callable[[], Any]) -> Any:
        if self.lock_manager is None:
            return action()
        if not self.lock_manager.acquire(str(self.path), self.lock_timeout):
            raise CacheLockError(f"Could not lock {self.path} within {self.lock_timeout:g}s")
        try:
            return action()
        finally:
            self.lock_manager.release(str(self.path))

    def _merge_and_write(self, merge: Callable[[Optional[Document]], Document]) -> Document:
        document = merge(self.load())
        write_file(self.path, json.dumps(document, indent=2, ensure_ascii=False))
        return document
