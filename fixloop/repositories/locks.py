# fixloop/repositories/locks.py
"""Named, cross-process file locks.

A lock is a marker file created with ``O_CREAT | O_EXCL`` inside a lock
directory, holding ``{"pid", "time", "file"}``. Where ``fcntl`` exists the
open descriptor is also ``flock``ed so :meth:`FileLockManager.is_locked` can
probe it. Markers left behind by dead or stuck processes are reclaimed.
"""
from __future__ import annotations
import hashlib
import json
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union
from fixloop.errors import LockTimeoutError
from fixloop.services.log_service import logger

try:
    import fcntl  # Unix only
except ImportError:
    fcntl = None

DEFAULT_TIMEOUT = 30.0
RETRY_DELAY = 0.1
STALE_AGE = 2 * DEFAULT_TIMEOUT
# a marker is written right after creation; give the owner this long before
# treating an empty/garbled marker as abandoned
UNREADABLE_GRACE = 1.0
LOCK_EXTENSION = ".lock"


@dataclass
class LockMarker:
    pid: int
    time: int
    file: str

    @classmethod
    def from_dict(cls, data: dict) -> "LockMarker":
        return cls(pid=int(data["pid"]), time=int(data["time"]), file=str(data.get("file", "")))

    def to_dict(self) -> dict:
        return asdict(self)


class LivenessProbe(ABC):
    @abstractmethod
    def is_alive(self, pid: int) -> bool: ...


class PosixLivenessProbe(LivenessProbe):
    """Signal 0 tells us whether the pid exists without touching the process."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        except OSError:
            return False
        return True


class AgeOnlyLivenessProbe(LivenessProbe):
    """Used where pids cannot be probed safely; staleness falls back to marker age."""

    def is_alive(self, pid: int) -> bool:
        return True


def default_liveness_probe() -> LivenessProbe:
    # os.kill on Windows terminates the target, so it is only used on POSIX
    if os.name == "posix" and hasattr(os, "kill"):
        return PosixLivenessProbe()
    return AgeOnlyLivenessProbe()


class FileLockManager:
    def __init__(self, lock_dir: Union[str, os.PathLike], liveness_probe: Optional[LivenessProbe] = None):
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(mode=0o750, parents=True, exist_ok=True)
        self.liveness_probe = liveness_probe or default_liveness_probe()
        self._held: Dict[str, Tuple[Path, int]] = {}

    def lock_file_path(self, path: Union[str, os.PathLike]) -> Path:
        key = os.fspath(path)
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self.lock_dir / f"{digest}_{os.path.basename(key)}{LOCK_EXTENSION}"

    def acquire(self, path: Union[str, os.PathLike], timeout: float = DEFAULT_TIMEOUT) -> bool:
        """Wait up to ``timeout`` seconds for the lock. Returns False on timeout."""
        key = os.fspath(path)
        lock_file = self.lock_file_path(key)
        deadline = time.monotonic() + max(timeout, 0.0)

        while True:
            fd = self._try_create(lock_file, key)
            if fd is not None:
                self._held[key] = (lock_file, fd)
                logger.debug("Lock acquired: %s", key)
                return True

            if self._discard_if_stale(lock_file):
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Timed out after {timeout:g}s waiting for lock on {key}")
                return False
            time.sleep(min(RETRY_DELAY, remaining))

    def release(self, path: Union[str, os.PathLike]) -> bool:
        key = os.fspath(path)
        held = self._held.pop(key, None)
        if held is None:
            return False
        lock_file, fd = held
        try:
            if fcntl is not None:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
            try:
                lock_file.unlink()
            except FileNotFoundError:
                logger.warning("Lock marker already removed: %s", lock_file)
        logger.debug("Lock released: %s", key)
        return True

    def release_all(self) -> int:
        released = 0
        for key in list(self._held):
            if self.release(key):
                released += 1
        return released

    def holds(self, path: Union[str, os.PathLike]) -> bool:
        return os.fspath(path) in self._held

    def is_locked(self, path: Union[str, os.PathLike]) -> bool:
        lock_file = self.lock_file_path(path)
        if not lock_file.exists():
            return False
        if self._flock_held(lock_file):
            return True
        # a marker nobody flocks is only a lock until someone proves it stale
        return not self._is_stale(lock_file)

    def cleanup_all_locks(self) -> int:
        """Remove stale markers only. Returns how many were removed."""
        removed = 0
        for lock_file in self.lock_dir.glob(f"*{LOCK_EXTENSION}"):
            if self._discard_if_stale(lock_file):
                removed += 1
        if removed:
            logger.info("Removed %s stale lock(s) from %s", removed, self.lock_dir)
        return removed

    @contextmanager
    def locked(self, path: Union[str, os.PathLike], timeout: float = DEFAULT_TIMEOUT) -> Iterator[None]:
        if not self.acquire(path, timeout):
            raise LockTimeoutError(os.fspath(path), timeout)
        try:
            yield
        finally:
            self.release(path)

    def __enter__(self) -> "FileLockManager":
        return self

    def __exit__(self, *exc) -> None:
        self.release_all()

    def _try_create(self, lock_file: Path, key: str) -> Optional[int]:
        try:
            fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None

        if fcntl is not None:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                os.close(fd)
                return None

        marker = LockMarker(pid=os.getpid(), time=int(time.time()), file=key)
        try:
            os.write(fd, json.dumps(marker.to_dict()).encode("utf-8"))
            os.fsync(fd)
        except OSError:
            os.close(fd)
            lock_file.unlink(missing_ok=True)
            raise
        return fd

    def _read_marker(self, lock_file: Path) -> Optional[LockMarker]:
        try:
            data = json.loads(lock_file.read_text(encoding="utf-8"))
            return LockMarker.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def _is_stale(self, lock_file: Path) -> bool:
        try:
            file_age = time.time() - lock_file.stat().st_mtime
        except FileNotFoundError:
            return True

        marker = self._read_marker(lock_file)
        if marker is None:
            return file_age > UNREADABLE_GRACE
        if time.time() - marker.time > STALE_AGE:
            return True
        return not self.liveness_probe.is_alive(marker.pid)

    def _flock_held(self, lock_file: Path) -> bool:
        if fcntl is None:
            return False
        try:
            fd = os.open(lock_file, os.O_RDONLY)
        except FileNotFoundError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
        except OSError:
            return True
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def _discard_if_stale(self, lock_file: Path) -> bool:
        # flock is dropped by the kernel when its owner dies, so a held flock is a live owner
        if not self._is_stale(lock_file) or self._flock_held(lock_file):
            return False
        try:
            lock_file.unlink()
            logger.info("Removed stale lock %s", lock_file.name)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove stale lock %s: %s", lock_file, e)
            return False
        return True
