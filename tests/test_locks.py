"""Tests for named cross-process file locks."""
from __future__ import annotations

import json
import os
import subprocess
import sys
import time

import pytest

from fixloop.errors import LockTimeoutError
from fixloop.repositories import locks
from fixloop.repositories.locks import (
    AgeOnlyLivenessProbe,
    FileLockManager,
    LivenessProbe,
    PosixLivenessProbe,
    default_liveness_probe,
)


class DeadProbe(LivenessProbe):
    def is_alive(self, pid):
        return False


def _dead_pid() -> int:
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def _write_marker(manager, key, pid, when):
    lock_file = manager.lock_file_path(key)
    lock_file.write_text(json.dumps({"pid": pid, "time": int(when), "file": key}))
    return lock_file


class TestAcquireRelease:
    def test_acquire_creates_marker(self, lock_manager, project):
        key = str(project / "a.php")
        assert lock_manager.acquire(key, timeout=1)
        marker = json.loads(lock_manager.lock_file_path(key).read_text())
        assert marker["pid"] == os.getpid()
        assert marker["file"] == key
        assert lock_manager.holds(key)

    def test_release_removes_marker(self, lock_manager, project):
        key = str(project / "a.php")
        lock_manager.acquire(key, timeout=1)
        assert lock_manager.release(key)
        assert not lock_manager.lock_file_path(key).exists()
        assert not lock_manager.release(key)

    def test_lock_file_name(self, lock_manager):
        path = lock_manager.lock_file_path("/work/src/User.php")
        assert path.parent == lock_manager.lock_dir
        assert path.name.endswith("_User.php.lock")
        assert len(path.name.split("_")[0]) == 32

    def test_release_all(self, lock_manager, project):
        for name in ("a", "b", "c"):
            assert lock_manager.acquire(str(project / name), timeout=1)
        assert lock_manager.release_all() == 3
        assert list(lock_manager.lock_dir.glob("*.lock")) == []

    def test_context_manager_releases(self, project):
        with FileLockManager(project / "locks") as manager:
            manager.acquire("k", timeout=1)
            lock_file = manager.lock_file_path("k")
        assert not lock_file.exists()


class TestContention:
    def test_second_acquire_waits_for_timeout(self, project):
        """An unreleased lock makes a competitor wait about the full timeout, then fail."""
        first = FileLockManager(project / "locks")
        second = FileLockManager(project / "locks")
        assert first.acquire("shared", timeout=1)

        started = time.monotonic()
        assert second.acquire("shared", timeout=1.0) is False
        waited = time.monotonic() - started

        assert 0.8 <= waited <= 1.2
        first.release_all()

    def test_same_manager_is_not_reentrant(self, lock_manager):
        assert lock_manager.acquire("k", timeout=1)
        assert lock_manager.acquire("k", timeout=0.2) is False

    def test_acquire_after_release(self, project):
        first = FileLockManager(project / "locks")
        second = FileLockManager(project / "locks")
        first.acquire("k", timeout=1)
        first.release("k")
        assert second.acquire("k", timeout=0.5)
        second.release_all()

    def test_is_locked(self, project):
        first = FileLockManager(project / "locks")
        second = FileLockManager(project / "locks")
        assert not second.is_locked("k")
        first.acquire("k", timeout=1)
        assert second.is_locked("k")
        first.release("k")
        assert not second.is_locked("k")

    def test_locked_context_manager_raises_on_timeout(self, project):
        first = FileLockManager(project / "locks")
        second = FileLockManager(project / "locks")
        first.acquire("k", timeout=1)
        with pytest.raises(LockTimeoutError):
            with second.locked("k", timeout=0.2):
                pass
        first.release_all()

    def test_locked_context_manager_releases(self, lock_manager):
        with lock_manager.locked("k", timeout=1):
            assert lock_manager.holds("k")
        assert not lock_manager.holds("k")


class TestStaleLocks:
    def test_dead_holder_is_reclaimed(self, lock_manager):
        _write_marker(lock_manager, "k", _dead_pid(), time.time())
        started = time.monotonic()
        assert lock_manager.acquire("k", timeout=5)
        assert time.monotonic() - started < 1.0

    def test_old_marker_is_reclaimed(self, project):
        manager = FileLockManager(project / "locks", liveness_probe=AgeOnlyLivenessProbe())
        _write_marker(manager, "k", os.getpid(), time.time() - locks.STALE_AGE - 5)
        assert manager.acquire("k", timeout=1)
        manager.release_all()

    def test_fresh_marker_of_live_process_is_respected(self, project):
        manager = FileLockManager(project / "locks")
        _write_marker(manager, "k", os.getpid(), time.time())
        assert manager.acquire("k", timeout=0.3) is False

    def test_garbled_marker_is_reclaimed_after_grace(self, lock_manager):
        lock_file = lock_manager.lock_file_path("k")
        lock_file.write_text("not json")
        old = time.time() - 10
        os.utime(lock_file, (old, old))
        assert lock_manager.acquire("k", timeout=1)

    def test_fresh_garbled_marker_is_not_reclaimed(self, lock_manager):
        lock_manager.lock_file_path("k").write_text("")
        assert lock_manager.acquire("k", timeout=0.2) is False

    def test_cleanup_only_removes_stale(self, project):
        manager = FileLockManager(project / "locks", liveness_probe=DeadProbe())
        live = FileLockManager(project / "locks")
        live.acquire("held", timeout=1)
        _write_marker(manager, "stale", 999999, time.time())

        assert manager.cleanup_all_locks() == 1
        assert live.lock_file_path("held").exists()
        live.release_all()


class TestLivenessProbes:
    def test_posix_probe(self):
        probe = PosixLivenessProbe()
        assert probe.is_alive(os.getpid())
        assert not probe.is_alive(_dead_pid())
        assert not probe.is_alive(0)

    def test_age_only_probe(self):
        assert AgeOnlyLivenessProbe().is_alive(123456)

    def test_default_probe_on_posix(self):
        if os.name != "posix":
            pytest.skip("POSIX only")
        assert isinstance(default_liveness_probe(), PosixLivenessProbe)
