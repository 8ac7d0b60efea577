# fixloop/services/batch_fix/processor.py
from __future__ import annotations
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from fixloop.domains.scan.models import Diagnostic
from fixloop.errors import CommitError, PathValidationError, TransactionError
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.secure_files import (
    delete_file,
    read_file,
    validate_cache_directory,
    validate_path,
    write_file,
)
from fixloop.repositories.type_cache import LOCK_DIR_NAME
from fixloop.services.batch_fix.models import AppliedFix, ApplyOutcome, FixStatus
from fixloop.services.batch_fix.validators import SafetyChecker, similarity
from fixloop.services.log_service import logger

BACKUP_DIR_NAME = ".fixloop-backup"
BACKUP_PREFIX = "backup_"
PERSISTENT_BACKUP_SUFFIX = ".fixloop.bak"
DEFAULT_BACKUP_MAX_AGE = 3600

Rewrite = Callable[[str], str]


class AtomicFixApplicator:
    """Applies rewrites to files inside a transaction that can be undone as a whole.

    Each file is locked and backed up the first time a transaction touches it;
    commit discards the backups, rollback restores them.
    """

    def __init__(
        self,
        project_root: str,
        *,
        backup_dir: Optional[str] = None,
        safety_checker: Optional[SafetyChecker] = None,
        lock_manager: Optional[FileLockManager] = None,
        lock_timeout: float = 10.0,
        keep_backups: bool = False,
        enable_locking: bool = True,
    ) -> None:
        self.project_root = os.path.abspath(validate_cache_directory(project_root))
        self.backup_dir = Path(backup_dir or os.path.join(self.project_root, BACKUP_DIR_NAME))
        validate_path(self.backup_dir)
        self.backup_dir.mkdir(mode=0o750, parents=True, exist_ok=True)
        self.safety_checker = safety_checker or SafetyChecker()
        if enable_locking and lock_manager is None:
            lock_manager = FileLockManager(os.path.join(self.project_root, LOCK_DIR_NAME))
        self.lock_manager = lock_manager if enable_locking else None
        self.lock_timeout = lock_timeout
        self.keep_backups = keep_backups
        self.preserved_backups: Dict[str, str] = {}

        self._active = False
        self._backups: Dict[str, Path] = {}
        self._applied: List[AppliedFix] = []
        self._locked: List[str] = []

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def applied_fixes(self) -> List[AppliedFix]:
        return list(self._applied)

    # -------------- Transaction lifecycle --------------
    def begin_transaction(self) -> None:
        if self._active:
            raise TransactionError("Transaction already active")
        self._active = True
        self._backups = {}
        self._applied = []
        self._locked = []
        logger.debug("Transaction started")

    def commit(self) -> List[AppliedFix]:
        """Make every applied fix permanent and return the ledger."""
        self._require_active()
        applied = list(self._applied)
        try:
            snapshots = {key: read_file(backup) for key, backup in self._backups.items()}
        except (OSError, PathValidationError) as e:
            errors = self.rollback()
            raise CommitError(f"Commit failed, transaction rolled back: {e}", errors) from e

        try:
            if self.keep_backups:
                self._preserve(snapshots, {fix.file_path for fix in applied})
            for key in list(self._backups):
                delete_file(self._backups[key])
                del self._backups[key]
        except (OSError, PathValidationError) as e:
            errors = self._restore_snapshots(snapshots)
            self._discard_backups()
            self._reset()
            logger.error(f"Commit failed, transaction rolled back: {e}")
            raise CommitError(f"Commit failed, transaction rolled back: {e}", errors) from e

        self._reset()
        logger.info("Transaction committed: %s fix(es) applied", len(applied))
        return applied

    def rollback(self) -> List[str]:
        """Restore every backed-up file. Returns the restore failures, if any."""
        self._require_active()
        errors: List[str] = []
        for key, backup in list(self._backups.items()):
            try:
                write_file(key, read_file(backup))
                delete_file(backup)
            except (OSError, PathValidationError) as e:
                errors.append(f"Failed to restore {key} from {backup}: {e}")
        for error in errors:
            logger.error(error)
        logger.info("Transaction rolled back: %s file(s) restored", len(self._backups) - len(errors))
        self._reset()
        return errors

    @contextmanager
    def transaction(self) -> Iterator["AtomicFixApplicator"]:
        """Commit on normal exit, roll back if the block raises."""
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            if self._active:
                self.rollback()
            raise
        if self._active:
            self.commit()

    # -------------- Applying --------------
    def apply_fix(
        self,
        path: str,
        rewrite: Rewrite,
        diagnostic: Optional[Diagnostic] = None,
        description: str = "",
    ) -> ApplyOutcome:
        self._require_active()
        start = time.monotonic()
        file_path = str(path)

        try:
            validate_path(file_path)
        except PathValidationError as e:
            return ApplyOutcome(FixStatus.FAILED, file_path, message=str(e))
        key = os.path.abspath(file_path)
        if not os.path.isfile(key):
            return ApplyOutcome(FixStatus.FAILED, key, message="File does not exist")

        if not self._lock(key):
            return ApplyOutcome(FixStatus.FAILED, key, message=f"Could not lock file within {self.lock_timeout:g}s")

        first_touch = key not in self._backups
        if first_touch:
            try:
                self._backups[key] = self._create_backup(key)
            except (OSError, PathValidationError) as e:
                self._unlock(key)
                return ApplyOutcome(FixStatus.FAILED, key, message=f"Backup failed: {e}")

        try:
            original = read_file(key)
            candidate = rewrite(original)

            if candidate == original:
                if first_touch:
                    delete_file(self._backups.pop(key))
                    self._unlock(key)
                return ApplyOutcome(
                    FixStatus.NO_CHANGE, key,
                    original_size=len(original), fixed_size=len(original),
                    message="Fixer produced no change",
                    processing_time=time.monotonic() - start,
                    similarity_ratio=1.0,
                )

            violations = self.safety_checker.check(original, candidate, path=key)
            for violation in violations:
                if not violation.critical:
                    logger.warning("Safety warning for %s: %s", key, violation.message)
            critical = [str(v) for v in violations if v.critical]
            if critical:
                logger.warning("Rejected fix for %s: %s", key, "; ".join(critical))
                return ApplyOutcome(
                    FixStatus.REJECTED, key,
                    original_size=len(original), fixed_size=len(candidate),
                    message="Safety check failed",
                    validation_errors=critical,
                    processing_time=time.monotonic() - start,
                    reverted=self._restore_from_backup(key),
                )

            write_file(key, candidate)
            ratio = similarity(original, candidate)
            self._applied.append(AppliedFix(
                file_path=key,
                description=description,
                line=diagnostic.line if diagnostic else None,
                message=diagnostic.message if diagnostic else None,
                timestamp=int(time.time()),
                similarity_ratio=ratio,
            ))
            logger.info("Applied %s to %s", description or "fix", key)
            return ApplyOutcome(
                FixStatus.APPLIED, key,
                original_size=len(original), fixed_size=len(candidate),
                message=f"Size change: {len(candidate) - len(original)} bytes",
                validation_errors=[str(v) for v in violations],
                processing_time=time.monotonic() - start,
                similarity_ratio=ratio,
            )
        except Exception as e:
            # rewrites come from fixers; any failure there is reported, not raised
            logger.error(f"Fix failed for {key}: {e}")
            return ApplyOutcome(
                FixStatus.FAILED, key,
                message=str(e),
                processing_time=time.monotonic() - start,
                reverted=self._restore_from_backup(key),
            )

    # -------------- Maintenance --------------
    def cleanup_old_backups(self, max_age: int = DEFAULT_BACKUP_MAX_AGE) -> int:
        """Delete transaction backups left behind by crashed runs."""
        in_use = set(self._backups.values())
        cutoff = time.time() - max_age
        removed = 0
        for backup in self.backup_dir.glob(f"{BACKUP_PREFIX}*"):
            if backup in in_use:
                continue
            try:
                if backup.stat().st_mtime < cutoff:
                    backup.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info("Removed %s old backup(s) from %s", removed, self.backup_dir)
        return removed

    # -------------- Internals --------------
    def _require_active(self) -> None:
        if not self._active:
            raise TransactionError("No transaction active. Call begin_transaction() first.")

    def _create_backup(self, key: str) -> Path:
        backup = self.backup_dir / f"{BACKUP_PREFIX}{uuid.uuid4().hex}_{os.path.basename(key)}"
        write_file(backup, read_file(key))
        return backup

    def _restore_from_backup(self, key: str) -> List[AppliedFix]:
        """Put the file back to its state at the start of the transaction.

        Fixes applied to it earlier in this transaction are undone too; they are
        removed from the ledger and returned.
        """
        backup = self._backups.get(key)
        if backup is None:
            return []
        try:
            before = read_file(backup)
            if read_file(key) != before:
                write_file(key, before)
        except (OSError, PathValidationError) as e:
            logger.error(f"Could not restore {key} from {backup}: {e}")
            return []
        reverted = [fix for fix in self._applied if fix.file_path == key]
        if reverted:
            self._applied = [fix for fix in self._applied if fix.file_path != key]
            logger.warning("Restored %s from backup, undoing %s earlier fix(es)", key, len(reverted))
        return reverted

    def _preserve(self, snapshots: Dict[str, str], touched: set) -> None:
        for key, content in snapshots.items():
            if key not in touched or key in self.preserved_backups:
                continue
            target = key + PERSISTENT_BACKUP_SUFFIX
            write_file(target, content)
            self.preserved_backups[key] = target

    def _restore_snapshots(self, snapshots: Dict[str, str]) -> List[str]:
        errors = []
        for key, content in snapshots.items():
            try:
                write_file(key, content)
            except (OSError, PathValidationError) as e:
                errors.append(f"Failed to restore {key}: {e}")
        return errors

    def _discard_backups(self) -> None:
        for backup in self._backups.values():
            try:
                delete_file(backup)
            except OSError as e:
                logger.warning("Could not delete backup %s: %s", backup, e)

    def _lock(self, key: str) -> bool:
        if self.lock_manager is None or key in self._locked:
            return True
        if not self.lock_manager.acquire(key, self.lock_timeout):
            return False
        self._locked.append(key)
        return True

    def _unlock(self, key: str) -> None:
        if key in self._locked:
            self._locked.remove(key)
            self.lock_manager.release(key)

    def _reset(self) -> None:
        for key in list(self._locked):
            self._unlock(key)
        self._active = False
        self._backups = {}
        self._applied = []
        self._locked = []
