# fixloop/errors.py
from __future__ import annotations

from typing import Optional


class FixLoopError(Exception):
    """Base class for every error raised by fixloop."""


class ValidationError(FixLoopError, ValueError):
    """Input rejected before any side effect took place."""


class PathValidationError(ValidationError):
    pass


class OptionValidationError(ValidationError):
    pass


class CommandError(FixLoopError):
    pass


class CommandNotFoundError(CommandError):
    def __init__(self, command: str):
        super().__init__(f"Command not found: {command}")
        self.command = command


class CommandTimeoutError(CommandError):
    def __init__(self, command: str, timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s: {command}")
        self.command = command
        self.timeout = timeout


class AnalyzerError(FixLoopError):
    """The analysis oracle crashed or produced nothing we can read."""


class AnalyzerTimeoutError(AnalyzerError):
    def __init__(self, timeout: float, message: Optional[str] = None):
        super().__init__(message or f"Analyzer did not finish within {timeout:g}s")
        self.timeout = timeout


class TransactionError(FixLoopError):
    """Transaction API used out of order (begin twice, apply without begin...)."""


class CommitError(TransactionError):
    """Commit failed; the transaction has been rolled back."""

    def __init__(self, message: str, rollback_errors: Optional[list] = None):
        super().__init__(message)
        self.rollback_errors = list(rollback_errors or [])


class CacheLockError(FixLoopError):
    """A cache could not take its lock before saving."""


class LockTimeoutError(FixLoopError):
    def __init__(self, path: str, timeout: float):
        super().__init__(f"Could not acquire lock for {path} within {timeout:g}s")
        self.path = path
        self.timeout = timeout
