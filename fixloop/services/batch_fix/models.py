# fixloop/services/batch_fix/models.py
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from fixloop.domains.scan.models import Diagnostic


class FixStatus(str, Enum):
    APPLIED = "applied"
    NO_CHANGE = "no_change"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class AppliedFix:
    file_path: str
    description: str
    line: Optional[int]
    message: Optional[str]
    timestamp: int
    similarity_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApplyOutcome:
    status: FixStatus
    file_path: str
    original_size: int = 0
    fixed_size: int = 0
    message: str = ""
    validation_errors: List[str] = field(default_factory=list)
    processing_time: float = 0.0
    similarity_ratio: float = 0.0
    # earlier fixes to the same file undone by restoring its transaction backup
    reverted: List[AppliedFix] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is FixStatus.APPLIED


class Outcome(str, Enum):
    FIXED = "fixed"
    UNFIXABLE = "unfixable"
    ERRORED = "errored"


@dataclass
class DiagnosticOutcome:
    diagnostic: Diagnostic
    outcome: Outcome
    pass_number: int
    reason: str = ""
    fixer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.diagnostic.to_dict(),
            "outcome": self.outcome.value,
            "pass": self.pass_number,
            "reason": self.reason,
            "fixer": self.fixer,
        }


@dataclass
class PassSummary:
    pass_number: int
    diagnostics_found: int
    fixed: int = 0
    unfixable: int = 0
    errored: int = 0
    committed: bool = False
    remaining: Optional[int] = None
    unfixable_signatures: set = field(default_factory=set, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass": self.pass_number,
            "diagnostics_found": self.diagnostics_found,
            "fixed": self.fixed,
            "unfixable": self.unfixable,
            "errored": self.errored,
            "committed": self.committed,
            "remaining": self.remaining,
        }


@dataclass
class FixRunResult:
    status: str = "clean"
    outcomes: List[DiagnosticOutcome] = field(default_factory=list)
    passes: List[PassSummary] = field(default_factory=list)
    fixed_files: Dict[str, Optional[str]] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    initial_count: int = 0
    remaining_count: int = 0
    start_time: str = ""
    end_time: str = ""

    def _of(self, outcome: Outcome) -> List[DiagnosticOutcome]:
        return [o for o in self.outcomes if o.outcome is outcome]

    @property
    def fixed(self) -> List[DiagnosticOutcome]:
        return self._of(Outcome.FIXED)

    @property
    def unfixable(self) -> List[DiagnosticOutcome]:
        return self._of(Outcome.UNFIXABLE)

    @property
    def errored(self) -> List[DiagnosticOutcome]:
        return self._of(Outcome.ERRORED)

    @property
    def has_errors(self) -> bool:
        return self.status == "errored" or bool(self.errors)

    def add_message(self, message: str) -> None:
        self.messages.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "initial_count": self.initial_count,
            "remaining_count": self.remaining_count,
            "fixed_count": len(self.fixed),
            "unfixable_count": len(self.unfixable),
            "errored_count": len(self.errored),
            "passes": [p.to_dict() for p in self.passes],
            "outcomes": [o.to_dict() for o in self.outcomes],
            "fixed_files": dict(self.fixed_files),
            "messages": list(self.messages),
            "errors": list(self.errors),
        }
