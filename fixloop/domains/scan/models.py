# fixloop/domains/scan/models.py
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Pattern, Tuple

UNKNOWN_FILE = "unknown"

# first match wins
CATEGORY_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (name, re.compile(pattern, re.IGNORECASE)) for name, pattern in (
        ("missing_property_type", r"Property .* has no type specified"),
        ("missing_return_type", r"Method .* has no return type specified"),
        ("missing_param_type", r"Method .* has parameter .* with no type specified"),
        ("missing_function_return_type", r"Function .* has no return type specified"),
        ("missing_function_param_type", r"Function .* has parameter .* with no type specified"),
        ("missing_iterable_value_type", r"has no value type specified in iterable type"),
        ("missing_generics", r"does not specify its types|generic type .* but does not specify"),
        ("undefined_variable", r"Undefined variable"),
        ("undefined_method", r"Call to an undefined (static )?method"),
        ("undefined_property", r"Access to an undefined property"),
        ("undefined_function", r"Function .* not found"),
        ("unknown_class", r"(Class|Instantiated class) .* not found|unknown class"),
        ("return_type_mismatch", r"should return .* but returns"),
        ("param_type_mismatch", r"Parameter .* expects .* given"),
        ("property_type_mismatch", r"Property .* does not accept"),
        ("null_safety", r"on (possibly )?null|Cannot call method .* on .*\|null"),
        ("unused_variable", r"is never used|Unused variable"),
        ("dead_code", r"Unreachable statement"),
        ("deprecated", r"deprecated"),
    )
)


def categorize(message: str) -> str:
    for name, pattern in CATEGORY_PATTERNS:
        if pattern.search(message):
            return name
    return "unknown"


@dataclass(frozen=True)
class Diagnostic:
    """One finding reported by the analyzer. Never mutated once parsed."""

    file: str
    line: int
    message: str
    identifier: Optional[str] = None
    severity: Optional[str] = None
    category: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.category:
            object.__setattr__(self, "category", categorize(self.message))

    @property
    def signature(self) -> Tuple[str, str, str]:
        """Identifies the same defect across passes even when its line moves."""
        return (self.file, self.identifier or "", self.message)

    @property
    def has_file(self) -> bool:
        return bool(self.file) and self.file != UNKNOWN_FILE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "message": self.message,
            "identifier": self.identifier,
            "severity": self.severity,
            "category": self.category,
        }
