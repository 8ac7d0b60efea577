# fixloop/services/batch_fix/validators.py
from __future__ import annotations
import ast
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import List, Optional, Pattern, Sequence

from fixloop.errors import CommandNotFoundError, CommandTimeoutError
from fixloop.repositories.secure_files import create_temp_file, delete_file
from fixloop.services.cli_service import CLIService
from fixloop.services.log_service import logger

SYNTAX = "syntax"
STRUCTURE = "structure"
TYPE_SAFETY = "type_safety"
INDENTATION = "indentation"


def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


@dataclass(frozen=True)
class Violation:
    kind: str
    message: str
    critical: bool

    def __str__(self) -> str:
        return self.message


class SyntaxUnavailable(Exception):
    """The syntax validator for a language cannot run here."""


class SyntaxValidator(ABC):
    @abstractmethod
    def validate(self, content: str) -> Optional[str]:
        """Return an error description, or None when the content parses."""


class PythonSyntaxValidator(SyntaxValidator):
    def validate(self, content: str) -> Optional[str]:
        try:
            ast.parse(content)
        except SyntaxError as e:
            return f"{e.msg} on line {e.lineno}"
        return None


class PhpLintValidator(SyntaxValidator):
    """``php -l`` on a temporary copy of the rewritten content."""

    def __init__(self, binary: str = "php", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    def validate(self, content: str) -> Optional[str]:
        temp_path = create_temp_file(prefix="fixloop_lint_", suffix=".php")
        try:
            with open(temp_path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            result = CLIService.run_command([self.binary, "-l", temp_path], timeout=self.timeout)
        except CommandNotFoundError as e:
            raise SyntaxUnavailable(str(e)) from e
        except CommandTimeoutError:
            return f"php -l did not finish within {self.timeout:g}s"
        finally:
            delete_file(temp_path)

        output = f"{result.stdout}\n{result.stderr}"
        if result.returncode == 0 and "No syntax errors detected" in output:
            return None
        detail = next((ln.strip() for ln in output.splitlines() if "error" in ln.lower()), output.strip())
        return detail.replace(temp_path, "<rewritten>") or "php -l reported a syntax error"


@dataclass
class LanguageProfile:
    name: str
    suffixes: Sequence[str]
    class_pattern: Pattern[str]
    function_pattern: Pattern[str]
    syntax_validator: Optional[SyntaxValidator] = None
    cast_pattern: Optional[Pattern[str]] = None


NULL_TO_TYPED = re.compile(r"(\w+)\s*:\s*(\w+)\s*=\s*null\b")
DOC_OPEN = re.compile(r"^(\s+)/\*\*")
DOC_CONT = re.compile(r"^(\s+)\*")


def php_profile(binary: str = "php", timeout: float = 30.0) -> LanguageProfile:
    return LanguageProfile(
        name="php",
        suffixes=(".php", ".phtml", ".inc"),
        class_pattern=re.compile(r"\b(?:class|interface|trait|enum)\s+\w+"),
        function_pattern=re.compile(r"\bfunction\s+&?\s*\w+\s*\("),
        syntax_validator=PhpLintValidator(binary, timeout),
        cast_pattern=re.compile(r"\$\w+\s*=\s*\([^)]+\)\s*\$\w+"),
    )


def python_profile() -> LanguageProfile:
    return LanguageProfile(
        name="python",
        suffixes=(".py", ".pyi"),
        class_pattern=re.compile(r"^\s*class\s+\w+", re.MULTILINE),
        function_pattern=re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(", re.MULTILINE),
        syntax_validator=PythonSyntaxValidator(),
    )


class SafetyChecker:
    """Decides whether a rewritten file may replace the original.

    Syntax errors and a changed number of class or function declarations are
    critical and block the write. Cast heuristics and indentation problems are
    reported but do not block.
    """

    def __init__(self, profiles: Optional[List[LanguageProfile]] = None, php_binary: str = "php", lint_timeout: float = 30.0):
        self.profiles = profiles if profiles is not None else [php_profile(php_binary, lint_timeout), python_profile()]
        php = next((p for p in self.profiles if p.name == "php"), None) or php_profile(php_binary, lint_timeout)
        # unknown files: count declarations the PHP way, but there is nothing to lint with
        self.fallback = LanguageProfile(
            name="generic",
            suffixes=(),
            class_pattern=php.class_pattern,
            function_pattern=php.function_pattern,
            cast_pattern=php.cast_pattern,
        )

    def profile_for(self, path: Optional[str]) -> LanguageProfile:
        suffix = os.path.splitext(path or "")[1].lower()
        for profile in self.profiles:
            if suffix in profile.suffixes:
                return profile
        return self.fallback

    def check(self, original: str, rewritten: str, path: Optional[str] = None) -> List[Violation]:
        profile = self.profile_for(path)
        violations: List[Violation] = []

        syntax = self._check_syntax(profile, rewritten)
        if syntax:
            violations.append(syntax)

        before = len(profile.class_pattern.findall(original))
        after = len(profile.class_pattern.findall(rewritten))
        if before != after:
            violations.append(Violation(STRUCTURE, f"Class count changed: {before} -> {after}", True))

        before = len(profile.function_pattern.findall(original))
        after = len(profile.function_pattern.findall(rewritten))
        if before != after:
            violations.append(Violation(STRUCTURE, f"Method count changed: {before} -> {after}", True))

        violations.extend(self._check_type_safety(profile, rewritten))
        violations.extend(self._check_indentation(rewritten))
        return violations

    def is_safe_to_apply(self, original: str, rewritten: str, path: Optional[str] = None) -> bool:
        violations = self.check(original, rewritten, path)
        for violation in violations:
            if not violation.critical:
                logger.warning("Safety warning for %s: %s", path or "<content>", violation.message)
        return not self.critical(violations)

    @staticmethod
    def critical(violations: List[Violation]) -> List[Violation]:
        return [v for v in violations if v.critical]

    @staticmethod
    def _check_syntax(profile: LanguageProfile, content: str) -> Optional[Violation]:
        if profile.syntax_validator is None:
            return None
        try:
            error = profile.syntax_validator.validate(content)
        except SyntaxUnavailable as e:
            return Violation(SYNTAX, f"Syntax not verified: {e}", False)
        if error:
            return Violation(SYNTAX, f"Syntax error: {error}", True)
        return None

    @staticmethod
    def _check_type_safety(profile: LanguageProfile, content: str) -> List[Violation]:
        violations = []
        if profile.cast_pattern is not None and profile.cast_pattern.search(content):
            violations.append(Violation(TYPE_SAFETY, "Potentially unsafe type cast detected", False))
        if NULL_TO_TYPED.search(content):
            violations.append(Violation(TYPE_SAFETY, "Potential null assignment to non-nullable property", False))
        return violations

    @staticmethod
    def _check_indentation(content: str) -> List[Violation]:
        violations = []
        lines = content.splitlines()
        for number, line in enumerate(lines, start=1):
            leading = line[:len(line) - len(line.lstrip(" \t"))]
            if " " in leading and "\t" in leading:
                violations.append(Violation(INDENTATION, f"Mixed tabs and spaces on line {number}", False))
            opened = DOC_OPEN.match(line)
            if opened and number < len(lines):
                continued = DOC_CONT.match(lines[number])
                if continued and len(continued.group(1)) != len(opened.group(1)) + 1:
                    violations.append(Violation(INDENTATION, f"Inconsistent doc-block indentation on line {number + 1}", False))
        return violations
