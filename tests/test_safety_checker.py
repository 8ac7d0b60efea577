"""Tests for the safety checker guarding every write."""
from __future__ import annotations

import pytest

from fixloop.services.batch_fix import validators as V
from fixloop.services.batch_fix.validators import SafetyChecker, Violation

PY_ORIGINAL = "class A:\n    def run(self):\n        return 1\n"


@pytest.fixture
def checker():
    # a php binary that cannot exist keeps the tests independent of the host
    return SafetyChecker(php_binary="fixloop-missing-php-binary")


class TestPython:
    def test_clean_rewrite_has_no_violations(self, checker):
        rewritten = PY_ORIGINAL.replace("return 1", "return 2")
        assert checker.check(PY_ORIGINAL, rewritten, "a.py") == []
        assert checker.is_safe_to_apply(PY_ORIGINAL, rewritten, "a.py")

    def test_syntax_error_is_critical(self, checker):
        violations = checker.check(PY_ORIGINAL, PY_ORIGINAL.replace("):", ")"), "a.py")
        assert violations[0].kind == V.SYNTAX
        assert violations[0].critical

    def test_removed_method_is_critical(self, checker):
        rewritten = "class A:\n    x = 1\n"
        violations = checker.check(PY_ORIGINAL, rewritten, "a.py")
        assert any(v.kind == V.STRUCTURE and "Method count" in v.message for v in violations)
        assert not checker.is_safe_to_apply(PY_ORIGINAL, rewritten, "a.py")

    def test_added_class_is_critical(self, checker):
        rewritten = PY_ORIGINAL + "\nclass B:\n    pass\n"
        violations = checker.critical(checker.check(PY_ORIGINAL, rewritten, "a.py"))
        assert [v.message for v in violations] == ["Class count changed: 1 -> 2"]

    def test_mixed_indentation_is_not_critical(self, checker):
        rewritten = "class A:\n    def run(self):\n        return 1\n\t    \n"
        violations = checker.check(PY_ORIGINAL, rewritten, "a.py")
        assert [v.kind for v in violations] == [V.INDENTATION]
        assert checker.is_safe_to_apply(PY_ORIGINAL, rewritten, "a.py")


class TestPhp:
    ORIGINAL = "<?php\nclass Foo {\n    public $a;\n    public function bar() { return 1; }\n}\n"

    def test_missing_php_binary_is_reported_but_not_blocking(self, checker):
        rewritten = self.ORIGINAL.replace("public $a", "public int $a")
        violations = checker.check(self.ORIGINAL, rewritten, "src/Foo.php")
        assert len(violations) == 1
        assert violations[0].kind == V.SYNTAX
        assert not violations[0].critical

    def test_php_lint_failure_is_critical(self, monkeypatch):
        monkeypatch.setattr(V.PhpLintValidator, "validate", lambda self, content: "unexpected '}'")
        checker = SafetyChecker()
        violations = checker.check(self.ORIGINAL, self.ORIGINAL + "}", "Foo.php")
        assert violations[0] == Violation(V.SYNTAX, "Syntax error: unexpected '}'", True)

    def test_function_count_uses_php_pattern(self, checker):
        rewritten = self.ORIGINAL.replace("    public function bar() { return 1; }\n", "")
        assert not checker.is_safe_to_apply(self.ORIGINAL, rewritten, "Foo.php")

    def test_interfaces_count_as_classes(self, checker):
        rewritten = self.ORIGINAL + "interface Baz {}\n"
        messages = [v.message for v in checker.check(self.ORIGINAL, rewritten, "Foo.php")]
        assert "Class count changed: 1 -> 2" in messages

    def test_cast_heuristic(self, checker):
        rewritten = self.ORIGINAL.replace("return 1;", "$x = (int) $y; return $x;")
        kinds = [v.kind for v in checker.check(self.ORIGINAL, rewritten, "Foo.php")]
        assert V.TYPE_SAFETY in kinds

    def test_doc_block_alignment(self, checker):
        rewritten = self.ORIGINAL.replace("    public $a;", "    /**\n      * @var int\n     */\n    public $a;")
        messages = [v.message for v in checker.check(self.ORIGINAL, rewritten, "Foo.php")]
        assert any("doc-block" in m for m in messages)


class TestProfiles:
    def test_profile_by_suffix(self, checker):
        assert checker.profile_for("a.py").name == "python"
        assert checker.profile_for("a.php").name == "php"
        assert checker.profile_for("README").name == "generic"

    def test_unknown_suffix_skips_syntax(self, checker):
        assert checker.check("class A {}", "class A { oops", "notes.txt") == []

    def test_similarity(self):
        assert V.similarity("abc", "abc") == 1.0
        assert 0.0 < V.similarity("abcd", "abce") < 1.0
