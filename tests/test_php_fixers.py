"""Tests for the PHP type fixers and the fixer registry."""
from __future__ import annotations

import pytest

from fixloop.domains.fix import FixContext, FixerRegistry, default_registry
from fixloop.domains.fix.parameter_type import MissingParameterTypeFixer
from fixloop.domains.fix.php_support import enclosing_function, infer_literal_type, parameter_list_span
from fixloop.domains.fix.property_type import MissingPropertyTypeFixer
from fixloop.domains.scan.models import Diagnostic
from fixloop.repositories.flow_cache import PARAM_TO_PROPERTY, PROPERTY_TO_RETURN, FlowCache
from fixloop.repositories.type_cache import TypeCache

USER_PHP = """<?php
class User
{
    private $name;
    protected $count = 0;

    public function __construct($name)
    {
        $this->name = $name;
    }

    public function getName()
    {
        return $this->name;
    }
}
"""


@pytest.fixture
def user_file(project):
    path = project / "User.php"
    path.write_text(USER_PHP)
    return path


@pytest.fixture
def caches(project):
    return (
        TypeCache(project / ".fixloop-cache.json", enable_locking=False),
        FlowCache(project / ".fixloop-flow-cache.json", enable_locking=False),
    )


def property_diagnostic(prop, line):
    return Diagnostic("User.php", line, f"Property User::${prop} has no type specified.", "missingType.property")


def parameter_diagnostic(method, param, line):
    return Diagnostic(
        "User.php", line, f"Method User::{method}() has parameter ${param} with no type specified.",
        "missingType.parameter",
    )


class TestPropertyTypeFixer:
    def test_types_from_literal_default(self, user_file):
        context = FixContext(str(user_file))
        fixed = MissingPropertyTypeFixer().fix(USER_PHP, property_diagnostic("count", 5), context)
        assert "    protected int $count = 0;\n" in fixed
        assert fixed.count("\n") == USER_PHP.count("\n")
        [fact] = context.type_facts
        assert (fact.subject, fact.member, fact.type_info) == ("User", "$count", {"phpDoc": "int", "native": "int"})

    def test_types_from_cache(self, user_file, caches):
        type_cache, flow_cache = caches
        type_cache.set_file_path_for_class("User", user_file)
        type_cache.set_property_type("User", "name", "string", "string")
        context = FixContext(str(user_file), type_cache, flow_cache)

        fixed = MissingPropertyTypeFixer().fix(USER_PHP, property_diagnostic("name", 4), context)
        assert "    private string $name;\n" in fixed

    def test_reports_flows(self, user_file, caches):
        type_cache, flow_cache = caches
        type_cache.set_file_path_for_class("User", user_file)
        type_cache.set_property_type("User", "name", "string")
        context = FixContext(str(user_file), type_cache, flow_cache)

        MissingPropertyTypeFixer().fix(USER_PHP, property_diagnostic("name", 4), context)
        flows = {(f.origin_member, f.dest_member, f.kind) for f in context.flow_edges}
        assert flows == {
            ("__construct::$name", "$name", PARAM_TO_PROPERTY),
            ("$name", "getName::return", PROPERTY_TO_RETURN),
        }

    def test_unknown_type_leaves_content_alone(self, user_file):
        context = FixContext(str(user_file))
        fixed = MissingPropertyTypeFixer().fix(USER_PHP, property_diagnostic("name", 4), context)
        assert fixed == USER_PHP
        assert context.type_facts == []

    def test_message_must_match(self):
        fixer = MissingPropertyTypeFixer()
        assert fixer.can_fix(property_diagnostic("name", 4))
        assert not fixer.can_fix(Diagnostic("User.php", 4, "Undefined variable: $x"))


class TestParameterTypeFixer:
    def test_types_parameter_through_flow(self, user_file, caches):
        type_cache, flow_cache = caches
        type_cache.set_file_path_for_class("User", user_file)
        type_cache.set_property_type("User", "name", "string", "string")
        flow_cache.record_parameter_to_property_flow("User", "__construct", "name", "name")
        context = FixContext(str(user_file), type_cache, flow_cache)

        fixed = MissingParameterTypeFixer().fix(USER_PHP, parameter_diagnostic("__construct", "name", 7), context)
        assert "public function __construct(string $name)" in fixed
        [fact] = context.type_facts
        assert fact.member == "__construct::$name"

    def test_without_flow_nothing_changes(self, user_file, caches):
        context = FixContext(str(user_file), *caches)
        fixed = MissingParameterTypeFixer().fix(USER_PHP, parameter_diagnostic("__construct", "name", 7), context)
        assert fixed == USER_PHP

    def test_without_caches_nothing_changes(self, user_file):
        context = FixContext(str(user_file))
        fixed = MissingParameterTypeFixer().fix(USER_PHP, parameter_diagnostic("__construct", "name", 7), context)
        assert fixed == USER_PHP


class TestPhpSupport:
    @pytest.mark.parametrize("value, expected", [
        ("0", "int"), ("-3", "int"), ("1.5", "float"), ("'x'", "string"), ('"y"', "string"),
        ("true", "bool"), ("FALSE", "bool"), ("[]", "array"), ("array(1)", "array"),
        ("null", None), ("self::X", None),
    ])
    def test_infer_literal_type(self, value, expected):
        assert infer_literal_type(value) == expected

    def test_enclosing_function(self):
        offset = USER_PHP.index("return $this->name")
        assert enclosing_function(USER_PHP, offset) == "getName"
        assert enclosing_function(USER_PHP, 0) is None

    def test_parameter_list_span_handles_nesting(self):
        source = "function f($a = array(1, 2), $b = ')') {}"
        start, end = parameter_list_span(source, source.index("("))
        assert source[start:end] == "$a = array(1, 2), $b = ')'"


class TestRegistry:
    def test_default_registry_knows_php_fixers(self):
        registry = default_registry()
        assert isinstance(registry.get_fixer_for(property_diagnostic("name", 4)), MissingPropertyTypeFixer)
        assert isinstance(
            registry.get_fixer_for(parameter_diagnostic("__construct", "name", 7)), MissingParameterTypeFixer
        )
        assert registry.get_fixer_for(Diagnostic("User.php", 1, "Undefined variable: $x")) is None

    def test_falls_back_to_can_fix(self, marker_fixer):
        registry = FixerRegistry([marker_fixer])
        diagnostic = Diagnostic("a.py", 1, "Missing marker in a.py", "marker.missing")
        assert registry.get_fixer_for(diagnostic) is marker_fixer
        assert len(registry) == 1
