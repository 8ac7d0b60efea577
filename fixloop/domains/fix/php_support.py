# fixloop/domains/fix/php_support.py
"""Small regex helpers shared by the PHP fixers. Not a parser."""
from __future__ import annotations
import re
from typing import Optional, Tuple

FUNCTION_DECL = re.compile(r"\bfunction\s+&?\s*(?P<name>\w+)\s*\(")
NATIVE_TYPE = re.compile(r"^\??[A-Za-z_\\][\w\\]*(\|[A-Za-z_\\][\w\\]*)*$")

_INT = re.compile(r"^-?\d+$")
_FLOAT = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+[eE][+-]?\d+)$")
_STRING = re.compile(r"^(['\"]).*\1$", re.DOTALL)


def is_native_type(type_name: Optional[str]) -> bool:
    return bool(type_name) and bool(NATIVE_TYPE.match(type_name))


def infer_literal_type(value: str) -> Optional[str]:
    """Native type of a PHP literal default value, or None when unknown or null."""
    value = value.strip()
    lowered = value.lower()
    if _INT.match(value):
        return "int"
    if _FLOAT.match(value):
        return "float"
    if _STRING.match(value):
        return "string"
    if lowered in ("true", "false"):
        return "bool"
    if value.startswith("[") or lowered.startswith("array("):
        return "array"
    return None


def enclosing_function(content: str, offset: int) -> Optional[str]:
    name = None
    for match in FUNCTION_DECL.finditer(content, 0, offset):
        name = match.group("name")
    return name


def parameter_list_span(content: str, open_paren: int) -> Optional[Tuple[int, int]]:
    """(start, end) of the text between the parenthesis at ``open_paren`` and its partner."""
    depth = 0
    quote = None
    for index in range(open_paren, len(content)):
        char = content[index]
        if quote:
            if char == quote and content[index - 1] != "\\":
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return open_paren + 1, index
    return None
