# fixloop/domains/fix/property_type.py
from __future__ import annotations
import re
from typing import List, Optional

from fixloop.domains.scan.models import Diagnostic
from fixloop.services.log_service import logger
from .base import Fixer, FixContext
from .php_support import enclosing_function, infer_literal_type, is_native_type
from .registry import register

MESSAGE = re.compile(r"Property (?P<cls>[\w\\]+)::\$(?P<prop>\w+) has no type specified")


def _declaration(prop: str) -> re.Pattern:
    return re.compile(
        r"^(?P<indent>[ \t]*)(?P<mods>(?:(?:public|protected|private|static|readonly)\s+)+)"
        r"\$" + re.escape(prop) + r"\b(?P<rest>[^\n]*)$",
        re.MULTILINE,
    )


class MissingPropertyTypeFixer(Fixer):
    """Adds a native type to an untyped property.

    The type comes from the type cache when another file already taught us
    about this property, otherwise from the literal default value.
    """

    name = "missing_property_type"

    def supported_types(self) -> List[str]:
        return ["missing_property_type"]

    def can_fix(self, diagnostic: Diagnostic) -> bool:
        return bool(MESSAGE.search(diagnostic.message))

    def fix(self, content: str, diagnostic: Diagnostic, context: FixContext) -> str:
        found = MESSAGE.search(diagnostic.message)
        if not found:
            return content
        cls, prop = found.group("cls"), found.group("prop")

        match = self._find_declaration(content, prop, diagnostic.line)
        if match is None:
            logger.debug("No untyped declaration of %s::$%s found", cls, prop)
            return content

        type_name = self._cached_type(context, cls, prop) or self._literal_type(match.group("rest"))
        if not type_name:
            return content

        replacement = f"{match.group('indent')}{match.group('mods')}{type_name} ${prop}{match.group('rest')}"
        fixed = content[:match.start()] + replacement + content[match.end():]

        context.report_property_type(cls, prop, type_name, type_name)
        self._report_flows(fixed, cls, prop, context)
        return fixed

    @staticmethod
    def _find_declaration(content: str, prop: str, line: int) -> Optional[re.Match]:
        pattern = _declaration(prop)
        if line > 0:
            offset = 0
            for number, text in enumerate(content.splitlines(keepends=True), start=1):
                if number == line:
                    match = pattern.match(content, offset, offset + len(text.rstrip("\r\n")))
                    if match:
                        return match
                    break
                offset += len(text)
        return pattern.search(content)

    @staticmethod
    def _cached_type(context: FixContext, cls: str, prop: str) -> Optional[str]:
        info = context.lookup_property_type(cls, prop) or {}
        for candidate in (info.get("native"), info.get("phpDoc")):
            if is_native_type(candidate):
                return candidate
        return None

    @staticmethod
    def _literal_type(rest: str) -> Optional[str]:
        default = re.match(r"\s*=\s*(?P<value>.+?)\s*;", rest)
        return infer_literal_type(default.group("value")) if default else None

    @staticmethod
    def _report_flows(content: str, cls: str, prop: str, context: FixContext) -> None:
        assigned = re.compile(r"\$this->" + re.escape(prop) + r"\s*=\s*\$(?P<param>\w+)\s*;")
        for match in assigned.finditer(content):
            method = enclosing_function(content, match.start())
            if method:
                context.report_parameter_to_property(cls, method, match.group("param"), prop)
        returned = re.compile(r"\breturn\s+\$this->" + re.escape(prop) + r"\s*;")
        for match in returned.finditer(content):
            method = enclosing_function(content, match.start())
            if method:
                context.report_property_to_return(cls, prop, method)


register("missing_property_type", MissingPropertyTypeFixer)
