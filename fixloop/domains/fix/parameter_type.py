# fixloop/domains/fix/parameter_type.py
from __future__ import annotations
import re
from typing import List

from fixloop.domains.scan.models import Diagnostic
from .base import Fixer, FixContext
from .php_support import is_native_type, parameter_list_span
from .registry import register

MESSAGE = re.compile(
    r"Method (?P<cls>[\w\\]+)::(?P<method>\w+)\(\) has parameter \$(?P<param>\w+) with no type specified"
)


class MissingParameterTypeFixer(Fixer):
    """Types a parameter from the property it flows into, using the flow and type caches."""

    name = "missing_param_type"

    def supported_types(self) -> List[str]:
        return ["missing_param_type"]

    def can_fix(self, diagnostic: Diagnostic) -> bool:
        return bool(MESSAGE.search(diagnostic.message))

    def fix(self, content: str, diagnostic: Diagnostic, context: FixContext) -> str:
        found = MESSAGE.search(diagnostic.message)
        if not found:
            return content
        cls, method, param = found.group("cls"), found.group("method"), found.group("param")

        type_name = context.lookup_parameter_type(cls, method, param)
        if not is_native_type(type_name):
            return content

        signature = re.search(r"\bfunction\s+&?\s*" + re.escape(method) + r"\s*\(", content)
        if not signature:
            return content
        span = parameter_list_span(content, signature.end() - 1)
        if span is None:
            return content
        start, end = span

        untyped = re.compile(r"(?P<lead>(?:^|,)\s*)(?P<prefix>&?(?:\.\.\.)?)\$" + re.escape(param) + r"\b")
        params = content[start:end]
        match = untyped.search(params)
        if not match:
            return content

        typed = f"{match.group('lead')}{type_name} {match.group('prefix')}${param}"
        params = params[:match.start()] + typed + params[match.end():]
        context.report_type(cls, f"{method}::${param}", {"phpDoc": None, "native": type_name})
        return content[:start] + params + content[end:]


register("missing_param_type", MissingParameterTypeFixer)
