# fixloop/domains/fix/base.py
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fixloop.domains.scan.models import Diagnostic
from fixloop.repositories.flow_cache import FlowCache, GENERIC, PARAM_TO_PROPERTY, PROPERTY_TO_RETURN
from fixloop.repositories.type_cache import TypeCache


@dataclass
class TypeFact:
    subject: str
    member: str
    type_info: Dict[str, Any]
    file: str


@dataclass(frozen=True)
class FlowReport:
    origin_type: str
    origin_member: str
    dest_type: str
    dest_member: str
    kind: str = GENERIC


@dataclass
class FixContext:
    """What a fixer may read (caches) and report (type facts, flows) while rewriting one file.

    Reports are only written to the caches once the rewrite has been applied.
    """

    file_path: str
    type_cache: Optional[TypeCache] = None
    flow_cache: Optional[FlowCache] = None
    type_facts: List[TypeFact] = field(default_factory=list)
    flow_edges: List[FlowReport] = field(default_factory=list)

    def report_type(self, subject: str, member: str, type_info: Dict[str, Any]) -> None:
        self.type_facts.append(TypeFact(subject, member, type_info, self.file_path))

    def report_property_type(self, cls: str, prop: str, doc_type: Optional[str], native_type: Optional[str] = None) -> None:
        self.report_type(cls, "$" + prop.lstrip("$"), {"phpDoc": doc_type, "native": native_type})

    def report_method_types(
        self,
        cls: str,
        method: str,
        param_types: Dict[str, Any],
        return_type: Optional[str],
        doc_return_type: Optional[str] = None,
    ) -> None:
        self.report_type(cls, f"{method}()", {
            "params": param_types,
            "return": {"native": return_type, "phpDoc": doc_return_type},
        })

    def report_flow(self, origin_type: str, origin_member: str, dest_type: str, dest_member: str, kind: str = GENERIC) -> None:
        self.flow_edges.append(FlowReport(origin_type, origin_member, dest_type, dest_member, kind))

    def report_parameter_to_property(self, cls: str, method: str, param: str, prop: str) -> None:
        self.report_flow(cls, f"{method}::${param.lstrip('$')}", cls, "$" + prop.lstrip("$"), PARAM_TO_PROPERTY)

    def report_property_to_return(self, cls: str, prop: str, method: str) -> None:
        self.report_flow(cls, "$" + prop.lstrip("$"), cls, f"{method}::return", PROPERTY_TO_RETURN)

    def lookup_type(self, subject: str, member: str) -> Optional[Dict[str, Any]]:
        if self.type_cache is None:
            return None
        return self.type_cache.get_type(subject, member)

    def lookup_property_type(self, cls: str, prop: str) -> Optional[Dict[str, Any]]:
        if self.type_cache is None:
            return None
        return self.type_cache.get_property_type(cls, prop)

    def lookup_parameter_type(self, cls: str, method: str, param: str) -> Optional[str]:
        if self.type_cache is None or self.flow_cache is None:
            return None
        return self.flow_cache.infer_parameter_type_from_flow(cls, method, param, self.type_cache)


class Fixer(ABC):
    """Base fixer interface: a pure text rewrite for one diagnostic."""

    name: str = "fixer"

    @abstractmethod
    def supported_types(self) -> List[str]:
        """Diagnostic categories this fixer handles"""
        raise NotImplementedError

    def can_fix(self, diagnostic: Diagnostic) -> bool:
        return diagnostic.category in self.supported_types()

    @abstractmethod
    def fix(self, content: str, diagnostic: Diagnostic, context: FixContext) -> str:
        """Return the rewritten file content; returning ``content`` unchanged means "could not fix"."""
        raise NotImplementedError
