from __future__ import annotations
from typing import Dict, List, Optional, Type

from fixloop.domains.scan.models import Diagnostic
from fixloop.services.log_service import logger
from .base import Fixer

_registry: Dict[str, Type[Fixer]] = {}


def register(name: str, cls: Type[Fixer]) -> None:
    """Register a fixer class"""
    _registry[name] = cls


def create(name: str, *args, **kwargs) -> Fixer:
    """Create a fixer instance by name"""
    if name not in _registry:
        raise ValueError(f"Fixer '{name}' is not registered")
    return _registry[name](*args, **kwargs)


def available() -> List[str]:
    return sorted(_registry)


class FixerRegistry:
    """Resolves the fixer for a diagnostic: by category first, then by asking every fixer."""

    def __init__(self, fixers: Optional[List[Fixer]] = None):
        self._fixers: List[Fixer] = []
        self._by_type: Dict[str, List[Fixer]] = {}
        for fixer in fixers or []:
            self.register(fixer)

    def register(self, fixer: Fixer) -> None:
        self._fixers.append(fixer)
        for category in fixer.supported_types():
            self._by_type.setdefault(category, []).append(fixer)

    def get_fixer_for(self, diagnostic: Diagnostic) -> Optional[Fixer]:
        for fixer in self._by_type.get(diagnostic.category, []):
            if fixer.can_fix(diagnostic):
                return fixer
        for fixer in self._fixers:
            if fixer.can_fix(diagnostic):
                return fixer
        return None

    def __len__(self) -> int:
        return len(self._fixers)

    def __iter__(self):
        return iter(self._fixers)


def default_registry() -> FixerRegistry:
    registry = FixerRegistry([create(name) for name in available()])
    logger.debug("Fixer registry loaded: %s", ", ".join(available()))
    return registry
