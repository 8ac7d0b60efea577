from .registry import register, create, FixerRegistry, default_registry
from .base import Fixer, FixContext, TypeFact, FlowReport

# Ensure fixers are registered when package is imported
from . import property_type  # noqa: F401
from . import parameter_type  # noqa: F401

__all__ = [
    "register", "create", "FixerRegistry", "default_registry",
    "Fixer", "FixContext", "TypeFact", "FlowReport",
]
