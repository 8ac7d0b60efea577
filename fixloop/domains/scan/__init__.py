from .registry import register, create
from .models import Diagnostic
from .parser import ErrorParser

# Ensure scanners are registered when package is imported
from . import phpstan  # noqa: F401

__all__ = ["register", "create", "Diagnostic", "ErrorParser"]
