from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List

from .models import Diagnostic


class Scanner(ABC):
    """Base scanner interface"""

    @abstractmethod
    def scan(self) -> List[Diagnostic]:
        """Run the analyzer over the configured paths and return its diagnostics"""
        raise NotImplementedError
