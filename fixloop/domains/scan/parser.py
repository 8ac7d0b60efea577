# fixloop/domains/scan/parser.py
from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Optional
from fixloop.domains.scan.models import Diagnostic, UNKNOWN_FILE
from fixloop.services.log_service import logger

TEXT_LINE = re.compile(r"^(?P<file>.+?):(?P<line>\d+):(?P<message>.+)$")
TABLE_LINE = re.compile(r"^\s*:?(?P<line>\d+)\s+(?P<message>\S.*)$")
FILE_HEADER = re.compile(r"^\s*(?:-+\s*)?(?:Line\s+)?(?P<file>\S+\.php)\s*$")


class ErrorParser:
    """Turns analyzer output (PHPStan JSON, or plain text as a fallback) into diagnostics."""

    def parse(self, output: str) -> List[Diagnostic]:
        output = (output or "").strip()
        if not output:
            return []
        try:
            data = json.loads(output)
        except ValueError:
            logger.debug("Analyzer output is not JSON, using text parser")
            return self.parse_text(output)
        if not isinstance(data, dict):
            return self.parse_text(output)
        return self.parse_json(data)

    def parse_json(self, data: Dict[str, Any]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        files = data.get("files") or {}
        if isinstance(files, dict):
            for file_path, file_data in files.items():
                messages = file_data.get("messages", []) if isinstance(file_data, dict) else []
                for message in messages:
                    diagnostic = self._from_message(file_path, message)
                    if diagnostic is not None:
                        diagnostics.append(diagnostic)

        for error in data.get("errors") or []:
            if isinstance(error, str):
                diagnostics.append(Diagnostic(file=UNKNOWN_FILE, line=0, message=error))
            elif isinstance(error, dict):
                diagnostic = self._from_message(error.get("file") or UNKNOWN_FILE, error)
                if diagnostic is not None:
                    diagnostics.append(diagnostic)
        return diagnostics

    def parse_text(self, output: str) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        current_file: Optional[str] = None
        for raw in output.splitlines():
            line = raw.rstrip()
            if not line.strip():
                continue
            match = TEXT_LINE.match(line)
            if match and not match.group("file").strip().isdigit():
                diagnostics.append(Diagnostic(
                    file=match.group("file").strip(),
                    line=int(match.group("line")),
                    message=match.group("message").strip(),
                ))
                continue
            header = FILE_HEADER.match(line)
            if header:
                current_file = header.group("file")
                continue
            table = TABLE_LINE.match(line)
            if table and current_file:
                diagnostics.append(Diagnostic(
                    file=current_file,
                    line=int(table.group("line")),
                    message=table.group("message").strip(),
                ))
        return diagnostics

    @staticmethod
    def _from_message(file_path: str, message: Any) -> Optional[Diagnostic]:
        if isinstance(message, str):
            return Diagnostic(file=file_path, line=0, message=message)
        if not isinstance(message, dict) or not message.get("message"):
            return None
        try:
            line = int(message.get("line") or 0)
        except (TypeError, ValueError):
            line = 0
        return Diagnostic(
            file=file_path,
            line=line,
            message=str(message["message"]),
            identifier=message.get("identifier"),
            severity=message.get("severity"),
        )
