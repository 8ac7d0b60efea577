# fixloop/domains/scan/phpstan.py
from __future__ import annotations
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from fixloop.errors import (
    AnalyzerError,
    AnalyzerTimeoutError,
    CommandNotFoundError,
    CommandTimeoutError,
    OptionValidationError,
    PathValidationError,
)
from fixloop.repositories.secure_files import validate_path
from fixloop.services.cli_service import CLIService
from fixloop.services.log_service import logger
from .base import Scanner
from .models import Diagnostic
from .parser import ErrorParser
from .registry import register

ALLOWED_OPTIONS = frozenset({
    "configuration",
    "memory-limit",
    "autoload-file",
    "xdebug",
    "debug",
    "no-interaction",
})
DEFAULT_TIMEOUT = 300.0
MAX_LEVEL = 10

OptionValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class AnalyzeRequest(BaseModel):
    """Validated arguments for one analyzer invocation."""

    model_config = ConfigDict(extra="forbid")

    paths: List[str] = Field(min_length=1)
    level: int = Field(ge=0, le=MAX_LEVEL)
    options: Dict[str, OptionValue] = Field(default_factory=dict)

    @field_validator("paths")
    @classmethod
    def _check_paths(cls, paths: List[str]) -> List[str]:
        for path in paths:
            validate_path(path)
            if path.startswith("-"):
                raise ValueError(f"Path may not start with '-': {path}")
        return paths

    @field_validator("options")
    @classmethod
    def _check_options(cls, options: Dict[str, OptionValue]) -> Dict[str, OptionValue]:
        unknown = sorted(set(options) - ALLOWED_OPTIONS)
        if unknown:
            raise ValueError(f"Unsupported analyzer option(s): {', '.join(unknown)}")
        for key, value in options.items():
            if isinstance(value, str) and "\0" in value:
                raise ValueError(f"Option {key} contains a NUL byte")
        return options

    def option_args(self) -> List[str]:
        args: List[str] = []
        for key in sorted(self.options):
            value = self.options[key]
            if value is True:
                args.append(f"--{key}")
            elif value is False:
                continue
            else:
                args.append(f"--{key}={value}")
        return args


def find_phpstan_binary(project_root: Union[str, os.PathLike]) -> Optional[str]:
    local = Path(project_root) / "vendor" / "bin" / "phpstan"
    if local.is_file() and os.access(local, os.X_OK):
        return str(local)
    return shutil.which("phpstan")


def extract_json_document(stdout: str, stderr: str) -> Optional[str]:
    """PHPStan may print the JSON report on stderr when a progress bar is forced; check it first."""
    for line in (stderr or "").splitlines():
        if line.strip().startswith("{"):
            return line.strip()
    stripped = (stdout or "").strip()
    if stripped.startswith("{"):
        return stripped
    for line in stripped.splitlines():
        if line.strip().startswith("{"):
            return line.strip()
    return None


class PHPStanScanner(Scanner):
    """Runs ``phpstan analyse`` as a subprocess and parses its JSON report."""

    def __init__(
        self,
        project_root: str,
        paths: Optional[List[str]] = None,
        level: int = 5,
        options: Optional[Dict[str, OptionValue]] = None,
        binary: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.project_root = os.path.abspath(project_root)
        self.paths = list(paths or ["src"])
        self.level = level
        self.options = dict(options or {})
        self.binary = binary
        self.timeout = timeout
        self.parser = ErrorParser()

    def scan(self) -> List[Diagnostic]:
        document = self.analyze(self.paths, self.level, self.options)
        diagnostics = self.parser.parse(document)
        logger.info("PHPStan reported %s error(s)", len(diagnostics))
        return diagnostics

    def analyze(self, paths: List[str], level: int, options: Optional[Dict[str, OptionValue]] = None) -> str:
        """Run the analyzer and return its raw report (JSON when available)."""
        request = self.validate_request(paths, level, options or {})

        binary = self.binary or find_phpstan_binary(self.project_root)
        if not binary:
            raise AnalyzerError("PHPStan executable not found (looked in vendor/bin and PATH)")

        command = [
            binary, "analyse",
            f"--level={request.level}",
            "--no-progress",
            "--error-format=json",
            *request.option_args(),
            *request.paths,
        ]
        logger.info("Running PHPStan level %s on %s", request.level, ", ".join(request.paths))
        try:
            result = CLIService.run_command(command, cwd=self.project_root, timeout=self.timeout)
        except CommandTimeoutError as e:
            raise AnalyzerTimeoutError(self.timeout) from e
        except CommandNotFoundError as e:
            raise AnalyzerError(str(e)) from e

        document = extract_json_document(result.stdout, result.stderr)
        if document is not None:
            return document
        # exit code 1 means "errors found"; anything else without a report is a crash
        if result.returncode not in (0, 1):
            detail = (result.stderr or result.stdout).strip()[-500:]
            raise AnalyzerError(f"PHPStan exited with code {result.returncode}: {detail}")
        return result.stdout

    @staticmethod
    def validate_request(paths: List[str], level: int, options: Dict[str, OptionValue]) -> AnalyzeRequest:
        try:
            return AnalyzeRequest(paths=paths, level=level, options=options)
        except PydanticValidationError as e:
            fields = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            message = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
            if "paths" in fields:
                raise PathValidationError(message) from e
            raise OptionValidationError(message) from e


register("phpstan", PHPStanScanner)
