from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence
import subprocess
import re
from fixloop.errors import CommandNotFoundError, CommandTimeoutError
from fixloop.services.log_service import logger

ANSI_ESCAPE = re.compile(r'\x1b\[[0-9;]*m')


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CLIService:
    """Helper service for running CLI commands with logging."""

    @staticmethod
    def run_command(
        command: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command to completion, capturing stdout and stderr separately.

        Raises:
            CommandNotFoundError: the executable does not exist.
            CommandTimeoutError: the process outlived ``timeout`` seconds and was killed.
        """
        printable = " ".join(str(part) for part in command)
        logger.debug("Running command: %s", printable)
        try:
            completed = subprocess.run(
                list(command),
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {command[0]}")
            raise CommandNotFoundError(str(command[0])) from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command timed out after {timeout}s: {printable}")
            raise CommandTimeoutError(printable, timeout or 0.0) from e

        for line in completed.stderr.splitlines():
            clean_line = ANSI_ESCAPE.sub('', line).strip()
            if clean_line and not clean_line.startswith("{"):
                logger.debug(f"stderr: {clean_line}")
        return CommandResult(completed.returncode, completed.stdout, completed.stderr)
