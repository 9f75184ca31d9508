"""
External command execution for the share redirect control plane.

Packet-filter control, route checks and file attribute changes all go
through OS tools. This module wraps them behind a small runner with an
explicit timeout so a hung tool cannot block its caller forever.
"""

import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from .audit_logger import AuditLogger
from .exceptions import ResourceUnavailableError


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner:
    """Runs OS commands with captured output and a bounded wait."""

    COMPONENT = "commands"

    def __init__(
        self,
        timeout_seconds: float = 90.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            timeout_seconds: Upper bound on any single command
            logger: Optional audit logger for command tracing
        """
        self._timeout = timeout_seconds
        self._logger = logger

    def run(self, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        """
        Execute a command and report how it went.

        A non-zero exit status is returned, not raised; callers decide what
        a failure means for them.

        Args:
            args: Command and arguments
            timeout: Override for the runner's default timeout

        Returns:
            CommandResult with exit status and captured output

        Raises:
            ResourceUnavailableError: If the executable does not exist
        """
        argv = list(args)
        if self._logger:
            self._logger.debug(self.COMPONENT, f"Executing: {' '.join(argv)}")

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout if timeout is not None else self._timeout,
            )
        except FileNotFoundError as e:
            raise ResourceUnavailableError(
                code="missing_binary",
                message=f"Required command not found: {argv[0]}",
                details={"command": argv, "error": str(e)},
            )
        except subprocess.TimeoutExpired as e:
            if self._logger:
                self._logger.error(
                    self.COMPONENT,
                    f"Command timed out: {' '.join(argv)}",
                    {"timeout_seconds": e.timeout},
                )
            return CommandResult(args=argv, returncode=-1, timed_out=True)

        result = CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if self._logger and not result.ok:
            self._logger.debug(
                self.COMPONENT,
                f"Command failed: {' '.join(argv)}",
                {"returncode": result.returncode, "stderr": result.stderr.strip()},
            )
        return result
