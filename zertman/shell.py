import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ShellResult:
    """Outcome of a single privileged command."""

    command: str
    returncode: int
    lines: List[str] = field(default_factory=list)
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ShellError(Exception):
    """Raised when a privileged command reports failure."""

    def __init__(self, result: ShellResult):
        self.result = result
        message = f"'{result.command}' failed with exit code {result.returncode}"
        if result.stderr:
            message += f": {result.stderr.strip()}"
        super().__init__(message)


def quote(*parts: str) -> str:
    """Join command arguments into a single shell-safe command line"""
    return " ".join(shlex.quote(str(part)) for part in parts)


class RootShell:
    def __init__(
        self,
        su_binary: str = "su",
        timeout: Optional[float] = None,
        retries: int = 1,
    ):
        """
        Runs command lines as root through the device's su binary.
        Args:
            su_binary str: Name or path of the su executable.
            timeout float: Seconds before a command is abandoned. None waits forever.
            retries int: Attempts per command. 1 means a failure is reported as is.
        """
        self.su_binary = su_binary
        self.timeout = timeout
        self.retries = max(1, retries)

    def run(self, command: str) -> ShellResult:
        """
        Execute a command line with elevated privileges.
        Args:
            command str: The shell command line to run.
        Returns:
            ShellResult: Captured output lines and exit status. Never raises
            for a failing command, a missing su binary or a timeout.
        """
        result = ShellResult(command=command, returncode=-1)
        for attempt in range(1, self.retries + 1):
            logger.debug("su [%d/%d]: %s", attempt, self.retries, command)
            result = self._run_once(command)
            if result.ok:
                if attempt > 1:
                    logger.info("'%s' succeeded after %d attempts", command, attempt)
                return result
            logger.warning(
                "'%s' exited with %d: %s",
                command,
                result.returncode,
                result.stderr.strip()[:200],
            )
        return result

    def is_available(self) -> bool:
        """Check that su grants uid 0"""
        result = self.run("id")
        return result.ok and any("uid=0" in line for line in result.lines)

    def _run_once(self, command: str) -> ShellResult:
        try:
            proc = subprocess.run(
                [self.su_binary, "-c", command],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return ShellResult(
                command=command,
                returncode=-1,
                stderr=f"timed out after {self.timeout}s",
            )
        except OSError as e:
            return ShellResult(command=command, returncode=-1, stderr=str(e))

        return ShellResult(
            command=command,
            returncode=proc.returncode,
            lines=proc.stdout.splitlines(),
            stderr=proc.stderr,
        )
