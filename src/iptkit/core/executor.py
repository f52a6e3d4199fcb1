"""Command execution with output capture.

Provides:
- Argument-vector execution without a shell
- Optional stdin payload (bulk restore)
- Timeout support

The executor never interprets exit status; callers decide what a non-zero
exit means. ``OSError`` from a missing or non-executable binary is left to
propagate unchanged.
"""

import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

from rich.markup import escape

from iptkit.core.context import ExecutionContext
from iptkit.core.exceptions import CommandTimeoutError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Runs backend commands and captures their output."""

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute a command and capture its output.

        Args:
            command: Command as list of strings
            input: Text written to the command's stdin
            timeout: Command timeout in seconds

        Returns:
            CommandResult with output, whatever the exit status

        Raises:
            CommandTimeoutError: If the command does not finish in time
            OSError: If the executable cannot be started
        """
        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {escape(cmd_display)}")

        try:
            result = subprocess.run(
                command,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(
                f"Command timed out after {timeout}s: {cmd_display}",
                command=cmd_display,
            ) from e

        if result.returncode != 0:
            self.ctx.console.debug(
                f"Exit {result.returncode}: {escape(result.stderr.strip())}"
            )

        return CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
