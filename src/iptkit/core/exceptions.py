"""Custom exceptions for iptkit.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration

Invocation-level failures (missing executable, permission denied) are not
part of this hierarchy: they surface as the ``OSError`` raised by
``subprocess`` so callers can tell "the backend refused" from "the backend
could not be started".
"""

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from iptkit.services.errors import PhraseTable

# iptables exits 1 for a missing rule or chain, 2 for parameter problems
NOT_EXIST_STATUS = 1


class IptkitError(Exception):
    """Base exception for all iptkit errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(IptkitError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    - Phrase table file malformed
    """
    exit_code = 2


class ExecutionError(IptkitError):
    """Command execution failures.

    Raised when:
    - A backend command returns non-zero exit code
    - A backend command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class CommandTimeoutError(ExecutionError):
    """The executor gave up waiting for a command to finish."""
    exit_code = 6


class BackendError(ExecutionError):
    """The backend ran and exited non-zero.

    The raw diagnostic text is kept verbatim in ``message``; the
    not-exists classification is advisory and never changes the type.

    Attributes:
        message: Raw stderr text emitted by the backend
        exit_status: Backend exit status
        argv: Argument vector that produced the failure
    """

    def __init__(
        self,
        message: str,
        *,
        exit_status: int,
        argv: Sequence[str],
    ) -> None:
        super().__init__(
            message,
            command=" ".join(argv),
            return_code=exit_status,
        )
        self.exit_status = exit_status
        self.argv = list(argv)

    def __str__(self) -> str:
        return (
            f"running {self.argv}: exit status {self.exit_status}: "
            f"{self.message}"
        )

    def is_not_exist(self, phrases: Optional["PhraseTable"] = None) -> bool:
        """Check whether the failure means the chain or rule is absent.

        Only exit status 1 qualifies. Parameter problems exit 2 even when
        their text contains a not-exists phrase, e.g. "Couldn't load
        target `NOPE':No such file or directory".

        Args:
            phrases: Phrase table to match against (bundled table if None)
        """
        from iptkit.services.errors import is_not_exist

        if self.exit_status != NOT_EXIST_STATUS:
            return False
        return is_not_exist(self.message, phrases)


class ParseError(IptkitError):
    """Backend text could not be parsed into the expected shape."""
    exit_code = 8


class VersionParseError(ParseError):
    """Version output did not contain ``vMAJOR.MINOR.PATCH``."""


class StatParseError(ParseError):
    """A statistics row was malformed.

    Raised when:
    - Column count is not exactly ten
    - Counters are not unsigned 64-bit integers
    - Source or destination is not valid CIDR text
    """

    def __init__(
        self,
        message: str,
        *,
        row: Optional[Sequence[str]] = None,
        hint: Optional[str] = None,
    ) -> None:
        details = [f"Row: {list(row)!r}"] if row is not None else None
        super().__init__(message, hint=hint, details=details)
        self.row = list(row) if row is not None else None


class DetectionError(IptkitError):
    """Backend detection failed at startup.

    Raised when:
    - The executable cannot be found or started
    - Its version output cannot be parsed
    """
    exit_code = 9

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.path = path
