"""Core framework components for iptkit."""

from iptkit.core.exceptions import (
    IptkitError,
    ConfigurationError,
    ExecutionError,
    CommandTimeoutError,
    BackendError,
    ParseError,
    VersionParseError,
    StatParseError,
    DetectionError,
)

from iptkit.core.context import ExecutionContext, create_context
from iptkit.core.output import console, Console, Verbosity
from iptkit.core.config import AppConfig, BackendConfig, IptkitConfig, Protocol
from iptkit.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "IptkitError",
    "ConfigurationError",
    "ExecutionError",
    "CommandTimeoutError",
    "BackendError",
    "ParseError",
    "VersionParseError",
    "StatParseError",
    "DetectionError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "BackendConfig",
    "IptkitConfig",
    "Protocol",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
