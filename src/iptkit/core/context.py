"""Execution context shared by the executor and the iptables service.

A context bundles how much to report (console verbosity and color) with
where backend settings come from. Configuration is read on first use, so
building a context never touches the filesystem.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from iptkit.core.config import AppConfig, DEFAULT_CONFIG_PATH, IptkitConfig
from iptkit.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Reporting flags and configuration source for backend operations.

    Attributes:
        verbosity: Console level; VERBOSE shows skipped ensure-operations,
            DEBUG shows every backend invocation
        no_color: Disable colored console output
        config_path: YAML file read on first access to ``config``
        settings: Pre-built configuration used instead of config_path
    """

    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)
    settings: Optional[IptkitConfig] = None

    _config: Optional[AppConfig] = field(default=None, init=False, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(verbosity=self.verbosity, no_color=self.no_color)

    @property
    def config(self) -> AppConfig:
        """Configuration with environment overrides, loaded lazily."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path, config=self.settings)
        return self._config

    @property
    def console(self) -> Console:
        return self._console


def create_context(
    verbosity: int = Verbosity.NORMAL,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create a context that reports through the shared console.

    Args:
        verbosity: Console level from QUIET to DEBUG; out-of-range values
            are clamped by the console
        no_color: Disable colored output
        config: Configuration file (default /etc/iptkit/config.yaml)

    Returns:
        Execution context
    """
    return ExecutionContext(
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
