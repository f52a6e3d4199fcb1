"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides
"""

from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iptkit.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/iptkit/config.yaml")


class Protocol(str, Enum):
    """IP protocol family handled by a backend executable."""
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def command(self) -> str:
        """Default executable name for this protocol."""
        return "ip6tables" if self is Protocol.IPV6 else "iptables"

    @property
    def host_prefix(self) -> int:
        """Prefix length of a single host address."""
        return 128 if self is Protocol.IPV6 else 32


class BackendConfig(BaseModel):
    """Backend executable and invocation settings."""

    protocol: Protocol = Protocol.IPV4
    path: Optional[str] = None
    # Lock-wait seconds passed to --wait; 0 waits forever
    timeout: int = 0
    # Executor-side limit on a single invocation
    command_timeout: Optional[float] = None
    probe_capabilities: bool = True
    phrases_file: Optional[Path] = None

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("timeout must be 0 (wait forever) or a positive number of seconds")
        return v

    @field_validator("command_timeout")
    @classmethod
    def validate_command_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("command_timeout must be positive")
        return v


class EnvOverrides(BaseSettings):
    """Backend settings overridden from the environment (IPTKIT_*)."""

    model_config = SettingsConfigDict(env_prefix="IPTKIT_", extra="ignore")

    ipv4_path: Optional[str] = None
    ipv6_path: Optional[str] = None
    timeout: Optional[int] = None


class IptkitConfig(BaseModel):
    """Root configuration model, loaded from /etc/iptkit/config.yaml."""

    ipv4: BackendConfig = Field(default_factory=BackendConfig)
    ipv6: BackendConfig = Field(
        default_factory=lambda: BackendConfig(protocol=Protocol.IPV6)
    )

    # The section a backend is declared under decides its protocol
    @field_validator("ipv4")
    @classmethod
    def force_ipv4(cls, v: BackendConfig) -> BackendConfig:
        return v.model_copy(update={"protocol": Protocol.IPV4})

    @field_validator("ipv6")
    @classmethod
    def force_ipv6(cls, v: BackendConfig) -> BackendConfig:
        return v.model_copy(update={"protocol": Protocol.IPV6})

    @classmethod
    def load(cls, path: Path) -> "IptkitConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError as e:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Invalid configuration: {path} must contain a mapping",
            )

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "IptkitConfig":
        """Load configuration, falling back to defaults if file doesn't exist.

        Args:
            path: Path to configuration file (uses default if None)

        Returns:
            Loaded or default configuration
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[IptkitConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or IptkitConfig.load_or_default(self.config_path)
        self._env = EnvOverrides()

    @property
    def config(self) -> IptkitConfig:
        """Get the loaded configuration."""
        return self._config

    def backend(self, protocol: Protocol = Protocol.IPV4) -> BackendConfig:
        """Get backend settings for a protocol with environment overrides applied.

        Args:
            protocol: IPv4 or IPv6 backend

        Returns:
            BackendConfig for that protocol
        """
        base = self._config.ipv6 if protocol is Protocol.IPV6 else self._config.ipv4
        env_path = self._env.ipv6_path if protocol is Protocol.IPV6 else self._env.ipv4_path
        updates = {}
        if env_path is not None:
            updates["path"] = env_path
        if self._env.timeout is not None:
            updates["timeout"] = self._env.timeout
        if not updates:
            return base

        try:
            return BackendConfig(**{**base.model_dump(), **updates})
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid IPTKIT_* environment override",
                details=[str(e)],
            ) from e
