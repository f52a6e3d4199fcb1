"""Backend detection.

Resolves the iptables executable, reads its version and mode, and probes
for optional flags. The result is an immutable Handle that every later
operation reads from; detection runs once per handle.
"""

import os
import re
import shutil
from dataclasses import dataclass
from typing import Optional

from iptkit.core.config import Protocol
from iptkit.core.exceptions import DetectionError, VersionParseError
from iptkit.core.executor import CommandExecutor


MODE_LEGACY = "legacy"
MODE_NFTABLES = "nf_tables"

VERSION_PATTERN = re.compile(r"v([0-9]+)\.([0-9]+)\.([0-9]+)(?:\s+\((\w+))?")

# getopt and xtables phrasings for a flag the binary does not know
UNSUPPORTED_OPTION_PHRASES = (
    "unrecognized option",
    "unknown option",
    "invalid option",
)

CHECK_PROBE = ["-t", "filter", "-C", "INPUT", "-j", "ACCEPT"]
WAIT_PROBE = ["-t", "filter", "-S", "INPUT", "--wait"]


@dataclass(frozen=True)
class VersionInfo:
    """Backend version triple and implementation family."""
    major: int
    minor: int
    patch: int
    mode: str = MODE_LEGACY

    def at_least(self, major: int, minor: int, patch: int) -> bool:
        """Check if this version is major.minor.patch or newer."""
        return (self.major, self.minor, self.patch) >= (major, minor, patch)

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch} ({self.mode})"


@dataclass(frozen=True)
class Handle:
    """Immutable description of one detected backend.

    Attributes:
        protocol: IPv4 or IPv6
        path: Resolved executable path
        version: Version triple and mode
        has_check: Backend supports the -C check verb
        has_wait: Backend supports --wait for the xtables lock
        wait_supports_seconds: --wait accepts a number of seconds
        has_random_fully: Backend supports --random-fully
        timeout: Lock-wait seconds; 0 waits forever
    """
    protocol: Protocol
    path: str
    version: VersionInfo
    has_check: bool
    has_wait: bool
    wait_supports_seconds: bool
    has_random_fully: bool
    timeout: int = 0

    @property
    def mode(self) -> str:
        return self.version.mode


def extract_version(text: str) -> VersionInfo:
    """Parse ``<name> vMAJOR.MINOR.PATCH[ (MODE)]``.

    Args:
        text: Output of ``iptables --version``

    Returns:
        VersionInfo; mode is legacy when no parenthetical is present

    Raises:
        VersionParseError: If no version triple is found
    """
    match = VERSION_PATTERN.search(text)
    if match is None:
        raise VersionParseError(
            f"No iptables version found in {text.strip()!r}",
        )

    major, minor, patch, mode = match.groups()
    return VersionInfo(int(major), int(minor), int(patch), mode or MODE_LEGACY)


def mode_from_path(path: str) -> Optional[str]:
    """Get the mode forced by an executable name like ``iptables-nft``."""
    name = os.path.basename(path)
    if "-legacy" in name:
        return MODE_LEGACY
    if "-nft" in name:
        return MODE_NFTABLES
    return None


def resolve_path(protocol: Protocol, path: Optional[str] = None) -> str:
    """Resolve the backend executable.

    Args:
        protocol: Selects iptables or ip6tables when no path is given
        path: Explicit executable name or path

    Returns:
        Absolute path of the executable

    Raises:
        DetectionError: If the executable cannot be found
    """
    name = path or protocol.command
    resolved = shutil.which(name)
    if resolved is None:
        raise DetectionError(
            f"Backend executable not found: {name}",
            path=name,
            hint="Install iptables or set the backend path in the configuration",
        )
    return resolved


def probe_option(
    executor: CommandExecutor,
    path: str,
    args: list[str],
    timeout: Optional[float] = None,
) -> bool:
    """Check whether the backend accepts an optional flag.

    Any outcome other than an explicit "unrecognized option" style
    failure counts as support.
    """
    result = executor.run([path] + args, timeout=timeout)
    if result.success:
        return True
    stderr = result.stderr.lower()
    return not any(phrase in stderr for phrase in UNSUPPORTED_OPTION_PHRASES)


def detect(
    executor: CommandExecutor,
    protocol: Protocol = Protocol.IPV4,
    path: Optional[str] = None,
    *,
    timeout: int = 0,
    probe: bool = True,
    command_timeout: Optional[float] = None,
) -> Handle:
    """Detect backend version, mode and capabilities.

    Args:
        executor: Command executor used for the probes
        protocol: IPv4 or IPv6 backend
        path: Explicit executable (default: iptables/ip6tables on PATH)
        timeout: Lock-wait seconds for later calls; 0 waits forever
        probe: Probe optional flags instead of inferring them from the version
        command_timeout: Executor timeout for each probe

    Returns:
        Populated Handle

    Raises:
        DetectionError: If the backend cannot be run or its version parsed
    """
    resolved = resolve_path(protocol, path)

    try:
        result = executor.run([resolved, "--version"], timeout=command_timeout)
        version = extract_version(result.stdout or result.stderr)

        forced = mode_from_path(resolved)
        if forced is not None and forced != version.mode:
            version = VersionInfo(version.major, version.minor, version.patch, forced)

        if probe:
            has_check = probe_option(executor, resolved, CHECK_PROBE, command_timeout)
            has_wait = probe_option(executor, resolved, WAIT_PROBE, command_timeout)
        else:
            has_check = version.at_least(1, 4, 11)
            has_wait = version.at_least(1, 4, 20)
    except VersionParseError as e:
        raise DetectionError(
            f"Cannot determine version of {resolved}",
            path=resolved,
            details=[e.message],
        ) from e
    except OSError as e:
        raise DetectionError(
            f"Cannot run {resolved}: {e.strerror or e}",
            path=resolved,
            hint="Check that the executable exists and is executable",
        ) from e

    handle = Handle(
        protocol=protocol,
        path=resolved,
        version=version,
        has_check=has_check,
        has_wait=has_wait,
        wait_supports_seconds=version.at_least(1, 6, 0),
        has_random_fully=version.at_least(1, 6, 2),
        timeout=timeout,
    )

    executor.ctx.console.summary(
        "Backend",
        {
            "Path": handle.path,
            "Version": str(handle.version),
            "Check verb (-C)": handle.has_check,
            "Lock wait (--wait)": handle.has_wait,
        },
    )
    if not handle.has_wait:
        executor.ctx.console.warn(
            f"{handle.path} does not support --wait; concurrent changes may fail on the xtables lock"
        )
    return handle
