"""Argument vectors for backend invocations.

Every iptables call has the shape::

    -t <table> <verb> [chain] [position] [token ...] [--wait [seconds]]

The executable itself comes from the handle, which already encodes the
protocol (iptables vs ip6tables) and any forced mode.
"""

import re
from typing import Optional, Sequence

from iptkit.services.detector import Handle

# Tokens iptables prints in double quotes in -S and save output
_NEEDS_QUOTING = re.compile(r'[\s"\\]')


def wait_flags(handle: Handle) -> list[str]:
    """Get the lock-wait flags for a handle.

    Returns no flags when the backend lacks --wait; concurrent callers
    then race on the kernel tables.
    """
    if not handle.has_wait:
        return []
    if handle.timeout > 0 and handle.wait_supports_seconds:
        return ["--wait", str(handle.timeout)]
    return ["--wait"]


def build_args(
    handle: Handle,
    table: str,
    verb: str,
    chain: Optional[str] = None,
    *rule: str,
    position: Optional[int] = None,
) -> list[str]:
    """Build the argument vector for one logical operation.

    Args:
        handle: Detected backend
        table: Table name (filter, nat, ...)
        verb: Backend verb (-A, -I, -D, -S, ...)
        chain: Chain name, omitted for table-wide verbs
        *rule: Match/target tokens
        position: 1-based rule position for -I, -R, -S and -D by number

    Returns:
        Arguments without the executable
    """
    args = ["-t", table, verb]
    if chain is not None:
        args.append(chain)
    if position is not None:
        args.append(str(position))
    args.extend(rule)
    args.extend(wait_flags(handle))
    return args


def command_line(handle: Handle, args: Sequence[str]) -> list[str]:
    """Prepend the backend executable to an argument vector."""
    return [handle.path, *args]


def quote_token(token: str) -> str:
    """Quote a token the way iptables prints it and iptables-restore reads it."""
    if token and not _NEEDS_QUOTING.search(token):
        return token
    escaped = token.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def rule_line(chain: str, rule: Sequence[str]) -> str:
    """Canonical ``-A <chain> <tokens>`` text of a rule, quoted like ``-S`` output."""
    return " ".join(["-A", chain, *(quote_token(token) for token in rule)])


def restore_path(handle: Handle) -> str:
    """Get the bulk-restore executable matching the handle.

    ``iptables`` maps to ``iptables-restore``, ``ip6tables-nft`` to
    ``ip6tables-nft-restore`` and so on, next to the detected binary.
    """
    return f"{handle.path}-restore"


def restore_args(handle: Handle) -> list[str]:
    """Arguments for a bulk restore that leaves other chains alone.

    iptables-restore only learned --wait in 1.6.2.
    """
    if not handle.version.at_least(1, 6, 2):
        return ["--noflush"]
    return ["--noflush", *wait_flags(handle)]
