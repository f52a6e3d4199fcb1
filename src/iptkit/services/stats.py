"""Parsing of ``iptables -L -n -v -x`` statistics.

Verbose listing output has nine whitespace-separated columns followed by a
free-form remainder::

    pkts bytes target prot opt in out source destination [options...]

``split_stat_lines`` turns listing text into string rows of exactly ten
columns. ``rule_stat_row`` derives the same row from a canonical rule line
that carries a ``-c <packets> <bytes>`` clause. ``parse_stat`` turns one
row into a typed Stat. It has no side effects, so rows re-parsed later
match the structured listing.
"""

import ipaddress
import re
import shlex
from dataclasses import dataclass
from typing import Sequence, Union

from iptkit.core.config import Protocol
from iptkit.core.exceptions import StatParseError
from iptkit.services.builder import quote_token
from iptkit.services.detector import Handle


Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

STAT_COLUMNS = 10
MAX_COUNTER = 2**64 - 1
COUNTER_PATTERN = re.compile(r"[0-9]+")

# ip6tables before 1.8.9 prints a blank "opt" column that splitting drops
BLANK_OPT = "  "

# Rule options that map onto a stats column
RULE_COLUMNS = {"-j": 2, "-p": 3, "-i": 5, "-o": 6, "-s": 7, "-d": 8}


@dataclass(frozen=True)
class Stat:
    """Counters and match summary of one rule."""
    packets: int
    bytes: int
    target: str
    protocol: str
    opt: str
    input: str
    output: str
    source: Network
    destination: Network
    options: str


def _is_address(text: str) -> bool:
    try:
        ipaddress.ip_network(text, strict=False)
    except ValueError:
        return False
    return True


def _with_prefix(address: str, protocol: Protocol) -> str:
    if "/" in address:
        return address
    return f"{address}/{protocol.host_prefix}"


def split_stat_lines(output: str, handle: Handle) -> list[list[str]]:
    """Split verbose listing output into ten-column rows.

    Args:
        output: Raw ``-L <chain> -n -v -x`` output
        handle: Backend that produced it (protocol and version quirks)

    Returns:
        One row per rule; the last column holds the joined remainder

    Raises:
        StatParseError: If a rule line has fewer than nine columns
    """
    lines = [line for line in output.split("\n") if line.strip()]

    # nf_tables may prepend "# Warning: iptables-legacy tables present"
    if lines and lines[0].startswith("#"):
        lines = lines[1:]

    blank_opt = (
        handle.protocol is Protocol.IPV6
        and not handle.version.at_least(1, 8, 9)
    )

    rows = []
    # Skip the "Chain X (...)" line and the column header
    for line in lines[2:]:
        fields = line.split()

        if blank_opt and len(fields) > 6 and _is_address(fields[6]):
            fields = fields[:4] + [BLANK_OPT] + fields[4:]

        if len(fields) < STAT_COLUMNS - 1:
            raise StatParseError(
                f"Expected at least {STAT_COLUMNS - 1} columns in stats line",
                row=fields,
            )

        fields[7] = _with_prefix(fields[7], handle.protocol)
        fields[8] = _with_prefix(fields[8], handle.protocol)
        rows.append(fields[:9] + [" ".join(fields[9:])])

    return rows


def _parse_counter(value: str, name: str, row: Sequence[str]) -> int:
    if not COUNTER_PATTERN.fullmatch(value):
        raise StatParseError(f"Invalid {name} counter: {value!r}", row=row)
    counter = int(value)
    if counter > MAX_COUNTER:
        raise StatParseError(f"{name.capitalize()} counter overflows 64 bits: {value}", row=row)
    return counter


def _parse_network(value: str, name: str, row: Sequence[str]) -> Network:
    if "/" not in value:
        raise StatParseError(f"Invalid {name} CIDR (no prefix): {value!r}", row=row)
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise StatParseError(f"Invalid {name} CIDR: {value!r}", row=row) from e


def parse_stat(row: Sequence[str]) -> Stat:
    """Parse one ten-column stats row.

    Args:
        row: pkts, bytes, target, prot, opt, in, out, source,
            destination, options

    Returns:
        Stat with numeric counters and parsed networks

    Raises:
        StatParseError: On a wrong column count, bad counter or bad CIDR
    """
    if len(row) != STAT_COLUMNS:
        raise StatParseError(
            f"Expected {STAT_COLUMNS} columns, got {len(row)}",
            row=row,
        )

    return Stat(
        packets=_parse_counter(row[0], "packets", row),
        bytes=_parse_counter(row[1], "bytes", row),
        target=row[2],
        protocol=row[3],
        opt=row[4],
        input=row[5],
        output=row[6],
        source=_parse_network(row[7], "source", row),
        destination=_parse_network(row[8], "destination", row),
        options=row[9],
    )


def rule_stat_row(line: str, protocol: Protocol) -> list[str]:
    """Derive a ten-column stats row from a canonical rule line.

    The line is ``-A <chain> <tokens>`` with a ``-c <packets> <bytes>``
    clause anywhere among the tokens, as returned by list_with_counters().
    Target, protocol, interfaces and addresses come from -j, -p, -i, -o,
    -s and -d; absent ones take the defaults the stats listing prints.
    Negated options and every other token stay in the remainder, quoted
    as in the rule line.

    Raises:
        StatParseError: If the line is not an -A line or has no counters
    """
    try:
        tokens = shlex.split(line)
    except ValueError as e:
        raise StatParseError(f"Unbalanced quoting in rule line: {line!r}") from e

    if len(tokens) < 2 or tokens[0] != "-A":
        raise StatParseError("Expected an -A rule line", row=tokens)

    anywhere = "::/0" if protocol is Protocol.IPV6 else "0.0.0.0/0"
    row = ["", "", "", "all", "--", "*", "*", anywhere, anywhere]
    counters = None
    remainder: list[str] = []

    args = tokens[2:]
    i = 0
    while i < len(args):
        token = args[i]
        if token == "-c" and counters is None and i + 2 < len(args):
            counters = args[i + 1:i + 3]
            i += 3
        elif token in RULE_COLUMNS and i + 1 < len(args) and remainder[-1:] != ["!"]:
            row[RULE_COLUMNS[token]] = args[i + 1]
            i += 2
        else:
            remainder.append(token)
            i += 1

    if counters is None:
        raise StatParseError("Rule line has no -c counters", row=tokens)

    row[0], row[1] = counters
    row[7] = _with_prefix(row[7], protocol)
    row[8] = _with_prefix(row[8], protocol)
    return row + [" ".join(quote_token(token) for token in remainder)]


def stat_from_rule_line(line: str, protocol: Protocol) -> Stat:
    """Parse a counter-carrying canonical rule line into a Stat."""
    return parse_stat(rule_stat_row(line, protocol))
