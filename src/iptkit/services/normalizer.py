"""Normalization of rule listings across backend modes.

``iptables -S -v`` in nf_tables mode prints counters iptables-save style,
as a ``[packets:bytes]`` prefix, while legacy mode appends ``-c packets
bytes``. Lines are rewritten to the legacy form so callers see a single
syntax.
"""

import re

COUNTER_PREFIX = re.compile(r"^\[([0-9]+):([0-9]+)\] ")


def normalize(line: str) -> str:
    """Rewrite one listing line into canonical form.

    Lines without a bracketed counter prefix are returned unchanged, so the
    function is idempotent.

    >>> normalize("[99:42] -A foo -j ACCEPT")
    '-A foo -j ACCEPT -c 99 42'
    """
    match = COUNTER_PREFIX.match(line)
    if match is None:
        return line
    packets, octets = match.groups()
    return f"{line[match.end():]} -c {packets} {octets}"


def normalize_lines(output: str) -> list[str]:
    """Split listing output into canonical lines.

    The trailing empty line left by the final newline is dropped.
    """
    lines = output.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [normalize(line) for line in lines]
