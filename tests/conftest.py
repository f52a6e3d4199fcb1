"""Shared fixtures: an in-memory stand-in for the iptables binary.

FakeIptables plays the role of the command executor. It keeps tables,
chains and rules in memory and answers argument vectors with the same
text and exit codes iptables prints, so the service can be exercised
without root or a real kernel.
"""

import shlex
from typing import Optional
from unittest.mock import Mock

import pytest

from iptkit.core.config import Protocol
from iptkit.core.executor import CommandResult
from iptkit.services.detector import Handle, VersionInfo


NO_CHAIN = "iptables: No chain/target/match by that name.\n"
BAD_RULE = "iptables: Bad rule (does a matching rule exist in that chain?).\n"
CHAIN_EXISTS = "iptables: Chain already exists.\n"
NOT_EMPTY = "iptables: Directory not empty.\n"
BAD_INDEX = "iptables: Index of insertion too big.\n"

BUILTIN_CHAINS = {
    "filter": ["INPUT", "FORWARD", "OUTPUT"],
    "nat": ["PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"],
}


class FakeIptables:
    """In-memory iptables answering executor calls."""

    def __init__(
        self,
        version: str = "iptables v1.8.9 (legacy)",
        protocol: Protocol = Protocol.IPV4,
        supports_check: bool = True,
        supports_wait: bool = True,
    ) -> None:
        self.version_text = version
        self.protocol = protocol
        self.supports_check = supports_check
        self.supports_wait = supports_wait
        self.nft = "nf_tables" in version
        self.calls: list[list[str]] = []
        self.restore_payloads: list[str] = []
        # Counters reported for every rule by -v listings and -L stats
        self.packets = 0
        self.bytes = 0
        self.ctx = Mock()
        self.tables: dict[str, dict[str, list[list[str]]]] = {
            table: {chain: [] for chain in chains}
            for table, chains in BUILTIN_CHAINS.items()
        }
        self.policies = {
            (table, chain): "ACCEPT"
            for table, chains in BUILTIN_CHAINS.items()
            for chain in chains
        }

    # -- executor interface -------------------------------------------------

    def run(
        self,
        command: list[str],
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        self.calls.append(list(command))
        path, args = command[0], list(command[1:])

        if path.endswith("-restore"):
            self.restore_payloads.append(input or "")
            return self._restore(command, input or "")

        if args == ["--version"]:
            return self._ok(command, self.version_text + "\n")

        if "--wait" in args:
            if not self.supports_wait:
                return self._fail(command, "iptables: unrecognized option '--wait'\n", 2)
            index = args.index("--wait")
            args = args[:index]

        table = "filter"
        if args[:1] == ["-t"]:
            table, args = args[1], args[2:]
        chains = self.tables.setdefault(table, {})

        verbose = False
        if args[:1] == ["-v"]:
            verbose, args = True, args[1:]

        verb, rest = args[0], args[1:]
        handler = {
            "-A": self._append,
            "-I": self._insert,
            "-R": self._replace,
            "-D": self._delete,
            "-C": self._check,
            "-S": self._list_rules,
            "-L": self._list_stats,
            "-N": self._new_chain,
            "-F": self._flush,
            "-X": self._delete_chain,
            "-E": self._rename,
            "-P": self._policy,
        }[verb]
        return handler(command, table, chains, rest, verbose)

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _ok(command: list[str], stdout: str = "") -> CommandResult:
        return CommandResult(command=command, return_code=0, stdout=stdout, stderr="")

    @staticmethod
    def _fail(command: list[str], stderr: str, code: int = 1) -> CommandResult:
        return CommandResult(command=command, return_code=code, stdout="", stderr=stderr)

    def add_chain(self, table: str, chain: str, rules: Optional[list[list[str]]] = None) -> None:
        self.tables.setdefault(table, {})[chain] = [list(r) for r in rules or []]

    def rules(self, table: str, chain: str) -> list[list[str]]:
        return self.tables[table][chain]

    def mutations(self) -> list[list[str]]:
        """Calls that changed state (anything but -C, -S, -L, --version)."""
        readonly = {"-C", "-S", "-L", "--version"}
        return [call for call in self.calls if not readonly & set(call)]

    # -- verbs --------------------------------------------------------------

    def _append(self, command, table, chains, rest, verbose):
        chain, rule = rest[0], rest[1:]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        chains[chain].append(rule)
        return self._ok(command)

    def _insert(self, command, table, chains, rest, verbose):
        chain, pos, rule = rest[0], int(rest[1]), rest[2:]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        if pos > len(chains[chain]) + 1:
            return self._fail(command, BAD_INDEX)
        chains[chain].insert(pos - 1, rule)
        return self._ok(command)

    def _replace(self, command, table, chains, rest, verbose):
        chain, pos, rule = rest[0], int(rest[1]), rest[2:]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        if pos > len(chains[chain]):
            return self._fail(command, "iptables: Index of replacement too big.\n")
        chains[chain][pos - 1] = rule
        return self._ok(command)

    def _delete(self, command, table, chains, rest, verbose):
        chain, rule = rest[0], rest[1:]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        if len(rule) == 1 and rule[0].isdigit():
            pos = int(rule[0])
            if pos > len(chains[chain]):
                return self._fail(command, "iptables: Index of deletion too big.\n")
            del chains[chain][pos - 1]
            return self._ok(command)
        if rule not in chains[chain]:
            return self._fail(command, BAD_RULE)
        chains[chain].remove(rule)
        return self._ok(command)

    def _check(self, command, table, chains, rest, verbose):
        if not self.supports_check:
            return self._fail(command, "iptables: invalid option -- 'C'\n", 2)
        chain, rule = rest[0], rest[1:]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        if rule not in chains[chain]:
            return self._fail(command, BAD_RULE)
        return self._ok(command)

    def _declaration(self, table: str, chain: str) -> str:
        if (table, chain) in self.policies:
            return f"-P {chain} {self.policies[(table, chain)]}"
        return f"-N {chain}"

    @staticmethod
    def _quote(token: str) -> str:
        if token and not any(c.isspace() or c in '"\\' for c in token):
            return token
        return '"' + token.replace("\\", "\\\\").replace('"', '\\"') + '"'

    def _rule_text(self, chain: str, rule: list[str], verbose: bool) -> str:
        tokens = [self._quote(t) for t in rule]
        if not verbose:
            return " ".join(["-A", chain, *tokens])
        if self.nft:
            return " ".join([f"[{self.packets}:{self.bytes}]", "-A", chain, *tokens])
        # legacy prints the counters before the target
        counters = ["-c", str(self.packets), str(self.bytes)]
        if "-j" in rule:
            index = rule.index("-j")
            tokens = tokens[:index] + counters + tokens[index:]
        else:
            tokens = tokens + counters
        return " ".join(["-A", chain, *tokens])

    def _list_rules(self, command, table, chains, rest, verbose):
        if not rest:
            lines = [self._declaration(table, c) for c in chains]
            for chain, rules in chains.items():
                lines.extend(self._rule_text(chain, r, verbose) for r in rules)
            return self._ok(command, "".join(line + "\n" for line in lines))

        chain = rest[0]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        rules = chains[chain]
        if len(rest) > 1:
            pos = int(rest[1])
            if pos > len(rules):
                return self._ok(command)
            return self._ok(command, self._rule_text(chain, rules[pos - 1], verbose) + "\n")

        lines = [self._declaration(table, chain)]
        lines.extend(self._rule_text(chain, r, verbose) for r in rules)
        return self._ok(command, "".join(line + "\n" for line in lines))

    def _list_stats(self, command, table, chains, rest, verbose):
        chain = rest[0]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)

        major, minor, patch = (
            int(p) for p in self.version_text.split(" v", 1)[1].split()[0].split(".")
        )
        modern = (major, minor, patch) >= (1, 8, 9)
        anywhere = "::/0" if self.protocol is Protocol.IPV6 else "0.0.0.0/0"

        out = [
            f"Chain {chain} (0 references)",
            "    pkts      bytes target     prot opt in     out     source               destination",
        ]
        for rule in chains[chain]:
            opts = dict(zip(rule[::2], rule[1::2]))
            prot = opts.get("-p", "0" if modern else "all")
            if self.protocol is Protocol.IPV6 and not modern:
                opt = "    "
            else:
                opt = "--"
            src = self._host(opts.get("-s", anywhere))
            dst = self._host(opts.get("-d", anywhere))
            extra = " ".join(
                f"{k.lstrip('-')}:{v}" for k, v in opts.items()
                if k not in ("-s", "-d", "-p", "-j", "-i", "-o")
            )
            out.append(
                f"{self.packets:>8} {self.bytes:>10} {opts.get('-j', ''):<10} {prot:<4} {opt:<3} "
                f"{opts.get('-i', '*'):<6} {opts.get('-o', '*'):<6}  "
                f"{src:<20} {dst:<20} {extra}".rstrip()
            )
        return self._ok(command, "\n".join(out) + "\n")

    def _host(self, address: str) -> str:
        host_prefix = "/128" if self.protocol is Protocol.IPV6 else "/32"
        if address.endswith(host_prefix):
            return address[: -len(host_prefix)]
        return address

    def _new_chain(self, command, table, chains, rest, verbose):
        chain = rest[0]
        if chain in chains:
            return self._fail(command, CHAIN_EXISTS)
        chains[chain] = []
        return self._ok(command)

    def _flush(self, command, table, chains, rest, verbose):
        if not rest:
            for rules in chains.values():
                rules.clear()
            return self._ok(command)
        if rest[0] not in chains:
            return self._fail(command, NO_CHAIN)
        chains[rest[0]].clear()
        return self._ok(command)

    def _delete_chain(self, command, table, chains, rest, verbose):
        builtin = BUILTIN_CHAINS.get(table, [])
        if not rest:
            for chain in [c for c in chains if c not in builtin]:
                del chains[chain]
            return self._ok(command)
        chain = rest[0]
        if chain not in chains:
            return self._fail(command, NO_CHAIN)
        if chains[chain]:
            return self._fail(command, NOT_EMPTY)
        del chains[chain]
        return self._ok(command)

    def _rename(self, command, table, chains, rest, verbose):
        old, new = rest
        if old not in chains:
            return self._fail(command, NO_CHAIN)
        self.tables[table] = {
            (new if name == old else name): rules for name, rules in chains.items()
        }
        return self._ok(command)

    def _policy(self, command, table, chains, rest, verbose):
        chain, target = rest
        if (table, chain) not in self.policies:
            return self._fail(command, "iptables: Bad built-in chain name.\n")
        self.policies[(table, chain)] = target
        return self._ok(command)

    def _restore(self, command, payload):
        table = None
        for line in payload.splitlines():
            if line.startswith("*"):
                table = line[1:]
            elif line.startswith(":"):
                chain = line[1:].split()[0]
                self.tables.setdefault(table, {})[chain] = []
            elif line.startswith("-A"):
                tokens = shlex.split(line)
                chain = tokens[1]
                if chain not in self.tables.get(table, {}):
                    return self._fail(command, "iptables-restore: line 2 failed\n")
                self.tables[table][chain].append(tokens[2:])
        return self._ok(command)


def make_handle(
    protocol: Protocol = Protocol.IPV4,
    version: VersionInfo = VersionInfo(1, 8, 9, "legacy"),
    *,
    has_check: bool = True,
    has_wait: bool = True,
    timeout: int = 0,
    path: Optional[str] = None,
) -> Handle:
    """Build a Handle without running detection."""
    return Handle(
        protocol=protocol,
        path=path or f"/usr/sbin/{protocol.command}",
        version=version,
        has_check=has_check,
        has_wait=has_wait,
        wait_supports_seconds=version.at_least(1, 6, 0),
        has_random_fully=version.at_least(1, 6, 2),
        timeout=timeout,
    )


@pytest.fixture
def mock_ctx():
    """Create a mock execution context."""
    ctx = Mock()
    ctx.console = Mock()
    return ctx


@pytest.fixture
def fake_backend():
    """Create an in-memory IPv4 legacy backend."""
    return FakeIptables()
