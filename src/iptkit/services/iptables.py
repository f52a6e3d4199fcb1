"""Iptables service.

Provides a safe interface for managing iptables rules with:
- IPv4 and IPv6 backends, legacy and nf_tables modes
- Idempotent ensure-present / ensure-absent operations
- Canonical rule listings regardless of backend mode
- Structured per-rule statistics
- Bulk loading through iptables-restore

Every call is a fresh backend invocation; nothing about chain or rule
state is cached in-process.
"""

from __future__ import annotations

from typing import Optional

from iptkit.core.config import Protocol
from iptkit.core.context import ExecutionContext
from iptkit.core.exceptions import NOT_EXIST_STATUS, BackendError
from iptkit.core.executor import CommandExecutor, CommandResult
from iptkit.services.builder import (
    build_args,
    command_line,
    restore_args,
    restore_path,
    rule_line,
)
from iptkit.services.detector import Handle, VersionInfo, detect
from iptkit.services.errors import (
    PhraseTable,
    default_phrase_table,
    load_phrase_table,
)
from iptkit.services.normalizer import normalize_lines
from iptkit.services.restore import RestoreRules, render_restore
from iptkit.services.stats import (
    Stat,
    parse_stat,
    split_stat_lines,
    stat_from_rule_line,
)


class IPTables:
    """Safe interface for iptables rule management.

    Features:
    - Primitive verbs (append, insert, delete, ...) that surface backend
      failures as BackendError with the raw diagnostic text
    - Ensure-semantics wrappers that converge on repeated calls
    - Listings normalized to ``-A <chain> ... -c <pkts> <bytes>`` form
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        handle: Handle,
        *,
        phrases: Optional[PhraseTable] = None,
        command_timeout: Optional[float] = None,
    ) -> None:
        """Initialize iptables service.

        Args:
            ctx: Execution context
            executor: Command executor
            handle: Detected backend
            phrases: Not-exists phrase table (bundled table if None)
            command_timeout: Executor timeout for each invocation
        """
        self.ctx = ctx
        self.executor = executor
        self.handle = handle
        self.phrases = phrases or default_phrase_table()
        self.command_timeout = command_timeout

    @classmethod
    def create(
        cls,
        ctx: ExecutionContext,
        executor: Optional[CommandExecutor] = None,
        protocol: Protocol = Protocol.IPV4,
        *,
        path: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> "IPTables":
        """Detect the backend and build a service from the configuration.

        Explicit arguments take precedence over the configured values.

        Args:
            ctx: Execution context
            executor: Command executor (created from ctx if None)
            protocol: IPv4 or IPv6 backend
            path: Executable override
            timeout: Lock-wait seconds override; 0 waits forever

        Returns:
            Service bound to a freshly detected Handle

        Raises:
            DetectionError: If the backend cannot be run or identified
            ConfigurationError: If the configuration is invalid
        """
        settings = ctx.config.backend(protocol)
        executor = executor or CommandExecutor(ctx)

        handle = detect(
            executor,
            protocol,
            path or settings.path,
            timeout=settings.timeout if timeout is None else timeout,
            probe=settings.probe_capabilities,
            command_timeout=settings.command_timeout,
        )

        phrases = None
        if settings.phrases_file is not None:
            phrases = load_phrase_table(settings.phrases_file)

        return cls(
            ctx,
            executor,
            handle,
            phrases=phrases,
            command_timeout=settings.command_timeout,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def proto(self) -> Protocol:
        """Protocol of the underlying backend."""
        return self.handle.protocol

    @property
    def mode(self) -> str:
        """Backend implementation family (legacy or nf_tables)."""
        return self.handle.mode

    @property
    def version(self) -> VersionInfo:
        """Backend version and mode."""
        return self.handle.version

    @property
    def has_random_fully(self) -> bool:
        """Check if the backend supports --random-fully."""
        return self.handle.has_random_fully

    # =========================================================================
    # Invocation
    # =========================================================================

    def _run(self, args: list[str]) -> CommandResult:
        """Run the backend, raising BackendError on a non-zero exit."""
        result = self.executor.run(
            command_line(self.handle, args),
            timeout=self.command_timeout,
        )
        if not result.success:
            raise BackendError(
                result.stderr,
                exit_status=result.return_code,
                argv=result.command,
            )
        return result

    def _run_verb(
        self,
        table: str,
        verb: str,
        chain: Optional[str] = None,
        *rule: str,
        position: Optional[int] = None,
    ) -> CommandResult:
        return self._run(
            build_args(self.handle, table, verb, chain, *rule, position=position)
        )

    def _is_not_exist(self, error: BackendError) -> bool:
        return error.is_not_exist(self.phrases)

    # =========================================================================
    # Rule Management
    # =========================================================================

    def exists(self, table: str, chain: str, *rule: str) -> bool:
        """Check if a rule exists in a chain.

        Uses the -C verb when available, otherwise scans the chain listing
        for an exact canonical match.

        Args:
            table: Table name
            chain: Chain name
            *rule: Rule tokens

        Returns:
            True if the rule is present
        """
        if not self.handle.has_check:
            return self._exists_by_listing(table, chain, *rule)

        try:
            self._run_verb(table, "-C", chain, *rule)
        except BackendError as e:
            if e.exit_status == NOT_EXIST_STATUS:
                return False
            raise
        return True

    def _exists_by_listing(self, table: str, chain: str, *rule: str) -> bool:
        try:
            lines = self.list(table, chain)
        except BackendError as e:
            # A missing chain holds no rules, as with -C
            if self._is_not_exist(e):
                return False
            raise
        wanted = rule_line(chain, rule)
        return any(line == wanted for line in lines)

    def append(self, table: str, chain: str, *rule: str) -> None:
        """Append a rule to the end of a chain."""
        self._run_verb(table, "-A", chain, *rule)

    def insert(self, table: str, chain: str, pos: int, *rule: str) -> None:
        """Insert a rule at a 1-based position."""
        self._run_verb(table, "-I", chain, *rule, position=pos)

    def replace(self, table: str, chain: str, pos: int, *rule: str) -> None:
        """Replace the rule at a 1-based position."""
        self._run_verb(table, "-R", chain, *rule, position=pos)

    def delete(self, table: str, chain: str, *rule: str) -> None:
        """Delete the first rule matching the given tokens."""
        self._run_verb(table, "-D", chain, *rule)

    def delete_by_id(self, table: str, chain: str, id: int) -> None:
        """Delete the rule at a 1-based position."""
        self._run_verb(table, "-D", chain, position=id)

    def append_unique(self, table: str, chain: str, *rule: str) -> bool:
        """Append a rule unless it is already present (idempotent).

        Returns:
            True if the rule was added, False if it already existed
        """
        if self.exists(table, chain, *rule):
            self.ctx.console.verbose(
                f"Rule already exists, skipping: {rule_line(chain, rule)}"
            )
            return False
        self.append(table, chain, *rule)
        return True

    def insert_unique(self, table: str, chain: str, pos: int, *rule: str) -> bool:
        """Insert a rule at a position unless it is already present (idempotent).

        Returns:
            True if the rule was added, False if it already existed
        """
        if self.exists(table, chain, *rule):
            self.ctx.console.verbose(
                f"Rule already exists, skipping: {rule_line(chain, rule)}"
            )
            return False
        self.insert(table, chain, pos, *rule)
        return True

    def delete_if_exists(self, table: str, chain: str, *rule: str) -> bool:
        """Delete a rule, treating an absent rule or chain as success.

        Returns:
            True if a rule was deleted, False if there was nothing to delete

        Raises:
            BackendError: For any failure other than not-exists
        """
        try:
            self.delete(table, chain, *rule)
        except BackendError as e:
            if not self._is_not_exist(e):
                raise
            self.ctx.console.verbose(
                f"Rule not present, nothing to delete: {rule_line(chain, rule)}"
            )
            return False
        return True

    # =========================================================================
    # Listing
    # =========================================================================

    def list(self, table: str, chain: str) -> list[str]:
        """List a chain's rules in canonical ``-S`` form.

        The first line is the chain's ``-N``/``-P`` declaration.
        """
        result = self._run_verb(table, "-S", chain)
        return normalize_lines(result.stdout)

    def list_with_counters(self, table: str, chain: str) -> list[str]:
        """List a chain's rules with ``-c <packets> <bytes>`` clauses."""
        result = self._run(
            build_args(self.handle, table, "-v", None, "-S", chain)
        )
        return normalize_lines(result.stdout)

    def list_by_id(self, table: str, chain: str, id: int) -> str:
        """Get the canonical line of the rule at a 1-based position."""
        result = self._run_verb(table, "-S", chain, position=id)
        lines = normalize_lines(result.stdout)
        return lines[0] if lines else ""

    def list_chains(self, table: str) -> list[str]:
        """List built-in and user-defined chain names of a table."""
        result = self._run_verb(table, "-S")

        # Policies (-P) and declarations (-N) come before any rule
        chains = []
        for line in normalize_lines(result.stdout):
            if not (line.startswith("-P") or line.startswith("-N")):
                break
            chains.append(line.split()[1])
        return chains

    def chain_exists(self, table: str, chain: str) -> bool:
        """Check if a chain exists in a table."""
        try:
            self._run_verb(table, "-S", chain, position=1)
        except BackendError as e:
            if self._is_not_exist(e):
                return False
            raise
        return True

    def stats(self, table: str, chain: str) -> list[list[str]]:
        """Get per-rule statistics as ten-column string rows.

        Columns: pkts, bytes, target, prot, opt, in, out, source,
        destination, options. Addresses always carry a prefix length.
        """
        result = self._run(
            build_args(self.handle, table, "-L", chain, "-n", "-v", "-x")
        )
        return split_stat_lines(result.stdout, self.handle)

    def structured_stats(self, table: str, chain: str) -> list[Stat]:
        """Get per-rule statistics as Stat records."""
        return [parse_stat(row) for row in self.stats(table, chain)]

    def rule_stats(self, table: str, chain: str) -> list[Stat]:
        """Get per-rule statistics from the counter-carrying rule dump.

        Unlike structured_stats(), the remainder holds the rule's own match
        tokens rather than the tabular listing's summary.
        """
        return [
            stat_from_rule_line(line, self.proto)
            for line in self.list_with_counters(table, chain)
            if line.startswith("-A ")
        ]

    def parse_stat(self, row: list[str]) -> Stat:
        """Parse one row returned by stats()."""
        return parse_stat(row)

    # =========================================================================
    # Chain Management
    # =========================================================================

    def new_chain(self, table: str, chain: str) -> None:
        """Create a user-defined chain."""
        self._run_verb(table, "-N", chain)

    def clear_chain(self, table: str, chain: str) -> None:
        """Create a chain, or flush it if it already exists."""
        try:
            self.new_chain(table, chain)
        except BackendError as e:
            # -N on an existing chain exits 1 ("Chain already exists")
            if e.exit_status != 1:
                raise
            self.flush_chain(table, chain)

    def flush_chain(self, table: str, chain: str) -> None:
        """Remove every rule from an existing chain."""
        self._run_verb(table, "-F", chain)

    def rename_chain(self, table: str, old_chain: str, new_chain: str) -> None:
        """Rename a user-defined chain."""
        self._run_verb(table, "-E", old_chain, new_chain)

    def delete_chain(self, table: str, chain: str) -> None:
        """Delete an empty user-defined chain."""
        self._run_verb(table, "-X", chain)

    def clear_and_delete_chain(self, table: str, chain: str) -> bool:
        """Flush and delete a chain, treating an absent chain as success.

        Returns:
            True if the chain was deleted, False if it did not exist

        Raises:
            BackendError: For any failure other than a missing chain
        """
        try:
            self.flush_chain(table, chain)
        except BackendError as e:
            if not self._is_not_exist(e):
                raise
            self.ctx.console.verbose(f"Chain {chain} not present in {table}, nothing to delete")
            return False
        self.delete_chain(table, chain)
        return True

    def change_policy(self, table: str, chain: str, target: str) -> None:
        """Set the policy of a built-in chain."""
        self._run_verb(table, "-P", chain, target)

    def clear_all(self, table: str) -> None:
        """Flush every chain of a table."""
        self._run_verb(table, "-F")

    def delete_all(self, table: str) -> None:
        """Delete every user-defined chain of a table."""
        self._run_verb(table, "-X")

    # =========================================================================
    # Bulk Restore
    # =========================================================================

    def restore(self, table: str, rules: RestoreRules) -> None:
        """Load chains and their rules in one iptables-restore transaction.

        Each chain is created (or flushed) and its rules appended in order.
        Other chains of the table are left alone. The order in which chains
        are written follows the mapping and is not guaranteed.

        Args:
            table: Table name
            rules: Chain name to ordered rule token lists

        Raises:
            BackendError: If iptables-restore rejects the transaction
        """
        payload = render_restore(table, rules)
        command = [restore_path(self.handle), *restore_args(self.handle)]

        self.ctx.console.debug(f"Restore payload for {table}: {len(rules)} chain(s)")
        result = self.executor.run(
            command,
            input=payload,
            timeout=self.command_timeout,
        )
        if not result.success:
            raise BackendError(
                result.stderr,
                exit_status=result.return_code,
                argv=result.command,
            )
