"""Bulk rule loading through iptables-restore.

A ``{chain: [rule, ...]}`` mapping is rendered into one iptables-restore
transaction and submitted as a single stdin payload, so the backend applies
it all or not at all. Rules keep their order within a chain. Chains are
written in the mapping's iteration order, which callers must not rely on.
"""

from typing import Mapping, Sequence

from jinja2 import Environment, PackageLoader, StrictUndefined

from iptkit.services.builder import quote_token

RestoreRules = Mapping[str, Sequence[Sequence[str]]]


_env = Environment(
    loader=PackageLoader("iptkit", "templates"),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)
_env.filters["quote_token"] = quote_token


def render_restore(table: str, rules: RestoreRules) -> str:
    """Render one iptables-restore transaction.

    Args:
        table: Table the transaction applies to
        rules: Chain name to ordered rule token lists

    Returns:
        ``*table``, a ``:chain - [0:0]`` line per chain, the ``-A`` lines
        and ``COMMIT``
    """
    template = _env.get_template("restore.j2")
    return template.render(table=table, rules=rules)
