"""Service abstractions for driving the iptables backend."""

from iptkit.services.detector import Handle, VersionInfo, detect
from iptkit.services.errors import PhraseTable, is_not_exist
from iptkit.services.iptables import IPTables
from iptkit.services.normalizer import normalize
from iptkit.services.stats import Stat, parse_stat, stat_from_rule_line

__all__ = [
    "Handle",
    "VersionInfo",
    "detect",
    "PhraseTable",
    "is_not_exist",
    "IPTables",
    "normalize",
    "Stat",
    "parse_stat",
    "stat_from_rule_line",
]
