"""
iptkit - Idempotent iptables rule management.

Detects the iptables backend (legacy or nf_tables), normalizes its
listings, parses rule statistics, classifies its failures and builds
ensure-present / ensure-absent operations on top of them.
"""

__version__ = "1.0.0"
