"""Sharded bank ledger with Paxos inside clusters and two-phase commit across them."""

__version__ = "0.1.0"