"""Deterministic routing of identities across shard ledgers."""

from .topology import ShardTopology, stable_hash
from .router import ShardRouter, ShardHandle, AggregateStats

__all__ = [
    "ShardTopology",
    "stable_hash",
    "ShardRouter",
    "ShardHandle",
    "AggregateStats",
]
