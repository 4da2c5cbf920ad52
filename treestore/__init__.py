"""
Versioned tree storage benchmark.

Four relational designs for an append-only, point-in-time queryable tree:
parent pointers, parent pointers with snapshot shards, materialized paths,
and closure tables. All share the TreeStore contract.
"""

from .stores import (
    STRATEGIES,
    ClosureTableStore,
    MaterializedPathStore,
    ParentMismatch,
    ParentPointerStore,
    SnapshottedParentPointerStore,
    TreeStore,
    get_store,
)

__version__ = "0.1.0"

__all__ = [
    "STRATEGIES",
    "ClosureTableStore",
    "MaterializedPathStore",
    "ParentMismatch",
    "ParentPointerStore",
    "SnapshottedParentPointerStore",
    "TreeStore",
    "get_store",
]
