# Stores module - four interchangeable versioned tree strategies
from typing import Dict, Type

from sqlalchemy.engine import Engine

from .base import ParentMismatch, TreeStore, TreeStoreError, UnknownStrategyError
from .closure_table import ClosureTableStore
from .materialized_path import MaterializedPathStore
from .parent_pointer import ParentPointerStore
from .snapshotted import SnapshottedParentPointerStore
from .visibility import END_OF_TIME, revision_active_at

STRATEGIES: Dict[str, Type[TreeStore]] = {
    ParentPointerStore.name: ParentPointerStore,
    SnapshottedParentPointerStore.name: SnapshottedParentPointerStore,
    MaterializedPathStore.name: MaterializedPathStore,
    ClosureTableStore.name: ClosureTableStore,
}


def get_store(name: str, engine: Engine, **options) -> TreeStore:
    """
    Build a store by strategy name.

    Options are passed to the strategy (only parent_pointer_snapshots takes
    any: snapshot_threshold).
    """
    try:
        store_class = STRATEGIES[name]
    except KeyError:
        raise UnknownStrategyError(
            f"Unknown strategy {name!r}; expected one of {', '.join(STRATEGIES)}"
        ) from None
    return store_class(engine, **options)


__all__ = [
    # Contract
    "TreeStore",
    "ParentMismatch",
    "TreeStoreError",
    "UnknownStrategyError",
    # Strategies
    "ParentPointerStore",
    "SnapshottedParentPointerStore",
    "MaterializedPathStore",
    "ClosureTableStore",
    "STRATEGIES",
    "get_store",
    # Visibility (CANONICAL)
    "END_OF_TIME",
    "revision_active_at",
]
