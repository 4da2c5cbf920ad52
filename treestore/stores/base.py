# treestore/stores/base.py
"""
The operation contract every storage strategy implements.

All strategies persist an append-only, bitemporal tree: nothing is ever
deleted, mutations only close rows (set valid_until) and open new ones.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Generator, List, Optional, Set

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..db.engine import read_scope, session_factory, session_scope
from ..db.schema import STRATEGY_TABLES, create_schema
from ..logging import StructuredLogger


class TreeStoreError(Exception):
    """Base exception for tree store errors."""
    pass


class UnknownStrategyError(TreeStoreError):
    """Raised when a strategy name is not registered."""
    pass


@dataclass(frozen=True)
class ParentMismatch:
    """
    Returned by change_parent when the asserted old parent is wrong.

    No rows are touched when this is returned.
    """
    key: int
    asserted: Optional[int]
    actual: Optional[int]
    exists: bool = True

    @property
    def message(self) -> str:
        if not self.exists:
            return f"node {self.key} is not live"
        return f"node {self.key} has parent {self.actual}, not {self.asserted}"


class TreeStore(ABC):
    """
    Versioned tree store.

    Mutations are atomic: each runs in one transaction, so a reader never
    sees a closed revision without its replacement. Reads never write.
    """

    name: str = ""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = session_factory(engine)

    @property
    def tables(self) -> List[str]:
        return STRATEGY_TABLES[self.name]

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """One mutation's unit of work."""
        with session_scope(self._session_factory) as session:
            yield session

    @contextmanager
    def reader(self) -> Generator[Session, None, None]:
        with read_scope(self._session_factory) as session:
            yield session

    def reset_schema(self) -> None:
        """Drop every strategy's tables and recreate this one's, empty."""
        create_schema(self.engine, self.name)

    def row_counts(self) -> Dict[str, int]:
        """Rows held per table owned by this strategy."""
        counts = {}
        with self.reader() as session:
            for table in self.tables:
                counts[table] = session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
        return counts

    def _check_parent(
        self,
        logger: StructuredLogger,
        key: int,
        asserted: Optional[int],
        actual: Optional[int],
        exists: bool,
    ) -> Optional[ParentMismatch]:
        if exists and asserted == actual:
            return None
        mismatch = ParentMismatch(key=key, asserted=asserted, actual=actual, exists=exists)
        logger.warning("parent_mismatch", strategy=self.name, key=key,
                       asserted=asserted, actual=actual, exists=exists)
        return mismatch

    # ============================================================
    # CONTRACT
    # ============================================================

    @abstractmethod
    def add_node(self, timestamp: int, key: int, parent_key: Optional[int]) -> None:
        """Create key under parent_key (None = root), effective from timestamp."""

    @abstractmethod
    def implode_node(self, timestamp: int, key: int) -> None:
        """Remove key; its direct children move up to key's parent."""

    @abstractmethod
    def change_parent(
        self,
        timestamp: int,
        key: int,
        old_parent_key: Optional[int],
        new_parent_key: Optional[int],
    ) -> Optional[ParentMismatch]:
        """
        Move the subtree rooted at key under new_parent_key.

        Returns a ParentMismatch (and changes nothing) when key's current
        parent is not old_parent_key; None once the move has committed.
        new_parent_key must not be inside key's subtree; that is the
        caller's obligation and is not checked here.
        """

    @abstractmethod
    def ancestors(self, timestamp: int, key: int) -> List[int]:
        """Ancestor keys nearest-first as of timestamp; [] if root or unknown."""

    @abstractmethod
    def descendants(self, timestamp: int, key: int) -> Set[int]:
        """All descendant keys as of timestamp; empty if leaf or unknown."""
