# treestore/stores/parent_pointer.py
"""
Parent pointer plus validity interval.

One row per (node, parent, interval). Ancestors walk up one point lookup
per level; descendants expand breadth-first one batched query per level.
"""

from typing import List, Optional, Set

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..logging import get_store_logger
from .base import ParentMismatch, TreeStore
from .visibility import END_OF_TIME, get_visibility_params, revision_active_at

logger = get_store_logger("parent_pointer")

_ACTIVE_REVISION = text(f"""
    SELECT r.id, r.node_key, r.parent_key, r.valid_until
    FROM node_revision r
    WHERE r.node_key = :key AND {revision_active_at("r")}
    ORDER BY r.valid_since DESC
    LIMIT 1
""")

_ACTIVE_CHILDREN = text(f"""
    SELECT r.id, r.node_key, r.parent_key, r.valid_until
    FROM node_revision r
    WHERE r.parent_key IN :keys AND {revision_active_at("r")}
""").bindparams(bindparam("keys", expanding=True))

_INSERT_REVISION = text("""
    INSERT INTO node_revision (node_key, parent_key, valid_since, valid_until)
    VALUES (:node_key, :parent_key, :valid_since, :valid_until)
""")

_CLOSE_REVISIONS = text("""
    UPDATE node_revision SET valid_until = :at
    WHERE id IN :ids
""").bindparams(bindparam("ids", expanding=True))


class ParentPointerStore(TreeStore):
    """Adjacency list with validity intervals."""

    name = "parent_pointer"

    def _active_revision(self, session: Session, timestamp: int, key: int):
        params = get_visibility_params(timestamp)
        params["key"] = key
        return session.execute(_ACTIVE_REVISION, params).fetchone()

    def _active_children(self, session: Session, timestamp: int, keys: List[int]):
        params = get_visibility_params(timestamp)
        params["keys"] = keys
        return session.execute(_ACTIVE_CHILDREN, params).fetchall()

    def _close(self, session: Session, timestamp: int, ids: List[int]) -> None:
        if ids:
            session.execute(_CLOSE_REVISIONS, {"at": timestamp, "ids": ids})

    # ============================================================
    # MUTATIONS
    # ============================================================

    def add_node(self, timestamp: int, key: int, parent_key: Optional[int]) -> None:
        with self.transaction() as session:
            session.execute(_INSERT_REVISION, {
                "node_key": key,
                "parent_key": parent_key,
                "valid_since": timestamp,
                "valid_until": END_OF_TIME,
            })
        logger.debug("node_added", timestamp=timestamp, key=key, parent_key=parent_key)

    def implode_node(self, timestamp: int, key: int) -> None:
        with self.transaction() as session:
            node = self._active_revision(session, timestamp, key)
            if node is None:
                logger.warning("implode_unknown_node", timestamp=timestamp, key=key)
                return

            children = self._active_children(session, timestamp, [key])
            replacements = [
                {
                    "node_key": child.node_key,
                    "parent_key": node.parent_key,
                    "valid_since": timestamp,
                    "valid_until": child.valid_until,
                }
                for child in children
            ]

            self._close(session, timestamp, [node.id] + [child.id for child in children])
            if replacements:
                session.execute(_INSERT_REVISION, replacements)

        logger.debug("node_imploded", timestamp=timestamp, key=key, children=len(replacements))

    def change_parent(
        self,
        timestamp: int,
        key: int,
        old_parent_key: Optional[int],
        new_parent_key: Optional[int],
    ) -> Optional[ParentMismatch]:
        with self.transaction() as session:
            node = self._active_revision(session, timestamp, key)
            mismatch = self._check_parent(
                logger, key, old_parent_key,
                node.parent_key if node is not None else None,
                exists=node is not None,
            )
            if mismatch:
                return mismatch

            session.execute(_INSERT_REVISION, {
                "node_key": key,
                "parent_key": new_parent_key,
                "valid_since": timestamp,
                "valid_until": node.valid_until,
            })
            self._close(session, timestamp, [node.id])

        logger.debug("parent_changed", timestamp=timestamp, key=key,
                     old_parent_key=old_parent_key, new_parent_key=new_parent_key)
        return None

    # ============================================================
    # QUERIES
    # ============================================================

    def ancestors(self, timestamp: int, key: int) -> List[int]:
        result = []
        current_key = key
        with self.reader() as session:
            while True:
                node = self._active_revision(session, timestamp, current_key)
                if node is None or node.parent_key is None:
                    break
                result.append(node.parent_key)
                current_key = node.parent_key
        return result

    def descendants(self, timestamp: int, key: int) -> Set[int]:
        result: Set[int] = set()
        frontier = [key]
        with self.reader() as session:
            while frontier:
                frontier = [row.node_key for row in self._active_children(session, timestamp, frontier)]
                result.update(frontier)
        return result
