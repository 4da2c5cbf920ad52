# treestore/stores/closure_table.py
"""
Closure table plus validity interval.

Every reachable (ancestor, descendant) pair is stored explicitly with its
hop count, so ancestors and descendants are each one indexed scan whatever
the depth. The price is paid on structural change: implosion shortens every
path routed through the removed node, and a move rebuilds the cross product
of the new parent's ancestors and the moved subtree.
"""

from typing import Dict, List, Optional, Set

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..logging import get_store_logger
from .base import ParentMismatch, TreeStore
from .visibility import END_OF_TIME, get_visibility_params, revision_active_at

logger = get_store_logger("closure_table")

_EDGES_INTO = text(f"""
    SELECT e.id, e.ancestor, e.descendant, e.level, e.valid_until
    FROM closure_edge e
    WHERE e.descendant = :key AND {revision_active_at("e")}
    ORDER BY e.level
""")

_EDGES_OUT_OF = text(f"""
    SELECT e.id, e.ancestor, e.descendant, e.level, e.valid_until
    FROM closure_edge e
    WHERE e.ancestor = :key AND {revision_active_at("e")}
""")

_EDGES_BETWEEN = text(f"""
    SELECT e.id, e.ancestor, e.descendant, e.level, e.valid_until
    FROM closure_edge e
    WHERE e.ancestor IN :ancestors
      AND e.descendant IN :descendants
      AND {revision_active_at("e")}
""").bindparams(
    bindparam("ancestors", expanding=True),
    bindparam("descendants", expanding=True),
)

_ACTIVE_NODE = text(f"""
    SELECT n.id FROM closure_node n
    WHERE n.node_key = :key AND {revision_active_at("n")}
    LIMIT 1
""")

_INSERT_NODE = text("""
    INSERT INTO closure_node (node_key, valid_since, valid_until)
    VALUES (:node_key, :valid_since, :valid_until)
""")

_CLOSE_NODE = text("""
    UPDATE closure_node SET valid_until = :at WHERE id = :id
""")

_INSERT_EDGE = text("""
    INSERT INTO closure_edge (ancestor, descendant, level, valid_since, valid_until)
    VALUES (:ancestor, :descendant, :level, :valid_since, :valid_until)
""")

_CLOSE_EDGES = text("""
    UPDATE closure_edge SET valid_until = :at
    WHERE id IN :ids
""").bindparams(bindparam("ids", expanding=True))


def _edge(ancestor: int, descendant: int, level: int, valid_since: int,
          valid_until: int = END_OF_TIME) -> Dict[str, int]:
    return {
        "ancestor": ancestor,
        "descendant": descendant,
        "level": level,
        "valid_since": valid_since,
        "valid_until": valid_until,
    }


class ClosureTableStore(TreeStore):
    """Transitive closure of the parent relation with validity intervals."""

    name = "closure_table"

    def _active_node(self, session: Session, timestamp: int, key: int):
        params = get_visibility_params(timestamp)
        params["key"] = key
        return session.execute(_ACTIVE_NODE, params).fetchone()

    def _edges(self, session: Session, query, timestamp: int, key: int):
        params = get_visibility_params(timestamp)
        params["key"] = key
        return session.execute(query, params).fetchall()

    def _edges_between(self, session: Session, timestamp: int,
                       ancestors: List[int], descendants: List[int]):
        if not ancestors or not descendants:
            return []
        params = get_visibility_params(timestamp)
        params.update(ancestors=ancestors, descendants=descendants)
        return session.execute(_EDGES_BETWEEN, params).fetchall()

    def _close(self, session: Session, timestamp: int, ids: List[int]) -> None:
        if ids:
            session.execute(_CLOSE_EDGES, {"at": timestamp, "ids": ids})

    def _insert(self, session: Session, edges: List[Dict[str, int]]) -> None:
        if edges:
            session.execute(_INSERT_EDGE, edges)

    # ============================================================
    # MUTATIONS
    # ============================================================

    def add_node(self, timestamp: int, key: int, parent_key: Optional[int]) -> None:
        with self.transaction() as session:
            edges = []
            if parent_key is not None:
                edges = [
                    _edge(e.ancestor, key, e.level + 1, timestamp, e.valid_until)
                    for e in self._edges(session, _EDGES_INTO, timestamp, parent_key)
                ]
                edges.append(_edge(parent_key, key, 1, timestamp))

            session.execute(_INSERT_NODE, {
                "node_key": key,
                "valid_since": timestamp,
                "valid_until": END_OF_TIME,
            })
            self._insert(session, edges)

        logger.debug("node_added", timestamp=timestamp, key=key, parent_key=parent_key, edges=len(edges))

    def implode_node(self, timestamp: int, key: int) -> None:
        # Tree 1 -> 2 -> (3, 4), imploding 2:
        #   into    = 1->2 (1)
        #   out_of  = 2->3 (1), 2->4 (1)
        #   through = 1->3 (2), 1->4 (2)  reopened as level 1
        with self.transaction() as session:
            node = self._active_node(session, timestamp, key)
            if node is None:
                logger.warning("implode_unknown_node", timestamp=timestamp, key=key)
                return

            into = self._edges(session, _EDGES_INTO, timestamp, key)
            out_of = self._edges(session, _EDGES_OUT_OF, timestamp, key)
            through = self._edges_between(
                session, timestamp,
                [e.ancestor for e in into],
                [e.descendant for e in out_of],
            )

            session.execute(_CLOSE_NODE, {"at": timestamp, "id": node.id})
            self._close(session, timestamp, [e.id for e in into + out_of + through])
            self._insert(session, [
                _edge(e.ancestor, e.descendant, e.level - 1, timestamp, e.valid_until)
                for e in through
            ])

        logger.debug("node_imploded", timestamp=timestamp, key=key,
                     closed=len(into) + len(out_of) + len(through), reopened=len(through))

    def change_parent(
        self,
        timestamp: int,
        key: int,
        old_parent_key: Optional[int],
        new_parent_key: Optional[int],
    ) -> Optional[ParentMismatch]:
        # Tree 1 -> 2 -> (3, 4) and 1 -> 5, moving 2 under 5:
        #   into        = 1->2 (1)                 closed
        #   out_of      = 2->3 (1), 2->4 (1)       kept, the subtree is intact
        #   old_through = 1->3 (2), 1->4 (2)       closed
        #   new_into    = 1->5 (1)
        #   reopened    = {1, 5} x {2, 3, 4}
        with self.transaction() as session:
            node = self._active_node(session, timestamp, key)
            into = self._edges(session, _EDGES_INTO, timestamp, key)
            actual = next((e.ancestor for e in into if e.level == 1), None)
            mismatch = self._check_parent(
                logger, key, old_parent_key, actual, exists=node is not None,
            )
            if mismatch:
                return mismatch

            out_of = self._edges(session, _EDGES_OUT_OF, timestamp, key)
            old_through = self._edges_between(
                session, timestamp,
                [e.ancestor for e in into],
                [e.descendant for e in out_of],
            )

            edges = []
            if new_parent_key is not None:
                new_into = self._edges(session, _EDGES_INTO, timestamp, new_parent_key)
                uppers = [(new_parent_key, 0)] + [(e.ancestor, e.level) for e in new_into]
                lowers = [(key, 0)] + [(e.descendant, e.level) for e in out_of]
                edges = [
                    _edge(ancestor, descendant, upper_level + lower_level + 1, timestamp)
                    for ancestor, upper_level in uppers
                    for descendant, lower_level in lowers
                ]

            self._close(session, timestamp, [e.id for e in into + old_through])
            self._insert(session, edges)

        logger.debug("parent_changed", timestamp=timestamp, key=key,
                     old_parent_key=old_parent_key, new_parent_key=new_parent_key,
                     reopened=len(edges))
        return None

    # ============================================================
    # QUERIES
    # ============================================================

    def ancestors(self, timestamp: int, key: int) -> List[int]:
        with self.reader() as session:
            return [e.ancestor for e in self._edges(session, _EDGES_INTO, timestamp, key)]

    def descendants(self, timestamp: int, key: int) -> Set[int]:
        with self.reader() as session:
            return {e.descendant for e in self._edges(session, _EDGES_OUT_OF, timestamp, key)}
