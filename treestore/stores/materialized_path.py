# treestore/stores/materialized_path.py
"""
Materialized path plus validity interval.

Each revision stores the node's full root-to-node path ("1.7.12").
Ancestors come straight from splitting the path. Descendants are the
indexed range "<path>." < path < "<path>/": "/" sorts right after the
separator, so the range holds exactly the paths that extend <path> by whole
components (node 2 never matches "22.x").

Moves and implosions rewrite the path of every descendant, so they cost
O(subtree size) row rewrites.
"""

from typing import List, Optional, Set, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from ..logging import get_store_logger
from .base import ParentMismatch, TreeStore
from .visibility import END_OF_TIME, get_visibility_params, revision_active_at

logger = get_store_logger("materialized_path")

SEPARATOR = "."
# First character sorting after SEPARATOR in byte order
RANGE_END = "/"

_ACTIVE_PATH = text(f"""
    SELECT p.id, p.node_key, p.path, p.valid_until
    FROM node_path p
    WHERE p.node_key = :key AND {revision_active_at("p")}
    ORDER BY p.valid_since DESC
    LIMIT 1
""")

_ACTIVE_DESCENDANTS = text(f"""
    SELECT p.id, p.node_key, p.path, p.valid_until
    FROM node_path p
    WHERE p.path > :lower AND p.path < :upper AND {revision_active_at("p")}
""")

_INSERT_PATH = text("""
    INSERT INTO node_path (node_key, path, valid_since, valid_until)
    VALUES (:node_key, :path, :valid_since, :valid_until)
""")

_CLOSE_PATHS = text("""
    UPDATE node_path SET valid_until = :at
    WHERE id IN :ids
""").bindparams(bindparam("ids", expanding=True))


# ============================================================
# PATH ALGEBRA
# ============================================================

def split_path(path: str) -> List[int]:
    return [int(component) for component in path.split(SEPARATOR)]


def join_path(keys: List[int]) -> str:
    return SEPARATOR.join(str(key) for key in keys)


def child_path(parent_path: Optional[str], key: int) -> str:
    """Path of key placed under parent_path (None = root)."""
    if parent_path is None:
        return str(key)
    return f"{parent_path}{SEPARATOR}{key}"


def parent_key_of(path: str) -> Optional[int]:
    keys = split_path(path)
    return keys[-2] if len(keys) > 1 else None


def descendant_range(path: str) -> Tuple[str, str]:
    """Exclusive (lower, upper) bounds holding the strict descendants of path."""
    return f"{path}{SEPARATOR}", f"{path}{RANGE_END}"


def splice_component(path: str, key: int) -> str:
    """
    Remove the component equal to key from path.

    Works on whole components: splicing 2 out of "1.22.2.5" gives "1.22.5".
    """
    keys = split_path(path)
    if key not in keys:
        raise ValueError(f"{key} is not a component of {path!r}")
    keys.remove(key)
    return join_path(keys)


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace the leading components old_prefix of path with new_prefix."""
    keys = split_path(path)
    old_keys = split_path(old_prefix)
    if keys[:len(old_keys)] != old_keys:
        raise ValueError(f"{path!r} does not start with {old_prefix!r}")
    return join_path(split_path(new_prefix) + keys[len(old_keys):])


class MaterializedPathStore(TreeStore):
    """Root-to-node path strings with validity intervals."""

    name = "materialized_path"

    def _active_path(self, session: Session, timestamp: int, key: Optional[int]):
        if key is None:
            return None
        params = get_visibility_params(timestamp)
        params["key"] = key
        return session.execute(_ACTIVE_PATH, params).fetchone()

    def _active_descendants(self, session: Session, timestamp: int, path: str):
        params = get_visibility_params(timestamp)
        params["lower"], params["upper"] = descendant_range(path)
        return session.execute(_ACTIVE_DESCENDANTS, params).fetchall()

    def _close(self, session: Session, timestamp: int, ids: List[int]) -> None:
        if ids:
            session.execute(_CLOSE_PATHS, {"at": timestamp, "ids": ids})

    # ============================================================
    # MUTATIONS
    # ============================================================

    def add_node(self, timestamp: int, key: int, parent_key: Optional[int]) -> None:
        with self.transaction() as session:
            parent = self._active_path(session, timestamp, parent_key)
            if parent_key is not None and parent is None:
                logger.warning("unknown_parent_added_as_root", timestamp=timestamp,
                               key=key, parent_key=parent_key)
            session.execute(_INSERT_PATH, {
                "node_key": key,
                "path": child_path(parent.path if parent else None, key),
                "valid_since": timestamp,
                "valid_until": END_OF_TIME,
            })
        logger.debug("node_added", timestamp=timestamp, key=key, parent_key=parent_key)

    def implode_node(self, timestamp: int, key: int) -> None:
        with self.transaction() as session:
            node = self._active_path(session, timestamp, key)
            if node is None:
                logger.warning("implode_unknown_node", timestamp=timestamp, key=key)
                return

            descendants = self._active_descendants(session, timestamp, node.path)
            rewritten = [
                {
                    "node_key": d.node_key,
                    "path": splice_component(d.path, key),
                    "valid_since": timestamp,
                    "valid_until": d.valid_until,
                }
                for d in descendants
            ]

            self._close(session, timestamp, [node.id] + [d.id for d in descendants])
            if rewritten:
                session.execute(_INSERT_PATH, rewritten)

        logger.debug("node_imploded", timestamp=timestamp, key=key, rewritten=len(rewritten))

    def change_parent(
        self,
        timestamp: int,
        key: int,
        old_parent_key: Optional[int],
        new_parent_key: Optional[int],
    ) -> Optional[ParentMismatch]:
        with self.transaction() as session:
            node = self._active_path(session, timestamp, key)
            mismatch = self._check_parent(
                logger, key, old_parent_key,
                parent_key_of(node.path) if node is not None else None,
                exists=node is not None,
            )
            if mismatch:
                return mismatch

            new_parent = self._active_path(session, timestamp, new_parent_key)
            new_path = child_path(new_parent.path if new_parent else None, key)
            descendants = self._active_descendants(session, timestamp, node.path)

            rewritten = [
                {
                    "node_key": key,
                    "path": new_path,
                    "valid_since": timestamp,
                    "valid_until": node.valid_until,
                }
            ]
            rewritten.extend(
                {
                    "node_key": d.node_key,
                    "path": rebase_path(d.path, node.path, new_path),
                    "valid_since": timestamp,
                    "valid_until": d.valid_until,
                }
                for d in descendants
            )

            self._close(session, timestamp, [d.id for d in descendants])
            session.execute(_INSERT_PATH, rewritten)
            self._close(session, timestamp, [node.id])

        logger.debug("parent_changed", timestamp=timestamp, key=key,
                     old_parent_key=old_parent_key, new_parent_key=new_parent_key,
                     rewritten=len(rewritten))
        return None

    # ============================================================
    # QUERIES
    # ============================================================

    def ancestors(self, timestamp: int, key: int) -> List[int]:
        with self.reader() as session:
            node = self._active_path(session, timestamp, key)
        if node is None:
            return []
        return list(reversed(split_path(node.path)))[1:]

    def descendants(self, timestamp: int, key: int) -> Set[int]:
        with self.reader() as session:
            node = self._active_path(session, timestamp, key)
            if node is None:
                return set()
            return {d.node_key for d in self._active_descendants(session, timestamp, node.path)}
