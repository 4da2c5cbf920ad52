# treestore/stores/snapshotted.py
"""
Parent pointer plus validity interval, sharded into periodic snapshots.

Every revision row belongs to a version shard. When a mutation arrives more
than snapshot_threshold ticks after the last snapshot, a new shard is
created by copying the newest open revision of every key forward, and all
later writes go there. Reads at t first resolve the newest shard created at
or before t and only scan rows of that shard, which bounds how much history
a query wades through. The cost is an O(tree size) copy per snapshot.
"""

import threading
from typing import List, Optional, Set, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..db.schema import ShardVersion
from ..logging import get_store_logger
from ..settings import settings
from .base import ParentMismatch, TreeStore
from .visibility import END_OF_TIME, get_visibility_params, revision_active_at

logger = get_store_logger("parent_pointer_snapshots")

_LATEST_VERSION = text("""
    SELECT id, created_at FROM shard_version
    ORDER BY id DESC
    LIMIT 1
""")

_VERSION_AT = text("""
    SELECT id FROM shard_version
    WHERE created_at <= :at
    ORDER BY created_at DESC, id DESC
    LIMIT 1
""")

# Newest open revision per key of the previous shard, re-tagged.
_COPY_FORWARD = text(f"""
    INSERT INTO sharded_node_revision (version, node_key, parent_key, valid_since, valid_until)
    SELECT :new_version, r.node_key, r.parent_key, r.valid_since, r.valid_until
    FROM sharded_node_revision r
    WHERE r.version = :previous_version
      AND {revision_active_at("r")}
      AND r.valid_since = (
          SELECT MAX(r2.valid_since) FROM sharded_node_revision r2
          WHERE r2.version = :previous_version
            AND r2.node_key = r.node_key
            AND {revision_active_at("r2")}
      )
""")

_ACTIVE_REVISION = text(f"""
    SELECT r.id, r.node_key, r.parent_key, r.valid_until
    FROM sharded_node_revision r
    WHERE r.version = :version AND r.node_key = :key AND {revision_active_at("r")}
    ORDER BY r.valid_since DESC
    LIMIT 1
""")

_ACTIVE_CHILDREN = text(f"""
    SELECT r.id, r.node_key, r.parent_key, r.valid_until
    FROM sharded_node_revision r
    WHERE r.version = :version AND r.parent_key IN :keys AND {revision_active_at("r")}
""").bindparams(bindparam("keys", expanding=True))

_INSERT_REVISION = text("""
    INSERT INTO sharded_node_revision (version, node_key, parent_key, valid_since, valid_until)
    VALUES (:version, :node_key, :parent_key, :valid_since, :valid_until)
""")

_CLOSE_REVISIONS = text("""
    UPDATE sharded_node_revision SET valid_until = :at
    WHERE id IN :ids
""").bindparams(bindparam("ids", expanding=True))


class SnapshottedParentPointerStore(TreeStore):
    """
    Parent pointer store partitioned into version shards.

    The current write shard is per-instance state. It only advances after
    the transaction that created the shard has committed, and mutations on
    one instance are serialized so the pointer and the shard move together.
    """

    name = "parent_pointer_snapshots"

    def __init__(self, engine: Engine, snapshot_threshold: Optional[int] = None):
        super().__init__(engine)
        self.snapshot_threshold = (
            settings.snapshot_threshold if snapshot_threshold is None else snapshot_threshold
        )
        self._lock = threading.Lock()
        self._current_version: Optional[int] = None
        self._last_snapshot_timestamp = 0

    @property
    def current_version(self) -> Optional[int]:
        return self._current_version

    def reset_schema(self) -> None:
        with self._lock:
            super().reset_schema()
            self._current_version = None
            self._last_snapshot_timestamp = 0

    def resume(self) -> None:
        """Pick up the newest shard of an existing database."""
        with self._lock, self.reader() as session:
            row = session.execute(_LATEST_VERSION).fetchone()
            if row is not None:
                self._current_version = row.id
                self._last_snapshot_timestamp = row.created_at

    # ============================================================
    # SHARDS
    # ============================================================

    def _snapshot(self, session: Session, timestamp: int, previous_version: Optional[int]) -> int:
        shard = ShardVersion(created_at=timestamp)
        session.add(shard)
        session.flush()
        new_version = shard.id

        copied = 0
        if previous_version is not None:
            params = get_visibility_params(timestamp)
            params["new_version"] = new_version
            params["previous_version"] = previous_version
            copied = session.execute(_COPY_FORWARD, params).rowcount

        logger.info("snapshot_created", version=new_version, timestamp=timestamp,
                    previous_version=previous_version, rows_copied=copied)
        return new_version

    def _write_version(self, session: Session, timestamp: int) -> Tuple[int, int]:
        """
        Shard the mutation at timestamp writes into.

        Returns (version, last snapshot timestamp) to publish after commit.
        """
        version = self._current_version
        last_snapshot = self._last_snapshot_timestamp

        if version is None:
            # First shard opens at 0, or at timestamp when that is already past the threshold
            last_snapshot = 0 if timestamp <= self.snapshot_threshold else timestamp
            version = self._snapshot(session, last_snapshot, None)
        elif timestamp - last_snapshot > self.snapshot_threshold:
            version = self._snapshot(session, timestamp, version)
            last_snapshot = timestamp

        return version, last_snapshot

    def _version_at(self, session: Session, timestamp: int) -> Optional[int]:
        return session.execute(_VERSION_AT, get_visibility_params(timestamp)).scalar()

    def _active_revision(self, session: Session, version: int, timestamp: int, key: int):
        params = get_visibility_params(timestamp)
        params.update(version=version, key=key)
        return session.execute(_ACTIVE_REVISION, params).fetchone()

    def _active_children(self, session: Session, version: int, timestamp: int, keys: List[int]):
        params = get_visibility_params(timestamp)
        params.update(version=version, keys=keys)
        return session.execute(_ACTIVE_CHILDREN, params).fetchall()

    def _close(self, session: Session, timestamp: int, ids: List[int]) -> None:
        if ids:
            session.execute(_CLOSE_REVISIONS, {"at": timestamp, "ids": ids})

    def _publish(self, version: int, last_snapshot: int) -> None:
        self._current_version = version
        self._last_snapshot_timestamp = last_snapshot

    # ============================================================
    # MUTATIONS
    # ============================================================

    def add_node(self, timestamp: int, key: int, parent_key: Optional[int]) -> None:
        with self._lock:
            with self.transaction() as session:
                version, last_snapshot = self._write_version(session, timestamp)
                session.execute(_INSERT_REVISION, {
                    "version": version,
                    "node_key": key,
                    "parent_key": parent_key,
                    "valid_since": timestamp,
                    "valid_until": END_OF_TIME,
                })
            self._publish(version, last_snapshot)

        logger.debug("node_added", timestamp=timestamp, key=key, parent_key=parent_key, version=version)

    def implode_node(self, timestamp: int, key: int) -> None:
        with self._lock:
            with self.transaction() as session:
                version, last_snapshot = self._write_version(session, timestamp)

                node = self._active_revision(session, version, timestamp, key)
                if node is None:
                    logger.warning("implode_unknown_node", timestamp=timestamp, key=key)
                    children = []
                else:
                    children = self._active_children(session, version, timestamp, [key])
                    self._close(session, timestamp, [node.id] + [child.id for child in children])
                    if children:
                        session.execute(_INSERT_REVISION, [
                            {
                                "version": version,
                                "node_key": child.node_key,
                                "parent_key": node.parent_key,
                                "valid_since": timestamp,
                                "valid_until": child.valid_until,
                            }
                            for child in children
                        ])
            self._publish(version, last_snapshot)

        logger.debug("node_imploded", timestamp=timestamp, key=key, children=len(children), version=version)

    def change_parent(
        self,
        timestamp: int,
        key: int,
        old_parent_key: Optional[int],
        new_parent_key: Optional[int],
    ) -> Optional[ParentMismatch]:
        with self._lock:
            with self.transaction() as session:
                version, last_snapshot = self._write_version(session, timestamp)

                node = self._active_revision(session, version, timestamp, key)
                mismatch = self._check_parent(
                    logger, key, old_parent_key,
                    node.parent_key if node is not None else None,
                    exists=node is not None,
                )
                if mismatch:
                    # Discard any shard created for this call
                    session.rollback()
                    return mismatch

                session.execute(_INSERT_REVISION, {
                    "version": version,
                    "node_key": key,
                    "parent_key": new_parent_key,
                    "valid_since": timestamp,
                    "valid_until": node.valid_until,
                })
                self._close(session, timestamp, [node.id])
            self._publish(version, last_snapshot)

        logger.debug("parent_changed", timestamp=timestamp, key=key,
                     old_parent_key=old_parent_key, new_parent_key=new_parent_key, version=version)
        return None

    # ============================================================
    # QUERIES
    # ============================================================

    def ancestors(self, timestamp: int, key: int) -> List[int]:
        result = []
        with self.reader() as session:
            version = self._version_at(session, timestamp)
            if version is None:
                return result

            current_key = key
            while True:
                node = self._active_revision(session, version, timestamp, current_key)
                if node is None or node.parent_key is None:
                    break
                result.append(node.parent_key)
                current_key = node.parent_key
        return result

    def descendants(self, timestamp: int, key: int) -> Set[int]:
        result: Set[int] = set()
        with self.reader() as session:
            version = self._version_at(session, timestamp)
            if version is None:
                return result

            frontier = [key]
            while frontier:
                frontier = [row.node_key for row in self._active_children(session, version, timestamp, frontier)]
                result.update(frontier)
        return result
