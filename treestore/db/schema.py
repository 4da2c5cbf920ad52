# treestore/db/schema.py
"""
Table layout for every storage strategy.

Each strategy owns its own tables. Bootstrapping one strategy drops the
tables of all others so a database only ever holds a single strategy's
footprint when it is measured.

- parent_pointer:           node_revision
- parent_pointer_snapshots: shard_version, sharded_node_revision
- materialized_path:        node_path
- closure_table:            closure_node, closure_edge
"""

from typing import Dict, List

from sqlalchemy import Column, Index, Integer, String
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine

from .engine import Base


class NodeRevision(Base):
    """Parent pointer valid over [valid_since, valid_until)."""
    __tablename__ = "node_revision"

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_key = Column(Integer, nullable=False, index=True)
    parent_key = Column(Integer, nullable=True, index=True)
    valid_since = Column(Integer, nullable=False)
    valid_until = Column(Integer, nullable=False)


class ShardVersion(Base):
    """One row per version shard, stamped with its logical creation time."""
    __tablename__ = "shard_version"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(Integer, nullable=False, index=True)


class ShardedNodeRevision(Base):
    """Parent pointer revision tagged with the shard that holds it."""
    __tablename__ = "sharded_node_revision"
    __table_args__ = (
        Index("ix_sharded_revision_version_key", "version", "node_key", "valid_since"),
        Index("ix_sharded_revision_version_parent", "version", "parent_key", "valid_since"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    version = Column(Integer, nullable=False)
    node_key = Column(Integer, nullable=False)
    parent_key = Column(Integer, nullable=True)
    valid_since = Column(Integer, nullable=False)
    valid_until = Column(Integer, nullable=False)


# Byte-order comparison on every backend, so the descendant range scan
# "<path>." < path < "<path>/" can use the index. ascii keeps the MySQL key
# under the InnoDB 3072 byte limit.
PathString = (
    String(2048)
    .with_variant(String(2048, collation="C"), "postgresql")
    .with_variant(mysql.VARCHAR(2048, charset="ascii", collation="ascii_bin"), "mysql", "mariadb")
)


class NodePath(Base):
    """Dot-delimited root-to-node path (e.g. "1.7.12")."""
    __tablename__ = "node_path"

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_key = Column(Integer, nullable=False, index=True)
    path = Column(PathString, nullable=False, index=True)
    valid_since = Column(Integer, nullable=False)
    valid_until = Column(Integer, nullable=False)


class ClosureNode(Base):
    """Node registry for the closure table strategy (roots have no edges)."""
    __tablename__ = "closure_node"

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_key = Column(Integer, nullable=False, index=True)
    valid_since = Column(Integer, nullable=False)
    valid_until = Column(Integer, nullable=False)


class ClosureEdge(Base):
    """
    One reachable (ancestor, descendant) pair.

    level is the hop count between the two (>= 1).
    """
    __tablename__ = "closure_edge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ancestor = Column(Integer, nullable=False, index=True)
    descendant = Column(Integer, nullable=False, index=True)
    level = Column(Integer, nullable=False)
    valid_since = Column(Integer, nullable=False)
    valid_until = Column(Integer, nullable=False)


STRATEGY_TABLES: Dict[str, List[str]] = {
    "parent_pointer": ["node_revision"],
    "parent_pointer_snapshots": ["shard_version", "sharded_node_revision"],
    "materialized_path": ["node_path"],
    "closure_table": ["closure_node", "closure_edge"],
}


def create_schema(engine: Engine, strategy: str) -> None:
    """
    (Re)create the tables for a strategy from scratch.

    Tables of every other strategy are dropped; the strategy's own tables
    are dropped and recreated empty.
    """
    if strategy not in STRATEGY_TABLES:
        raise KeyError(f"No tables registered for strategy {strategy!r}")

    tables = Base.metadata.tables
    Base.metadata.drop_all(engine, tables=[tables[name] for names in STRATEGY_TABLES.values() for name in names])
    Base.metadata.create_all(engine, tables=[tables[name] for name in STRATEGY_TABLES[strategy]])
