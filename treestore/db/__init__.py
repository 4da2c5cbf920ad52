# Database module
from .engine import (
    Base,
    build_engine,
    session_factory,
    session_scope,
    read_scope,
    check_connection,
    db_type,
    database_size_mb,
)
from .schema import STRATEGY_TABLES, create_schema

__all__ = [
    "Base",
    "build_engine",
    "session_factory",
    "session_scope",
    "read_scope",
    "check_connection",
    "db_type",
    "database_size_mb",
    "STRATEGY_TABLES",
    "create_schema",
]
