# treestore/db/engine.py
"""
Database engine and session management.

Defaults to a local SQLite file. Any SQLAlchemy URL works (PostgreSQL and
MySQL are what the benchmark is usually pointed at).
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..settings import settings

# Base class for ORM models
Base = declarative_base()

def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for a database URL.

    SQLite files get their parent directory created on demand; server
    databases get a checked connection pool.
    """
    url = make_url(database_url or settings.database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url)

    return create_engine(
        url,
        pool_pre_ping=True,  # Check connection health
        pool_size=10,
        max_overflow=20,
    )


def session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for a transactional unit of work.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.

    Usage:
        with session_scope(factory) as session:
            session.execute(...)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def read_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Session for point-in-time reads. Never commits."""
    session = factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def check_connection(engine: Engine) -> bool:
    """
    Check database connection.

    Returns:
        True if connection successful
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def db_type(engine: Engine) -> str:
    """Dialect family used to label results (sqlite, postgresql, mysql)."""
    return engine.dialect.name


def database_size_mb(engine: Engine) -> Optional[float]:
    """
    Total on-disk size of the database in MB.

    Returns None for backends that cannot report it (in-memory SQLite).
    """
    dialect = db_type(engine)

    with engine.connect() as conn:
        if dialect == "sqlite":
            if not engine.url.database or engine.url.database == ":memory:":
                return None
            page_count = conn.execute(text("PRAGMA page_count")).scalar()
            page_size = conn.execute(text("PRAGMA page_size")).scalar()
            return page_count * page_size / 1024.0 / 1024

        if dialect == "postgresql":
            return float(conn.execute(
                text("SELECT pg_database_size(current_database()) / 1024.0 / 1024")
            ).scalar())

        if dialect == "mysql":
            size = conn.execute(
                text("""
                    SELECT SUM(data_length + index_length) / 1024.0 / 1024
                    FROM information_schema.tables
                    WHERE table_schema = DATABASE()
                """)
            ).scalar()
            return float(size) if size is not None else 0.0

    return None
