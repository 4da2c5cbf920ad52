"""
Pytest configuration and fixtures.

Stores run against a throwaway SQLite file per test. Set TEST_DATABASE_URL
to run the same suite against PostgreSQL or MySQL instead; every store
fixture recreates its tables, so the database must be disposable.
"""

import os

import pytest

from treestore.db.engine import build_engine
from treestore.stores import STRATEGIES, get_store

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

# Small enough that a short test sequence crosses several shards
TEST_SNAPSHOT_THRESHOLD = 3


@pytest.fixture
def engine(tmp_path):
    """Engine for a fresh database."""
    url = TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'treestore.db'}"
    eng = build_engine(url)
    yield eng
    eng.dispose()


def make_store(name, engine, **options):
    if name == "parent_pointer_snapshots":
        options.setdefault("snapshot_threshold", TEST_SNAPSHOT_THRESHOLD)
    store = get_store(name, engine, **options)
    store.reset_schema()
    return store


@pytest.fixture(params=list(STRATEGIES))
def store(request, engine):
    """Each strategy in turn, on empty tables."""
    return make_store(request.param, engine)


@pytest.fixture
def store_factory(engine):
    """Build any strategy on the test engine."""
    def factory(name, **options):
        return make_store(name, engine, **options)
    return factory


# ============================================================
# AUTO-MARKER FOR DATABASE TESTS
# ============================================================
# Tests that touch a database get @pytest.mark.requires_db so
# "pytest -m 'not requires_db'" runs only the pure ones.

DB_FIXTURES = {"engine", "store", "store_factory"}


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests that use database fixtures."""
    requires_db_marker = pytest.mark.requires_db

    for item in items:
        if hasattr(item, "fixturenames"):
            if any(fixture in DB_FIXTURES for fixture in item.fixturenames):
                if not any(mark.name == "requires_db" for mark in item.iter_markers()):
                    item.add_marker(requires_db_marker)
