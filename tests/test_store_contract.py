"""
Test the shared mutation/query contract.

Every test runs once per strategy (see the store fixture in conftest).
"""

import pytest
from sqlalchemy.orm import Session

from treestore.stores import ParentMismatch


def build(store, *events):
    """Apply (timestamp, key, parent) adds in order."""
    for timestamp, key, parent in events:
        store.add_node(timestamp, key, parent)


class TestAddNode:
    """Tests for add_node and basic reads."""

    def test_children_of_root(self, store):
        """Two children under a root are visible after they are added."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 1))

        assert store.ancestors(4, 2) == [1]
        assert store.ancestors(4, 3) == [1]
        assert sorted(store.descendants(4, 1)) == [2, 3]

    def test_ancestors_nearest_first(self, store):
        """Ancestors run from the parent up to the root."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2), (4, 4, 3))

        assert store.ancestors(5, 4) == [3, 2, 1]
        assert store.ancestors(5, 4) == [3] + store.ancestors(5, 3)
        assert store.ancestors(5, 1) == []

    def test_node_not_visible_at_its_own_timestamp(self, store):
        """A read stamped t sees the state before the event stamped t."""
        build(store, (1, 1, None), (2, 2, 1))

        assert store.ancestors(2, 2) == []
        assert store.descendants(2, 1) == set()
        assert store.ancestors(3, 2) == [1]

    def test_unknown_key_is_empty(self, store):
        """Unknown keys give empty results, not errors."""
        build(store, (1, 1, None), (2, 2, 1))

        assert store.ancestors(10, 999) == []
        assert store.descendants(10, 999) == set()

    def test_queries_before_any_event(self, store):
        """An empty store answers every query with nothing."""
        assert store.ancestors(1, 1) == []
        assert store.descendants(1, 1) == set()

    def test_reads_are_idempotent(self, store):
        """Repeated reads agree and change no rows."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2))
        before = store.row_counts()

        first = (store.ancestors(4, 3), store.descendants(4, 1))
        second = (store.ancestors(4, 3), store.descendants(4, 1))

        assert first == second
        assert store.row_counts() == before


class TestImplodeNode:
    """Tests for implode_node."""

    def test_implode_root(self, store):
        """Imploding the root turns its children into roots."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 1))

        store.implode_node(5, 1)

        assert store.ancestors(6, 2) == []
        assert store.ancestors(6, 3) == []
        assert store.descendants(6, 2) == set()
        assert store.descendants(6, 1) == set()

    def test_implode_preserves_grandchildren(self, store):
        """Children move up to the removed node's parent, deeper levels keep their shape."""
        # 1 -> 2 -> (3, 4), 3 -> 5
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2), (4, 4, 2), (5, 5, 3))

        store.implode_node(6, 2)

        assert store.ancestors(7, 3) == [1]
        assert store.ancestors(7, 4) == [1]
        assert store.ancestors(7, 5) == [3, 1]
        assert sorted(store.descendants(7, 1)) == [3, 4, 5]
        assert store.descendants(7, 3) == {5}
        assert store.ancestors(7, 2) == []
        assert store.descendants(7, 2) == set()

    def test_history_survives_implode(self, store):
        """Reads before the implosion still see the removed node."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2))

        store.implode_node(5, 2)

        assert store.ancestors(4, 3) == [2, 1]
        assert sorted(store.descendants(4, 1)) == [2, 3]
        assert store.ancestors(6, 3) == [1]

    def test_implode_leaf(self, store):
        """Imploding a leaf just removes it."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2))

        store.implode_node(4, 3)

        assert store.descendants(5, 1) == {2}
        assert store.ancestors(5, 3) == []


class TestChangeParent:
    """Tests for change_parent."""

    def _tree(self, store):
        # 1 -> (2, 5), 2 -> 3 -> 4
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2), (4, 4, 3), (5, 5, 1))

    def test_move_subtree(self, store):
        """The whole subtree follows the moved node."""
        self._tree(store)

        assert store.change_parent(6, 2, 1, 5) is None

        assert store.ancestors(7, 2) == [5, 1]
        assert store.ancestors(7, 4) == [3, 2, 5, 1]
        assert sorted(store.descendants(7, 5)) == [2, 3, 4]
        assert sorted(store.descendants(7, 1)) == [2, 3, 4, 5]
        assert store.descendants(7, 2) == {3, 4}

    def test_move_drops_old_parent(self, store):
        """Descendants lose the old parent unless it is above the new one."""
        # 1 -> 2 -> 3, 1 -> 4 -> 5; move 3 from 2 to 5
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2), (4, 4, 1), (5, 5, 4))

        store.change_parent(6, 3, 2, 5)

        assert 2 not in store.ancestors(7, 3)
        assert store.ancestors(7, 3) == [5, 4, 1]
        assert store.descendants(7, 2) == set()

    def test_history_survives_move(self, store):
        """Reads before the move see the old placement."""
        self._tree(store)

        store.change_parent(6, 2, 1, 5)

        assert store.ancestors(6, 4) == [3, 2, 1]
        assert store.descendants(6, 5) == set()
        assert store.ancestors(7, 4) == [3, 2, 5, 1]

    def test_move_to_root(self, store):
        """A None new parent detaches the subtree as its own tree."""
        self._tree(store)

        store.change_parent(6, 2, 1, None)

        assert store.ancestors(7, 4) == [3, 2]
        assert store.ancestors(7, 2) == []
        assert store.descendants(7, 1) == {5}

    def test_moves_in_sequence(self, store):
        """Successive moves each see the previous one."""
        self._tree(store)

        store.change_parent(6, 2, 1, 5)
        store.change_parent(7, 3, 2, 1)

        assert store.ancestors(8, 4) == [3, 1]
        assert store.descendants(8, 2) == set()
        assert sorted(store.descendants(8, 5)) == [2]

    def test_mismatched_parent_rejected(self, store):
        """A wrong old parent is reported and nothing changes."""
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2))
        before = store.row_counts()

        result = store.change_parent(4, 2, 99, None)

        assert isinstance(result, ParentMismatch)
        assert result.key == 2
        assert result.asserted == 99
        assert result.actual == 1
        assert store.row_counts() == before
        assert store.ancestors(5, 3) == [2, 1]

    def test_root_asserted_as_child_rejected(self, store):
        """Asserting a parent for a root is a mismatch."""
        build(store, (1, 1, None), (2, 2, None))

        result = store.change_parent(3, 2, 1, 1)

        assert result == ParentMismatch(key=2, asserted=1, actual=None)
        assert store.ancestors(4, 2) == []

    def test_unknown_node_rejected(self, store):
        """Moving a node that is not live is a mismatch."""
        build(store, (1, 1, None))

        result = store.change_parent(2, 42, None, 1)

        assert isinstance(result, ParentMismatch)
        assert result.exists is False
        assert store.descendants(3, 1) == set()


class WriteFailure(Exception):
    """Raised in place of a write statement."""


def fail_second_write(monkeypatch):
    """Let the first INSERT/UPDATE of the next mutation run, then fail."""
    original = Session.execute
    writes = []

    def execute(session, statement, *args, **kwargs):
        if str(statement).lstrip().upper().startswith(("INSERT", "UPDATE")):
            writes.append(statement)
            if len(writes) == 2:
                raise WriteFailure(str(statement))
        return original(session, statement, *args, **kwargs)

    monkeypatch.setattr(Session, "execute", execute)
    return writes


def snapshot(store, timestamp, keys):
    return {
        key: (store.ancestors(timestamp, key), sorted(store.descendants(timestamp, key)))
        for key in keys
    }


class TestFailedMutation:
    """A mutation that fails part way leaves no trace."""

    KEYS = [1, 2, 3, 4, 5]

    def _tree(self, store):
        # 1 -> (2, 5), 2 -> (3, 4); with 3-tick shards the next write at 9 cuts a shard
        build(store, (1, 1, None), (2, 2, 1), (3, 3, 2), (4, 4, 2), (5, 5, 1))

    @pytest.mark.parametrize("mutation", [
        lambda store: store.implode_node(9, 2),
        lambda store: store.change_parent(9, 2, 1, 5),
    ], ids=["implode_node", "change_parent"])
    def test_rolled_back_after_first_write(self, store, monkeypatch, mutation):
        self._tree(store)
        rows_before = store.row_counts()
        answers_before = snapshot(store, 10, self.KEYS)
        version_before = getattr(store, "current_version", None)

        writes = fail_second_write(monkeypatch)
        with pytest.raises(WriteFailure):
            mutation(store)
        monkeypatch.undo()

        assert len(writes) == 2
        assert store.row_counts() == rows_before
        assert snapshot(store, 10, self.KEYS) == answers_before
        assert getattr(store, "current_version", None) == version_before

    def test_store_usable_after_failure(self, store, monkeypatch):
        self._tree(store)

        fail_second_write(monkeypatch)
        with pytest.raises(WriteFailure):
            store.change_parent(9, 2, 1, 5)
        monkeypatch.undo()

        assert store.change_parent(9, 2, 1, 5) is None
        assert store.ancestors(10, 4) == [2, 5, 1]
