"""
Test version sharding in the snapshotted parent pointer store.
"""

from sqlalchemy import text

from treestore.stores import SnapshottedParentPointerStore


def shard_times(store):
    with store.engine.connect() as conn:
        return [row.created_at for row in conn.execute(
            text("SELECT created_at FROM shard_version ORDER BY id")
        )]


def rows_in_shard(store, version):
    with store.engine.connect() as conn:
        return conn.execute(
            text("SELECT COUNT(*) FROM sharded_node_revision WHERE version = :version"),
            {"version": version},
        ).scalar()


def chain(store, count):
    """Add keys 1..count as a chain, one per tick."""
    for key in range(1, count + 1):
        store.add_node(key, key, key - 1 if key > 1 else None)


class TestShardCreation:
    """Tests for when shards are cut and what they hold."""

    def test_first_mutation_creates_initial_shard(self, store_factory):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=100)
        assert store.current_version is None

        store.add_node(1, 1, None)

        assert shard_times(store) == [0]
        assert store.current_version is not None

    def test_shard_cut_after_threshold(self, store_factory):
        """A shard is cut once more than threshold ticks have passed."""
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)

        chain(store, 8)

        assert shard_times(store) == [0, 4, 8]

    def test_shard_copies_open_revisions_forward(self, store_factory):
        """Each new shard starts with one row per live key."""
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)

        chain(store, 8)

        # shard 1: keys 1-3; shard 2: copies of 1-3 plus 4-7; shard 3: copies of 1-7 plus 8
        assert rows_in_shard(store, 1) == 3
        assert rows_in_shard(store, 2) == 7
        assert rows_in_shard(store, 3) == 8
        assert store.current_version == 3

    def test_copy_skips_closed_revisions(self, store_factory):
        """Only the open revision of a moved node is carried over."""
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        chain(store, 3)
        store.change_parent(4, 3, 2, 1)  # cuts shard 2 before moving

        store.add_node(8, 4, 3)  # cuts shard 3

        assert rows_in_shard(store, 2) == 4  # copies of 1-3, new revision of 3
        assert rows_in_shard(store, 3) == 4  # 1, 2, moved 3, and 4
        assert store.ancestors(9, 4) == [3, 1]

    def test_late_first_mutation_opens_single_shard(self, store_factory):
        """A first write past the threshold opens one shard at its own time."""
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)

        store.add_node(10, 1, None)
        store.add_node(11, 2, 1)

        assert shard_times(store) == [10]
        assert store.current_version == 1
        assert rows_in_shard(store, 1) == 2
        assert store.ancestors(12, 2) == [1]
        assert store.descendants(9, 1) == set()

    def test_large_threshold_keeps_one_shard(self, store_factory):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=10 ** 6)

        chain(store, 20)

        assert shard_times(store) == [0]


class TestShardReads:
    """Reads resolve the shard that was current at the read time."""

    def test_reads_in_older_shards(self, store_factory):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        chain(store, 8)

        assert store.ancestors(3, 2) == [1]
        assert store.descendants(3, 1) == {2}
        assert store.ancestors(6, 5) == [4, 3, 2, 1]
        assert store.ancestors(9, 8) == [7, 6, 5, 4, 3, 2, 1]

    def test_read_at_shard_boundary(self, store_factory):
        """A read stamped with a shard's creation time sees the pre-event state."""
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        chain(store, 3)
        store.implode_node(4, 2)

        assert shard_times(store) == [0, 4]
        assert store.ancestors(4, 3) == [2, 1]
        assert store.ancestors(5, 3) == [1]


class TestShardPointer:
    """The current shard is per-instance state."""

    def test_mismatch_does_not_publish_shard(self, store_factory):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        chain(store, 3)
        version = store.current_version

        mismatch = store.change_parent(10, 3, 99, 1)

        assert mismatch is not None
        assert store.current_version == version
        assert shard_times(store) == [0]

    def test_instances_do_not_share_pointer(self, store_factory, engine):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        other = SnapshottedParentPointerStore(engine, snapshot_threshold=3)

        chain(store, 8)

        assert store.current_version == 3
        assert other.current_version is None

    def test_resume_picks_up_latest_shard(self, store_factory, engine):
        store = store_factory("parent_pointer_snapshots", snapshot_threshold=3)
        chain(store, 8)

        reopened = SnapshottedParentPointerStore(engine, snapshot_threshold=3)
        reopened.resume()
        reopened.add_node(9, 9, 8)

        assert reopened.current_version == 3
        assert shard_times(reopened) == [0, 4, 8]
        assert reopened.ancestors(10, 9)[:2] == [8, 7]
