# workload/generator.py
"""
Synthetic workload generator.

Grows a random tree, then interleaves random mutations with batches of
point-in-time queries whose expected answers are read off an in-memory
model of the tree. Every action advances the logical clock by one tick.

Mutation mix per update (rand(100)):
- 0-85: add node under a random live node
- 86-95: move a random node under a random non-descendant
- 96-99: implode a random node
Query mix per read (rand(100)):
- 0-80: ancestors
- 81-99: descendants
"""

import random
from typing import Dict, List, Optional, Set

from treestore.logging import get_logger

from .models import Event, Test, Workload

logger = get_logger(__name__)

# Attempts to find a (node, new parent) pair before skipping a move
MAX_MOVE_ATTEMPTS = 1000


class GeneratorTree:
    """
    Arena of live nodes.

    Each node only records its parent key; children are an index derived
    from those parent keys and kept in step with them.
    """

    def __init__(self):
        self.parents: Dict[int, Optional[int]] = {}
        self.children: Dict[int, Set[int]] = {}

    def __contains__(self, key: int) -> bool:
        return key in self.parents

    def __len__(self) -> int:
        return len(self.parents)

    @property
    def keys(self) -> List[int]:
        return list(self.parents)

    def add(self, key: int, parent: Optional[int]) -> None:
        self.parents[key] = parent
        self.children[key] = set()
        if parent is not None:
            self.children[parent].add(key)

    def move(self, key: int, new_parent: Optional[int]) -> None:
        old_parent = self.parents[key]
        if old_parent is not None:
            self.children[old_parent].discard(key)
        self.parents[key] = new_parent
        if new_parent is not None:
            self.children[new_parent].add(key)

    def implode(self, key: int) -> None:
        """Remove key, handing its children to its parent."""
        parent = self.parents[key]
        for child in list(self.children[key]):
            self.move(child, parent)
        if parent is not None:
            self.children[parent].discard(key)
        del self.parents[key]
        del self.children[key]

    def ancestors(self, key: int) -> List[int]:
        result = []
        parent = self.parents[key]
        while parent is not None:
            result.append(parent)
            parent = self.parents[parent]
        return result

    def descendants(self, key: int) -> List[int]:
        result = []
        frontier = [key]
        while frontier:
            frontier = [child for k in frontier for child in sorted(self.children[k])]
            result.extend(frontier)
        return result


class WorkloadGenerator:
    """
    Generates a reproducible workload for a seed.

    Usage:
        workload = WorkloadGenerator(updates=1000, seed=42).generate()
        workload.save("var/medium_set.json")
    """

    def __init__(
        self,
        updates: int = 100,
        reads_per_update: int = 10,
        initial_inserts: int = 50,
        seed: Optional[int] = None,
    ):
        self.updates = updates
        self.reads_per_update = reads_per_update
        self.initial_inserts = initial_inserts
        self.seed = seed if seed is not None else random.randrange(2 ** 32)
        self._reset()

    def _reset(self) -> None:
        self.rng = random.Random(self.seed)
        self.tree = GeneratorTree()
        self.timestamp = 0
        self.next_node_key = 0
        self.events: List[Event] = []
        self.tests: List[Test] = []

    def generate(self) -> Workload:
        self._reset()

        for _ in range(self.initial_inserts):
            self.timestamp += 1
            self._add_node()

        for _ in range(self.updates):
            self.timestamp += 1

            roll = self.rng.randrange(100)
            if roll <= 85:
                self._add_node()
            elif roll <= 95:
                self._change_parent()
            else:
                self._implode_node()

            for _ in range(self.reads_per_update):
                self.timestamp += 1

                if self.rng.randrange(100) <= 80:
                    self._test_ancestors()
                else:
                    self._test_descendants()

        logger.info(
            "workload_generated",
            seed=self.seed,
            events=len(self.events),
            tests=len(self.tests),
            live_nodes=len(self.tree),
            final_timestamp=self.timestamp,
        )
        return Workload(events=self.events, tests=self.tests, seed=self.seed)

    def _sample(self) -> Optional[int]:
        keys = self.tree.keys
        return self.rng.choice(keys) if keys else None

    # ============================================================
    # EVENTS
    # ============================================================

    def _add_node(self) -> None:
        self.next_node_key += 1
        key = self.next_node_key
        parent = self._sample()

        self.tree.add(key, parent)
        self.events.append(Event(self.timestamp, "add_node", {"key": key, "parent": parent}))

    def _implode_node(self) -> None:
        key = self._sample()
        if key is None:
            return

        self.tree.implode(key)
        self.events.append(Event(self.timestamp, "implode_node", {"key": key}))

    def _change_parent(self) -> None:
        # The new parent may be neither the node nor inside its subtree.
        for _ in range(MAX_MOVE_ATTEMPTS):
            key = self._sample()
            if key is None:
                return

            excluded = set(self.tree.descendants(key))
            excluded.add(key)
            candidates = [k for k in self.tree.keys if k not in excluded]
            if candidates:
                new_parent = self.rng.choice(candidates)
                break
        else:
            logger.debug("change_parent_skipped", timestamp=self.timestamp)
            return

        old_parent = self.tree.parents[key]
        self.tree.move(key, new_parent)
        self.events.append(Event(
            self.timestamp,
            "change_parent",
            {"key": key, "old_parent": old_parent, "new_parent": new_parent},
        ))

    # ============================================================
    # TESTS
    # ============================================================

    def _test_ancestors(self) -> None:
        key = self._sample()
        if key is None:
            return
        self.tests.append(Test(self.timestamp, "ancestors", {"key": key}, self.tree.ancestors(key)))

    def _test_descendants(self) -> None:
        key = self._sample()
        if key is None:
            return
        self.tests.append(Test(self.timestamp, "descendants", {"key": key}, self.tree.descendants(key)))
