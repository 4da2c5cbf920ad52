# workload/runner.py
"""
Replay harness that executes a workload against one storage strategy.

The harness:
1. Replays the event log in order (the "setup" phase)
2. Runs every test and checks the store's answer against the expected one
3. Times every store call, per operation kind and per phase
4. Measures the storage footprint once everything has been replayed
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

from treestore.db.engine import database_size_mb, db_type
from treestore.logging import get_logger
from treestore.stores import ParentMismatch, TreeStore

from .models import Event, Test, Workload

logger = get_logger(__name__)


class ReplayError(Exception):
    """Base exception for failed replays. Always fatal to the run."""
    pass


class ParentMismatchError(ReplayError):
    """Raised when the store rejects a change_parent from the event log."""

    def __init__(self, event: Event, mismatch: ParentMismatch):
        self.event = event
        self.mismatch = mismatch
        super().__init__(f"change_parent at {event.timestamp} rejected: {mismatch.message}")


class ValidationError(ReplayError):
    """Raised when a query result differs from the expected one."""

    def __init__(self, test: Test, actual: Any):
        self.test = test
        self.actual = actual
        super().__init__(
            f"{test.kind} test failed at {test.timestamp} for key {test.arguments.get('key')}: "
            f"expected {test.result}, got {actual}"
        )


@dataclass
class ReplayResult:
    """Metrics of one strategy over one workload."""
    strategy: str
    db_type: str
    dataset: str
    metrics: Dict[str, Dict[str, float]] = field(default_factory=dict)
    setup_total: float = 0.0
    tests_total: float = 0.0
    db_size: Optional[float] = None
    row_counts: Dict[str, int] = field(default_factory=dict)
    events: int = 0
    tests: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics,
            "setup_total": self.setup_total,
            "tests_total": self.tests_total,
            "db_size": self.db_size,
            "row_counts": self.row_counts,
            "events": self.events,
            "tests": self.tests,
        }


class ReplayHarness:
    """
    Replays a workload against a store.

    The store is used as-is; call store.reset_schema() first for a clean
    measurement.
    """

    def __init__(self, store: TreeStore, workload: Workload, dataset: str = "workload"):
        self.store = store
        self.workload = workload
        self.dataset = dataset
        self.metrics: Dict[str, Dict[str, float]] = {}

    @contextmanager
    def instrumented(self, label: str) -> Generator[None, None, None]:
        """Time the block and fold it into the metrics for label."""
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            metric = self.metrics.setdefault(label, {"calls": 0, "total_time": 0.0})
            metric["calls"] += 1
            metric["total_time"] += elapsed
            metric["time_per_call"] = metric["total_time"] / metric["calls"]

    def run(self) -> ReplayResult:
        self.metrics = {}
        logger.info(
            "replay_started",
            strategy=self.store.name,
            dataset=self.dataset,
            events=self.workload.event_count,
            tests=self.workload.test_count,
        )

        with self.instrumented("setup_total"):
            for event in self.workload.events:
                self._apply(event)

        with self.instrumented("tests_total"):
            for test in self.workload.tests:
                self._check(test)

        setup_total = self.metrics.pop("setup_total")["time_per_call"]
        tests_total = self.metrics.pop("tests_total")["time_per_call"]

        result = ReplayResult(
            strategy=self.store.name,
            db_type=db_type(self.store.engine),
            dataset=self.dataset,
            metrics=self.metrics,
            setup_total=setup_total,
            tests_total=tests_total,
            db_size=database_size_mb(self.store.engine),
            row_counts=self.store.row_counts(),
            events=self.workload.event_count,
            tests=self.workload.test_count,
        )

        logger.info(
            "replay_completed",
            strategy=result.strategy,
            dataset=result.dataset,
            setup_total=result.setup_total,
            tests_total=result.tests_total,
            db_size=result.db_size,
            row_counts=result.row_counts,
        )
        return result

    def _apply(self, event: Event) -> None:
        args = event.arguments

        if event.kind == "add_node":
            with self.instrumented("add_node"):
                self.store.add_node(event.timestamp, args["key"], args["parent"])

        elif event.kind == "implode_node":
            with self.instrumented("implode_node"):
                self.store.implode_node(event.timestamp, args["key"])

        elif event.kind == "change_parent":
            with self.instrumented("change_parent"):
                mismatch = self.store.change_parent(
                    event.timestamp, args["key"], args["old_parent"], args["new_parent"],
                )
            if mismatch is not None:
                raise ParentMismatchError(event, mismatch)

    def _check(self, test: Test) -> None:
        key = test.arguments["key"]

        if test.kind == "ancestors":
            with self.instrumented("ancestors"):
                actual = self.store.ancestors(test.timestamp, key)
            if actual != test.result:
                logger.error("ancestors_test_failed", timestamp=test.timestamp, key=key,
                             expected=test.result, actual=actual)
                raise ValidationError(test, actual)

        elif test.kind == "descendants":
            with self.instrumented("descendants"):
                actual = self.store.descendants(test.timestamp, key)
            # Descendants are allowed to be unsorted
            if sorted(actual) != sorted(test.result):
                logger.error("descendants_test_failed", timestamp=test.timestamp, key=key,
                             expected=sorted(test.result), actual=sorted(actual))
                raise ValidationError(test, sorted(actual))
