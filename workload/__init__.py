"""
Workload generation and replay for the tree store benchmark.

Usage:
    from workload import WorkloadGenerator, ReplayHarness
    workload = WorkloadGenerator(updates=500, seed=7).generate()
    result = ReplayHarness(store, workload, dataset="adhoc").run()
"""

from .generator import GeneratorTree, WorkloadGenerator
from .models import Event, Test, Workload, WorkloadError
from .results import load_results, record_result, results_to_rows, write_report
from .runner import (
    ParentMismatchError,
    ReplayError,
    ReplayHarness,
    ReplayResult,
    ValidationError,
)

__all__ = [
    # Generation
    "GeneratorTree",
    "WorkloadGenerator",
    "Event",
    "Test",
    "Workload",
    "WorkloadError",
    # Replay
    "ReplayHarness",
    "ReplayResult",
    "ReplayError",
    "ParentMismatchError",
    "ValidationError",
    # Results
    "load_results",
    "record_result",
    "results_to_rows",
    "write_report",
]
