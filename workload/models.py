# workload/models.py
"""
Workload exchange format.

A workload is an ordered event log (tree mutations) plus a test log
(point-in-time queries with their expected answers), both stamped with
increasing logical timestamps. Saved as JSON.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

EVENT_KINDS = ("add_node", "implode_node", "change_parent")
TEST_KINDS = ("ancestors", "descendants")


class WorkloadError(Exception):
    """Raised when a workload file is malformed."""
    pass


@dataclass
class Event:
    """
    One tree mutation.

    arguments by kind:
    - add_node: key, parent
    - implode_node: key
    - change_parent: key, old_parent, new_parent
    """
    timestamp: int
    kind: str
    arguments: Dict[str, Optional[int]]

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "kind": self.kind, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        if data.get("kind") not in EVENT_KINDS:
            raise WorkloadError(f"Unknown event kind: {data.get('kind')!r}")
        return cls(timestamp=int(data["timestamp"]), kind=data["kind"], arguments=dict(data["arguments"]))


@dataclass
class Test:
    """One query with its expected result (descendants compare unordered)."""
    __test__ = False  # not a pytest class

    timestamp: int
    kind: str
    arguments: Dict[str, int]
    result: List[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "kind": self.kind,
            "arguments": self.arguments,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Test":
        if data.get("kind") not in TEST_KINDS:
            raise WorkloadError(f"Unknown test kind: {data.get('kind')!r}")
        return cls(
            timestamp=int(data["timestamp"]),
            kind=data["kind"],
            arguments=dict(data["arguments"]),
            result=list(data["result"]),
        )


@dataclass
class Workload:
    """Event log + test log + the seed that produced them."""
    events: List[Event] = field(default_factory=list)
    tests: List[Test] = field(default_factory=list)
    seed: Optional[int] = None

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def test_count(self) -> int:
        return len(self.tests)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "events": [e.to_dict() for e in self.events],
            "tests": [t.to_dict() for t in self.tests],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workload":
        try:
            return cls(
                events=[Event.from_dict(e) for e in data["events"]],
                tests=[Test.from_dict(t) for t in data["tests"]],
                seed=data.get("seed"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise WorkloadError(f"Malformed workload: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict()))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Workload":
        try:
            data = json.loads(Path(path).read_text())
        except json.JSONDecodeError as e:
            raise WorkloadError(f"{path} is not valid JSON: {e}") from e
        return cls.from_dict(data)
