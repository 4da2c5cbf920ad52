# workload/results.py
"""
Replay results file and tab-separated report.

Results accumulate in one JSON file keyed strategy -> db type -> dataset,
so separate replay runs (one per strategy, database and workload) can be
compared side by side afterwards.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from treestore.logging import get_logger

from .runner import ReplayResult

logger = get_logger(__name__)

METRICS = ["add_node", "change_parent", "implode_node", "ancestors", "descendants"]
TOTALS = ["setup_total", "tests_total", "db_size"]


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge update into a copy of base."""
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_results(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        return {}
    return json.loads(path.read_text())


def record_result(path: Union[str, Path], result: ReplayResult) -> Dict[str, Any]:
    """Merge one replay result into the results file and return the whole file."""
    path = Path(path)
    entry = {result.strategy: {result.db_type: {result.dataset: result.to_dict()}}}
    merged = deep_merge(load_results(path), entry)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(merged, indent=2, sort_keys=True))
    logger.info("result_recorded", path=str(path), strategy=result.strategy,
                db_type=result.db_type, dataset=result.dataset)
    return merged


def results_to_rows(results: Dict[str, Any]) -> List[List[Any]]:
    """
    Flatten results into report rows.

    For every db type: a header row per metric or total naming the
    strategies, then one row per dataset with the value for each strategy.
    Missing values are left blank.
    """
    rows: List[List[Any]] = []
    db_types = sorted({db for by_db in results.values() for db in by_db})

    for db in db_types:
        strategies = [s for s in results if db in results[s]]
        datasets = sorted({ds for s in strategies for ds in results[s][db]})
        rows.append(["db", db])

        for metric in METRICS:
            rows.append([metric, *strategies])
            for dataset in datasets:
                rows.append([dataset, *[
                    results[s][db].get(dataset, {}).get("metrics", {}).get(metric, {}).get("time_per_call", "")
                    for s in strategies
                ]])

        for total in TOTALS:
            rows.append([total, *strategies])
            for dataset in datasets:
                rows.append([dataset, *[
                    _blank_if_none(results[s][db].get(dataset, {}).get(total))
                    for s in strategies
                ]])

    return rows


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


def write_report(results: Dict[str, Any], path: Union[str, Path]) -> None:
    rows = results_to_rows(results)
    Path(path).write_text("\n".join("\t".join(str(cell) for cell in row) for row in rows))
    logger.info("report_written", path=str(path), rows=len(rows))
