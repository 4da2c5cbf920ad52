"""
Workload generation and replay from the command line.

Usage:
    python -m workload generate -o var/small_set.json --seed 1
    python -m workload replay closure_table var/small_set.json
    python -m workload replay parent_pointer_snapshots var/small_set.json --snapshot-threshold 500
    python -m workload run-all var/small_set.json var/medium_set.json
    python -m workload report -o var/test_results.tsv
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from treestore.db.engine import build_engine, check_connection
from treestore.logging import configure_logging, get_logger
from treestore.settings import settings
from treestore.stores import STRATEGIES, TreeStoreError, get_store

from .generator import WorkloadGenerator
from .models import Workload, WorkloadError
from .results import load_results, record_result, write_report
from .runner import ReplayError, ReplayHarness

logger = get_logger("workload.cli")


def _store_options(strategy: str, snapshot_threshold: Optional[int]) -> dict:
    if strategy == "parent_pointer_snapshots" and snapshot_threshold is not None:
        return {"snapshot_threshold": snapshot_threshold}
    return {}


def generate(args: argparse.Namespace) -> int:
    workload = WorkloadGenerator(
        updates=args.update_num,
        reads_per_update=args.reads_per_update,
        initial_inserts=args.initial_inserts,
        seed=args.seed,
    ).generate()
    workload.save(args.output_file)
    print(f"Wrote {workload.event_count} events and {workload.test_count} tests "
          f"(seed {workload.seed}) to {args.output_file}")
    return 0


def replay_one(strategy: str, data_file: str, args: argparse.Namespace) -> bool:
    engine = build_engine(args.database_url)
    if not check_connection(engine):
        logger.error("database_unreachable", database_url=engine.url.render_as_string(hide_password=True))
        print(f"FAILED {strategy}: cannot connect to {engine.url}", file=sys.stderr)
        engine.dispose()
        return False

    try:
        store = get_store(strategy, engine, **_store_options(strategy, args.snapshot_threshold))
        store.reset_schema()
        workload = Workload.load(data_file)

        result = ReplayHarness(store, workload, dataset=Path(data_file).name).run()
        record_result(args.results_file, result)
    except (ReplayError, WorkloadError, TreeStoreError) as e:
        logger.exception("replay_failed", strategy=strategy, data_file=data_file, error=str(e))
        print(f"FAILED {strategy} on {data_file}: {e}", file=sys.stderr)
        return False
    finally:
        engine.dispose()

    print(f"{strategy} on {data_file}: setup {result.setup_total:.3f}s, "
          f"tests {result.tests_total:.3f}s, db size {result.db_size} MB")
    return True


def replay(args: argparse.Namespace) -> int:
    return 0 if replay_one(args.strategy, args.data_file, args) else 1


def run_all(args: argparse.Namespace) -> int:
    ok = True
    for strategy in args.strategies or list(STRATEGIES):
        for data_file in args.data_files:
            print(f"RUNNING {strategy} {data_file}")
            ok = replay_one(strategy, data_file, args) and ok
    return 0 if ok else 1


def report(args: argparse.Namespace) -> int:
    write_report(load_results(args.results_file), args.output_file)
    print(f"Wrote {args.output_file}")
    return 0


def _add_replay_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--database-url", default=settings.database_url,
                        help="SQLAlchemy database URL (default: DATABASE_URL)")
    parser.add_argument("--snapshot-threshold", type=int, default=None,
                        help="Ticks between snapshots for parent_pointer_snapshots")
    parser.add_argument("--results-file", default=settings.results_file,
                        help="JSON file results are merged into")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m workload", description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--plain-logs", action="store_true", help="Plain text instead of JSON logs")
    parser.add_argument("--log-file", default=settings.log_file, help="Also write JSON logs to this file")
    commands = parser.add_subparsers(dest="command", required=True)

    gen = commands.add_parser("generate", help="Generate a workload file")
    gen.add_argument("-o", "--output-file", required=True)
    gen.add_argument("--seed", type=int, default=None)
    gen.add_argument("--initial-inserts", type=int, default=settings.initial_inserts)
    gen.add_argument("--update-num", type=int, default=settings.update_num)
    gen.add_argument("--reads-per-update", type=int, default=settings.reads_per_update)
    gen.set_defaults(handler=generate)

    rep = commands.add_parser("replay", help="Replay a workload against one strategy")
    rep.add_argument("strategy", choices=list(STRATEGIES))
    rep.add_argument("data_file")
    _add_replay_options(rep)
    rep.set_defaults(handler=replay)

    every = commands.add_parser("run-all", help="Replay workloads against every strategy")
    every.add_argument("data_files", nargs="+")
    every.add_argument("--strategy", dest="strategies", action="append", choices=list(STRATEGIES),
                       help="Limit to this strategy (repeatable)")
    _add_replay_options(every)
    every.set_defaults(handler=run_all)

    rpt = commands.add_parser("report", help="Write the tab-separated results report")
    rpt.add_argument("--results-file", default=settings.results_file)
    rpt.add_argument("-o", "--output-file", default="test_results.tsv")
    rpt.set_defaults(handler=report)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json_output=not args.plain_logs,
                      log_file=args.log_file, force=True)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
