import argparse
import json
import logging
import os

from .config import ExplorerConfig
from .database import Database
from .delivery_queue import DeliveryQueue
from .map_store import AppMapStore
from .q_learning import ExplorationQLearning
from .value_store import ValueStore

logging.basicConfig(level=logging.INFO)


def _stats(args, maps: AppMapStore, values: ValueStore, queue: DeliveryQueue) -> int:
    s = maps.stats()
    print(f"Learned maps: {s.total_apps} apps, {s.total_screens} screens, {s.total_paths} transitions")
    q = ExplorationQLearning(values).statistics()
    print(
        f"Value table: {q.table_size} entries, {q.total_visits} visits, "
        f"avg Q {q.average_q:.3f} (min {q.min_q:.3f}, max {q.max_q:.3f}), "
        f"{q.dangerous_patterns} dangerous patterns"
    )
    print(f"Delivery queue: {queue.size()} pending entries")
    return 0


def _export(args, maps: AppMapStore, values: ValueStore, queue: DeliveryQueue) -> int:
    learned = maps.get_map(args.package)
    if learned is None:
        print(f"No learned map for {args.package}")
        return 1
    os.makedirs(args.out, exist_ok=True)
    base = os.path.join(args.out, args.package)
    with open(f"{base}.map.json", "w", encoding="utf-8") as fh:
        json.dump(learned.to_json(), fh, indent=2)
    maps.export_graphml(args.package, f"{base}.graphml")
    table = ExplorationQLearning(values).export_table(args.package)
    with open(f"{base}.values.json", "w", encoding="utf-8") as fh:
        fh.write(table.to_wire())
    print(f"Exported {len(learned.screens)} screens and {len(table.q_values)} values to {args.out}")
    return 0


def _path(args, maps: AppMapStore, values: ValueStore, queue: DeliveryQueue) -> int:
    route = maps.find_best_path(args.package, args.source, args.target)
    if route is None:
        print(f"No path from {args.source} to {args.target}")
        return 1
    print(f"{' -> '.join(route.screens)} (reliability {route.reliability:.3f})")
    for step in route.steps:
        print(f"  {step.action_type}: {step.element_text or step.element_id}")
    return 0


def _prune(args, maps: AppMapStore, values: ValueStore, queue: DeliveryQueue) -> int:
    removed = values.prune()
    values.flush_writes()
    print(f"Pruned {removed} value entries, {len(values)} remaining")
    return 0


def _clear(args, maps: AppMapStore, values: ValueStore, queue: DeliveryQueue) -> int:
    if not maps.has_map(args.package):
        print(f"No learned map for {args.package}")
        return 1
    maps.clear_map(args.package)
    print(f"Cleared learned map for {args.package}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect and maintain App-Explorer learned data")
    parser.add_argument("--db", help="SQLite database path (default: APP_EXPLORER_DB_PATH or app_explorer.db)")
    parser.add_argument("--env-file", help="Optional .env file with APP_EXPLORER_* settings")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show map, value-table and queue statistics").set_defaults(func=_stats)

    p = sub.add_parser("export", help="Export map JSON, GraphML and value table for a package")
    p.add_argument("package")
    p.add_argument("--out", default="exports", help="Directory to write the export files to")
    p.set_defaults(func=_export)

    p = sub.add_parser("path", help="Show the best learned route between two screens")
    p.add_argument("package")
    p.add_argument("source")
    p.add_argument("target")
    p.set_defaults(func=_path)

    sub.add_parser("prune", help="Shrink the value table back under its capacity").set_defaults(func=_prune)

    p = sub.add_parser("clear", help="Drop the learned map of a package")
    p.add_argument("package")
    p.set_defaults(func=_clear)

    args = parser.parse_args()
    config = ExplorerConfig.from_env(args.env_file)

    with Database(args.db or config.db_path) as db:
        maps = AppMapStore(db, max_apps=config.max_apps)
        values = ValueStore(db, max_entries=config.value_table_max_entries)
        queue = DeliveryQueue(db, max_size=config.queue_max_size, max_retries=config.queue_max_retries)
        code = args.func(args, maps, values, queue)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
