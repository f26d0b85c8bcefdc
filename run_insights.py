"""Command-line launcher printing metrics or graph views as JSON.

Usage:
  python run_insights.py metrics --days 14
  python run_insights.py graph --epic nacre-1 --type bug --type task
  python run_insights.py watch
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading

from beads_app.core.beads_client import JsonlFileSource
from beads_app.core.service import InsightService
from beads_app.core.settings import load_settings

logger = logging.getLogger("beads_app")


def _build_service(args: argparse.Namespace) -> InsightService:
    settings = load_settings(args.project_dir)
    if args.issues_file:
        return InsightService(JsonlFileSource(args.issues_file, args.events_file), settings)
    return InsightService.for_project(args.project_dir, settings)


def _print(payload: dict) -> None:
    json.dump(payload, sys.stdout, sort_keys=True, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delivery metrics and dependency graphs for a beads project")
    parser.add_argument("--project-dir", default=None, help="Directory containing the .beads database")
    parser.add_argument("--issues-file", default=None, help="Read an exported issues JSONL file instead of bd")
    parser.add_argument("--events-file", default=None, help="Activity JSON/JSONL file used with --issues-file")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    metrics_p = sub.add_parser("metrics", help="Lead time, cycle time, throughput and activity")
    metrics_p.add_argument("--days", type=int, default=None)

    graph_p = sub.add_parser("graph", help="Dependency graph, optionally scoped to an epic")
    graph_p.add_argument("--epic", default=None)
    graph_p.add_argument("--type", dest="types", action="append", default=None)

    sub.add_parser("epics", help="Per-epic completion")
    sub.add_parser("watch", help="Print a line every time the data changes")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = _build_service(args)
    if args.command == "metrics":
        _print(service.metrics(days=args.days).to_dict())
    elif args.command == "graph":
        _print(service.graph(args.epic, args.types).to_dict())
    elif args.command == "epics":
        _print({"epics": [p.to_dict() for p in service.epic_progress()]})
    else:
        service.subscribe(lambda: logger.info("Data changed: %s", json.dumps(service.health(), sort_keys=True)))
        with service:
            logger.info("Watching for changes (Ctrl+C to stop)")
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
