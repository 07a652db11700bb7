"""
Forensic Inspector CLI
======================

Rebuilds a room graph offline from saved batches and inspects it.
Bypasses the API: batches are read from JSON files and applied to a fresh
observation in the order given (all timeline files, then all backfill files).

BATCH FILES:
- timeline: {"room_id": "...", "events": [...]}
- backfill: {"events": [...]} or a bare list of events

COMMANDS:
- frontier: heads, tails and orphans (JSON)
- snapshot: full node/edge projection (JSON)
- dot:      Graphviz text
- report:   per-batch ingestion reports and graph summary

USAGE:
    python -m roomdag.forensic --timeline t.json --backfill b.json report
"""
import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .contracts.base import Timestamp
from .contracts.projection import IngestionReport
from .engine import ObservationConfig, RoomObservation
from .projection import ProjectionConfig, parse_label_fields


def load_batch(path: str) -> Dict[str, Any]:
    """Load one batch file. A bare list is treated as {"events": list}."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, list):
        return {"events": data}
    if not isinstance(data, dict) or not isinstance(data.get("events", []), list):
        raise ValueError(f"{path}: expected an object with an 'events' list")
    return data


def build_observation(args) -> Tuple[RoomObservation, List[IngestionReport]]:
    timeline_batches = [load_batch(p) for p in args.timeline]
    backfill_batches = [load_batch(p) for p in args.backfill]

    room_id = args.room_id
    if room_id is None:
        room_id = next(
            (b["room_id"] for b in timeline_batches if "room_id" in b), ""
        )

    fields = (
        parse_label_fields(args.fields.split(","))
        if args.fields else ProjectionConfig().default_fields
    )
    observation = RoomObservation(ObservationConfig(
        room_id=room_id,
        server_name=args.server_name,
        label_fields=fields,
    ))

    reports = []
    for batch in timeline_batches:
        reports.append(observation.ingest_timeline_batch(
            batch.get("room_id", room_id), batch.get("events", [])
        ))
    for batch in backfill_batches:
        reports.append(observation.ingest_backfill_batch(batch.get("events", [])))
    return observation, reports


def cmd_frontier(observation: RoomObservation, args):
    print(json.dumps(observation.frontier().to_dict(), indent=2))


def cmd_snapshot(observation: RoomObservation, args):
    print(json.dumps(observation.snapshot().to_dict(), indent=2))


def cmd_dot(observation: RoomObservation, args):
    print(observation.to_dot())


def _describe_event(observation: RoomObservation, event_id: Optional[str]) -> str:
    if event_id is None:
        return "-"
    event = observation.get_event(event_id)
    ts = Timestamp.from_millis(event.origin_server_ts).to_iso()
    return f"{event_id} (depth {event.depth}, {ts})"


def cmd_report(observation: RoomObservation, args, reports: Sequence[IngestionReport]):
    stats = observation.stats()
    print(f"ROOM {stats['room_id']} AS SEEN BY {stats['server_name']}")
    print("=" * 60)
    print("BATCH | DIR | RECEIVED | ADDED | DUP | EDGES | SKIPPED")
    print("-" * 60)
    for r in reports:
        status = "" if r.applied else " [IGNORED]"
        print(
            f"{r.batch_id[:14]} | {r.direction.value:<8} | {r.received:<8} | "
            f"{r.added:<5} | {r.duplicates:<3} | {r.new_edges:<5} | {r.skipped}{status}"
        )
        for error in r.errors:
            print(f"    [{error.code.name}] {error.message}")

    print()
    print(f"Nodes:    {stats['nodes']}")
    print(f"Edges:    {stats['edges']}")
    print(f"Heads:    {stats['heads']}")
    print(f"Tails:    {stats['tails']}")
    print(f"Orphans:  {stats['orphans']}")
    print(f"Depths:   {stats['min_depth']} .. {stats['max_depth']}")
    print(f"Latest:   {_describe_event(observation, stats['latest_event_id'])}")
    print(f"Earliest: {_describe_event(observation, stats['earliest_event_id'])}")

    orphans = observation.frontier().orphans
    if orphans:
        print("\nORPHANS (missing parents)")
        for orphan in orphans:
            print(f"  {orphan.id} @ depth {orphan.depth}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Room DAG forensic inspector")
    parser.add_argument("--timeline", action="append", default=[], help="Timeline batch file (repeatable)")
    parser.add_argument("--backfill", action="append", default=[], help="Backfill batch file (repeatable)")
    parser.add_argument("--room-id", default=None, help="Observed room (default: first timeline batch's)")
    parser.add_argument("--server-name", default="localhost", help="Observing authority")
    parser.add_argument("--fields", default=None, help="Comma separated label fields")
    parser.add_argument("--strict", action="store_true", help="Exit 1 if any event was skipped")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("frontier", help="Show heads, tails and orphans")
    subparsers.add_parser("snapshot", help="Dump full projection")
    subparsers.add_parser("dot", help="Dump Graphviz text")
    subparsers.add_parser("report", help="Summarize batches and graph")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    try:
        observation, reports = build_observation(args)
    except (OSError, ValueError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 2

    if args.command == "frontier":
        cmd_frontier(observation, args)
    elif args.command == "snapshot":
        cmd_snapshot(observation, args)
    elif args.command == "dot":
        cmd_dot(observation, args)
    elif args.command == "report":
        cmd_report(observation, args, reports)

    skipped = sum(r.skipped for r in reports)
    if args.strict and skipped:
        print(f"[FAIL] {skipped} event(s) skipped", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
