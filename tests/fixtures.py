"""
Deterministic event fixtures shared by the test modules.
"""

from typing import Any, Dict, List, Optional, Sequence

from roomdag.contracts.events import parse_event
from roomdag.graph import RoomGraph
from roomdag.ingestion import IngestionEngine

ROOM_ID = "!room:example.org"
LOCAL_SERVER = "example.org"
REMOTE_SERVER = "remote.test"


def make_raw_event(
    event_id: str,
    depth: int,
    prev_events: Sequence[Any] = (),
    origin: str = LOCAL_SERVER,
    ts: Optional[int] = None,
    event_type: str = "m.room.message",
    room_id: str = ROOM_ID,
    **extra: Any
) -> Dict[str, Any]:
    """A federation-format event body."""
    raw = {
        "event_id": event_id,
        "room_id": room_id,
        "sender": f"@alice:{origin}",
        "origin": origin,
        "origin_server_ts": ts if ts is not None else 1_600_000_000_000 + depth * 1000,
        "type": event_type,
        "content": {"body": f"message {event_id}"},
        "prev_events": list(prev_events),
        "depth": depth,
        "auth_events": [],
        "hashes": {"sha256": "abc"},
        "signatures": {},
        "unsigned": {},
    }
    raw.update(extra)
    return raw


def make_event(event_id: str, depth: int, prev_events: Sequence[Any] = (), **kwargs):
    return parse_event(make_raw_event(event_id, depth, prev_events, **kwargs))


def chain(*ids: str) -> List[Dict[str, Any]]:
    """
    Linear chain, oldest first: chain("A", "B") gives A (depth 1, no
    parents) and B (depth 2, parent A).
    """
    events = []
    for i, event_id in enumerate(ids):
        prev = [ids[i - 1]] if i > 0 else []
        events.append(make_raw_event(event_id, i + 1, prev))
    return events


def fresh_graph() -> RoomGraph:
    return RoomGraph.empty(ROOM_ID, LOCAL_SERVER)


def ingest_timeline(graph: RoomGraph, events, engine: Optional[IngestionEngine] = None):
    engine = engine or IngestionEngine()
    return engine.ingest_timeline_batch(graph, ROOM_ID, events)


def ingest_backfill(graph: RoomGraph, events, engine: Optional[IngestionEngine] = None):
    engine = engine or IngestionEngine()
    return engine.ingest_backfill_batch(graph, events)
