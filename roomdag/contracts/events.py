"""
Event Contracts

Typed representation of one protocol event, its wire parsing, and the
observability records emitted by every layer.

IDENTITY vs ORDERING:
=====================
- Identity is event_id, and only event_id. Deduplication uses identity.
- Ordering is (depth, origin_server_ts) ascending with no further tie-break.
- The two relations are independent: distinct events may tie under ordering.
  Ordering is an accepted non-strict preorder and is never used to dedup.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
from enum import Enum

from .base import Timestamp


# =============================================================================
# PARSE ERRORS
# =============================================================================

class ParseError(ValueError):
    """A raw event is missing or misshapen on a required field."""

    def __init__(self, field: str, reason: str, event_id: Optional[str] = None):
        self.field = field
        self.reason = reason
        self.event_id = event_id
        super().__init__(f"{field}: {reason}")


# =============================================================================
# EVENT RECORD
# =============================================================================

@dataclass(frozen=True, eq=False)
class Event:
    """
    Immutable protocol event.

    depth is the protocol-declared value; it is trusted, never recomputed.
    Opaque fields (content, auth_events, redacts, unsigned, hashes,
    signatures) are retained verbatim for inspection only.
    """
    event_id: str
    depth: int
    prev_events: Tuple[str, ...]
    room_id: str = ""
    sender: str = ""
    origin: str = ""
    origin_server_ts: int = 0
    event_type: str = ""
    state_key: Optional[str] = None
    content: Mapping[str, Any] = field(default_factory=dict)
    auth_events: Tuple[Any, ...] = field(default_factory=tuple)
    redacts: Optional[str] = None
    unsigned: Mapping[str, Any] = field(default_factory=dict)
    hashes: Mapping[str, Any] = field(default_factory=dict)
    signatures: Mapping[str, Any] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return identity_eq(self, other)

    def __hash__(self) -> int:
        return hash(self.event_id)

    @property
    def is_state(self) -> bool:
        return self.state_key is not None

    def to_dict(self) -> Dict[str, Any]:
        """Return the event body as received (for "inspect body")."""
        if self.raw:
            return dict(self.raw)
        return {
            "event_id": self.event_id,
            "room_id": self.room_id,
            "sender": self.sender,
            "origin": self.origin,
            "origin_server_ts": self.origin_server_ts,
            "type": self.event_type,
            "state_key": self.state_key,
            "content": dict(self.content),
            "prev_events": list(self.prev_events),
            "depth": self.depth,
            "auth_events": list(self.auth_events),
            "redacts": self.redacts,
            "unsigned": dict(self.unsigned),
            "hashes": dict(self.hashes),
            "signatures": dict(self.signatures),
        }


def identity_eq(a: Event, b: Event) -> bool:
    """Events are the same event iff their ids are equal."""
    return a.event_id == b.event_id


def causal_key(event: Event) -> Tuple[int, int]:
    return (event.depth, event.origin_server_ts)


def causal_order(a: Event, b: Event) -> int:
    """
    Compare by depth, then origin_server_ts, both ascending.

    Returns -1, 0 or 1. A 0 result does NOT mean the events are the same
    event; use identity_eq for that.
    """
    ka, kb = causal_key(a), causal_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


# =============================================================================
# WIRE PARSING
# =============================================================================

def normalize_parent_refs(raw_list: Sequence[Any]) -> Tuple[str, ...]:
    """
    Normalize prev_events to bare ids.

    Accepts both wire encodings: a bare id string, or an [id, metadata] pair
    (older room versions carry a hashes map next to the id).
    Order is preserved; a repeated id keeps its first position.
    """
    if isinstance(raw_list, (str, bytes)) or not isinstance(raw_list, (list, tuple)):
        raise ParseError("prev_events", "expected a list of parent references")

    refs = []
    seen = set()
    for position, ref in enumerate(raw_list):
        if isinstance(ref, str):
            parent_id = ref
        elif isinstance(ref, (list, tuple)) and ref and isinstance(ref[0], str):
            parent_id = ref[0]
        else:
            raise ParseError(
                "prev_events",
                f"entry {position} is neither an id nor an [id, metadata] pair"
            )
        if not parent_id:
            raise ParseError("prev_events", f"entry {position} has an empty id")
        if parent_id not in seen:
            seen.add(parent_id)
            refs.append(parent_id)
    return tuple(refs)


def _best_effort_str(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) else ""


def _best_effort_map(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    return dict(value) if isinstance(value, Mapping) else {}


def parse_event(raw: Any) -> Event:
    """
    Parse one raw (federation-format) event.

    REQUIRED (ParseError on failure):
    - event_id: non-empty string
    - depth: integer
    - prev_events: list of ids or [id, metadata] pairs

    Everything else is best-effort: a missing or mistyped optional field
    yields its type's empty value.
    """
    if not isinstance(raw, Mapping):
        raise ParseError("event_id", "event is not a JSON object")

    event_id = raw.get("event_id")
    if not isinstance(event_id, str) or not event_id:
        raise ParseError("event_id", "missing or not a non-empty string")

    depth = raw.get("depth")
    # bool is an int subclass; a boolean depth is malformed
    if isinstance(depth, bool) or not isinstance(depth, int):
        raise ParseError("depth", "missing or not an integer", event_id=event_id)

    if "prev_events" not in raw:
        raise ParseError("prev_events", "missing", event_id=event_id)
    try:
        prev_events = normalize_parent_refs(raw["prev_events"])
    except ParseError as e:
        raise ParseError(e.field, e.reason, event_id=event_id) from e

    ts = raw.get("origin_server_ts")
    origin_server_ts = ts if isinstance(ts, int) and not isinstance(ts, bool) else 0

    state_key = raw.get("state_key")
    redacts = raw.get("redacts")
    auth_events = raw.get("auth_events")

    return Event(
        event_id=event_id,
        depth=depth,
        prev_events=prev_events,
        room_id=_best_effort_str(raw, "room_id"),
        sender=_best_effort_str(raw, "sender"),
        origin=_best_effort_str(raw, "origin"),
        origin_server_ts=origin_server_ts,
        event_type=_best_effort_str(raw, "type"),
        state_key=state_key if isinstance(state_key, str) else None,
        content=_best_effort_map(raw, "content"),
        auth_events=tuple(auth_events) if isinstance(auth_events, list) else (),
        redacts=redacts if isinstance(redacts, str) else None,
        unsigned=_best_effort_map(raw, "unsigned"),
        hashes=_best_effort_map(raw, "hashes"),
        signatures=_best_effort_map(raw, "signatures"),
        raw=dict(raw),
    )


def peek_event_id(raw: Any) -> Optional[str]:
    """Read event_id from a raw event without validating anything else."""
    if isinstance(raw, Mapping):
        event_id = raw.get("event_id")
        if isinstance(event_id, str) and event_id:
            return event_id
    return None


# =============================================================================
# OBSERVABILITY CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    INGESTION = "ingestion"
    PROJECTION = "projection"
    SOURCE = "source"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
