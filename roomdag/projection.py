"""
Projection Builder

Turns internal events and edges into render-ready records.

MAPPING RULES:
==============
1. level is the declared depth, unmodified
2. Labels list the selected fields in ONE canonical order, whatever order
   the caller selected them in
3. Color depends only on whether the event originated at the observing
   authority
4. Changing the selected fields is a configuration change: callers
   re-project every node, there is no incremental relabel
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Tuple
from enum import Enum
import json

from .contracts.events import Event
from .contracts.projection import EdgeProjection, NodeColor, NodeProjection


# =============================================================================
# LABEL FIELDS (canonical order is declaration order)
# =============================================================================

class LabelField(Enum):
    ROOM_ID = "room_id"
    SENDER = "sender"
    ORIGIN = "origin"
    ORIGIN_SERVER_TS = "origin_server_ts"
    TYPE = "type"
    STATE_KEY = "state_key"
    CONTENT = "content"
    PREV_EVENTS = "prev_events"
    DEPTH = "depth"
    AUTH_EVENTS = "auth_events"
    REDACTS = "redacts"
    UNSIGNED = "unsigned"
    EVENT_ID = "event_id"
    HASHES = "hashes"
    SIGNATURES = "signatures"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: Dict[LabelField, str] = {
    LabelField.ROOM_ID: "Room ID",
    LabelField.SENDER: "Sender",
    LabelField.ORIGIN: "Origin",
    LabelField.ORIGIN_SERVER_TS: "Origin server time",
    LabelField.TYPE: "Type",
    LabelField.STATE_KEY: "State key",
    LabelField.CONTENT: "Content",
    LabelField.PREV_EVENTS: "Previous events",
    LabelField.DEPTH: "Depth",
    LabelField.AUTH_EVENTS: "Auth events",
    LabelField.REDACTS: "Redacts",
    LabelField.UNSIGNED: "Unsigned",
    LabelField.EVENT_ID: "Event ID",
    LabelField.HASHES: "Hashes",
    LabelField.SIGNATURES: "Signatures",
}

CANONICAL_ORDER: Tuple[LabelField, ...] = tuple(LabelField)


def _render_map(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _render_refs(refs: Iterable[Any]) -> str:
    # auth_events stay verbatim, so a ref may still be an [id, hashes] pair
    return ", ".join(r if isinstance(r, str) else _render_map(r) for r in refs)


_FIELD_VALUES: Dict[LabelField, Callable[[Event], str]] = {
    LabelField.ROOM_ID: lambda e: e.room_id,
    LabelField.SENDER: lambda e: e.sender,
    LabelField.ORIGIN: lambda e: e.origin,
    LabelField.ORIGIN_SERVER_TS: lambda e: str(e.origin_server_ts),
    LabelField.TYPE: lambda e: e.event_type,
    LabelField.STATE_KEY: lambda e: e.state_key or "",
    LabelField.CONTENT: lambda e: _render_map(dict(e.content)),
    LabelField.PREV_EVENTS: lambda e: _render_refs(e.prev_events),
    LabelField.DEPTH: lambda e: str(e.depth),
    LabelField.AUTH_EVENTS: lambda e: _render_refs(e.auth_events),
    LabelField.REDACTS: lambda e: e.redacts or "",
    LabelField.UNSIGNED: lambda e: _render_map(dict(e.unsigned)),
    LabelField.EVENT_ID: lambda e: e.event_id,
    LabelField.HASHES: lambda e: _render_map(dict(e.hashes)),
    LabelField.SIGNATURES: lambda e: _render_map(dict(e.signatures)),
}


def parse_label_fields(names: Iterable[str]) -> Tuple[LabelField, ...]:
    """
    Convert external field names to LabelFields.

    Accepts enum names ("SENDER") or wire names ("sender").
    Raises ValueError on an unknown name.
    """
    fields = []
    for name in names:
        try:
            fields.append(LabelField(name))
        except ValueError:
            try:
                fields.append(LabelField[name.upper()])
            except KeyError:
                raise ValueError(f"Unknown label field: {name}") from None
    return tuple(fields)


# =============================================================================
# PALETTES
# =============================================================================

LOCAL_PALETTE = NodeColor(border="#2B7CE9", background="#97C2FC")
REMOTE_PALETTE = NodeColor(border="#FFA500", background="#FFFF00")


# =============================================================================
# PROJECTION FUNCTIONS
# =============================================================================

def build_label(event: Event, selected_fields: Iterable[LabelField]) -> str:
    selected = set(selected_fields)
    lines = [
        f"{f.display_name}: {_FIELD_VALUES[f](event)}"
        for f in CANONICAL_ORDER
        if f in selected
    ]
    return "\n".join(lines).rstrip()


def project_node(
    event: Event,
    observing_authority: str,
    selected_fields: Iterable[LabelField]
) -> NodeProjection:
    """Render one event as a node record."""
    return NodeProjection(
        id=event.event_id,
        label=build_label(event, selected_fields),
        level=event.depth,
        color=LOCAL_PALETTE if event.origin == observing_authority else REMOTE_PALETTE,
    )


def project_edge(child: Event, parent: Event) -> EdgeProjection:
    """Render one (child, parent) edge."""
    return EdgeProjection(from_id=child.event_id, to_id=parent.event_id)


# =============================================================================
# BUILDER
# =============================================================================

@dataclass
class ProjectionConfig:
    """Configuration for node labels."""
    default_fields: Tuple[LabelField, ...] = field(default_factory=lambda: (
        LabelField.SENDER,
        LabelField.TYPE,
        LabelField.DEPTH,
        LabelField.EVENT_ID,
    ))


class ProjectionBuilder:
    """
    Projection settings of one observation.

    Immutable: selecting other fields yields a new builder.
    """

    def __init__(self, observing_authority: str, selected_fields: Iterable[LabelField]):
        self._observing_authority = observing_authority
        self._selected_fields = frozenset(selected_fields)

    @property
    def observing_authority(self) -> str:
        return self._observing_authority

    @property
    def selected_fields(self) -> Tuple[LabelField, ...]:
        """Selected fields, in canonical order."""
        return tuple(f for f in CANONICAL_ORDER if f in self._selected_fields)

    def with_fields(self, selected_fields: Iterable[LabelField]) -> 'ProjectionBuilder':
        return ProjectionBuilder(self._observing_authority, selected_fields)

    def project_node(self, event: Event) -> NodeProjection:
        return project_node(event, self._observing_authority, self._selected_fields)

    def project_edge(self, child: Event, parent: Event) -> EdgeProjection:
        return project_edge(child, parent)
