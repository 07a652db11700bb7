"""
Projection Contracts

Render-ready output records handed to the Render Sink, plus the per-batch
ingestion report.

MAPPING RULES:
==============
1. Node and edge records reference events by id only
2. Serialized keys match what the renderer expects ("from"/"to", "level")
3. Ordering inside a projection is deterministic
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple
from enum import Enum

from .base import Error


# =============================================================================
# NODE / EDGE RECORDS
# =============================================================================

@dataclass(frozen=True)
class NodeColor:
    border: str
    background: str

    def to_dict(self) -> Dict[str, str]:
        return {"border": self.border, "background": self.background}


@dataclass(frozen=True)
class NodeProjection:
    """Renderable node. level is the event depth."""
    id: str
    label: str
    level: int
    color: NodeColor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "level": self.level,
            "color": self.color.to_dict(),
        }


@dataclass(frozen=True)
class EdgeProjection:
    """Renderable edge from a child event to one of its parents."""
    from_id: str
    to_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.from_id, "to": self.to_id}


@dataclass(frozen=True)
class Projection:
    """A set of nodes and edges for one render update."""
    nodes: Tuple[NodeProjection, ...] = field(default_factory=tuple)
    edges: Tuple[EdgeProjection, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.edges

    @property
    def node_ids(self) -> Tuple[str, ...]:
        return tuple(n.id for n in self.nodes)

    @property
    def edge_pairs(self) -> Tuple[Tuple[str, str], ...]:
        return tuple((e.from_id, e.to_id) for e in self.edges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


# =============================================================================
# FRONTIER VIEW
# =============================================================================

@dataclass(frozen=True)
class OrphanRef:
    """An event with unresolved parents, and the depth to draw it at."""
    id: str
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "depth": self.depth}


@dataclass(frozen=True)
class FrontierView:
    heads: Tuple[str, ...] = field(default_factory=tuple)
    tails: Tuple[str, ...] = field(default_factory=tuple)
    orphans: Tuple[OrphanRef, ...] = field(default_factory=tuple)

    @property
    def orphan_ids(self) -> Tuple[str, ...]:
        return tuple(o.id for o in self.orphans)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "heads": list(self.heads),
            "tails": list(self.tails),
            "orphans": [o.to_dict() for o in self.orphans],
        }


# =============================================================================
# INGESTION REPORT
# =============================================================================

class BatchDirection(Enum):
    TIMELINE = "timeline"  # live / continuation
    BACKFILL = "backfill"  # ancestors, pagination, descendants


@dataclass(frozen=True)
class IngestionReport:
    """
    Outcome of applying one batch.

    Only aggregate counts and the ids (or batch positions) of skipped events
    are surfaced; nothing here is fatal.
    """
    batch_id: str
    direction: BatchDirection
    received: int
    added: int = 0
    duplicates: int = 0
    new_edges: int = 0
    skipped_event_ids: Tuple[str, ...] = field(default_factory=tuple)
    errors: Tuple[Error, ...] = field(default_factory=tuple)
    applied: bool = True

    @property
    def skipped(self) -> int:
        return len(self.skipped_event_ids)

    @property
    def is_noop(self) -> bool:
        return not self.applied or (self.added == 0 and self.new_edges == 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "direction": self.direction.value,
            "received": self.received,
            "added": self.added,
            "duplicates": self.duplicates,
            "new_edges": self.new_edges,
            "skipped": self.skipped,
            "skipped_event_ids": list(self.skipped_event_ids),
            "errors": [e.to_dict() for e in self.errors],
            "applied": self.applied,
        }
