"""
Graph Layer

- store: append-only node/edge index keyed by event_id
- frontier: head / tail / orphan sets, recomputed per batch

RoomGraph bundles the two pieces of mutable state one observation owns.
It is passed explicitly to the ingestion engine; there is no ambient graph.
"""

from __future__ import annotations
from dataclasses import dataclass, field

from .store import GraphStore
from .frontier import FrontierTracker, FrontierState


@dataclass
class RoomGraph:
    """Mutable state of one (room, authority) observation."""
    store: GraphStore
    frontier: FrontierTracker = field(default_factory=FrontierTracker)

    @staticmethod
    def empty(room_id: str, server_name: str) -> 'RoomGraph':
        return RoomGraph(store=GraphStore(room_id, server_name))


__all__ = [
    'GraphStore',
    'FrontierTracker',
    'FrontierState',
    'RoomGraph',
]
