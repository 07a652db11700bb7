"""
Graph Store
===========

Node/edge index of one observed (room, authority) pair.

Wraps a NetworkX DiGraph keyed by event_id. Nodes carry the Event record;
an edge (child, parent) exists iff parent.event_id is in child.prev_events
AND the parent is a known node.

INVARIANTS:
===========
- Append-only: no node or edge is ever removed or replaced
- First write wins: re-adding a known event_id is a no-op
- At most one edge per (child, parent) pair
- Edges are resolved over the WHOLE node set, because a parent can arrive
  strictly after its children
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Optional, Tuple
import networkx as nx

from ..contracts.events import Event, causal_order


class GraphStore:
    """
    Event DAG of one room as seen from one authority.

    Nodes are referenced by event_id everywhere; edges and frontier sets are
    plain collections of ids.
    """

    def __init__(self, room_id: str, server_name: str):
        self._room_id = room_id
        self._server_name = server_name
        self._graph = nx.DiGraph()

        # Derived indices (not authoritative, rebuilt from nodes if needed)
        self._arrival_index: Dict[str, int] = {}
        self._depth_index: Dict[int, List[str]] = {}

        self._min_depth: Optional[int] = None
        self._max_depth: Optional[int] = None
        self._latest_event_id: Optional[str] = None
        self._earliest_event_id: Optional[str] = None

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def server_name(self) -> str:
        return self._server_name

    # =========================================================================
    # WRITES (Ingestion Engine only)
    # =========================================================================

    def add_node(self, event: Event) -> int:
        """
        Add an event as a node.

        Returns its arrival index. A known event_id returns the existing
        index and leaves the stored event untouched.
        """
        existing = self._arrival_index.get(event.event_id)
        if existing is not None:
            return existing

        index = len(self._arrival_index)
        self._graph.add_node(event.event_id, event=event)
        self._arrival_index[event.event_id] = index
        self._depth_index.setdefault(event.depth, []).append(event.event_id)
        self._update_bounds(event)
        return index

    def resolve_edges(self) -> int:
        """
        Add every missing (child, parent) edge whose parent is now known.

        Scans all nodes, not only recent ones: one late parent can resolve
        references anywhere in the graph. Idempotent.
        Returns the number of edges added.
        """
        new_edges: List[Tuple[str, str]] = []

        for child_id, event in self._graph.nodes(data="event"):
            for parent_id in event.prev_events:
                if parent_id in self._graph and not self._graph.has_edge(child_id, parent_id):
                    new_edges.append((child_id, parent_id))

        self._graph.add_edges_from(new_edges)
        return len(new_edges)

    def _update_bounds(self, event: Event):
        """Track depth bounds and the latest/earliest event by causal order."""
        if self._min_depth is None or event.depth < self._min_depth:
            self._min_depth = event.depth
        if self._max_depth is None or event.depth > self._max_depth:
            self._max_depth = event.depth

        # Strict comparison: on a causal tie the first-seen event stays
        latest = self.get(self._latest_event_id) if self._latest_event_id else None
        if latest is None or causal_order(latest, event) < 0:
            self._latest_event_id = event.event_id

        earliest = self.get(self._earliest_event_id) if self._earliest_event_id else None
        if earliest is None or causal_order(earliest, event) > 0:
            self._earliest_event_id = event.event_id

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, event_id: str) -> Optional[Event]:
        if event_id not in self._graph:
            return None
        return self._graph.nodes[event_id]["event"]

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def event_ids(self) -> List[str]:
        """Known ids in arrival order."""
        return list(self._arrival_index)

    def events(self) -> Iterator[Event]:
        for event_id in self._arrival_index:
            yield self._graph.nodes[event_id]["event"]

    def edges(self) -> List[Tuple[str, str]]:
        """All (child, parent) edges."""
        return list(self._graph.edges())

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def has_edge(self, child_id: str, parent_id: str) -> bool:
        return self._graph.has_edge(child_id, parent_id)

    def parents_of(self, event_id: str) -> List[str]:
        """Known parents (resolved references) of an event."""
        if event_id not in self._graph:
            return []
        return list(self._graph.successors(event_id))

    def children_of(self, event_id: str) -> List[str]:
        """Known events citing this event as a parent."""
        if event_id not in self._graph:
            return []
        return list(self._graph.predecessors(event_id))

    def unresolved_parents(self, event_id: str) -> List[str]:
        """Declared parent ids that are not (yet) known nodes."""
        event = self.get(event_id)
        if event is None:
            return []
        return [p for p in event.prev_events if p not in self._graph]

    def in_degree(self, event_id: str) -> int:
        return self._graph.in_degree(event_id)

    def out_degree(self, event_id: str) -> int:
        return self._graph.out_degree(event_id)

    def events_at_depth(self, depth: int) -> List[str]:
        return list(self._depth_index.get(depth, ()))

    @property
    def depth_bounds(self) -> Tuple[Optional[int], Optional[int]]:
        """(min_depth, max_depth); (None, None) while empty."""
        return (self._min_depth, self._max_depth)

    @property
    def latest_event_id(self) -> Optional[str]:
        return self._latest_event_id

    @property
    def earliest_event_id(self) -> Optional[str]:
        return self._earliest_event_id

    @property
    def graph(self) -> nx.DiGraph:
        """Read-only view of the underlying graph (child -> parent edges)."""
        return self._graph.copy(as_view=True)

    def to_dot(self) -> str:
        """Graphviz DOT text of the DAG, without edge labels."""
        lines = ["digraph {"]
        for event_id in self._arrival_index:
            event = self._graph.nodes[event_id]["event"]
            lines.append(f'    "{_dot_escape(event_id)}" [label="{_dot_escape(event_id)}\\ndepth {event.depth}"]')
        for child_id, parent_id in sorted(self._graph.edges()):
            lines.append(f'    "{_dot_escape(child_id)}" -> "{_dot_escape(parent_id)}"')
        lines.append("}")
        return "\n".join(lines)


def _dot_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')
