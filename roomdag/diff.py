"""
Diff Engine
===========

Computes render projections of the whole graph or of the part that became
reachable from a consumer's last-known frontier.

STATELESS BY CONSTRUCTION:
- The caller supplies its own old tails/heads as traversal seeds
- No per-consumer cursor is kept, so any number of consumers can diff the
  same graph from different starting points

TRAVERSAL:
- diff_since_tail: multi-source BFS along parent edges (child -> parent)
- diff_since_head: multi-source BFS along child edges (the reverse graph)
- Output nodes: reached nodes minus the seeds
- Output edges: every edge incident to an output node
"""

from __future__ import annotations
from itertools import chain
from typing import Iterable, List, Set, Tuple
import networkx as nx

from .contracts.events import causal_key
from .contracts.projection import EdgeProjection, NodeProjection, Projection
from .graph.store import GraphStore
from .projection import ProjectionBuilder


class DiffEngine:
    """Read-only projections over one GraphStore."""

    def __init__(self, store: GraphStore, builder: ProjectionBuilder):
        self._store = store
        self._builder = builder

    def snapshot(self) -> Projection:
        """Full node + edge projection, for the first render of a view."""
        return self._project(self._store.event_ids(), self._store.edges())

    def diff_since_tail(self, old_tail_ids: Iterable[str]) -> Projection:
        """Nodes newly reachable through parent edges from old tails."""
        return self._diff(old_tail_ids, reverse=False)

    def diff_since_head(self, old_head_ids: Iterable[str]) -> Projection:
        """Nodes newly reachable through child edges from old heads."""
        return self._diff(old_head_ids, reverse=True)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _diff(self, seed_ids: Iterable[str], reverse: bool) -> Projection:
        seeds = sorted({s for s in seed_ids if s in self._store})
        if not seeds:
            return Projection()

        graph = self._store.graph
        if reverse:
            graph = graph.reverse(copy=False)

        reached: Set[str] = set(chain.from_iterable(nx.bfs_layers(graph, seeds)))
        reached.difference_update(seeds)
        if not reached:
            return Projection()

        # Edges in store orientation (child, parent), incident to a new node
        edges: Set[Tuple[str, str]] = set()
        for event_id in reached:
            edges.update((event_id, p) for p in self._store.parents_of(event_id))
            edges.update((c, event_id) for c in self._store.children_of(event_id))

        return self._project(reached, edges)

    def _project(self, event_ids: Iterable[str], edges: Iterable[Tuple[str, str]]) -> Projection:
        events = [self._store.get(event_id) for event_id in event_ids]
        events.sort(key=lambda e: (causal_key(e), e.event_id))

        nodes: List[NodeProjection] = [self._builder.project_node(e) for e in events]
        edge_records: List[EdgeProjection] = [
            self._builder.project_edge(self._store.get(child_id), self._store.get(parent_id))
            for child_id, parent_id in sorted(edges)
        ]
        return Projection(nodes=tuple(nodes), edges=tuple(edge_records))
