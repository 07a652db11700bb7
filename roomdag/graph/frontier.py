"""
Frontier Tracker
================

Derives the head, tail and orphan sets from the current graph shape.

RECOMPUTATION:
- One resolved edge can change the frontier status of many non-local nodes
- All three sets are rebuilt once per batch, O(|nodes|)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet

from ..contracts.projection import FrontierView, OrphanRef
from .store import GraphStore


@dataclass(frozen=True)
class FrontierState:
    """
    Immutable frontier snapshot.

    heads:   no known event cites them as a parent (newest known tips)
    tails:   none of their declared parents are known (backfill boundary)
    orphans: at least one declared parent is unresolved, with its depth
    """
    heads: FrozenSet[str] = field(default_factory=frozenset)
    tails: FrozenSet[str] = field(default_factory=frozenset)
    orphans: Dict[str, int] = field(default_factory=dict)

    @staticmethod
    def empty() -> 'FrontierState':
        return FrontierState()

    def to_view(self) -> FrontierView:
        return FrontierView(
            heads=tuple(sorted(self.heads)),
            tails=tuple(sorted(self.tails)),
            orphans=tuple(
                OrphanRef(id=event_id, depth=self.orphans[event_id])
                for event_id in sorted(self.orphans)
            ),
        )


class FrontierTracker:
    """Holds the last computed frontier of one observation."""

    def __init__(self):
        self._state = FrontierState.empty()
        self._refresh_count = 0

    @property
    def state(self) -> FrontierState:
        return self._state

    @property
    def refresh_count(self) -> int:
        return self._refresh_count

    def refresh(self, store: GraphStore) -> FrontierState:
        """Recompute all three sets from scratch. Run once per batch."""
        heads = set()
        tails = set()
        orphans: Dict[str, int] = {}

        for event in store.events():
            event_id = event.event_id
            if store.in_degree(event_id) == 0:
                heads.add(event_id)
            if store.out_degree(event_id) == 0:
                tails.add(event_id)
            if any(parent_id not in store for parent_id in event.prev_events):
                orphans[event_id] = event.depth

        self._state = FrontierState(
            heads=frozenset(heads),
            tails=frozenset(tails),
            orphans=orphans,
        )
        self._refresh_count += 1
        return self._state
