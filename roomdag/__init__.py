"""
Room Event-DAG Observer

This package observes one room of a federated event-sourcing protocol and
keeps the causal history of its events as a directed graph, so that ordering
and federation anomalies can be inspected visually.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable records shared by every layer: Event, Error, Projection
   - MUST NOT: import from any other layer

2. GRAPH (graph/)
   - Responsibility: node/edge index keyed by event_id, frontier sets
   - Append-only: nodes and edges are never removed

3. INGESTION LAYER (ingestion/)
   - Responsibility: apply batches of raw events to the graph
   - Allowed inputs: raw timeline / backfill batches, already fetched
   - MUST NOT: perform I/O, abort a batch because of one bad event

4. DIFF & PROJECTION (diff.py, projection.py)
   - Responsibility: render-ready node/edge records and incremental deltas
   - MUST NOT: mutate the graph, keep per-consumer cursors

5. SOURCES (sources/)
   - Responsibility: fetch raw batches from a homeserver or indexed store
   - The engine never calls them itself; observations do, outside the lock

6. OBSERVABILITY (observability/)
   - Responsibility: audit entries and metrics for every applied batch

CONSTRAINTS ENFORCED:
=====================
- Identity is event_id; ordering is (depth, origin_server_ts) and never dedups
- Arrival order is not causal order: edges are re-resolved every batch
- Frontier sets are recomputed per batch, never patched
- One writer per observation; readers never see a half-applied batch
"""

from .contracts.events import Event, ParseError, parse_event, normalize_parent_refs
from .contracts.projection import Projection, FrontierView, IngestionReport
from .engine import RoomObservation, ObservationConfig, ObservationRegistry

__all__ = [
    'Event',
    'ParseError',
    'parse_event',
    'normalize_parent_refs',
    'Projection',
    'FrontierView',
    'IngestionReport',
    'RoomObservation',
    'ObservationConfig',
    'ObservationRegistry',
]

__version__ = "0.1.0"
