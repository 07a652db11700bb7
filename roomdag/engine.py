"""
Observation Engine

Wires one room graph to its ingestion engine, projection builder and lock.

CONCURRENCY MODEL:
==================
- Every (room_id, server_name) pair is observed by exactly one
  RoomObservation, which owns its graph outright
- Writes (batch ingestion, label changes) hold the write lock for the whole
  batch, so readers see a graph either before or after a batch, never during
- Network fetches happen outside the lock; only the apply step is locked
- Observations share no mutable state; the registry only maps keys to them
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import hashlib
import logging
import threading

from .contracts.events import AuditEventType, Event
from .contracts.projection import BatchDirection, FrontierView, IngestionReport, Projection
from .diff import DiffEngine
from .graph import RoomGraph
from .ingestion import IngestionConfig, IngestionEngine
from .observability import ObservabilityEngine
from .projection import LabelField, ProjectionBuilder, ProjectionConfig
from .sources import BackfillBatch, EventSource, TimelineBatch

logger = logging.getLogger("roomdag.engine")


def observation_id(room_id: str, server_name: str) -> str:
    """Stable short id of a (room, authority) pair."""
    return hashlib.sha256(f"{server_name}|{room_id}".encode()).hexdigest()[:16]


# =============================================================================
# LOCKING
# =============================================================================

class ReadWriteLock:
    """
    Many concurrent readers or a single writer.

    Waiting writers block new readers, so a steady read load cannot starve
    ingestion.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# =============================================================================
# OBSERVATION
# =============================================================================

@dataclass
class ObservationConfig:
    """Configuration of one room observation."""
    room_id: str
    server_name: str
    label_fields: Tuple[LabelField, ...] = field(
        default_factory=lambda: ProjectionConfig().default_fields
    )
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)


class RoomObservation:
    """
    One room observed from one authority.

    All graph access goes through this object. Callers never hold the graph.
    """

    def __init__(
        self,
        config: ObservationConfig,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._config = config
        self._observability = observability or ObservabilityEngine()
        self._graph = RoomGraph.empty(config.room_id, config.server_name)
        self._ingestion = IngestionEngine(config.ingestion, self._observability)
        self._builder = ProjectionBuilder(config.server_name, config.label_fields)
        self._diff = DiffEngine(self._graph.store, self._builder)
        self._lock = ReadWriteLock()

    @property
    def observation_id(self) -> str:
        return observation_id(self._config.room_id, self._config.server_name)

    @property
    def room_id(self) -> str:
        return self._config.room_id

    @property
    def server_name(self) -> str:
        return self._config.server_name

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    @property
    def label_fields(self) -> Tuple[LabelField, ...]:
        with self._lock.read_locked():
            return self._builder.selected_fields

    # =========================================================================
    # WRITES
    # =========================================================================

    def ingest_timeline_batch(self, room_id: str, raw_events: Sequence[Any]) -> IngestionReport:
        with self._lock.write_locked():
            return self._ingestion.ingest_timeline_batch(self._graph, room_id, raw_events)

    def ingest_backfill_batch(self, raw_events: Sequence[Any]) -> IngestionReport:
        with self._lock.write_locked():
            return self._ingestion.ingest_backfill_batch(self._graph, raw_events)

    def set_label_fields(self, fields: Iterable[LabelField]) -> Projection:
        """Select label fields and return the fully re-projected graph."""
        with self._lock.write_locked():
            self._builder = self._builder.with_fields(fields)
            self._diff = DiffEngine(self._graph.store, self._builder)
            self._observability.log_audit(
                layer="projection",
                action="label_fields_changed",
                event_type=AuditEventType.PROJECTION,
                entity_id=self.observation_id,
                entity_type="observation",
                metadata=tuple(
                    ("field", f.value) for f in self._builder.selected_fields
                ),
            )
            return self._diff.snapshot()

    def pull_timeline(self, source: EventSource) -> IngestionReport:
        """Fetch the next timeline batch from source and apply it."""
        result = source.fetch_timeline()
        if result.is_failure:
            with self._lock.write_locked():
                return self._ingestion.fetch_failed(
                    self._graph, BatchDirection.TIMELINE, result.error
                )
        batch: TimelineBatch = result.value
        return self.ingest_timeline_batch(batch.room_id, batch.events)

    def pull_backfill(
        self,
        source: EventSource,
        from_ids: Optional[Sequence[str]] = None
    ) -> IngestionReport:
        """
        Fetch older events from source and apply them.

        Without from_ids, backfill starts from the current orphans (the
        events whose parents are still missing), else from the tails.
        """
        if from_ids is None:
            from_ids = self._default_backfill_seeds()

        result = source.fetch_backfill(list(from_ids))
        if result.is_failure:
            with self._lock.write_locked():
                return self._ingestion.fetch_failed(
                    self._graph, BatchDirection.BACKFILL, result.error
                )
        batch: BackfillBatch = result.value
        return self.ingest_backfill_batch(batch.events)

    def _default_backfill_seeds(self) -> List[str]:
        view = self.frontier()
        if view.orphans:
            return list(view.orphan_ids)
        return list(view.tails)

    # =========================================================================
    # READS
    # =========================================================================

    def snapshot(self) -> Projection:
        with self._lock.read_locked():
            return self._diff.snapshot()

    def diff_since_tail(self, old_tail_ids: Iterable[str]) -> Projection:
        with self._lock.read_locked():
            return self._diff.diff_since_tail(old_tail_ids)

    def diff_since_head(self, old_head_ids: Iterable[str]) -> Projection:
        with self._lock.read_locked():
            return self._diff.diff_since_head(old_head_ids)

    def frontier(self) -> FrontierView:
        with self._lock.read_locked():
            return self._graph.frontier.state.to_view()

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock.read_locked():
            return self._graph.store.get(event_id)

    def to_dot(self) -> str:
        with self._lock.read_locked():
            return self._graph.store.to_dot()

    def depth_bounds(self) -> Tuple[Optional[int], Optional[int]]:
        with self._lock.read_locked():
            return self._graph.store.depth_bounds

    def stats(self) -> Dict[str, Any]:
        """Sizes and extremes of the observed graph."""
        with self._lock.read_locked():
            store = self._graph.store
            min_depth, max_depth = store.depth_bounds
            state = self._graph.frontier.state
            return {
                "observation_id": self.observation_id,
                "room_id": store.room_id,
                "server_name": store.server_name,
                "nodes": len(store),
                "edges": store.edge_count,
                "heads": len(state.heads),
                "tails": len(state.tails),
                "orphans": len(state.orphans),
                "min_depth": min_depth,
                "max_depth": max_depth,
                "latest_event_id": store.latest_event_id,
                "earliest_event_id": store.earliest_event_id,
            }


# =============================================================================
# REGISTRY
# =============================================================================

class ObservationRegistry:
    """
    Thread-safe map of (room_id, server_name) -> RoomObservation.

    Only the map is locked; each observation guards its own graph.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observations: Dict[str, RoomObservation] = {}

    def open(self, config: ObservationConfig) -> RoomObservation:
        """Return the observation for config's pair, creating it if absent."""
        key = observation_id(config.room_id, config.server_name)
        with self._lock:
            existing = self._observations.get(key)
            if existing is not None:
                return existing
            observation = RoomObservation(config)
            self._observations[key] = observation
        logger.info(
            "opened observation %s of %s as %s", key, config.room_id, config.server_name
        )
        return observation

    def get(self, room_id: str, server_name: str) -> Optional[RoomObservation]:
        return self.find(observation_id(room_id, server_name))

    def find(self, obs_id: str) -> Optional[RoomObservation]:
        """Look up by observation id."""
        with self._lock:
            return self._observations.get(obs_id)

    def close(self, obs_id: str) -> bool:
        """Drop an observation. Returns False when it was not open."""
        with self._lock:
            removed = self._observations.pop(obs_id, None)
        if removed is not None:
            logger.info("closed observation %s", obs_id)
        return removed is not None

    def list(self) -> List[RoomObservation]:
        with self._lock:
            return list(self._observations.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._observations)


__all__ = [
    'observation_id',
    'ReadWriteLock',
    'ObservationConfig',
    'RoomObservation',
    'ObservationRegistry',
]
