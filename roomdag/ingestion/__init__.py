"""
Ingestion Layer

RESPONSIBILITY: Apply batches of raw protocol events to a room graph
ALLOWED INPUTS: Timeline batches {room_id, events}, backfill batches {events}
OUTPUTS: IngestionReport (immutable), graph + frontier mutation

WHAT THIS LAYER MUST NOT DO:
============================
- Fetch anything (batches arrive already fetched)
- Abort a batch because one event is malformed
- Recompute or "fix" declared depths
- Deduplicate by anything other than event_id

BATCH PROTOCOL:
===============
1. Parse every raw event independently; ParseError skips that event only
2. add_node for each parsed event (first write wins)
3. resolve_edges() exactly once, over the whole node set
4. Frontier refresh exactly once
Both entry points share this protocol; only the room check differs.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple
import hashlib
import itertools
import logging
import time

from ..contracts.base import Error, ErrorCode
from ..contracts.events import AuditEventType, ParseError, parse_event, peek_event_id
from ..contracts.projection import BatchDirection, IngestionReport
from ..graph import RoomGraph
from ..observability import ObservabilityEngine

logger = logging.getLogger("roomdag.ingestion")

_batch_sequence = itertools.count(1)


@dataclass
class IngestionConfig:
    """Configuration for ingestion engine."""
    check_room_id: bool = True
    max_recorded_errors: int = 1000  # per batch; counts stay exact beyond it


class IngestionEngine:
    """
    Applies raw batches to a RoomGraph passed in by the caller.

    The engine holds no graph of its own: the caller owns the RoomGraph
    and guarantees exclusive access for the duration of a call.
    """

    def __init__(
        self,
        config: Optional[IngestionConfig] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._config = config or IngestionConfig()
        self._observability = observability

    @property
    def config(self) -> IngestionConfig:
        return self._config

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def ingest_timeline_batch(
        self,
        graph: RoomGraph,
        room_id: str,
        raw_events: Sequence[Any]
    ) -> IngestionReport:
        """
        Apply a live / continuation batch.

        A batch declared for another room is a no-op, reported as such.
        """
        batch_id = self._generate_batch_id(graph, BatchDirection.TIMELINE, len(raw_events))

        if self._config.check_room_id and room_id != graph.store.room_id:
            error = Error.create(
                ErrorCode.UNKNOWN_ROOM,
                f"Timeline batch for {room_id} does not match observed room",
                expected=graph.store.room_id,
                received=room_id,
            )
            logger.info(
                "ignoring timeline batch %s for room %s (observing %s)",
                batch_id, room_id, graph.store.room_id
            )
            report = IngestionReport(
                batch_id=batch_id,
                direction=BatchDirection.TIMELINE,
                received=len(raw_events),
                errors=(error,),
                applied=False,
            )
            self._record(graph, report, 0.0)
            return report

        return self._apply(graph, batch_id, BatchDirection.TIMELINE, raw_events)

    def ingest_backfill_batch(
        self,
        graph: RoomGraph,
        raw_events: Sequence[Any]
    ) -> IngestionReport:
        """Apply ancestors / pagination / descendants results."""
        batch_id = self._generate_batch_id(graph, BatchDirection.BACKFILL, len(raw_events))
        return self._apply(graph, batch_id, BatchDirection.BACKFILL, raw_events)

    def fetch_failed(
        self,
        graph: RoomGraph,
        direction: BatchDirection,
        error: Error
    ) -> IngestionReport:
        """No-op report for a batch whose fetch failed before ingestion."""
        batch_id = self._generate_batch_id(graph, direction, 0)
        logger.warning(
            "%s fetch for %s failed: %s %s",
            direction.value, graph.store.room_id, error.code.name, error.message
        )
        if self._observability is not None:
            self._observability.log_audit(
                layer="source",
                action="fetch_failed",
                event_type=AuditEventType.ERROR,
                entity_id=batch_id,
                entity_type="batch",
                metadata=(("code", error.code.name), ("message", error.message)),
            )
        return IngestionReport(
            batch_id=batch_id,
            direction=direction,
            received=0,
            errors=(error.with_context("batch_id", batch_id),),
            applied=False,
        )

    # =========================================================================
    # BATCH APPLY
    # =========================================================================

    def _apply(
        self,
        graph: RoomGraph,
        batch_id: str,
        direction: BatchDirection,
        raw_events: Sequence[Any]
    ) -> IngestionReport:
        started = time.perf_counter()
        store = graph.store

        added = 0
        duplicates = 0
        skipped: List[str] = []
        errors: List[Error] = []

        for position, raw in enumerate(raw_events):
            try:
                event = parse_event(raw)
            except ParseError as e:
                ref = e.event_id or peek_event_id(raw) or f"#{position}"
                skipped.append(ref)
                if len(errors) < self._config.max_recorded_errors:
                    errors.append(Error.create(
                        ErrorCode.MALFORMED_EVENT,
                        str(e),
                        field=e.field,
                        event=ref,
                        batch_id=batch_id,
                    ))
                logger.debug("skipping malformed event %s in %s: %s", ref, batch_id, e)
                continue

            known = event.event_id in store
            store.add_node(event)
            if known:
                duplicates += 1
            else:
                added += 1

        new_edges = store.resolve_edges()
        graph.frontier.refresh(store)

        report = IngestionReport(
            batch_id=batch_id,
            direction=direction,
            received=len(raw_events),
            added=added,
            duplicates=duplicates,
            new_edges=new_edges,
            skipped_event_ids=tuple(skipped),
            errors=tuple(errors),
        )

        elapsed_ms = (time.perf_counter() - started) * 1000
        if skipped:
            logger.warning(
                "%s batch %s: skipped %d malformed event(s)",
                direction.value, batch_id, len(skipped)
            )
        logger.debug(
            "%s batch %s applied: +%d nodes, +%d edges in %.2fms",
            direction.value, batch_id, added, new_edges, elapsed_ms
        )
        self._record(graph, report, elapsed_ms)
        return report

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _generate_batch_id(
        self,
        graph: RoomGraph,
        direction: BatchDirection,
        count: int
    ) -> str:
        """Generate a unique batch ID."""
        content = (
            f"{graph.store.server_name}|{graph.store.room_id}|{direction.value}|"
            f"{count}|{time.time_ns()}|{next(_batch_sequence)}"
        )
        hash_val = hashlib.sha256(content.encode()).hexdigest()[:16]
        return f"batch_{hash_val}"

    def _record(self, graph: RoomGraph, report: IngestionReport, elapsed_ms: float):
        """Emit audit entry and metric points for one batch."""
        if self._observability is None:
            return

        labels = {"direction": report.direction.value}
        metadata: Tuple[Tuple[str, str], ...] = (
            ("room_id", graph.store.room_id),
            ("server_name", graph.store.server_name),
            ("received", str(report.received)),
            ("added", str(report.added)),
            ("duplicates", str(report.duplicates)),
            ("new_edges", str(report.new_edges)),
            ("skipped", str(report.skipped)),
        )

        self._observability.log_audit(
            layer="ingestion",
            action="batch_applied" if report.applied else "batch_ignored",
            event_type=AuditEventType.INGESTION if report.applied else AuditEventType.ERROR,
            entity_id=report.batch_id,
            entity_type="batch",
            metadata=metadata,
        )

        self._observability.collect_metric("events_received_total", report.received, labels)
        if not report.applied:
            return
        self._observability.collect_metric("events_added_total", report.added, labels)
        self._observability.collect_metric("events_skipped_total", report.skipped, labels)
        self._observability.collect_metric("edges_resolved_total", report.new_edges, labels)
        self._observability.collect_metric("batch_apply_ms", elapsed_ms, labels)
        self._observability.collect_metric(
            "orphans_current", len(graph.frontier.state.orphans)
        )


__all__ = [
    'IngestionConfig',
    'IngestionEngine',
]
