"""
Observability Layer

Queryable record of what happened to each observation: one audit trail per
layer plus numeric series for batch sizes, edge resolution and timing.

RULES:
======
- Records are appended, never edited; the oldest fall off at the retention caps
- Nothing here feeds back into the graph; ingestion never reads these
- Operator diagnostics go to stdlib loggers named ``roomdag.<layer>``;
  the collectors below are what tests and the API inspect
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple
from enum import Enum
from threading import Lock
import hashlib
import itertools
import logging

from ..contracts.base import Timestamp
from ..contracts.events import AuditEventType, AuditLogEntry, MetricPoint

logger = logging.getLogger("roomdag.observability")

_entry_sequence = itertools.count(1)


def make_audit_entry(
    layer: str,
    action: str,
    event_type: AuditEventType = AuditEventType.SYSTEM,
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    metadata: Tuple[Tuple[str, str], ...] = ()
) -> AuditLogEntry:
    """Stamp and id an audit record. Ids stay unique within the process."""
    now = Timestamp.now()
    digest = hashlib.sha256(
        f"{layer}|{action}|{now.value.timestamp()}|{next(_entry_sequence)}".encode()
    ).hexdigest()[:16]
    return AuditLogEntry(
        entry_id=f"audit_{digest}",
        event_type=event_type,
        timestamp=now,
        layer=layer,
        action=action,
        entity_id=entity_id,
        entity_type=entity_type,
        metadata=metadata,
    )


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class LogCollector:
    """Audit trail of one layer, oldest first, bounded by max_entries."""

    def __init__(self, layer: str, max_entries: Optional[int] = None):
        self._layer = layer
        self._entries: Deque[AuditLogEntry] = deque(maxlen=max_entries)
        self._lock = Lock()

    @property
    def layer_name(self) -> str:
        return self._layer

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def collect(self, entry: AuditLogEntry):
        with self._lock:
            self._entries.append(entry)

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None
    ) -> List[AuditLogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        return [
            e for e in snapshot
            if (event_type is None or e.event_type == event_type)
            and (action is None or e.action == action)
        ]


# =============================================================================
# METRICS
# =============================================================================

class MetricType(Enum):
    COUNTER = "counter"  # summed per batch
    GAUGE = "gauge"      # last value is the current one
    TIMING = "timing"    # milliseconds


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = ()


DAG_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition("events_received_total", MetricType.COUNTER,
                     "Raw events handed to the ingestion engine", ("direction",)),
    MetricDefinition("events_added_total", MetricType.COUNTER,
                     "Events that became new nodes", ("direction",)),
    MetricDefinition("events_skipped_total", MetricType.COUNTER,
                     "Raw events dropped because they failed to parse", ("direction",)),
    MetricDefinition("edges_resolved_total", MetricType.COUNTER,
                     "Edges added by resolve_edges", ("direction",)),
    MetricDefinition("batch_apply_ms", MetricType.TIMING,
                     "Wall time to apply one batch", ("direction",)),
    MetricDefinition("orphans_current", MetricType.GAUGE,
                     "Size of the orphan set after the last batch"),
)


class MetricsCollector:
    """
    Series of MetricPoints keyed by metric name, oldest first.

    Each series keeps at most max_points; older points fall off the front.
    Unregistered names are still recorded; they just have no definition.
    """

    def __init__(
        self,
        definitions: Iterable[MetricDefinition] = DAG_METRICS,
        max_points: Optional[int] = None
    ):
        self._definitions: Dict[str, MetricDefinition] = {}
        self._series: Dict[str, Deque[MetricPoint]] = {}
        self._max_points = max_points
        self._lock = Lock()
        for definition in definitions:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        with self._lock:
            self._definitions[definition.name] = definition
            self._series.setdefault(definition.name, deque(maxlen=self._max_points))

    def get_definition(self, metric_name: str) -> Optional[MetricDefinition]:
        return self._definitions.get(metric_name)

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Mapping[str, str]] = None
    ):
        point = MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=Timestamp.now(),
            labels=tuple(sorted(labels.items())) if labels else (),
        )
        if self.get_definition(metric_name) is None:
            logger.debug("recording unregistered metric %s", metric_name)
        with self._lock:
            series = self._series.setdefault(metric_name, deque(maxlen=self._max_points))
            series.append(point)

    def get_metric(self, metric_name: str) -> List[MetricPoint]:
        with self._lock:
            return list(self._series.get(metric_name, ()))

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        series = self.get_metric(metric_name)
        if not series:
            return None
        return series[-1]

    def compute_aggregates(self, metric_name: str) -> Dict[str, float]:
        """count / sum / min / max / mean over the retained points ({} if empty)."""
        values = [p.value for p in self.get_metric(metric_name)]
        if not values:
            return {}
        total = sum(values)
        return {
            "count": len(values),
            "sum": total,
            "min": min(values),
            "max": max(values),
            "mean": total / len(values),
        }


# =============================================================================
# ENGINE
# =============================================================================

@dataclass
class ObservabilityConfig:
    enable_metrics: bool = True
    max_entries_per_layer: Optional[int] = 10_000
    max_points_per_metric: Optional[int] = 10_000


class ObservabilityEngine:
    """
    One audit trail per layer plus an optional metrics collector.

    Shared by the ingestion engine and the observation that owns it.
    """

    LAYERS = ('ingestion', 'projection', 'source', 'engine')

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._trails: Dict[str, LogCollector] = {
            layer: LogCollector(layer, self._config.max_entries_per_layer)
            for layer in self.LAYERS
        }
        self._metrics: Optional[MetricsCollector] = (
            MetricsCollector(max_points=self._config.max_points_per_metric)
            if self._config.enable_metrics else None
        )

    def collect_audit(self, entry: AuditLogEntry):
        trail = self._trails.get(entry.layer)
        if trail is None:
            logger.warning("audit entry from unknown layer %s dropped", entry.layer)
            return
        trail.collect(entry)

    def log_audit(
        self,
        layer: str,
        action: str,
        event_type: AuditEventType = AuditEventType.SYSTEM,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        metadata: Tuple[Tuple[str, str], ...] = ()
    ) -> AuditLogEntry:
        """Build and collect an entry in one step."""
        entry = make_audit_entry(layer, action, event_type, entity_id, entity_type, metadata)
        self.collect_audit(entry)
        return entry

    def collect_metric(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Mapping[str, str]] = None
    ):
        if self._metrics is not None:
            self._metrics.record(metric_name, value, labels)

    def get_layer_log(self, layer_name: str) -> List[AuditLogEntry]:
        trail = self._trails.get(layer_name)
        return trail.get_entries() if trail else []

    def get_unified_log(self) -> List[AuditLogEntry]:
        """Entries of every layer merged by timestamp."""
        merged = [e for trail in self._trails.values() for e in trail.get_entries()]
        merged.sort(key=lambda e: e.timestamp.value)
        return merged

    def get_metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def summary(self) -> Dict[str, object]:
        """Entry counts per layer and totals of the retained counter points."""
        result: Dict[str, object] = {
            "audit_entries": {name: t.entry_count for name, t in self._trails.items()},
        }
        if self._metrics is not None:
            result["metrics"] = {
                d.name: self._metrics.compute_aggregates(d.name).get("sum", 0)
                for d in DAG_METRICS
                if d.metric_type == MetricType.COUNTER
            }
        return result


__all__ = [
    'make_audit_entry',
    'LogCollector',
    'MetricType',
    'MetricDefinition',
    'DAG_METRICS',
    'MetricsCollector',
    'ObservabilityConfig',
    'ObservabilityEngine',
]
