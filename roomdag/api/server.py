"""
Room DAG Observer: API Server
=============================

Apply batches to room observations and read render projections back.

Endpoints:
- GET    /health
- POST   /api/v1/observations                      -> open an observation
- GET    /api/v1/observations                      -> list observations
- DELETE /api/v1/observations/{id}
- POST   /api/v1/observations/{id}/timeline        -> ingestion report
- POST   /api/v1/observations/{id}/backfill        -> ingestion report
- GET    /api/v1/observations/{id}/snapshot        -> full projection
- POST   /api/v1/observations/{id}/diff/tail       -> projection delta
- POST   /api/v1/observations/{id}/diff/head       -> projection delta
- GET    /api/v1/observations/{id}/frontier
- GET    /api/v1/observations/{id}/events/{event_id}
- PUT    /api/v1/observations/{id}/label-fields    -> re-projected snapshot
- GET    /api/v1/observations/{id}/dot             -> Graphviz text

Usage:
    uvicorn roomdag.api.server:app --reload
"""
from contextlib import asynccontextmanager
from typing import Any, List, Optional
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..contracts.base import Error, ErrorCode
from ..engine import ObservationConfig, ObservationRegistry, RoomObservation
from ..projection import ProjectionConfig, parse_label_fields
from .config import ServerConfig

logger = logging.getLogger("roomdag.api")

# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

server_config = ServerConfig.from_env()

# Global registry instance
registry: Optional[ObservationRegistry] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the observation registry on startup."""
    global registry

    registry = ObservationRegistry()
    logger.info("observation registry ready")

    yield

    logger.info("shutting down; dropping %d observation(s)", len(registry))
    registry = None


app = FastAPI(
    title="Room DAG Observer API",
    version="0.1.0",
    description="Event-DAG projections of federated rooms",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_config.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class OpenObservationRequest(BaseModel):
    room_id: str
    server_name: str
    label_fields: Optional[List[str]] = None


class TimelineBatchRequest(BaseModel):
    room_id: str
    # Raw events stay untyped; malformed ones are reported, not rejected
    events: List[Any] = Field(default_factory=list)


class BackfillBatchRequest(BaseModel):
    events: List[Any] = Field(default_factory=list)


class SeedIdsRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class LabelFieldsRequest(BaseModel):
    fields: List[str]


# =============================================================================
# HELPERS
# =============================================================================

def _registry() -> ObservationRegistry:
    if registry is None:
        raise HTTPException(status_code=503, detail="Registry not initialized")
    return registry


def _not_found(observation_id: str) -> HTTPException:
    error = Error.create(
        ErrorCode.OBSERVATION_NOT_FOUND,
        f"Unknown observation: {observation_id}",
        observation_id=observation_id,
    )
    return HTTPException(status_code=404, detail=error.to_dict())


def _observation(observation_id: str) -> RoomObservation:
    observation = _registry().find(observation_id)
    if observation is None:
        raise _not_found(observation_id)
    return observation


def _label_fields(names: List[str]):
    try:
        return parse_label_fields(names)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """System status."""
    if registry is None:
        raise HTTPException(status_code=503, detail="Registry not initialized")
    return {"status": "online", "observations": len(registry)}


@app.post("/api/v1/observations", status_code=201)
def open_observation(request: OpenObservationRequest):
    """Open (or return the existing) observation of a room from an authority."""
    fields = (
        _label_fields(request.label_fields)
        if request.label_fields is not None
        else ProjectionConfig().default_fields
    )
    observation = _registry().open(ObservationConfig(
        room_id=request.room_id,
        server_name=request.server_name,
        label_fields=fields,
    ))
    return {"observation_id": observation.observation_id}


@app.get("/api/v1/observations")
def list_observations():
    return {"observations": [o.stats() for o in _registry().list()]}


@app.delete("/api/v1/observations/{observation_id}")
def close_observation(observation_id: str):
    if not _registry().close(observation_id):
        raise _not_found(observation_id)
    return {"closed": observation_id}


@app.post("/api/v1/observations/{observation_id}/timeline")
def ingest_timeline(observation_id: str, request: TimelineBatchRequest):
    """
    Apply a live / continuation batch.
    A batch for another room comes back as a report with applied=false.
    """
    observation = _observation(observation_id)
    return observation.ingest_timeline_batch(request.room_id, request.events).to_dict()


@app.post("/api/v1/observations/{observation_id}/backfill")
def ingest_backfill(observation_id: str, request: BackfillBatchRequest):
    observation = _observation(observation_id)
    return observation.ingest_backfill_batch(request.events).to_dict()


@app.get("/api/v1/observations/{observation_id}/snapshot")
def get_snapshot(observation_id: str):
    return _observation(observation_id).snapshot().to_dict()


@app.post("/api/v1/observations/{observation_id}/diff/tail")
def diff_since_tail(observation_id: str, request: SeedIdsRequest):
    """Nodes that became reachable behind the caller's old tails."""
    return _observation(observation_id).diff_since_tail(request.ids).to_dict()


@app.post("/api/v1/observations/{observation_id}/diff/head")
def diff_since_head(observation_id: str, request: SeedIdsRequest):
    """Nodes that became reachable ahead of the caller's old heads."""
    return _observation(observation_id).diff_since_head(request.ids).to_dict()


@app.get("/api/v1/observations/{observation_id}/frontier")
def get_frontier(observation_id: str):
    return _observation(observation_id).frontier().to_dict()


@app.get("/api/v1/observations/{observation_id}/events/{event_id:path}")
def get_event(observation_id: str, event_id: str):
    """Event body as received."""
    event = _observation(observation_id).get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Unknown event: {event_id}")
    return event.to_dict()


@app.put("/api/v1/observations/{observation_id}/label-fields")
def set_label_fields(observation_id: str, request: LabelFieldsRequest):
    observation = _observation(observation_id)
    fields = _label_fields(request.fields)
    return observation.set_label_fields(fields).to_dict()


@app.get("/api/v1/observations/{observation_id}/dot", response_class=PlainTextResponse)
def get_dot(observation_id: str):
    return _observation(observation_id).to_dot()
