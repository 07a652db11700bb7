"""
Client-Server API Source

Reads a room through a homeserver's client-server REST API, asking for
events in federation format so that depth and prev_events are present.

- Timeline: GET /sync (incremental with the `since` token)
- Backfill: GET /rooms/{roomId}/messages?dir=b from the `prev_batch` token

Authentication is out of scope: the access token is supplied by the caller.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote
import json

import httpx

from ..contracts.base import Result
from .base import BackfillBatch, HttpEventSource, SourceConfig, TimelineBatch

API_PREFIX = "/_matrix/client/r0"

# Fields needed to rebuild the DAG, requested in federation format
FEDERATION_EVENT_FIELDS = (
    "room_id",
    "sender",
    "origin",
    "origin_server_ts",
    "type",
    "state_key",
    "content",
    "prev_events",
    "depth",
    "auth_events",
    "redacts",
    "unsigned",
    "event_id",
    "hashes",
    "signatures",
)


def build_filter() -> str:
    """Event filter asking for federation-format events with DAG fields."""
    return json.dumps(
        {
            "event_fields": list(FEDERATION_EVENT_FIELDS),
            "event_format": "federation",
        },
        separators=(",", ":"),
    )


class ClientServerSource(HttpEventSource):
    """
    Homeserver client-server API.

    Holds the sync and pagination tokens of this observation:
    - next_batch: where the next /sync continues from
    - prev_batch: where the next backward /messages page starts
    """

    def __init__(
        self,
        config: SourceConfig,
        transport: Optional[httpx.BaseTransport] = None,
        sync_timeout_ms: int = 5000
    ):
        super().__init__(config, transport)
        self._sync_timeout_ms = sync_timeout_ms
        self._next_batch: Optional[str] = None
        self._prev_batch: Optional[str] = None

    @property
    def source_type(self) -> str:
        return "client_server"

    @property
    def next_batch(self) -> Optional[str]:
        return self._next_batch

    @property
    def prev_batch(self) -> Optional[str]:
        return self._prev_batch

    def fetch_timeline(self) -> Result:
        params: Dict[str, Any] = {
            "filter": build_filter(),
            "set_presence": "offline",
            "timeout": self._sync_timeout_ms,
        }
        if self._next_batch:
            params["since"] = self._next_batch

        result = self._get_json(f"{API_PREFIX}/sync", params)
        if result.is_failure:
            return result
        body = result.value

        next_batch = body.get("next_batch")
        if not isinstance(next_batch, str):
            return self._malformed("sync response has no next_batch token")

        rooms = self._object(body, "rooms")
        joined = self._object(rooms, "join") if rooms is not None else None
        if joined is None:
            return self._malformed("sync rooms.join is not an object")

        if self._config.room_id not in joined:
            self._next_batch = next_batch
            return Result.success(TimelineBatch(room_id=self._config.room_id))

        room = self._object(joined, self._config.room_id)
        timeline = self._object(room, "timeline") if room is not None else None
        if timeline is None:
            return self._malformed("sync room timeline is not an object")

        events = self._event_list(timeline, "events")
        if events is None:
            return self._malformed("sync timeline events is not a list")

        self._next_batch = next_batch
        # Only the first sync sets the backward pagination start
        if self._prev_batch is None and isinstance(timeline.get("prev_batch"), str):
            self._prev_batch = timeline["prev_batch"]

        return Result.success(TimelineBatch(room_id=self._config.room_id, events=events))

    def fetch_backfill(self, from_ids: Sequence[str] = ()) -> Result:
        """
        Next page backwards from prev_batch.

        from_ids is ignored: this API paginates by token, not by event.
        """
        params: Dict[str, Any] = {
            "dir": "b",
            "filter": build_filter(),
            "limit": self._config.page_limit,
        }
        if self._prev_batch:
            params["from"] = self._prev_batch

        room = quote(self._config.room_id, safe="")
        result = self._get_json(f"{API_PREFIX}/rooms/{room}/messages", params)
        if result.is_failure:
            return result
        body = result.value

        events = self._event_list(body, "chunk")
        if events is None:
            return self._malformed("messages chunk is not a list")

        end = body.get("end")
        if isinstance(end, str):
            self._prev_batch = end

        return Result.success(BackfillBatch(events=events))
