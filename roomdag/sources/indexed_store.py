"""
Indexed Store Source

Reads a room from the secondary index served next to a homeserver's
database (the /visualisations endpoints). Unlike the client-server API it
paginates by event id, in both directions.

- Timeline: GET /visualisations/deepest/{roomId}
- Backfill: GET /visualisations/ancestors/{roomId}?from=<ids>&limit=<n>
- Forward fill: GET /visualisations/descendants/{roomId}?from=<ids>&limit=<n>
"""

from __future__ import annotations
from typing import Sequence
from urllib.parse import quote

from ..contracts.base import Result
from .base import BackfillBatch, HttpEventSource, TimelineBatch

API_PREFIX = "/visualisations"


class IndexedStoreSource(HttpEventSource):
    """Secondary-store source; no authentication, no tokens."""

    @property
    def source_type(self) -> str:
        return "indexed_store"

    def _room_path(self, endpoint: str) -> str:
        return f"{API_PREFIX}/{endpoint}/{quote(self._config.room_id, safe='')}"

    def fetch_timeline(self) -> Result:
        """Deepest (newest) events of the room."""
        result = self._get_json(self._room_path("deepest"))
        if result.is_failure:
            return result

        events = self._event_list(result.value, "events")
        if events is None:
            return self._malformed("deepest events is not a list")
        return Result.success(TimelineBatch(room_id=self._config.room_id, events=events))

    def fetch_backfill(self, from_ids: Sequence[str]) -> Result:
        return self._fetch_related("ancestors", from_ids)

    def fetch_descendants(self, from_ids: Sequence[str]) -> Result:
        """Events newer than from_ids, as a BackfillBatch."""
        return self._fetch_related("descendants", from_ids)

    def _fetch_related(self, endpoint: str, from_ids: Sequence[str]) -> Result:
        if not from_ids:
            return Result.success(BackfillBatch())

        params = {"from": ",".join(from_ids), "limit": self._config.page_limit}
        result = self._get_json(self._room_path(endpoint), params)
        if result.is_failure:
            return result

        events = self._event_list(result.value, "events")
        if events is None:
            return self._malformed(f"{endpoint} events is not a list")
        return Result.success(BackfillBatch(events=events))
