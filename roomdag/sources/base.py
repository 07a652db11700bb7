"""
Event Source Contracts

Capability interface for anything that can hand raw event batches to an
observation. The DAG engine never calls a source; observations do, and
only outside their write lock.

PRINCIPLES:
===========
1. Transport failures are Results, never exceptions
2. Raw events are returned verbatim; parsing is the ingestion layer's job
3. Each source owns its own pagination state
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
import logging

import httpx

from ..contracts.base import Error, ErrorCode, Result

logger = logging.getLogger("roomdag.sources")


@dataclass(frozen=True)
class TimelineBatch:
    """Live / continuation events for one room."""
    room_id: str
    events: Tuple[Mapping[str, Any], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BackfillBatch:
    """Ancestors, pagination or descendants results."""
    events: Tuple[Mapping[str, Any], ...] = field(default_factory=tuple)


@dataclass
class SourceConfig:
    """Connection settings of one source."""
    base_url: str
    room_id: str
    access_token: Optional[str] = None
    timeout: float = 30.0
    page_limit: int = 10
    user_agent: str = "roomdag/0.1"


class EventSource(ABC):
    """Something that can fetch timeline and backfill batches."""

    @property
    @abstractmethod
    def source_type(self) -> str:
        pass

    @abstractmethod
    def fetch_timeline(self) -> Result:
        """Result wrapping a TimelineBatch."""
        pass

    @abstractmethod
    def fetch_backfill(self, from_ids: Sequence[str]) -> Result:
        """Result wrapping a BackfillBatch of events older than from_ids."""
        pass


class HttpEventSource(EventSource):
    """
    Shared HTTP plumbing for the JSON-over-HTTP sources.

    GUARANTEES:
    ===========
    1. Timeouts and network errors -> SOURCE_UNREACHABLE
    2. Non-2xx status -> SOURCE_HTTP_ERROR with the status code
    3. Undecodable body -> MALFORMED_RESPONSE
    """

    def __init__(
        self,
        config: SourceConfig,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self._config = config
        self._transport = transport

    @property
    def config(self) -> SourceConfig:
        return self._config

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }
        if self._config.access_token:
            headers["Authorization"] = f"Bearer {self._config.access_token}"
        return headers

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Result:
        url = self._config.base_url.rstrip("/") + path
        try:
            with httpx.Client(timeout=self._config.timeout, transport=self._transport) as client:
                response = client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException:
            logger.warning("%s: timeout fetching %s", self.source_type, path)
            return Result.failure(Error.create(
                ErrorCode.SOURCE_UNREACHABLE, f"Timeout after {self._config.timeout}s", url=url
            ))
        except httpx.HTTPError as e:
            logger.warning("%s: transport error fetching %s: %s", self.source_type, path, e)
            return Result.failure(Error.create(
                ErrorCode.SOURCE_UNREACHABLE, f"{type(e).__name__}: {e}", url=url
            ))

        if not response.is_success:
            return Result.failure(Error.create(
                ErrorCode.SOURCE_HTTP_ERROR,
                f"HTTP {response.status_code}",
                url=url,
                status=str(response.status_code),
            ))

        try:
            body = response.json()
        except ValueError as e:
            return Result.failure(Error.create(
                ErrorCode.MALFORMED_RESPONSE, f"Body is not JSON: {e}", url=url
            ))
        if not isinstance(body, dict):
            return Result.failure(Error.create(
                ErrorCode.MALFORMED_RESPONSE, "Body is not a JSON object", url=url
            ))
        return Result.success(body)

    @staticmethod
    def _object(body: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
        """Object under key ({} when absent), or None when the shape is wrong."""
        value = body.get(key, {})
        if not isinstance(value, dict):
            return None
        return value

    @staticmethod
    def _event_list(body: Mapping[str, Any], key: str) -> Optional[Tuple[Mapping[str, Any], ...]]:
        """Events under key, or None when the shape is wrong."""
        events = body.get(key, [])
        if not isinstance(events, list):
            return None
        return tuple(events)

    @staticmethod
    def _malformed(message: str) -> Result:
        return Result.failure(Error.create(ErrorCode.MALFORMED_RESPONSE, message))
