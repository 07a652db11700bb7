"""
Shared Contracts
================

Error and time types every layer may import. Nothing here imports from
another roomdag module.

- Recoverable failures travel as Error values inside a Result or a report
- ParseError (contracts.events) is the only exception crossing a layer, and
  the ingestion loop is the only place that catches it
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERRORS
# =============================================================================

class ErrorCode(Enum):
    """Failure kinds. None of them stops an observation."""
    # a single raw event could not be parsed; the rest of its batch applies
    MALFORMED_EVENT = auto()
    # a timeline batch named a room other than the observed one
    UNKNOWN_ROOM = auto()

    # fetch-side failures, reported by event sources
    SOURCE_UNREACHABLE = auto()
    SOURCE_HTTP_ERROR = auto()
    MALFORMED_RESPONSE = auto()

    OBSERVATION_NOT_FOUND = auto()


@dataclass(frozen=True)
class Error:
    """
    A recorded failure.

    context holds (key, value) string pairs such as the offending field,
    event id or batch id; order is insertion order.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: Any) -> 'Error':
        return Error(
            code=code,
            message=message,
            timestamp=Timestamp.now().value,
            context=tuple((key, str(value)) for key, value in context.items()),
        )

    def with_context(self, key: str, value: str) -> 'Error':
        """Copy with one more context pair."""
        return Error(self.code, self.message, self.timestamp, self.context + ((key, value),))

    def context_value(self, key: str) -> Optional[str]:
        return next((v for k, v in self.context if k == key), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": dict(self.context),
        }


@dataclass(frozen=True)
class Result:
    """Outcome of a fallible call: a value, or an Error."""
    value: Optional[Any] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    @staticmethod
    def success(value: Any) -> 'Result':
        return Result(value=value)

    @staticmethod
    def failure(error: Error) -> 'Result':
        return Result(error=error)


# =============================================================================
# TIME
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """UTC instant. Naive datetimes are taken to be UTC."""
    value: datetime

    def __post_init__(self):
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> 'Timestamp':
        return Timestamp(datetime.now(timezone.utc))

    @staticmethod
    def from_millis(millis: int) -> 'Timestamp':
        """From a protocol origin_server_ts (milliseconds since the epoch)."""
        return Timestamp(datetime.fromtimestamp(millis / 1000, tz=timezone.utc))

    def to_iso(self) -> str:
        return self.value.isoformat()
