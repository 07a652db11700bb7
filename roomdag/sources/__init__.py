"""
Event Sources

Two interchangeable implementations of the EventSource capability:
- ClientServerSource: homeserver client-server API (token pagination)
- IndexedStoreSource: indexed secondary store (event-id pagination)
"""

from .base import (
    EventSource, HttpEventSource, SourceConfig, TimelineBatch, BackfillBatch
)
from .client_server import ClientServerSource, build_filter
from .indexed_store import IndexedStoreSource

__all__ = [
    'EventSource',
    'HttpEventSource',
    'SourceConfig',
    'TimelineBatch',
    'BackfillBatch',
    'ClientServerSource',
    'IndexedStoreSource',
    'build_filter',
]
