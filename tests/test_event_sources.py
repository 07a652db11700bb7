"""
Event Source Tests
==================

Both HTTP sources against httpx.MockTransport: request shapes, token
bookkeeping, and transport failures surfacing as failed Results.
"""

import json

import httpx

from roomdag.contracts.base import ErrorCode
from roomdag.sources import (
    BackfillBatch, ClientServerSource, IndexedStoreSource, SourceConfig, TimelineBatch,
    build_filter,
)
from tests.fixtures import ROOM_ID, chain, make_raw_event

BASE_URL = "https://hs.example.org"


def source_config(**overrides) -> SourceConfig:
    values = dict(base_url=BASE_URL, room_id=ROOM_ID, access_token="secret", page_limit=5)
    values.update(overrides)
    return SourceConfig(**values)


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def sync_body(events, next_batch="s2", prev_batch="p1"):
    return {
        "next_batch": next_batch,
        "rooms": {"join": {ROOM_ID: {"timeline": {"events": events, "prev_batch": prev_batch}}}},
    }


class TestClientServerSource:

    def test_sync_request_shape(self):
        handler = Recorder(httpx.Response(200, json=sync_body(chain("$a"))))
        source = ClientServerSource(source_config(), transport=httpx.MockTransport(handler))

        result = source.fetch_timeline()

        assert result.is_success
        request = handler.requests[0]
        assert request.url.path == "/_matrix/client/r0/sync"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["set_presence"] == "offline"
        assert "since" not in request.url.params
        sync_filter = json.loads(request.url.params["filter"])
        assert sync_filter["event_format"] == "federation"
        assert "prev_events" in sync_filter["event_fields"]
        assert "depth" in sync_filter["event_fields"]

    def test_sync_tracks_tokens(self):
        handler = Recorder(
            httpx.Response(200, json=sync_body(chain("$a"), next_batch="s1", prev_batch="p0")),
            httpx.Response(200, json=sync_body([], next_batch="s2", prev_batch="p9")),
        )
        source = ClientServerSource(source_config(), transport=httpx.MockTransport(handler))

        first = source.fetch_timeline().value
        source.fetch_timeline()

        assert isinstance(first, TimelineBatch)
        assert first.room_id == ROOM_ID
        assert [e["event_id"] for e in first.events] == ["$a"]
        assert handler.requests[1].url.params["since"] == "s1"
        assert source.next_batch == "s2"
        # Backward pagination starts from the first sync only
        assert source.prev_batch == "p0"

    def test_sync_without_room_is_empty_batch(self):
        handler = Recorder(httpx.Response(200, json={"next_batch": "s1", "rooms": {"join": {}}}))
        source = ClientServerSource(source_config(), transport=httpx.MockTransport(handler))

        batch = source.fetch_timeline().value

        assert batch.events == ()
        assert source.next_batch == "s1"

    def test_backfill_paginates_backwards(self):
        handler = Recorder(
            httpx.Response(200, json=sync_body([], next_batch="s1", prev_batch="p1")),
            httpx.Response(200, json={"chunk": [make_raw_event("$old", 1)], "end": "p2"}),
            httpx.Response(200, json={"chunk": []}),
        )
        source = ClientServerSource(source_config(), transport=httpx.MockTransport(handler))
        source.fetch_timeline()

        batch = source.fetch_backfill(["$ignored"]).value
        source.fetch_backfill([])

        request = handler.requests[1]
        assert request.url.path == "/_matrix/client/r0/rooms/!room:example.org/messages"
        assert request.url.params["dir"] == "b"
        assert request.url.params["from"] == "p1"
        assert request.url.params["limit"] == "5"
        assert isinstance(batch, BackfillBatch)
        assert [e["event_id"] for e in batch.events] == ["$old"]
        assert handler.requests[2].url.params["from"] == "p2"

    def test_missing_next_batch_is_malformed(self):
        handler = Recorder(httpx.Response(200, json={"rooms": {}}))
        source = ClientServerSource(source_config(), transport=httpx.MockTransport(handler))

        result = source.fetch_timeline()

        assert result.is_failure
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE

    def test_filter_is_compact_json(self):
        assert " " not in build_filter()

    def _sync(self, body) -> ClientServerSource:
        handler = Recorder(httpx.Response(200, json=body))
        return ClientServerSource(source_config(), transport=httpx.MockTransport(handler))

    def test_null_rooms_is_malformed(self):
        source = self._sync({"next_batch": "s1", "rooms": None})

        result = source.fetch_timeline()

        assert result.error.code == ErrorCode.MALFORMED_RESPONSE
        assert source.next_batch is None

    def test_join_not_an_object_is_malformed(self):
        result = self._sync({"next_batch": "s1", "rooms": {"join": []}}).fetch_timeline()
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE

    def test_joined_room_not_an_object_is_malformed(self):
        result = self._sync({"next_batch": "s1", "rooms": {"join": {ROOM_ID: "x"}}}).fetch_timeline()
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE

    def test_null_timeline_is_malformed(self):
        body = {"next_batch": "s1", "rooms": {"join": {ROOM_ID: {"timeline": None}}}}
        result = self._sync(body).fetch_timeline()
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE

    def test_sync_without_rooms_is_empty_batch(self):
        source = self._sync({"next_batch": "s1"})

        assert source.fetch_timeline().value.events == ()
        assert source.next_batch == "s1"


class TestIndexedStoreSource:

    def test_deepest(self):
        handler = Recorder(httpx.Response(200, json={"events": chain("$a", "$b")}))
        source = IndexedStoreSource(source_config(access_token=None), transport=httpx.MockTransport(handler))

        batch = source.fetch_timeline().value

        request = handler.requests[0]
        assert request.url.path == "/visualisations/deepest/!room:example.org"
        assert "Authorization" not in request.headers
        assert batch.room_id == ROOM_ID
        assert len(batch.events) == 2

    def test_ancestors_and_descendants(self):
        handler = Recorder(
            httpx.Response(200, json={"events": [make_raw_event("$p", 1)]}),
            httpx.Response(200, json={"events": [make_raw_event("$c", 3, ["$b"])]}),
        )
        source = IndexedStoreSource(source_config(), transport=httpx.MockTransport(handler))

        ancestors = source.fetch_backfill(["$a", "$b"]).value
        descendants = source.fetch_descendants(["$b"]).value

        first, second = handler.requests
        assert first.url.path.startswith("/visualisations/ancestors/")
        assert first.url.params["from"] == "$a,$b"
        assert first.url.params["limit"] == "5"
        assert second.url.path.startswith("/visualisations/descendants/")
        assert ancestors.events[0]["event_id"] == "$p"
        assert descendants.events[0]["event_id"] == "$c"

    def test_no_seeds_skips_request(self):
        handler = Recorder()
        source = IndexedStoreSource(source_config(), transport=httpx.MockTransport(handler))

        result = source.fetch_backfill([])

        assert result.is_success
        assert result.value.events == ()
        assert handler.requests == []


class TestTransportFailures:

    def _source(self, *responses):
        return IndexedStoreSource(source_config(), transport=httpx.MockTransport(Recorder(*responses)))

    def test_http_error_status(self):
        result = self._source(httpx.Response(502, text="bad gateway")).fetch_timeline()
        assert result.error.code == ErrorCode.SOURCE_HTTP_ERROR
        assert result.error.context_value("status") == "502"

    def test_connection_error(self):
        result = self._source(httpx.ConnectError("refused")).fetch_timeline()
        assert result.error.code == ErrorCode.SOURCE_UNREACHABLE

    def test_timeout(self):
        result = self._source(httpx.ReadTimeout("slow")).fetch_timeline()
        assert result.error.code == ErrorCode.SOURCE_UNREACHABLE
        assert "Timeout" in result.error.message

    def test_non_json_body(self):
        result = self._source(httpx.Response(200, text="<html>")).fetch_timeline()
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE

    def test_events_not_a_list(self):
        result = self._source(httpx.Response(200, json={"events": {"$a": 1}})).fetch_timeline()
        assert result.is_failure
        assert result.error.code == ErrorCode.MALFORMED_RESPONSE
