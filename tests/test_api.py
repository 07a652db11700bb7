"""
API Server Tests
================

HTTP surface over the observation registry, exercised with TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from roomdag.api.config import ServerConfig
from roomdag.api.server import app
from tests.fixtures import LOCAL_SERVER, ROOM_ID, chain, make_raw_event


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def obs_id(client):
    response = client.post("/api/v1/observations", json={
        "room_id": ROOM_ID, "server_name": LOCAL_SERVER,
    })
    assert response.status_code == 201
    return response.json()["observation_id"]


def base(obs_id: str) -> str:
    return f"/api/v1/observations/{obs_id}"


class TestObservationLifecycle:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "online"

    def test_open_is_idempotent(self, client, obs_id):
        again = client.post("/api/v1/observations", json={
            "room_id": ROOM_ID, "server_name": LOCAL_SERVER,
        })
        assert again.json()["observation_id"] == obs_id

    def test_list_and_close(self, client, obs_id):
        listed = client.get("/api/v1/observations").json()["observations"]
        assert [o["observation_id"] for o in listed] == [obs_id]

        assert client.delete(base(obs_id)).status_code == 200
        assert client.delete(base(obs_id)).status_code == 404
        assert client.get(base(obs_id) + "/snapshot").status_code == 404

    def test_open_with_unknown_label_field(self, client):
        response = client.post("/api/v1/observations", json={
            "room_id": ROOM_ID, "server_name": "other.test", "label_fields": ["nope"],
        })
        assert response.status_code == 422

    def test_unknown_observation(self, client):
        response = client.get(base("deadbeef") + "/frontier")

        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["code"] == "OBSERVATION_NOT_FOUND"
        assert detail["context"] == {"observation_id": "deadbeef"}


class TestBatchesAndReads:

    def test_timeline_then_snapshot(self, client, obs_id):
        report = client.post(base(obs_id) + "/timeline", json={
            "room_id": ROOM_ID, "events": chain("$a", "$b"),
        }).json()
        assert report["added"] == 2
        assert report["new_edges"] == 1
        assert report["applied"] is True

        snapshot = client.get(base(obs_id) + "/snapshot").json()
        assert [n["id"] for n in snapshot["nodes"]] == ["$a", "$b"]
        assert snapshot["edges"] == [{"from": "$b", "to": "$a"}]

    def test_timeline_for_other_room_is_ignored(self, client, obs_id):
        report = client.post(base(obs_id) + "/timeline", json={
            "room_id": "!other:example.org", "events": chain("$a"),
        }).json()
        assert report["applied"] is False
        assert report["errors"][0]["code"] == "UNKNOWN_ROOM"

    def test_malformed_events_are_reported(self, client, obs_id):
        report = client.post(base(obs_id) + "/backfill", json={
            "events": [make_raw_event("$ok", 1), {"event_id": "$bad"}, 42],
        }).json()
        assert report["added"] == 1
        assert report["skipped_event_ids"] == ["$bad", "#2"]

    def test_diffs_and_frontier(self, client, obs_id):
        client.post(base(obs_id) + "/timeline", json={
            "room_id": ROOM_ID, "events": [make_raw_event("$c", 3, ["$b"])],
        })
        frontier = client.get(base(obs_id) + "/frontier").json()
        assert frontier["orphans"] == [{"id": "$c", "depth": 3}]

        client.post(base(obs_id) + "/backfill", json={"events": chain("$a", "$b")})
        delta = client.post(base(obs_id) + "/diff/tail", json={"ids": frontier["tails"]}).json()
        assert [n["id"] for n in delta["nodes"]] == ["$a", "$b"]

        client.post(base(obs_id) + "/timeline", json={
            "room_id": ROOM_ID, "events": [make_raw_event("$d", 4, ["$c"])],
        })
        delta = client.post(base(obs_id) + "/diff/head", json={"ids": frontier["heads"]}).json()
        assert [n["id"] for n in delta["nodes"]] == ["$d"]

    def test_get_event(self, client, obs_id):
        raw = make_raw_event("$a", 1)
        client.post(base(obs_id) + "/backfill", json={"events": [raw]})

        assert client.get(base(obs_id) + "/events/$a").json() == raw
        assert client.get(base(obs_id) + "/events/$missing").status_code == 404

    def test_label_fields(self, client, obs_id):
        client.post(base(obs_id) + "/backfill", json={"events": chain("$a")})

        snapshot = client.put(base(obs_id) + "/label-fields", json={"fields": ["depth"]}).json()
        assert snapshot["nodes"][0]["label"] == "Depth: 1"

        bad = client.put(base(obs_id) + "/label-fields", json={"fields": ["colour"]})
        assert bad.status_code == 422

    def test_dot(self, client, obs_id):
        client.post(base(obs_id) + "/backfill", json={"events": chain("$a", "$b")})
        response = client.get(base(obs_id) + "/dot")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert '"$b" -> "$a"' in response.text


class TestServerConfig:

    def test_defaults(self):
        config = ServerConfig.from_env({})
        assert config.host == "127.0.0.1"
        assert config.port == 8000
        assert config.cors_origins == ("*",)

    def test_from_env(self):
        config = ServerConfig.from_env({
            "ROOMDAG_HOST": "0.0.0.0",
            "ROOMDAG_PORT": "9001",
            "ROOMDAG_CORS_ORIGINS": "http://a.test, http://b.test",
        })
        assert config.host == "0.0.0.0"
        assert config.port == 9001
        assert config.cors_origins == ("http://a.test", "http://b.test")
