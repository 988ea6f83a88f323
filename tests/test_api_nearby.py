from datetime import datetime, timedelta, timezone

import pytest
from starlette.testclient import TestClient

from nearmatch.api.app import app
from nearmatch.api.registry import LocationRegistry
from nearmatch.proximity.movement import MovementGate

ALICE = {"lat": 41.0124762, "lon": 29.1328051}
# ~21 m from ALICE
BOB = {"lat": 41.0123150, "lon": 29.1326827}
AS_OF = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def registry(monkeypatch):
    # Patch the cached registry factory so each test starts from an empty registry.
    import nearmatch.api.routes as routes

    reg = LocationRegistry(gate=MovementGate(min_delta_m=10))
    monkeypatch.setattr(routes, "_registry", lambda: reg)
    return reg


@pytest.fixture
def client(registry):
    with TestClient(app) as c:
        yield c


def _share(client, entity_id, point, **extra):
    resp = client.post("/api/locations", json={"entity_id": entity_id, **point, **extra})
    assert resp.status_code == 200
    return resp.json()


def test_location_update_accepts_numeric_text(client, registry):
    data = _share(client, "alice", {"lat": "41.0124762", "lon": "29.1328051"}, accuracy_m="8")
    assert data["accepted"] and data["moved"]
    assert registry.get("alice").point.lat == pytest.approx(41.0124762)


def test_location_update_rejects_out_of_range(client):
    resp = client.post("/api/locations", json={"entity_id": "alice", "lat": 95, "lon": 29.0})
    assert resp.status_code == 422


def test_small_movement_is_suppressed(client, registry):
    _share(client, "alice", ALICE)
    nudged = {"lat": ALICE["lat"] + 0.00002, "lon": ALICE["lon"]}
    data = _share(client, "alice", nudged)
    assert not data["moved"]
    assert data["location"]["lat"] == ALICE["lat"]


def test_nearby_for_entity_excludes_self(client):
    _share(client, "alice", ALICE)
    _share(client, "bob", BOB)

    resp = client.get("/api/nearby/alice", params={"radius_m": 1000})
    assert resp.status_code == 200
    data = resp.json()
    assert [r["entity_id"] for r in data["results"]] == ["bob"]
    assert 19 <= data["results"][0]["distance_m"] <= 23
    assert data["results"][0]["is_online"] is True
    assert data["meta"]["stats"]["excluded"] == 1
    assert data["meta"]["debug"]["request_id"]
    assert isinstance(data["meta"]["debug"]["api_ms"], int)


def test_nearby_for_integer_entity_id(client):
    _share(client, 42, ALICE)
    _share(client, 7, BOB)
    resp = client.get("/api/nearby/42")
    assert resp.status_code == 200
    assert [r["entity_id"] for r in resp.json()["results"]] == [7]


def test_nearby_for_unknown_entity_is_404(client):
    resp = client.get("/api/nearby/nobody")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "UNKNOWN_ENTITY"


def test_stopped_sharing_disappears(client):
    _share(client, "alice", ALICE)
    _share(client, "bob", BOB)
    resp = client.delete("/api/locations/bob")
    assert resp.json() == {"entity_id": "bob", "removed": True}

    data = client.get("/api/nearby/alice").json()
    assert data["results"] == []


def test_negative_radius_is_a_client_error(client):
    resp = client.post("/api/nearby", json={"origin": ALICE, "radius_m": -5})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_QUERY"


def test_radius_above_maximum_is_a_client_error(client):
    resp = client.get("/api/nearby/alice", params={"radius_m": 1_000_000})
    # Unknown entity is checked first.
    assert resp.status_code == 404
    _share(client, "alice", ALICE)
    resp = client.get("/api/nearby/alice", params={"radius_m": 1_000_000})
    assert resp.status_code == 400


def test_nearby_with_posted_reports_skips_malformed(client):
    seen = (AS_OF - timedelta(minutes=1)).isoformat()
    payload = {
        "origin": ALICE,
        "radius_m": 10_000,
        "limit": 10,
        "max_age_s": 900,
        "as_of": AS_OF.isoformat(),
        "reports": [
            {"entity_id": "bob", **BOB, "observed_at": seen},
            {"entity_id": "carol", "lat": "not-a-number", "lon": 29.0, "observed_at": seen},
            {"entity_id": "dave", **BOB, "observed_at": (AS_OF - timedelta(hours=2)).isoformat()},
        ],
    }
    resp = client.post("/api/nearby", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert [r["entity_id"] for r in data["results"]] == ["bob"]
    assert data["meta"]["source"] == "request"
    assert data["meta"]["skipped_reports"] == 1
    assert data["meta"]["stats"]["stale"] == 1
    assert data["limit"] == 10


def test_broadcast_lists_each_fresh_entity(client):
    _share(client, "alice", ALICE)
    _share(client, "bob", BOB)
    _share(client, "zoe", {"lat": 40.0, "lon": 29.0})

    data = client.get("/api/broadcast", params={"radius_m": 5000}).json()
    lists = {row["entity_id"]: [r["entity_id"] for r in row["results"]] for row in data["lists"]}
    assert lists == {"alice": ["bob"], "bob": ["alice"], "zoe": []}
    assert data["entities"] == 3


def test_broadcast_rejects_bad_radius(client):
    resp = client.get("/api/broadcast", params={"radius_m": 0})
    assert resp.status_code == 400


def test_public_settings(client):
    data = client.get("/api/settings").json()
    assert data["proximity"]["max_limit"] == 200


def test_huge_max_age_is_a_client_error(client):
    resp = client.post("/api/nearby", json={"origin": ALICE, "max_age_s": 1e15})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "INVALID_QUERY"

    _share(client, "alice", ALICE)
    assert client.get("/api/nearby/alice", params={"max_age_s": 1e15}).status_code == 400
    assert client.get("/api/broadcast", params={"max_age_s": 1e15}).status_code == 400


def test_future_timestamped_update_is_rejected(client, registry):
    ahead = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    resp = client.post("/api/locations", json={"entity_id": "alice", **ALICE, "observed_at": ahead})
    assert resp.status_code == 400
    assert registry.get("alice") is None

    _share(client, "alice", ALICE)
    _share(client, "bob", BOB)
    data = client.get("/api/nearby/bob").json()
    assert [r["entity_id"] for r in data["results"]] == ["alice"]
