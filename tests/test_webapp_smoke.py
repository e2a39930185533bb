"""Smoke tests for web application."""

import json

import pytest
from fastapi.testclient import TestClient

from tkdmatch.pool_service import PoolService
from tkdmatch.webapp.app import create_app


@pytest.fixture
def client(db):
    """Create a test client for an app bound to the test database."""
    return TestClient(create_app(db))


@pytest.fixture
def final(client, make_event):
    """Generate a two-competitor bracket and return its only match."""
    event_id, _ = make_event(count=2, countries=["KOR", "FRA"], competition_id=3)
    response = client.post(f"/events/{event_id}/bracket", json={})
    assert response.status_code == 200
    return response.json()["matches"][0]


def test_generate_bracket(client, make_event):
    event_id, _ = make_event(count=4)
    response = client.post(f"/events/{event_id}/bracket", json={"mat": 2, "base_match_number": 401})
    assert response.status_code == 200
    matches = response.json()["matches"]
    assert [m["number"] for m in matches] == ["401", "402"]
    assert matches[0]["phase"] == "SF"

    # Second generation is a conflict
    response = client.post(f"/events/{event_id}/bracket", json={})
    assert response.status_code == 409


def test_unknown_entities_return_404(client):
    assert client.get("/matches/999").status_code == 404
    assert client.post("/events/999/bracket", json={}).status_code == 404
    assert client.get("/pools/999/standings").status_code == 404


def test_actions_and_duplicates(client, final):
    match_id = final["id"]
    start = {"action": "MATCH_START", "timestamp": "2026-05-01T10:00:00"}
    kick = {"action": "SCORE_HOME_KICK", "home_score": 2, "timestamp": "2026-05-01T10:00:05"}

    assert client.post(f"/matches/{match_id}/actions", json=start).json()["status"] == "RECORDED"
    recorded = client.post(f"/matches/{match_id}/actions", json=kick).json()
    assert recorded["action"]["position"] == 2
    assert client.post(f"/matches/{match_id}/actions", json=kick).json()["status"] == "DUPLICATE"

    state = client.get(f"/matches/{match_id}").json()["state"]
    assert state["home_score"] == 2
    assert state["schedule_status"] == "RUNNING"
    assert len(client.get(f"/matches/{match_id}/actions").json()) == 2


def test_offset_timestamp_stored_as_utc(client, final):
    match_id = final["id"]
    start = {"action": "MATCH_START", "timestamp": "2026-05-01T12:00:00+02:00"}
    response = client.post(f"/matches/{match_id}/actions", json=start).json()
    assert response["status"] == "RECORDED"
    assert response["action"]["timestamp"] == "2026-05-01T10:00:00"

    same_instant = {"action": "MATCH_START", "timestamp": "2026-05-01T10:00:00"}
    assert client.post(f"/matches/{match_id}/actions", json=same_instant).json()["status"] == "DUPLICATE"


def test_invalid_action_returns_400(client, final):
    response = client.post(
        f"/matches/{final['id']}/actions", json={"action": "MATCH_TIME", "round_time": "99"}
    )
    assert response.status_code == 400
    assert "error" in response.json()


def test_result_and_medals(client, final):
    match_id = final["id"]
    response = client.post(
        f"/matches/{match_id}/results",
        json={"status": "OFFICIAL", "home_score": 10, "away_score": 3, "decision": "PTF"},
    )
    assert response.status_code == 200
    assert response.json()["winner_id"] == final["home_competitor_id"]

    medals = client.get(f"/events/{final['event_id']}/medals").json()
    assert [m["medal_type"] for m in medals] == ["GOLD", "SILVER"]

    table = client.get("/competitions/3/medals").json()
    assert [(r["country"], r["total"]) for r in table] == [("KOR", 1), ("FRA", 1)]

    # Official cannot move back to unofficial
    response = client.post(
        f"/matches/{match_id}/results",
        json={"status": "UNOFFICIAL", "home_score": 10, "away_score": 3},
    )
    assert response.status_code == 409


def test_commands_and_delete(client, final):
    match_id = final["id"]
    response = client.post(f"/matches/{match_id}/commands/delay")
    assert response.status_code == 200
    assert response.json()["state"]["schedule_status"] == "DELAYED"

    response = client.put(f"/matches/{match_id}/referees", json={"cr": 5})
    assert response.json()["cr"] == 5

    assert client.delete(f"/matches/{match_id}").status_code == 200
    assert client.get(f"/matches/{match_id}").status_code == 404


def test_pool_flow(client, db, make_event):
    event_id, ids = make_event(count=3)
    pool = PoolService(db).create_pool(event_id, "Pool A", max_athletes=3)

    for competitor_id in ids:
        response = client.post(f"/pools/{pool.id}/competitors", json={"competitor_id": competitor_id})
        assert response.status_code == 200
    response = client.post(f"/pools/{pool.id}/competitors", json={"competitor_id": ids[0]})
    assert response.status_code == 409

    matches = client.post(f"/pools/{pool.id}/matches", json={}).json()["matches"]
    assert len(matches) == 3
    client.post(
        f"/matches/{matches[0]['id']}/results",
        json={"status": "OFFICIAL", "home_score": 5, "away_score": 1},
    )

    standings = client.post(f"/pools/{pool.id}/standings").json()["standings"]
    assert standings[0]["competitor_id"] == ids[0]
    assert standings[0]["total_points"] == 3
    assert client.get(f"/pools/{pool.id}/standings").json()["standings"] == standings


def test_pss_websocket(client, final):
    start = {"event": "match:start", "data": {"matchId": final["id"], "timestamp": "2026-05-01T10:00:00Z"}}
    with client.websocket_connect("/pss") as websocket:
        websocket.send_text(json.dumps(start))
        assert websocket.receive_json() == {"outcome": "RECORDED"}
        websocket.send_text(json.dumps(start))
        assert websocket.receive_json() == {"outcome": "DUPLICATE"}
        websocket.send_text("garbage")
        assert websocket.receive_json() == {"outcome": "REJECTED"}
