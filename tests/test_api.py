from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from database import get_db, get_session_factory
from core.room_manager import get_coordinator
from main import app

ROOM = "default-room-id"


def body(player_id, kind="token", amount=5.0):
    return {
        "identity": {
            "id": player_id,
            "display_name": f"@player{player_id}",
            "avatar_url": None,
        },
        "kind": kind,
        "amount": amount,
    }


@pytest.fixture
def client(session_factory, coordinator):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_join_creates_room_and_presence(client):
    response = client.post(f"/api/rooms/{ROOM}/join", json=body(1)["identity"])

    assert response.status_code == 200
    assert response.json()["room"]["status"] == "waiting"
    assert response.json()["participants"] == []

    online = client.get(f"/api/rooms/{ROOM}/online").json()
    assert [p["player_id"] for p in online] == [1]


def test_full_round_over_http(client, clock):
    first = client.post(f"/api/rooms/{ROOM}/contribute", json=body(1))
    assert first.status_code == 200
    assert first.json()["room"]["status"] == "single_player"
    assert first.json()["participant"]["percentage"] == pytest.approx(100.0)

    second = client.post(f"/api/rooms/{ROOM}/contribute", json=body(2))
    assert second.json()["room"]["status"] == "countdown"
    assert second.json()["room"]["countdown_end_time"] is not None

    participants = client.get(f"/api/rooms/{ROOM}/participants").json()
    assert [p["percentage"] for p in participants] == pytest.approx([50.0, 50.0])
    assert [p["color"] for p in participants] == ["#ef4444", "#22c55e"]

    early = client.post(f"/api/rooms/{ROOM}/resolve").json()
    assert early["room"]["status"] == "countdown"

    clock.advance(20)
    resolved = client.post(f"/api/rooms/{ROOM}/resolve").json()
    assert resolved["room"]["status"] == "spinning"
    assert resolved["room"]["winner_id"] in {1, 2}

    locked = client.post(f"/api/rooms/{ROOM}/contribute", json=body(3))
    assert locked.status_code == 409

    reset = client.post(f"/api/rooms/{ROOM}/reset").json()
    assert reset == {"status": "waiting", "changed": True}
    again = client.post(f"/api/rooms/{ROOM}/reset").json()
    assert again == {"status": "waiting", "changed": False}

    room = client.get(f"/api/rooms/{ROOM}").json()
    assert room["total_stake_units"] == 0
    assert room["winner_id"] is None


def test_invalid_stake_is_rejected(client):
    response = client.post(f"/api/rooms/{ROOM}/contribute", json=body(1, amount=-3))
    assert response.status_code == 400


def test_state_polling_with_version(client):
    client.post(f"/api/rooms/{ROOM}/contribute", json=body(1))
    state = client.get(f"/api/rooms/{ROOM}/state").json()
    version = state["room"]["state_version"]

    assert client.get(f"/api/rooms/{ROOM}/state", params={"since_version": version}).status_code == 304

    client.post(f"/api/rooms/{ROOM}/contribute", json=body(2))
    newer = client.get(f"/api/rooms/{ROOM}/state", params={"since_version": version})
    assert newer.status_code == 200
    assert newer.json()["room"]["state_version"] > version


def test_unknown_room_is_404_when_auto_create_disabled(client, settings):
    settings.auto_create_rooms = False
    assert client.get("/api/rooms/nowhere").status_code == 404
    assert client.post("/api/rooms/nowhere/contribute", json=body(1)).status_code == 404


def test_websocket_pushes_full_snapshots(client):
    with client.websocket_connect(f"/ws/rooms/{ROOM}") as ws:
        initial = ws.receive_json()
        assert initial["room"]["status"] == "waiting"

        client.post(f"/api/rooms/{ROOM}/contribute", json=body(1))
        update = ws.receive_json()

        assert update["room"]["state_version"] > initial["room"]["state_version"]
        assert update["room"]["status"] == "single_player"
        assert len(update["participants"]) == 1


def test_timestamps_are_serialized_as_utc(client):
    client.post(f"/api/rooms/{ROOM}/contribute", json=body(1))
    second = client.post(f"/api/rooms/{ROOM}/contribute", json=body(2)).json()

    deadline = second["room"]["countdown_end_time"]
    assert deadline.endswith(("Z", "+00:00"))
    assert datetime.fromisoformat(deadline.replace("Z", "+00:00")).utcoffset() == timedelta(0)

    client.post(f"/api/rooms/{ROOM}/heartbeat", json=body(1)["identity"])
    online = client.get(f"/api/rooms/{ROOM}/online").json()
    assert online[0]["last_seen_at"].endswith(("Z", "+00:00"))


def test_websocket_disconnect_unsubscribes(client, feed):
    with client.websocket_connect(f"/ws/rooms/{ROOM}") as ws:
        ws.receive_json()
        assert feed.subscriber_count(ROOM) == 1

    assert feed.subscriber_count(ROOM) == 0
