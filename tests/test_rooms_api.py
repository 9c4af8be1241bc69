import pytest
from fastapi.testclient import TestClient

from watchparty.main import create_app


@pytest.fixture
def client(sio):
    app = create_app(sio)
    with TestClient(app) as test_client:
        yield test_client


def create_room(client, **overrides):
    body = {"name": "Movie Night", "anime": "ShowX", "episode": "Ep1", "hostName": "Alice"}
    body.update(overrides)
    response = client.post("/api/rooms", json=body)
    assert response.status_code == 200
    return response.json()["room"]


def test_index_and_health(client):
    assert "join-room" in client.get("/").json()["websocket"]["events"]

    create_room(client)
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["activeRooms"] == 1


def test_create_room(client):
    room = create_room(client, episodeId=1234, settings={"maxParticipants": 3})

    assert room["participantCount"] == 1
    assert room["host"] == {"id": room["hostId"], "name": "Alice"}
    assert room["episodeId"] == "1234"
    assert room["settings"] == {"syncPlayback": True, "allowChat": True, "maxParticipants": 3}


def test_create_room_requires_fields(client):
    response = client.post("/api/rooms", json={"name": "Movie Night", "anime": "ShowX", "hostName": " "})

    assert response.status_code == 400
    assert "Missing required fields" in response.json()["detail"]


def test_get_room_snapshot(client):
    room = create_room(client)

    snapshot = client.get("/api/room", params={"id": room["id"]}).json()

    assert snapshot["name"] == "Movie Night"
    assert [(p["name"], p["isHost"]) for p in snapshot["participants"]] == [("Alice", True)]
    assert snapshot["messages"] == []
    assert snapshot["playbackState"]["isPlaying"] is False


def test_get_room_errors(client):
    assert client.get("/api/room").status_code == 400
    assert client.get("/api/room", params={"id": "missing"}).status_code == 404


def test_post_message_seats_new_participant(client, sio):
    room = create_room(client)

    response = client.post(f"/api/room/{room['id']}/message", json={"content": "hi all", "userName": "Bob"})

    assert response.status_code == 200
    message = response.json()["message"]
    assert message["userName"] == "Bob"
    assert sio.names() == ["participant-joined", "new-message"]

    snapshot = client.get("/api/room", params={"id": room["id"]}).json()
    assert [p["name"] for p in snapshot["participants"]] == ["Alice", "Bob"]
    assert snapshot["messages"][0]["content"] == "hi all"

    # the same name reuses the seated participant
    client.post(f"/api/room/{room['id']}/message", json={"content": "again", "userName": "Bob"})
    snapshot = client.get("/api/room", params={"id": room["id"]}).json()
    assert len(snapshot["participants"]) == 2


def test_post_message_validation_and_permissions(client):
    room = create_room(client)
    quiet = create_room(client, settings={"allowChat": False})

    assert client.post(f"/api/room/{room['id']}/message", json={"userName": "Bob"}).status_code == 400
    assert client.post("/api/room/missing/message", json={"content": "hi", "userName": "Bob"}).status_code == 404

    response = client.post(f"/api/room/{quiet['id']}/message", json={"content": "hi", "userName": "Alice"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Chat is disabled in this room"


def test_post_message_into_full_room(client):
    room = create_room(client, settings={"maxParticipants": 1})

    response = client.post(f"/api/room/{room['id']}/message", json={"content": "hi", "userName": "Bob"})

    assert response.status_code == 403
    assert response.json()["detail"] == "Room is full"


def test_update_playback(client, sio):
    room = create_room(client)
    payload = {"userId": room["hostId"], "isPlaying": True, "currentTime": 61.5, "duration": 1420}

    first = client.post(f"/api/room/{room['id']}/playback", json=payload).json()["playbackState"]
    second = client.post(f"/api/room/{room['id']}/playback", json=payload).json()["playbackState"]

    first.pop("lastUpdated")
    second.pop("lastUpdated")
    assert first == second == {"isPlaying": True, "currentTime": 61.5, "duration": 1420.0}
    assert sio.names().count("playback-updated") == 2


def test_update_playback_rejections(client):
    room = create_room(client)
    no_sync = create_room(client, settings={"syncPlayback": False})

    assert client.post(f"/api/room/{room['id']}/playback", json={"isPlaying": True}).status_code == 400
    assert client.post(f"/api/room/{room['id']}/playback",
                       json={"userName": "Bob", "currentTime": -1}).status_code == 422
    assert client.post(f"/api/room/{room['id']}/playback",
                       json={"userId": "stranger", "isPlaying": True}).status_code == 403
    assert client.post(f"/api/room/{no_sync['id']}/playback",
                       json={"userId": no_sync["hostId"], "isPlaying": True}).status_code == 403


def test_kick_and_transfer_host(client):
    room = create_room(client)
    bob = client.post(f"/api/room/{room['id']}/message",
                      json={"content": "hi", "userName": "Bob", "userId": "bob"}).json()["message"]
    assert bob["userId"] == "bob"

    denied = client.post(f"/api/room/{room['id']}/kick", json={"requesterId": "bob", "userId": room["hostId"]})
    assert denied.status_code == 403

    transfer = client.post(f"/api/room/{room['id']}/transfer-host",
                           json={"requesterId": room["hostId"], "userId": "bob"})
    assert transfer.status_code == 200
    assert transfer.json()["host"] == {"id": "bob", "name": "Bob"}

    kick = client.post(f"/api/room/{room['id']}/kick", json={"requesterId": "bob", "userId": room["hostId"]})
    assert kick.status_code == 200

    snapshot = client.get("/api/room", params={"id": room["id"]}).json()
    assert [(p["name"], p["isHost"]) for p in snapshot["participants"]] == [("Bob", True)]


def test_list_rooms_and_stats(client, monkeypatch):
    room = create_room(client)

    listing = client.get("/api/rooms").json()["rooms"]
    assert [r["id"] for r in listing] == [room["id"]]
    assert client.get("/api/stats").json()["total_participants"] == 1

    monkeypatch.setattr("watchparty.api.rooms_api.ENVIRONMENT", "production")
    assert client.get("/api/rooms").status_code == 403
