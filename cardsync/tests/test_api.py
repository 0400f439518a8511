"""
Tests for API layer.

Tests:
- API service methods
- Per-viewer state views
- Intent outcomes mapped to responses
- HTTP and WebSocket surface (when FastAPI is installed)
"""

import random

import pytest

from ..api.schemas import (
    CreateRoomRequest, ErrorCode, ErrorResponse, GameStateResponse, IntentRequest,
    JoinRoomRequest, RoomStatus, StartRoomRequest,
)
from ..api.service import APIService
from ..engine_core.reducer import Reducer
from ..session.manager import decode_invite_token


@pytest.fixture
def service():
    """A fresh in-memory service with seeded shuffles."""
    return APIService(reducer_factory=lambda: Reducer(rng=random.Random(11)))


def _started(service):
    room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=2))
    service.join_room(room.code, JoinRoomRequest(user_id="bob", display_name="Bob"))
    service.start_room(room.code, StartRoomRequest(user_id="alice"))
    return room


def _current_user(service, code):
    state = service.host_for(code).state
    return state.current_player.user_id


class TestAPIService:
    """Tests for APIService."""

    def test_create_room(self, service):
        room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=3))

        assert room.status == RoomStatus.WAITING
        assert room.version == 0
        assert [s.user_id for s in room.seats] == ["alice"]
        assert decode_invite_token(room.invite_token) == room.code
        assert service.room_count == 1

    def test_join_and_lookup(self, service):
        room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=2))

        joined = service.join_room(room.code.lower(), JoinRoomRequest(user_id="bob", display_name="Bob"))
        full = service.join_room(room.code, JoinRoomRequest(user_id="carol", display_name="Carol"))
        missing = service.get_room("ZZZZZZ")

        assert [s.player_index for s in joined.seats] == [0, 1]
        assert full.error_code == ErrorCode.ROOM_FULL
        assert missing.error_code == ErrorCode.ROOM_NOT_FOUND

    def test_start_checks(self, service):
        room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=2))

        early = service.start_room(room.code, StartRoomRequest(user_id="alice"))
        service.join_room(room.code, JoinRoomRequest(user_id="bob", display_name="Bob"))
        not_host = service.start_room(room.code, StartRoomRequest(user_id="bob"))
        started = service.start_room(room.code, StartRoomRequest(user_id="alice"))
        twice = service.start_room(room.code, StartRoomRequest(user_id="alice"))

        assert early.error_code == ErrorCode.NOT_ENOUGH_PLAYERS
        assert not_host.error_code == ErrorCode.NOT_HOST
        assert isinstance(started, GameStateResponse)
        assert started.version == 1
        assert twice.error_code == ErrorCode.ROOM_IN_PROGRESS
        assert service.get_room(room.code).status == RoomStatus.ACTIVE

    def test_state_hides_other_hands(self, service):
        room = _started(service)

        view = service.get_game_state(room.code, "alice")

        alice, bob = view.players
        assert alice.hand is not None and len(alice.hand) == alice.hand_count
        assert bob.hand is None
        assert bob.hand_count >= 7

    def test_playable_cards_only_for_current_viewer(self, service):
        room = _started(service)
        current = _current_user(service, room.code)
        other = "bob" if current == "alice" else "alice"

        mine = service.get_game_state(room.code, current)
        theirs = service.get_game_state(room.code, other)

        own_hand = {c.card_id for p in mine.players if p.hand for c in p.hand}
        assert set(mine.playable_card_ids) <= own_hand
        assert theirs.playable_card_ids == []

    def test_intent_accepted_then_stale(self, service):
        room = _started(service)
        actor = _current_user(service, room.code)

        accepted = service.submit_intent(room.code, IntentRequest(actor_id=actor, action="draw", observed_version=1))
        stale = service.submit_intent(room.code, IntentRequest(actor_id=actor, action="draw", observed_version=1))
        illegal = service.submit_intent(room.code, IntentRequest(actor_id=actor, action="draw", observed_version=2))

        assert accepted.version == 2
        assert stale.error_code == ErrorCode.INTENT_REJECTED
        assert stale.details["reason"] == "stale"
        assert stale.details["expected_version"] == 2
        assert illegal.details["reason"] == "invalid_move"
        assert service.get_game_state(room.code).version == 2

    def test_intent_unknown_room(self, service):
        result = service.submit_intent("NOPE", IntentRequest(actor_id="x", action="draw", observed_version=0))
        assert result.error_code == ErrorCode.ROOM_NOT_FOUND

    def test_subscribe_sees_accepted_states(self, service):
        room = _started(service)
        seen = []
        unsubscribe = service.subscribe(room.code, lambda state: seen.append(state.version))

        actor = _current_user(service, room.code)
        service.submit_intent(room.code, IntentRequest(actor_id=actor, action="draw", observed_version=1))
        unsubscribe()

        assert seen == [2]
        assert service.subscribe("NOPE", seen.append) is None

    def test_not_started_state(self, service):
        room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=2))
        result = service.get_game_state(room.code, "alice")
        assert isinstance(result, ErrorResponse)


class TestHTTP:
    """FastAPI surface."""

    @pytest.fixture
    def client(self, service):
        pytest.importorskip("fastapi")
        pytest.importorskip("httpx")
        from fastapi.testclient import TestClient
        from ..api.app import create_app
        from ..config import Settings

        return TestClient(create_app(service=service, settings=Settings()))

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_room_flow(self, client):
        created = client.post("/api/v1/rooms", json={
            "user_id": "alice", "display_name": "Alice", "expected_players": 2,
        })
        assert created.status_code == 201
        code = created.json()["code"]

        assert client.post(f"/api/v1/rooms/{code}/start", json={"user_id": "alice"}).status_code == 409
        assert client.post(f"/api/v1/rooms/{code}/join", json={
            "user_id": "bob", "display_name": "Bob",
        }).status_code == 200
        assert client.post(f"/api/v1/rooms/{code}/start", json={"user_id": "bob"}).status_code == 403

        started = client.post(f"/api/v1/rooms/{code}/start", json={"user_id": "alice"})
        assert started.status_code == 200
        body = started.json()
        assert body["version"] == 1

        actor = next(p["user_id"] for p in body["players"] if p["player_id"] == body["current_player_id"])
        move = client.post(f"/api/v1/rooms/{code}/intents", json={
            "actor_id": actor, "action": "draw", "observed_version": 1,
        })
        assert move.status_code == 200
        assert move.json()["version"] == 2

        stale = client.post(f"/api/v1/rooms/{code}/intents", json={
            "actor_id": actor, "action": "draw", "observed_version": 1,
        })
        assert stale.status_code == 409
        assert stale.json()["details"]["reason"] == "stale"

        state = client.get(f"/api/v1/rooms/{code}/state", params={"user_id": actor})
        assert state.json()["version"] == 2

    def test_errors(self, client):
        assert client.get("/api/v1/rooms/ZZZZZZ").status_code == 404
        bad = client.post("/api/v1/rooms", json={"user_id": "a", "display_name": "A", "expected_players": 1})
        assert bad.status_code == 422

    def test_websocket_pushes_states(self, client, service):
        room = _started(service)
        actor = _current_user(service, room.code)

        with client.websocket_connect(f"/api/v1/rooms/{room.code}/ws?user_id={actor}") as ws:
            initial = ws.receive_json()
            assert initial["type"] == "state_update"
            assert initial["payload"]["version"] == 1

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            client.post(f"/api/v1/rooms/{room.code}/intents", json={
                "actor_id": actor, "action": "draw", "observed_version": 1,
            })
            update = ws.receive_json()
            assert update["type"] == "state_update"
            assert update["payload"]["version"] == 2

    def test_websocket_lobby_and_unknown_room(self, client, service):
        room = service.create_room(CreateRoomRequest(user_id="alice", display_name="Alice", expected_players=2))

        with client.websocket_connect(f"/api/v1/rooms/{room.code}/ws") as ws:
            assert ws.receive_json()["type"] == "room_update"

        with client.websocket_connect("/api/v1/rooms/NOPE/ws") as ws:
            assert ws.receive_json()["type"] == "error"
