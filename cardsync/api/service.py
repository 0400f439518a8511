"""
API Service - Business logic layer between the HTTP surface and the core.

The service:
1. Creates rooms and hosts them (this process is the host for every
   room it creates)
2. Seats participants and starts matches through the RoomManager
3. Turns HTTP intents into sync Intents for the room's HostCoordinator
4. Builds per-viewer state views (other hands are hidden)

This layer is framework-agnostic; app.py wires it to FastAPI.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import logging

from pydantic import ValidationError

from ..engine_core.cards import Card, card_label
from ..engine_core.reducer import Reducer, playable_cards
from ..engine_core.state import GameState
from ..session.manager import (
    NotEnoughPlayers, NotHost, RoomAlreadyStarted, RoomError, RoomFinished, RoomFull,
    RoomManager, RoomNotFound, encode_invite_token,
)
from ..session.store import STATE_CHANGED
from ..sync.channel import InMemoryChannel, MessageChannel
from ..sync.coordinator import HostCoordinator
from ..sync.envelope import Intent, Rejection
from ..sync.errors import StoreUnavailable, VersionConflict
from ..sync.record_store import InMemoryRecordStore, Record, RecordStore
from .schemas import (
    CardInfo, CreateRoomRequest, ErrorCode, ErrorResponse, GameStateResponse,
    IntentRequest, IntentResponse, JoinRoomRequest, PendingDeclarationInfo,
    PlayerView, RoomResponse, RoomStatus, SeatInfo, StartRoomRequest, TurnInfo,
)

logger = logging.getLogger(__name__)

ROOM_ERROR_CODES = {
    RoomNotFound: ErrorCode.ROOM_NOT_FOUND,
    RoomFull: ErrorCode.ROOM_FULL,
    RoomFinished: ErrorCode.ROOM_FINISHED,
    RoomAlreadyStarted: ErrorCode.ROOM_IN_PROGRESS,
    NotHost: ErrorCode.NOT_HOST,
    NotEnoughPlayers: ErrorCode.NOT_ENOUGH_PLAYERS,
}


def _room_error(error: RoomError) -> ErrorResponse:
    code = ROOM_ERROR_CODES.get(type(error), ErrorCode.VALIDATION_ERROR)
    return ErrorResponse(error=str(error), error_code=code)


def _store_error(error: Exception) -> ErrorResponse:
    return ErrorResponse(error=str(error) or "Record store unavailable", error_code=ErrorCode.STORE_UNAVAILABLE)


@dataclass
class APIService:
    """
    Main API service.

    Usage:
        service = APIService()
        room = service.create_room(CreateRoomRequest(...))
        service.join_room(room.code, JoinRoomRequest(...))
        service.start_room(room.code, StartRoomRequest(user_id=...))
        service.submit_intent(room.code, IntentRequest(...))
    """
    records: RecordStore = field(default_factory=InMemoryRecordStore)
    channel: MessageChannel = field(default_factory=InMemoryChannel)
    reducer_factory: Callable[[], Reducer] = Reducer

    # Host coordinators by room code
    _hosts: dict[str, HostCoordinator] = field(default_factory=dict)

    def __post_init__(self):
        self.rooms = RoomManager(self.records)

    # =========================================================================
    # Lobby
    # =========================================================================

    def create_room(self, request: CreateRoomRequest) -> RoomResponse | ErrorResponse:
        try:
            record = self.rooms.create_room(
                request.user_id, request.display_name, request.expected_players,
            )
        except ValueError as e:
            return ErrorResponse(error=str(e), error_code=ErrorCode.VALIDATION_ERROR)
        except RoomError as e:
            return _room_error(e)
        except StoreUnavailable as e:
            return _store_error(e)

        host = HostCoordinator(record.record_id, self.records, self.channel, self.reducer_factory())
        try:
            host.connect()
        except StoreUnavailable as e:
            return _store_error(e)
        self._hosts[record.code] = host
        return self._room_response(record)

    def join_room(self, code: str, request: JoinRoomRequest) -> RoomResponse | ErrorResponse:
        try:
            self.rooms.join_room(code, request.user_id, request.display_name)
            record = self.rooms.get_room(code)
        except RoomError as e:
            return _room_error(e)
        except StoreUnavailable as e:
            return _store_error(e)
        return self._room_response(record)

    def get_room(self, code: str) -> RoomResponse | ErrorResponse:
        try:
            record = self.rooms.get_room(code)
        except RoomError as e:
            return _room_error(e)
        except StoreUnavailable as e:
            return _store_error(e)
        return self._room_response(record)

    def start_room(self, code: str, request: StartRoomRequest) -> GameStateResponse | ErrorResponse:
        host = self.host_for(code)
        if host is None:
            return ErrorResponse(
                error=f"Room {code} is not hosted here", error_code=ErrorCode.ROOM_NOT_FOUND,
            )
        try:
            state = self.rooms.start_match(code, request.user_id, host)
        except RoomError as e:
            return _room_error(e)
        except (StoreUnavailable, VersionConflict) as e:
            return _store_error(e)
        return self.state_view(state, request.user_id)

    # =========================================================================
    # Game
    # =========================================================================

    def host_for(self, code: str) -> HostCoordinator | None:
        return self._hosts.get((code or "").strip().upper())

    def get_game_state(self, code: str, viewer_id: str | None = None) -> GameStateResponse | ErrorResponse:
        host = self.host_for(code)
        if host is None:
            return ErrorResponse(error=f"Room {code} not found", error_code=ErrorCode.ROOM_NOT_FOUND)
        if host.state is None:
            return ErrorResponse(
                error=f"Room {code} has not started", error_code=ErrorCode.NOT_ENOUGH_PLAYERS,
            )
        return self.state_view(host.state, viewer_id)

    def submit_intent(self, code: str, request: IntentRequest) -> IntentResponse | ErrorResponse:
        """Hand an HTTP intent to the room's host and report the outcome."""
        host = self.host_for(code)
        if host is None:
            return ErrorResponse(error=f"Room {code} not found", error_code=ErrorCode.ROOM_NOT_FOUND)

        payload: dict[str, Any] = {}
        if request.card_id:
            payload["card_id"] = request.card_id
        if request.declared_color:
            payload["declared_color"] = request.declared_color
        if request.reason:
            payload["reason"] = request.reason

        try:
            intent = Intent(
                session_id=host.record_id,
                action=request.action,
                actor_id=request.actor_id,
                payload=payload,
                observed_version=request.observed_version,
            )
        except ValidationError as e:
            return ErrorResponse(
                error="Malformed intent", error_code=ErrorCode.VALIDATION_ERROR,
                details={"errors": e.errors(include_url=False)},
            )

        reply = host.handle_intent(intent)
        if isinstance(reply, Rejection):
            return ErrorResponse(
                error=reply.message,
                error_code=ErrorCode.INTENT_REJECTED,
                details={
                    "intent_id": reply.intent_id,
                    "reason": reply.reason.value,
                    "expected_version": reply.expected_version,
                },
            )
        return IntentResponse(intent_id=reply.intent_id, version=reply.version)

    def subscribe(self, code: str, handler: Callable[[GameState], None]) -> Callable[[], None] | None:
        """Register for accepted states of a hosted room; None if not hosted."""
        host = self.host_for(code)
        if host is None:
            return None
        return host.session_store.events.on(STATE_CHANGED, handler)

    def tick(self) -> int:
        """Resolve expired last-card declarations in every hosted room."""
        written = 0
        for host in list(self._hosts.values()):
            if host.tick():
                written += 1
        return written

    @property
    def room_count(self) -> int:
        return len(self._hosts)

    # =========================================================================
    # Views
    # =========================================================================

    def _room_response(self, record: Record) -> RoomResponse:
        return RoomResponse(
            record_id=record.record_id,
            code=record.code,
            invite_token=encode_invite_token(record.code),
            host_user_id=record.host_user_id,
            expected_players=record.expected_players,
            status=RoomStatus(record.status.value),
            version=record.version,
            seats=[SeatInfo.model_validate(s) for s in record.seats],
        )

    def state_view(self, state: GameState, viewer_id: str | None = None) -> GameStateResponse:
        viewer = state.resolve_seat(viewer_id) if viewer_id else None
        current = state.current_player

        players = []
        for p in state.players:
            own = viewer is not None and viewer.player_id == p.player_id
            players.append(PlayerView(
                player_id=p.player_id,
                name=p.name,
                user_id=p.user_id,
                is_automated=p.is_automated,
                is_current_turn=p.player_id == current.player_id and not state.is_finished,
                hand_count=p.hand_count,
                one_card_warning=p.one_card_warning,
                must_declare_last_card=p.must_declare_last_card,
                hand=[_card_info(c) for c in p.hand] if own else None,
            ))

        playable = []
        if viewer is not None and viewer.player_id == current.player_id and not state.is_finished:
            playable = [c.card_id for c in playable_cards(state, viewer)]

        pending = state.pending_declaration
        return GameStateResponse(
            session_id=state.session_id,
            room_code=state.room_code,
            version=state.version,
            status=RoomStatus(state.status.value),
            current_player_id=current.player_id,
            direction=state.direction,
            active_color=state.active_color.value,
            top_card=_card_info(state.top_card) if state.top_card else None,
            draw_pile_count=len(state.draw_pile),
            discard_pile_count=len(state.discard_pile),
            players=players,
            turn=TurnInfo(
                has_drawn=state.turn_state.has_drawn,
                drawn_card_id=state.turn_state.drawn_card_id if viewer is current else None,
                drawn_card_playable=state.turn_state.drawn_card_playable,
            ),
            pending_declaration=(
                PendingDeclarationInfo(player_id=pending.player_id, deadline=pending.deadline)
                if pending else None
            ),
            winner_id=state.winner_id,
            round_points=state.round_points,
            playable_card_ids=playable,
        )


def _card_info(card: Card) -> CardInfo:
    return CardInfo(
        card_id=card.card_id,
        kind=card.kind.value,
        color=card.color.value if card.color else None,
        value=card.value,
        label=card_label(card),
    )
