"""
Codec - The serialization boundary for GameState.

Every value that leaves the process (record store writes, broadcasts,
HTTP responses) goes through state_to_dict, and every value that comes in
goes through state_from_dict. Both build fresh objects, so the live
in-memory session never aliases a document on the wire.
"""

from __future__ import annotations
from typing import Any

from .cards import Card, CardKind, Color
from .state import (
    GameState, GameStatus, MoveRecord, PendingDeclaration, PlayerState, TurnState,
)


def card_to_dict(card: Card) -> dict[str, Any]:
    return {
        "id": card.card_id,
        "type": card.kind.value,
        "color": card.color.value if card.color else None,
        "value": card.value,
    }


def card_from_dict(data: dict[str, Any]) -> Card:
    return Card(
        card_id=data["id"],
        kind=CardKind(data["type"]),
        color=Color(data["color"]) if data.get("color") else None,
        value=str(data["value"]),
    )


def player_to_dict(player: PlayerState) -> dict[str, Any]:
    return {
        "id": player.player_id,
        "name": player.name,
        "userId": player.user_id,
        "isAutomated": player.is_automated,
        "hand": [card_to_dict(c) for c in player.hand],
        "oneCardWarning": player.one_card_warning,
        "mustDeclareLastCard": player.must_declare_last_card,
    }


def player_from_dict(data: dict[str, Any]) -> PlayerState:
    return PlayerState(
        player_id=data["id"],
        name=data["name"],
        user_id=data.get("userId"),
        is_automated=bool(data.get("isAutomated", False)),
        hand=[card_from_dict(c) for c in data.get("hand", [])],
        must_declare_last_card=bool(data.get("mustDeclareLastCard", False)),
    )


def state_to_dict(state: GameState) -> dict[str, Any]:
    """Serialize a GameState into a JSON-compatible document."""
    pending = state.pending_declaration
    return {
        "id": state.session_id,
        "mode": state.mode,
        "roomCode": state.room_code,
        "hostUserId": state.host_user_id,
        "startedAt": state.started_at,
        "players": [player_to_dict(p) for p in state.players],
        "drawPile": [card_to_dict(c) for c in state.draw_pile],
        "discardPile": [card_to_dict(c) for c in state.discard_pile],
        "currentTurn": state.current_turn_index,
        "direction": state.direction,
        "activeColor": state.active_color.value,
        "turnState": {
            "hasDrawn": state.turn_state.has_drawn,
            "drawnCardId": state.turn_state.drawn_card_id,
            "drawnCardPlayable": state.turn_state.drawn_card_playable,
        },
        "pendingDeclaration": (
            {"playerId": pending.player_id, "deadline": pending.deadline}
            if pending else None
        ),
        "status": state.status.value,
        "winnerId": state.winner_id,
        "roundPoints": state.round_points,
        "moveHistory": [
            {
                "type": m.kind,
                "playerId": m.player_id,
                "cardId": m.card_id,
                "label": m.label,
                "detail": m.detail,
                "at": m.at,
            }
            for m in state.move_history
        ],
        "version": state.version,
    }


def state_from_dict(data: dict[str, Any]) -> GameState:
    """
    Rebuild a GameState from a document produced by state_to_dict.

    Raises KeyError/ValueError on malformed documents.
    """
    turn = data.get("turnState") or {}
    pending = data.get("pendingDeclaration")
    return GameState(
        session_id=data["id"],
        mode=data.get("mode", "online"),
        room_code=data.get("roomCode"),
        host_user_id=data.get("hostUserId"),
        started_at=float(data.get("startedAt", 0.0)),
        players=[player_from_dict(p) for p in data["players"]],
        draw_pile=[card_from_dict(c) for c in data.get("drawPile", [])],
        discard_pile=[card_from_dict(c) for c in data.get("discardPile", [])],
        current_turn_index=int(data.get("currentTurn", 0)),
        direction=int(data.get("direction", 1)),
        active_color=Color(data["activeColor"]),
        turn_state=TurnState(
            has_drawn=bool(turn.get("hasDrawn", False)),
            drawn_card_id=turn.get("drawnCardId"),
            drawn_card_playable=bool(turn.get("drawnCardPlayable", False)),
        ),
        pending_declaration=(
            PendingDeclaration(player_id=pending["playerId"], deadline=float(pending["deadline"]))
            if pending else None
        ),
        status=GameStatus(data.get("status", GameStatus.ACTIVE.value)),
        winner_id=data.get("winnerId"),
        round_points=int(data.get("roundPoints", 0)),
        move_history=[
            MoveRecord(
                kind=m["type"],
                player_id=m.get("playerId"),
                card_id=m.get("cardId"),
                label=m.get("label"),
                detail=m.get("detail"),
                at=float(m.get("at", 0.0)),
            )
            for m in data.get("moveHistory", [])
        ],
        version=int(data.get("version", 0)),
    )
