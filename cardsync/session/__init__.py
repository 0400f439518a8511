"""
Session Module - Process-local game state and the room lobby.

- SessionStore holds the current GameState and announces changes
  (state:changed, turn:changed, game:finished) to local subscribers
- RoomManager creates rooms, seats participants and starts matches

Nothing here talks to other processes directly; replication is the
sync module's job.
"""

from .store import (
    EventBus, SessionStore, TurnNotice, turn_payload,
    STATE_CHANGED, TURN_CHANGED, GAME_FINISHED,
)
from .manager import (
    RoomManager, RoomError, RoomNotFound, RoomFull, RoomFinished, NotHost,
    NotEnoughPlayers, RoomAlreadyStarted,
    encode_invite_token, decode_invite_token, generate_room_code, players_from_seats,
)

__all__ = [
    "EventBus",
    "SessionStore",
    "TurnNotice",
    "turn_payload",
    "STATE_CHANGED",
    "TURN_CHANGED",
    "GAME_FINISHED",
    "RoomManager",
    "RoomError",
    "RoomNotFound",
    "RoomFull",
    "RoomFinished",
    "NotHost",
    "NotEnoughPlayers",
    "RoomAlreadyStarted",
    "encode_invite_token",
    "decode_invite_token",
    "generate_room_code",
    "players_from_seats",
]
