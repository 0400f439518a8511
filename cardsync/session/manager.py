"""
Room Manager - The lobby in front of every online match.

LIFECYCLE:
1. Host creates a room -> short code, host seated at index 0
2. Others join by code (or invite token) -> lowest free seat index
3. Host starts once every expected seat is filled
   -> Rules Engine deals the game
   -> host coordinator writes it as the next record version
4. Room is finished when the game has a winner

JOIN RULES:
- unknown code -> RoomNotFound
- finished room -> RoomFinished
- no free seat -> RoomFull
- a user who already holds a seat gets the same seat back
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Callable
import base64
import binascii
import logging
import random
import time
import uuid

from ..engine_core.state import GameState, GameStatus, PlayerState
from ..sync.errors import RecordExists, SeatUnavailable
from ..sync.record_store import Record, RecordStore, Seat

if TYPE_CHECKING:
    from ..sync.coordinator import HostCoordinator

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
CODE_ATTEMPTS = 4
MIN_PLAYERS = 2
MAX_PLAYERS = 10


class RoomError(Exception):
    """Base class for lobby failures."""


class RoomNotFound(RoomError):
    pass


class RoomFull(RoomError):
    pass


class RoomFinished(RoomError):
    pass


class NotHost(RoomError):
    pass


class NotEnoughPlayers(RoomError):
    pass


class RoomAlreadyStarted(RoomError):
    pass


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def generate_room_code(rng: random.Random | None = None, length: int = CODE_LENGTH) -> str:
    """Random code without look-alike characters (no I, O, 0, 1)."""
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(length))


def encode_invite_token(code: str) -> str:
    """URL-safe base64 of the room code, padding stripped."""
    raw = base64.urlsafe_b64encode(code.encode("utf-8")).decode("ascii")
    return raw.rstrip("=")


def decode_invite_token(token: str) -> str:
    """Room code from an invite token; "" for anything undecodable."""
    token = (token or "").strip()
    if not token:
        return ""
    padded = token + "=" * (-len(token) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return ""
    return normalize_code(decoded)


def players_from_seats(seats: list[Seat]) -> list[PlayerState]:
    """Seat list -> players in seat order, seat ids p_1, p_2, ..."""
    ordered = sorted(seats, key=lambda s: s.player_index)
    return [
        PlayerState(
            player_id=f"p_{seat.player_index + 1}",
            name=seat.display_name,
            user_id=seat.user_id,
        )
        for seat in ordered
    ]


class RoomManager:
    """
    Creates rooms, seats participants and starts matches.

    All writes go through the record store, so several API workers can
    share one lobby when the store is shared.
    """

    def __init__(
        self,
        records: RecordStore,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.records = records
        self.rng = rng
        self.clock = clock or time.time

    def create_room(self, host_user_id: str, display_name: str, expected_players: int) -> Record:
        """
        Create a room and seat the host at index 0.

        Raises ValueError for an unsupported player count and RoomError
        if no unused code could be found.
        """
        if not MIN_PLAYERS <= expected_players <= MAX_PLAYERS:
            raise ValueError(f"Rooms hold {MIN_PLAYERS}-{MAX_PLAYERS} players, got {expected_players}")

        now = self.clock()
        for attempt in range(CODE_ATTEMPTS):
            record = Record(
                record_id=f"room_{uuid.uuid4().hex[:12]}",
                code=generate_room_code(self.rng),
                host_user_id=host_user_id,
                expected_players=expected_players,
                seats=[Seat(user_id=host_user_id, display_name=display_name, player_index=0, joined_at=now)],
                created_at=now,
            )
            try:
                created = self.records.create(record)
            except RecordExists:
                logger.info("Room code collision on attempt %d", attempt + 1)
                continue
            logger.info("Created room %s for %d players", created.code, expected_players)
            return created

        raise RoomError("Could not allocate a room code")

    def get_room(self, code: str) -> Record:
        record = self.records.find_by_code(normalize_code(code))
        if record is None:
            raise RoomNotFound(f"Room {normalize_code(code)} not found")
        return record

    def join_room(self, code: str, user_id: str, display_name: str) -> Seat:
        """Seat a user; returning users get their existing seat."""
        record = self.get_room(code)
        if record.status == GameStatus.FINISHED:
            raise RoomFinished(f"Room {record.code} has already finished")
        try:
            seat = self.records.claim_seat(record.record_id, user_id, display_name)
        except SeatUnavailable as e:
            raise RoomFull(str(e)) from e
        logger.info("%s holds seat %d in %s", user_id, seat.player_index, record.code)
        return seat

    def join_by_invite(self, token: str, user_id: str, display_name: str) -> Seat:
        code = decode_invite_token(token)
        if not code:
            raise RoomNotFound("Invalid invite token")
        return self.join_room(code, user_id, display_name)

    def start_match(self, code: str, user_id: str, host: HostCoordinator) -> GameState:
        """
        Deal the game for a full lobby. Only the host may start.

        The host coordinator writes the new state with a compare-and-swap
        from the lobby version.
        """
        record = self.get_room(code)
        if record.host_user_id != user_id:
            raise NotHost(f"Only the host can start room {record.code}")
        if record.status == GameStatus.FINISHED:
            raise RoomFinished(f"Room {record.code} has already finished")
        if record.status == GameStatus.ACTIVE:
            raise RoomAlreadyStarted(f"Room {record.code} is already in progress")
        if len(record.seats) < max(MIN_PLAYERS, record.expected_players):
            raise NotEnoughPlayers(
                f"Room {record.code} has {len(record.seats)} of {record.expected_players} players"
            )

        return host.start_session(players_from_seats(record.seats))
