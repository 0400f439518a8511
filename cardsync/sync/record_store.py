"""
Record Store - The replicated record that carries the authoritative game.

One record per room holds: the lobby (code, host, seats), the serialized
game state, a status and a version. The contract every implementation
must honour:

- compare_and_set is a true compare-and-swap: the write lands only if the
  stored version still equals `expected_version`, and the stored version
  becomes expected_version + 1
- versions never go backwards
- subscribers are notified after every successful write
- values handed out are copies; mutating them never changes the store
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable
import logging
import threading
import time

from ..engine_core.state import GameStatus
from .errors import (
    RecordExists, RecordNotFound, SeatUnavailable, StoreUnavailable, VersionConflict,
)

logger = logging.getLogger(__name__)


@dataclass
class Seat:
    """A participant seated in a room."""
    user_id: str
    display_name: str
    player_index: int
    joined_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "player_index": self.player_index,
            "joined_at": self.joined_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Seat:
        return cls(
            user_id=data["user_id"],
            display_name=data["display_name"],
            player_index=int(data["player_index"]),
            joined_at=float(data.get("joined_at", 0.0)),
        )


@dataclass
class Record:
    """The replicated room record."""
    record_id: str
    code: str
    host_user_id: str
    expected_players: int
    status: GameStatus = GameStatus.WAITING
    version: int = 0
    game_state: dict[str, Any] | None = None
    seats: list[Seat] = field(default_factory=list)
    created_at: float = 0.0

    def copy(self) -> Record:
        return deepcopy(self)

    def seat_for(self, user_id: str) -> Seat | None:
        for seat in self.seats:
            if seat.user_id == user_id:
                return seat
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "code": self.code,
            "host_user_id": self.host_user_id,
            "expected_players": self.expected_players,
            "status": self.status.value,
            "version": self.version,
            "game_state": deepcopy(self.game_state),
            "seats": [s.to_dict() for s in self.seats],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        return cls(
            record_id=data["record_id"],
            code=data["code"],
            host_user_id=data["host_user_id"],
            expected_players=int(data["expected_players"]),
            status=GameStatus(data.get("status", GameStatus.WAITING.value)),
            version=int(data.get("version", 0)),
            game_state=deepcopy(data.get("game_state")),
            seats=[Seat.from_dict(s) for s in data.get("seats", [])],
            created_at=float(data.get("created_at", 0.0)),
        )


RecordCallback = Callable[[Record], None]


def lowest_free_index(seats: list[Seat]) -> int:
    taken = {s.player_index for s in seats}
    slot = 0
    while slot in taken:
        slot += 1
    return slot


def check_seat_claim(record: Record, user_id: str) -> Seat | None:
    """
    Shared seat-claim rules.

    Returns the existing seat for a returning user, None when a new seat
    may be taken, and raises SeatUnavailable otherwise.
    """
    existing = record.seat_for(user_id)
    if existing:
        return existing
    if record.status != GameStatus.WAITING:
        raise SeatUnavailable(f"Room {record.code} has already started")
    if len(record.seats) >= record.expected_players:
        raise SeatUnavailable(f"Room {record.code} is full")
    return None


class RecordStore(ABC):
    """Interface every record store binding implements."""

    @abstractmethod
    def create(self, record: Record) -> Record:
        """Insert a new record. Raises RecordExists on id/code collision."""

    @abstractmethod
    def read(self, record_id: str) -> Record | None:
        """Read a record by id."""

    @abstractmethod
    def find_by_code(self, code: str) -> Record | None:
        """Look a record up by its room code."""

    @abstractmethod
    def compare_and_set(
        self,
        record_id: str,
        expected_version: int,
        game_state: dict[str, Any] | None,
        status: GameStatus,
    ) -> Record:
        """
        Atomically write a new game state at version expected_version + 1.

        Raises VersionConflict when the stored version differs,
        RecordNotFound when there is no such record.
        """

    @abstractmethod
    def claim_seat(self, record_id: str, user_id: str, display_name: str) -> Seat:
        """Atomically seat a user at the lowest free index."""

    @abstractmethod
    def subscribe(self, record_id: str, callback: RecordCallback) -> Callable[[], None]:
        """Register for change notifications; returns an unsubscribe function."""


class InMemoryRecordStore(RecordStore):
    """
    Process-local record store.

    Used for tests, hot-seat play and single-process deployments.
    Setting `available = False` makes every call raise StoreUnavailable;
    setting `notifying = False` drops change notifications (writes still land).
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._records: dict[str, Record] = {}
        self._subscribers: dict[str, list[RecordCallback]] = {}
        self._lock = threading.Lock()
        self.clock = clock or time.time
        self.available = True
        self.notifying = True

    def _check_available(self):
        if not self.available:
            raise StoreUnavailable("Record store unavailable")

    def create(self, record: Record) -> Record:
        self._check_available()
        with self._lock:
            if record.record_id in self._records:
                raise RecordExists(f"Record {record.record_id} already exists")
            if any(r.code == record.code for r in self._records.values()):
                raise RecordExists(f"Room code {record.code} already in use")
            stored = record.copy()
            if not stored.created_at:
                stored.created_at = self.clock()
            self._records[stored.record_id] = stored
            return stored.copy()

    def read(self, record_id: str) -> Record | None:
        self._check_available()
        with self._lock:
            record = self._records.get(record_id)
            return record.copy() if record else None

    def find_by_code(self, code: str) -> Record | None:
        self._check_available()
        with self._lock:
            for record in self._records.values():
                if record.code == code:
                    return record.copy()
        return None

    def compare_and_set(
        self,
        record_id: str,
        expected_version: int,
        game_state: dict[str, Any] | None,
        status: GameStatus,
    ) -> Record:
        self._check_available()
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(f"Record {record_id} not found")
            if record.version != expected_version:
                raise VersionConflict(record_id, expected_version, record.version)
            record.version = expected_version + 1
            record.game_state = deepcopy(game_state)
            record.status = status
            snapshot = record.copy()

        self._notify(record_id, snapshot)
        return snapshot.copy()

    def claim_seat(self, record_id: str, user_id: str, display_name: str) -> Seat:
        self._check_available()
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(f"Record {record_id} not found")
            existing = check_seat_claim(record, user_id)
            if existing:
                return Seat(**existing.to_dict())
            seat = Seat(
                user_id=user_id,
                display_name=display_name,
                player_index=lowest_free_index(record.seats),
                joined_at=self.clock(),
            )
            record.seats.append(seat)
            record.seats.sort(key=lambda s: s.player_index)
            snapshot = record.copy()

        self._notify(record_id, snapshot)
        return Seat(**seat.to_dict())

    def subscribe(self, record_id: str, callback: RecordCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(record_id, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(record_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, record_id: str, snapshot: Record):
        if not self.notifying:
            return
        with self._lock:
            callbacks = list(self._subscribers.get(record_id, []))
        for callback in callbacks:
            try:
                callback(snapshot.copy())
            except Exception:
                logger.exception("Record subscriber for %s failed", record_id)
