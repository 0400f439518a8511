"""
Game State - The complete state of one game session.

Design principles:
- Copy-on-write: the reducer clones before mutating, so a rejected
  operation leaves the original untouched
- Cards are shared between clones (they are immutable); containers are not
- Serializable through codec.py only
- Versioned: every accepted mutation bumps version by exactly one
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum

from .cards import Card, Color


class GameStatus(str, Enum):
    """Lifecycle of a session (mirrors the replicated record's status)."""
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass
class PlayerState:
    """
    A seat at the table.

    player_id is the seat id ("p_1", ...). user_id is the participant identity
    that owns the seat in online play; automated seats have none.
    """
    player_id: str
    name: str
    hand: list[Card] = field(default_factory=list)
    is_automated: bool = False
    user_id: str | None = None
    must_declare_last_card: bool = False

    @property
    def one_card_warning(self) -> bool:
        return len(self.hand) == 1

    @property
    def hand_count(self) -> int:
        return len(self.hand)

    def find_card(self, card_id: str) -> Card | None:
        for card in self.hand:
            if card.card_id == card_id:
                return card
        return None

    def holds_color(self, color: Color | None, excluding: str | None = None) -> bool:
        """Whether any card in hand (other than `excluding`) has the given colour."""
        if color is None:
            return False
        return any(
            c.color == color for c in self.hand if c.card_id != excluding
        )

    def copy(self) -> PlayerState:
        return replace(self, hand=list(self.hand))


@dataclass
class TurnState:
    """What the current player has done so far this turn."""
    has_drawn: bool = False
    drawn_card_id: str | None = None
    drawn_card_playable: bool = False


@dataclass
class PendingDeclaration:
    """A player reached one card and owes a last-card declaration."""
    player_id: str
    deadline: float


@dataclass
class MoveRecord:
    """One entry of the append-only move history."""
    kind: str  # draw, play, pass, declare, penalty, forced_draw, starter
    player_id: str | None
    card_id: str | None = None
    label: str | None = None
    detail: str | None = None
    at: float = 0.0


@dataclass
class GameState:
    """
    Complete game state at a point in time.

    This is the canonical state the rules engine operates on and the
    document the host writes to the replicated record.
    """
    session_id: str
    players: list[PlayerState] = field(default_factory=list)

    # Piles (last element is the top)
    draw_pile: list[Card] = field(default_factory=list)
    discard_pile: list[Card] = field(default_factory=list)

    # Turn tracking
    current_turn_index: int = 0
    direction: int = 1
    active_color: Color = Color.RED
    turn_state: TurnState = field(default_factory=TurnState)
    pending_declaration: PendingDeclaration | None = None

    # Outcome
    status: GameStatus = GameStatus.ACTIVE
    winner_id: str | None = None
    round_points: int = 0

    # History (audit trail and animation hints)
    move_history: list[MoveRecord] = field(default_factory=list)

    version: int = 0

    # Metadata
    mode: str = "online"
    room_code: str | None = None
    host_user_id: str | None = None
    started_at: float = 0.0

    @property
    def current_player(self) -> PlayerState:
        return self.players[self.current_turn_index]

    @property
    def num_players(self) -> int:
        return len(self.players)

    @property
    def top_card(self) -> Card | None:
        return self.discard_pile[-1] if self.discard_pile else None

    @property
    def is_finished(self) -> bool:
        return self.status == GameStatus.FINISHED or self.winner_id is not None

    def get_player(self, player_id: str) -> PlayerState | None:
        for p in self.players:
            if p.player_id == player_id:
                return p
        return None

    def seat_index(self, player_id: str) -> int | None:
        for i, p in enumerate(self.players):
            if p.player_id == player_id:
                return i
        return None

    def resolve_seat(self, identity: str) -> PlayerState | None:
        """Find the seat owned by a participant identity (user id or seat id)."""
        for p in self.players:
            if p.user_id is not None and p.user_id == identity:
                return p
        return self.get_player(identity)

    def total_cards(self) -> int:
        return (
            len(self.draw_pile)
            + len(self.discard_pile)
            + sum(len(p.hand) for p in self.players)
        )

    def all_card_ids(self) -> list[str]:
        ids = [c.card_id for c in self.draw_pile]
        ids.extend(c.card_id for c in self.discard_pile)
        for p in self.players:
            ids.extend(c.card_id for c in p.hand)
        return ids

    def clone(self) -> GameState:
        """Copy every container; cards themselves are shared."""
        return replace(
            self,
            players=[p.copy() for p in self.players],
            draw_pile=list(self.draw_pile),
            discard_pile=list(self.discard_pile),
            turn_state=replace(self.turn_state),
            pending_declaration=(
                replace(self.pending_declaration) if self.pending_declaration else None
            ),
            move_history=list(self.move_history),
        )
