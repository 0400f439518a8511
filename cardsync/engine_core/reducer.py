"""
Reducer - Applies actions to game state.

The reducer is the single point of state mutation.
All state changes must go through Reducer.apply() (or the named
operations that wrap it).

Design principles:
- (state, action) -> ActionResult; the input state is never modified
- All-or-nothing: handlers mutate a clone and only return it on success
- Randomness, card ids and time are injected so tests are deterministic
- Outstanding last-card declarations are settled before every
  draw/play/pass, ahead of the actor's own request
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Sequence
import logging
import random
import time
import uuid

from .action import Action, ActionType, ActionResult, ErrorCode
from .cards import (
    Card, CardIdFactory, Color, build_deck, card_label, card_points, parse_color,
    SKIP, REVERSE, DRAW_TWO, WILD_DRAW_FOUR,
)
from .state import (
    GameState, GameStatus, MoveRecord, PendingDeclaration, PlayerState, TurnState,
)

logger = logging.getLogger(__name__)


@dataclass
class RulesConfig:
    """Tunable rule constants."""
    hand_size: int = 7
    declaration_window: float = 5.0  # seconds
    declaration_penalty: int = 2
    min_players: int = 2
    max_players: int = 10


def next_turn_index(current: int, direction: int, num_players: int, steps: int = 1) -> int:
    """Seat reached after `steps` moves in `direction` (Python's % is never negative)."""
    return (current + steps * direction) % num_players


def is_legal(card: Card, state: GameState, acting_player: PlayerState | None = None) -> bool:
    """
    Whether a card may be played on the current discard top.

    Matches on active colour or face value; wild cards always match.
    Wild draw four additionally requires that the acting player (when
    given) holds no other card of the active colour.
    """
    top = state.top_card
    if top is None:
        return True
    if card.is_wild:
        if card.value == WILD_DRAW_FOUR and acting_player is not None:
            return not acting_player.holds_color(state.active_color, excluding=card.card_id)
        return True
    return card.color == state.active_color or card.value == top.value


def playable_cards(state: GameState, player: PlayerState) -> list[Card]:
    """Cards in a player's hand that are legal right now."""
    return [c for c in player.hand if is_legal(c, state, player)]


class Reducer:
    """
    Reducer applies actions to game state.

    Stateless apart from its injected collaborators - all game
    state lives in GameState.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        next_card_id: Callable[[], str] | None = None,
        clock: Callable[[], float] | None = None,
        config: RulesConfig | None = None,
    ):
        self.rng = rng or random.Random()
        self.next_card_id = next_card_id or CardIdFactory()
        self.clock = clock or time.time
        self.config = config or RulesConfig()

    # =========================================================================
    # Session creation
    # =========================================================================

    def create_session(
        self,
        players: Sequence[PlayerState],
        mode: str = "online",
        session_id: str | None = None,
        room_code: str | None = None,
        host_user_id: str | None = None,
    ) -> GameState:
        """
        Build a fresh session: shuffle, deal, flip a non-wild starter and
        apply the starter's effect as if it had been played.

        Raises ValueError for an unsupported player count.
        """
        if not self.config.min_players <= len(players) <= self.config.max_players:
            raise ValueError(
                f"Need {self.config.min_players}-{self.config.max_players} players, "
                f"got {len(players)}"
            )

        seats = [
            PlayerState(
                player_id=p.player_id,
                name=p.name,
                is_automated=p.is_automated,
                user_id=p.user_id,
            )
            for p in players
        ]

        deck = build_deck(self.next_card_id)
        self.rng.shuffle(deck)

        for _ in range(self.config.hand_size):
            for seat in seats:
                seat.hand.append(deck.pop())

        starter = deck.pop()
        while starter.is_wild:
            deck.insert(0, starter)
            self.rng.shuffle(deck)
            starter = deck.pop()

        now = self.clock()
        state = GameState(
            session_id=session_id or f"g_{uuid.uuid4().hex[:12]}",
            players=seats,
            draw_pile=deck,
            discard_pile=[starter],
            active_color=starter.color,
            status=GameStatus.ACTIVE,
            mode=mode,
            room_code=room_code,
            host_user_id=host_user_id,
            started_at=now,
        )
        state.move_history.append(MoveRecord(
            kind="starter",
            player_id=None,
            card_id=starter.card_id,
            label=card_label(starter),
            at=now,
        ))

        self._apply_starter(state, starter)
        return state

    def _apply_starter(self, state: GameState, starter: Card):
        """Starter effects are resolved from seat 0."""
        if starter.value == SKIP:
            self._advance(state, 1)
        elif starter.value == REVERSE:
            # The direction flips and seat 0 keeps the turn, whatever the
            # table size.
            state.direction *= -1
        elif starter.value == DRAW_TWO:
            target = next_turn_index(state.current_turn_index, state.direction, state.num_players)
            self._force_draw(state, target, 2)
            self._advance(state, 2)

    # =========================================================================
    # Action dispatch
    # =========================================================================

    def apply(self, state: GameState, action: Action) -> ActionResult:
        """
        Apply an action to the game state.

        Returns ActionResult with the new state (version bumped by one)
        or an error. The input state is never modified.
        """
        handler = self._get_handler(action.action_type)
        if not handler:
            return ActionResult.failure(
                f"No handler for action type: {action.action_type}",
                error_code=ErrorCode.NO_HANDLER,
            )

        if state.is_finished:
            return ActionResult.failure("Game is over - no actions allowed", ErrorCode.GAME_OVER)

        try:
            result = handler(state, action)
        except Exception as e:
            logger.exception("Handler for %s failed", action.action_type.value)
            return ActionResult.failure(str(e), error_code=ErrorCode.INVALID_MOVE)

        if result.success and result.new_state is not None:
            result.new_state.version = state.version + 1
        return result

    def _get_handler(self, action_type: ActionType):
        """Get the handler function for an action type."""
        handlers = {
            ActionType.DRAW: self._handle_draw,
            ActionType.PLAY: self._handle_play,
            ActionType.PASS: self._handle_pass,
            ActionType.DECLARE_LAST_CARD: self._handle_declare,
            ActionType.RESOLVE_DECLARATION: self._handle_resolve_declaration,
        }
        return handlers.get(action_type)

    # Named operations -------------------------------------------------------

    def draw(self, state: GameState, actor_id: str) -> ActionResult:
        return self.apply(state, Action.draw(actor_id))

    def play(
        self,
        state: GameState,
        actor_id: str,
        card_id: str,
        declared_color: str | Color | None = None,
    ) -> ActionResult:
        color = declared_color.value if isinstance(declared_color, Color) else declared_color
        return self.apply(state, Action.play(actor_id, card_id, color))

    def pass_turn(self, state: GameState, actor_id: str, reason: str = "pass") -> ActionResult:
        return self.apply(state, Action.pass_turn(actor_id, reason))

    def declare_last_card(self, state: GameState, actor_id: str) -> ActionResult:
        return self.apply(state, Action.declare_last_card(actor_id))

    def resolve_expired_declaration(self, state: GameState) -> ActionResult:
        return self.apply(state, Action.resolve_declaration())

    # =========================================================================
    # Handlers
    # =========================================================================

    def _check_turn(self, state: GameState, actor_id: str | None) -> ActionResult | None:
        if not actor_id or state.get_player(actor_id) is None:
            return ActionResult.failure(f"Player {actor_id} is not seated")
        if state.current_player.player_id != actor_id:
            return ActionResult.failure(f"Not {actor_id}'s turn", ErrorCode.NOT_YOUR_TURN)
        return None

    def _handle_draw(self, state: GameState, action: Action) -> ActionResult:
        """Draw one card; the turn does not advance."""
        actor_id = action.payload.player_id
        error = self._check_turn(state, actor_id)
        if error:
            return error
        if state.turn_state.has_drawn:
            return ActionResult.failure("Already drew this turn - play or pass")

        new_state = state.clone()
        changes = self._settle_declaration(new_state, actor_id)

        card = self._draw_one(new_state)
        if card is None:
            return ActionResult.failure("No cards left to draw", ErrorCode.NO_CARDS)

        player = new_state.current_player
        player.hand.append(card)
        playable = is_legal(card, new_state, player)
        new_state.turn_state = TurnState(
            has_drawn=True,
            drawn_card_id=card.card_id,
            drawn_card_playable=playable,
        )
        new_state.move_history.append(MoveRecord(
            kind="draw", player_id=actor_id, card_id=card.card_id, at=self.clock(),
        ))

        changes.append(f"{player.name} drew a card")
        return ActionResult.success_with_state(new_state, changes=changes, drawn_card=card)

    def _handle_play(self, state: GameState, action: Action) -> ActionResult:
        """Play a card from hand onto the discard pile."""
        actor_id = action.payload.player_id
        card_id = action.payload.card_id
        error = self._check_turn(state, actor_id)
        if error:
            return error

        new_state = state.clone()
        changes = self._settle_declaration(new_state, actor_id)

        player = new_state.current_player
        card = player.find_card(card_id) if card_id else None
        if card is None:
            return ActionResult.failure(f"Card {card_id} not in hand")

        declared = None
        if card.is_wild:
            declared = parse_color(action.payload.declared_color)
            if declared is None:
                return ActionResult.failure("Wild cards need a declared colour (red, yellow, green, blue)")

        if not is_legal(card, new_state, player):
            if card.value == WILD_DRAW_FOUR:
                return ActionResult.failure(
                    f"Wild draw four is only legal without a {new_state.active_color.value} card in hand"
                )
            return ActionResult.failure(f"Card {card} is not playable")

        player.hand.remove(card)
        new_state.discard_pile.append(card)
        new_state.active_color = declared or card.color
        new_state.move_history.append(MoveRecord(
            kind="play",
            player_id=actor_id,
            card_id=card.card_id,
            label=card_label(card),
            detail=declared.value if declared else None,
            at=self.clock(),
        ))
        changes.append(f"{player.name} played {card_label(card)}")

        if not player.hand:
            self._finish(new_state, player)
            changes.append(f"{player.name} wins with {new_state.round_points} points")
            return ActionResult.success_with_state(new_state, changes=changes)

        self._apply_card_effect(new_state, card)

        if len(player.hand) == 1:
            new_state.pending_declaration = PendingDeclaration(
                player_id=player.player_id,
                deadline=self.clock() + self.config.declaration_window,
            )
            player.must_declare_last_card = True

        return ActionResult.success_with_state(new_state, changes=changes)

    def _handle_pass(self, state: GameState, action: Action) -> ActionResult:
        """End the turn after drawing."""
        actor_id = action.payload.player_id
        error = self._check_turn(state, actor_id)
        if error:
            return error
        if not state.turn_state.has_drawn:
            return ActionResult.failure("Draw a card before passing")

        new_state = state.clone()
        changes = self._settle_declaration(new_state, actor_id)

        player = new_state.current_player
        new_state.move_history.append(MoveRecord(
            kind="pass",
            player_id=actor_id,
            detail=action.payload.reason or "pass",
            at=self.clock(),
        ))
        self._advance(new_state, 1)

        changes.append(f"{player.name} ended turn")
        return ActionResult.success_with_state(new_state, changes=changes)

    def _handle_declare(self, state: GameState, action: Action) -> ActionResult:
        """Announce the last card within the window; not bound to the turn."""
        actor_id = action.payload.player_id
        pending = state.pending_declaration
        if pending is None or pending.player_id != actor_id:
            return ActionResult.failure(f"No last-card declaration pending for {actor_id}")
        if self.clock() > pending.deadline:
            return ActionResult.failure("Declaration window has elapsed")

        new_state = state.clone()
        new_state.pending_declaration = None
        player = new_state.get_player(actor_id)
        player.must_declare_last_card = False
        new_state.move_history.append(MoveRecord(
            kind="declare", player_id=actor_id, at=self.clock(),
        ))
        return ActionResult.success_with_state(
            new_state, changes=[f"{player.name} declared last card"],
        )

    def _handle_resolve_declaration(self, state: GameState, action: Action) -> ActionResult:
        """Penalise an obligation whose deadline has passed."""
        pending = state.pending_declaration
        if pending is None:
            return ActionResult.failure("No last-card declaration pending")
        if self.clock() <= pending.deadline:
            return ActionResult.failure("Declaration window still open")

        new_state = state.clone()
        changes = self._settle_declaration(new_state, None)
        return ActionResult.success_with_state(new_state, changes=changes)

    # =========================================================================
    # Rule helpers (operate in place on a clone)
    # =========================================================================

    def _settle_declaration(self, state: GameState, actor_id: str | None) -> list[str]:
        """
        Resolve an armed declaration before processing a draw/play/pass.

        The obligation is penalised when its deadline has passed, when any
        other player acts, or when the obligated player acts without having
        declared - i.e. any draw/play/pass while it is armed.
        """
        pending = state.pending_declaration
        if pending is None:
            return []

        expired = self.clock() > pending.deadline
        other_moved = actor_id is not None and actor_id != pending.player_id
        if expired or other_moved or actor_id == pending.player_id:
            return [self._penalize(state, pending.player_id)]
        return []

    def _penalize(self, state: GameState, player_id: str) -> str:
        seat = state.seat_index(player_id)
        drawn = self._force_draw(state, seat, self.config.declaration_penalty)
        player = state.players[seat]
        player.must_declare_last_card = False
        state.pending_declaration = None
        state.move_history.append(MoveRecord(
            kind="penalty",
            player_id=player_id,
            detail=f"drew {drawn} for missing last-card declaration",
            at=self.clock(),
        ))
        return f"{player.name} drew {drawn} penalty cards"

    def _apply_card_effect(self, state: GameState, card: Card):
        """Advance the turn according to the played card."""
        if card.value == SKIP:
            self._advance(state, 2)
        elif card.value == REVERSE:
            state.direction *= -1
            # With two players a reverse acts like a skip.
            self._advance(state, 2 if state.num_players == 2 else 1)
        elif card.value in (DRAW_TWO, WILD_DRAW_FOUR):
            count = 2 if card.value == DRAW_TWO else 4
            target = next_turn_index(state.current_turn_index, state.direction, state.num_players)
            self._force_draw(state, target, count)
            self._advance(state, 2)
        else:
            self._advance(state, 1)

    def _advance(self, state: GameState, steps: int):
        state.current_turn_index = next_turn_index(
            state.current_turn_index, state.direction, state.num_players, steps,
        )
        state.turn_state = TurnState()

    def _force_draw(self, state: GameState, seat: int, count: int) -> int:
        """Move up to `count` cards into a seat's hand; returns how many moved."""
        player = state.players[seat]
        drawn = 0
        for _ in range(count):
            card = self._draw_one(state)
            if card is None:
                break
            player.hand.append(card)
            drawn += 1
        if drawn:
            state.move_history.append(MoveRecord(
                kind="forced_draw",
                player_id=player.player_id,
                detail=str(drawn),
                at=self.clock(),
            ))
        return drawn

    def _draw_one(self, state: GameState) -> Card | None:
        if not state.draw_pile:
            self._restock(state)
        if not state.draw_pile:
            return None
        return state.draw_pile.pop()

    def _restock(self, state: GameState):
        """Shuffle the discard pile beneath its top card into a new draw pile."""
        if len(state.discard_pile) <= 1:
            return
        top = state.discard_pile[-1]
        pile = state.discard_pile[:-1]
        self.rng.shuffle(pile)
        state.draw_pile = pile
        state.discard_pile = [top]

    def _finish(self, state: GameState, winner: PlayerState):
        state.winner_id = winner.player_id
        state.status = GameStatus.FINISHED
        state.round_points = sum(
            card_points(c)
            for p in state.players if p.player_id != winner.player_id
            for c in p.hand
        )
        state.pending_declaration = None
        for p in state.players:
            p.must_declare_last_card = False
        state.turn_state = TurnState()


def apply_action(state: GameState, action: Action, reducer: Reducer | None = None) -> ActionResult:
    """
    Convenience function to apply an action.

    Uses a default Reducer when none is given.
    """
    return (reducer or Reducer()).apply(state, action)
