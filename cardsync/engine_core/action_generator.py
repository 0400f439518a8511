"""
Action Generator - Generates all legal actions from a game state.

The action generator is used by:
1. Automated players to enumerate possible moves
2. UI to highlight playable cards

Design: Generates Action objects, not just action types.
This ensures all generated actions are fully specified.
"""

from __future__ import annotations
from dataclasses import dataclass
import time

from .action import Action
from .cards import Color
from .reducer import is_legal
from .state import GameState


@dataclass
class ActionGenerator:
    """
    Generates legal actions for one seat.

    The order is stable: a pending declaration first, then plays in hand
    order, then draw or pass.
    """
    now: float | None = None

    def generate(self, state: GameState, player_id: str) -> list[Action]:
        """Generate all legal actions for the given seat."""
        if state.is_finished:
            return []

        player = state.get_player(player_id)
        if player is None:
            return []

        actions = []

        pending = state.pending_declaration
        now = self.now if self.now is not None else time.time()
        if pending and pending.player_id == player_id and now <= pending.deadline:
            actions.append(Action.declare_last_card(player_id))

        if state.current_player.player_id != player_id:
            return actions

        actions.extend(self._generate_play_actions(state, player_id))

        if state.turn_state.has_drawn:
            actions.append(Action.pass_turn(player_id))
        else:
            actions.append(Action.draw(player_id))

        return actions

    def _generate_play_actions(self, state: GameState, player_id: str) -> list[Action]:
        player = state.get_player(player_id)
        actions = []
        for card in player.hand:
            if not is_legal(card, state, player):
                continue
            if card.is_wild:
                for color in Color:
                    actions.append(Action.play(player_id, card.card_id, color.value))
            else:
                actions.append(Action.play(player_id, card.card_id))
        return actions


def legal_actions(state: GameState, player_id: str, now: float | None = None) -> list[Action]:
    """
    Convenience function to get legal actions for a seat.
    """
    return ActionGenerator(now=now).generate(state, player_id)
