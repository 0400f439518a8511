"""
Engine Core - Deterministic rules engine.

The engine:
1. Builds and deals the deck
2. Manages GameState
3. Generates legal actions
4. Applies actions via the reducer
5. Serializes state at the process boundary
"""

from .cards import Card, CardKind, Color, CardIdFactory, build_deck, card_points, card_label
from .state import GameState, GameStatus, PlayerState, TurnState, PendingDeclaration, MoveRecord
from .action import Action, ActionType, ActionPayload, ActionResult, ErrorCode
from .reducer import Reducer, RulesConfig, apply_action, is_legal, next_turn_index, playable_cards
from .action_generator import ActionGenerator, legal_actions
from .codec import state_to_dict, state_from_dict

__all__ = [
    "Card",
    "CardKind",
    "Color",
    "CardIdFactory",
    "build_deck",
    "card_points",
    "card_label",
    "GameState",
    "GameStatus",
    "PlayerState",
    "TurnState",
    "PendingDeclaration",
    "MoveRecord",
    "Action",
    "ActionType",
    "ActionPayload",
    "ActionResult",
    "ErrorCode",
    "Reducer",
    "RulesConfig",
    "apply_action",
    "is_legal",
    "next_turn_index",
    "playable_cards",
    "ActionGenerator",
    "legal_actions",
    "state_to_dict",
    "state_from_dict",
]
