"""
Action System - Actions, payloads, and results.

Actions represent:
1. Player intents (draw, play, pass, declare last card)
2. System actions (resolving an expired last-card declaration)

All state changes flow through actions and the reducer.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """Types of actions in the system."""
    # Player actions
    DRAW = "draw"
    PLAY = "play"
    PASS = "pass"
    DECLARE_LAST_CARD = "declare_last_card"

    # System actions
    RESOLVE_DECLARATION = "resolve_declaration"


class ErrorCode(str, Enum):
    """Why the reducer refused an action."""
    INVALID_MOVE = "invalid_move"
    NOT_YOUR_TURN = "not_your_turn"
    GAME_OVER = "game_over"
    NO_CARDS = "no_cards"
    NO_HANDLER = "no_handler"


@dataclass
class ActionPayload:
    """
    Payload for an action - contains the action parameters.

    Different action types use different fields; validation happens
    in the reducer.
    """
    player_id: str | None = None
    card_id: str | None = None
    declared_color: str | None = None
    reason: str | None = None

    # Generic params
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Action:
    """
    A complete action to be applied to the game state.

    Actions are:
    - Validated before application
    - Applied atomically by the reducer
    - Recorded in the move history when they succeed
    """
    action_type: ActionType
    payload: ActionPayload
    timestamp: float | None = None
    action_id: str | None = None

    @classmethod
    def draw(cls, player_id: str) -> Action:
        """Factory for draw action."""
        return cls(
            action_type=ActionType.DRAW,
            payload=ActionPayload(player_id=player_id),
        )

    @classmethod
    def play(cls, player_id: str, card_id: str, declared_color: str | None = None) -> Action:
        """Factory for play action."""
        return cls(
            action_type=ActionType.PLAY,
            payload=ActionPayload(
                player_id=player_id,
                card_id=card_id,
                declared_color=declared_color,
            ),
        )

    @classmethod
    def pass_turn(cls, player_id: str, reason: str = "pass") -> Action:
        """Factory for pass action."""
        return cls(
            action_type=ActionType.PASS,
            payload=ActionPayload(player_id=player_id, reason=reason),
        )

    @classmethod
    def declare_last_card(cls, player_id: str) -> Action:
        """Factory for last-card declaration."""
        return cls(
            action_type=ActionType.DECLARE_LAST_CARD,
            payload=ActionPayload(player_id=player_id),
        )

    @classmethod
    def resolve_declaration(cls) -> Action:
        """Factory for the timer-driven declaration check."""
        return cls(
            action_type=ActionType.RESOLVE_DECLARATION,
            payload=ActionPayload(),
        )

    def describe(self) -> str:
        p = self.payload
        parts = [self.action_type.value, p.player_id or "-"]
        if p.card_id:
            parts.append(p.card_id)
        if p.declared_color:
            parts.append(p.declared_color)
        return " ".join(parts)


@dataclass
class ActionResult:
    """
    Result of applying an action.

    Contains:
    - Whether action succeeded
    - New state (if succeeded)
    - Errors (if failed)
    - Human-readable changes (for notifications)
    """
    success: bool
    new_state: Any | None = None  # GameState
    error: str | None = None
    error_code: ErrorCode | None = None

    # For UI/presentation
    state_changes: list[str] = field(default_factory=list)

    # Card the actor drew, if any
    drawn_card: Any | None = None

    @classmethod
    def failure(cls, error: str, error_code: ErrorCode = ErrorCode.INVALID_MOVE) -> ActionResult:
        """Create a failure result."""
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def success_with_state(
        cls,
        state: Any,
        changes: list[str] | None = None,
        drawn_card: Any | None = None,
    ) -> ActionResult:
        """Create a success result with new state."""
        return cls(
            success=True,
            new_state=state,
            state_changes=changes or [],
            drawn_card=drawn_card,
        )
