"""
Session Store - Process-local holder of the current game state.

Other components (presentation, automated players, the API's WebSocket
fan-out) react to changes by subscribing to events instead of polling:

    state:changed    every accepted state, payload = GameState
    turn:changed     a new turn owner or a new version on an unfinished game,
                     payload = TurnNotice
    game:finished    the state now has a winner, payload = GameState

Subscribers never mutate the state they receive.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable
import logging
import threading

from ..engine_core.state import GameState

logger = logging.getLogger(__name__)

STATE_CHANGED = "state:changed"
TURN_CHANGED = "turn:changed"
GAME_FINISHED = "game:finished"


class EventBus:
    """Minimal synchronous publish/subscribe."""

    def __init__(self):
        self._handlers: dict[str, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register a handler; returns a function that removes it."""
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(event, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Any = None):
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", event)


@dataclass
class TurnNotice:
    """Who is to move, sent with every turn change."""
    session_id: str
    turn_index: int
    player_id: str
    user_id: str | None
    player_name: str
    is_automated: bool
    version: int


def turn_payload(state: GameState) -> TurnNotice:
    player = state.current_player
    return TurnNotice(
        session_id=state.session_id,
        turn_index=state.current_turn_index,
        player_id=player.player_id,
        user_id=player.user_id,
        player_name=player.name,
        is_automated=player.is_automated,
        version=state.version,
    )


class SessionStore:
    """
    Holds "current state" for one participant process.

    Usage:
        store = SessionStore()
        store.events.on(TURN_CHANGED, on_turn)
        store.set_state(new_state)
    """

    def __init__(self, events: EventBus | None = None):
        self.events = events or EventBus()
        self._state: GameState | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> GameState | None:
        return self._state

    @property
    def version(self) -> int:
        return self._state.version if self._state else 0

    def set_state(self, state: GameState | None, event: str = STATE_CHANGED) -> GameState | None:
        """Replace the held state unconditionally and publish."""
        with self._lock:
            previous = self._state
            self._state = state
        self._publish(previous, state, event)
        return state

    def replace_if_newer(self, state: GameState) -> bool:
        """Adopt `state` only if its version is ahead of the held one."""
        with self._lock:
            previous = self._state
            if previous is not None and state.version <= previous.version:
                return False
            self._state = state
        self._publish(previous, state, STATE_CHANGED)
        return True

    def clear(self):
        with self._lock:
            self._state = None

    def _publish(self, previous: GameState | None, state: GameState | None, event: str):
        if state is None:
            return
        self.events.emit(event, state)

        if state.is_finished:
            if previous is None or not previous.is_finished:
                self.events.emit(GAME_FINISHED, state)
            return

        turn_moved = (
            previous is None
            or previous.session_id != state.session_id
            or previous.current_turn_index != state.current_turn_index
            or previous.version != state.version
        )
        if turn_moved:
            self.events.emit(TURN_CHANGED, turn_payload(state))
