"""
Automated Player Driver - Plays the seats it controls.

Listens for turn:changed on a SessionStore and submits intents through
the coordinator's public submit() path, exactly like a human input
layer would. It has no privileged access to the state.

Work is drained iteratively: a submission that triggers another
turn:changed only raises a flag, and the draining loop picks it up.
An all-automated game therefore runs in a flat loop instead of
recursing once per move.
"""

from __future__ import annotations
from typing import Iterable
import logging
import threading

from ..engine_core.action import Action, ActionType
from ..engine_core.action_generator import legal_actions
from ..session.store import TURN_CHANGED, SessionStore
from ..sync.coordinator import Coordinator, SubmitOutcome
from .policy import BotPolicy, FirstLegalPolicy

logger = logging.getLogger(__name__)


class AutomatedPlayerDriver:
    """
    Drives automated seats for one coordinator.

    Usage:
        driver = AutomatedPlayerDriver(host, ["p_2", "p_3"])
        driver.start()
    """

    def __init__(
        self,
        coordinator: Coordinator,
        player_ids: Iterable[str],
        policy: BotPolicy | None = None,
        store: SessionStore | None = None,
        max_steps: int = 10_000,
    ):
        self.coordinator = coordinator
        self.player_ids = set(player_ids)
        self.policy = policy or FirstLegalPolicy()
        self.store = store or coordinator.session_store
        self.max_steps = max_steps
        self.submitted = 0
        self.rejected = 0
        self._lock = threading.Lock()
        self._pending = False
        self._draining = False
        self._unsubscribe = None

    def start(self):
        """Subscribe to turn changes and act on the current state right away."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.events.on(TURN_CHANGED, self._on_turn_changed)
        self.poke()

    def stop(self):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_turn_changed(self, notice):
        self.poke()

    def poke(self):
        """Request a pass over the current state; drains unless already draining."""
        with self._lock:
            self._pending = True
            if self._draining:
                return
            self._draining = True

        steps = 0
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._draining = False
                        return
                    self._pending = False
                if steps >= self.max_steps:
                    logger.error("Automated driver stopped after %d steps", steps)
                    with self._lock:
                        self._pending = False
                        self._draining = False
                    return
                if self._step():
                    steps += 1
        except BaseException:
            with self._lock:
                self._draining = False
            raise

    def _step(self) -> bool:
        """Submit at most one intent. Returns True if one was submitted."""
        state = self.store.state
        if state is None or state.is_finished:
            return False

        # Declarations are not bound to the turn.
        pending = state.pending_declaration
        if pending and pending.player_id in self.player_ids:
            self._submit(Action.declare_last_card(pending.player_id))
            return True

        current = state.current_player
        if current.player_id not in self.player_ids:
            return False

        options = [
            a for a in legal_actions(state, current.player_id)
            if a.action_type != ActionType.DECLARE_LAST_CARD
        ]
        if not options:
            return False

        decision = self.policy.select_action(state, current.player_id, options)
        self._submit(decision.action)
        return True

    def _submit(self, action: Action) -> SubmitOutcome:
        payload = {}
        if action.payload.card_id:
            payload["card_id"] = action.payload.card_id
        if action.payload.declared_color:
            payload["declared_color"] = action.payload.declared_color
        if action.payload.reason:
            payload["reason"] = action.payload.reason

        outcome = self.coordinator.submit(action.action_type, action.payload.player_id, payload)
        self.submitted += 1
        if not outcome.accepted:
            self.rejected += 1
            logger.warning(
                "%s: %s for %s not applied: %s",
                self.policy.get_name(), action.describe(), action.payload.player_id, outcome.message,
            )
        return outcome
