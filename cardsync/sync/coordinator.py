"""
Coordinators - Host-authoritative synchronization of one room.

Every participant process runs exactly one coordinator per room:

    HostCoordinator   the only writer. Applies intents one at a time
                      through the rules engine, writes the result to the
                      record store with a compare-and-swap, answers every
                      intent with an Acceptance or a Rejection.
    PeerCoordinator   never applies anything locally. Submits intents over
                      the channel, waits for the reply, and follows the
                      record through change notifications (push) or
                      poll() (pull fallback).

State machine (per process):

    DISCONNECTED -> JOINING -> SYNCED <-> STALE
                                 |
                              APPLYING   (host only, one intent at a time)

Rejected intents are never retried automatically: a stale rejection
triggers a forced re-fetch, and the caller decides what to do next
against the fresh state.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence
import logging
import threading
import uuid

from pydantic import ValidationError

from ..engine_core.action import Action, ActionPayload, ActionType
from ..engine_core.codec import state_from_dict, state_to_dict
from ..engine_core.reducer import Reducer
from ..engine_core.state import GameState, PlayerState
from ..session.store import SessionStore
from .channel import MessageChannel
from .envelope import (
    Acceptance, Intent, RejectReason, Rejection, Reply,
    intents_topic, parse_reply, replies_topic,
)
from .errors import (
    ChannelFailure, IllegalMove, NotSeated, RecordNotFound, StaleVersion,
    StoreUnavailable, SyncError, VersionConflict,
)
from .record_store import Record, RecordStore

logger = logging.getLogger(__name__)

PLAYER_ACTIONS = {
    ActionType.DRAW,
    ActionType.PLAY,
    ActionType.PASS,
    ActionType.DECLARE_LAST_CARD,
}


class SyncState(str, Enum):
    """Where a coordinator is in its synchronization lifecycle."""
    DISCONNECTED = "disconnected"
    JOINING = "joining"
    SYNCED = "synced"
    STALE = "stale"
    APPLYING = "applying"


class SubmitStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    UNRESOLVED = "unresolved"  # no reply; resync and re-evaluate, never blindly retry


@dataclass
class SubmitOutcome:
    """What happened to a submitted intent, as seen by the submitter."""
    status: SubmitStatus
    intent_id: str | None = None
    version: int | None = None
    reason: RejectReason | None = None
    message: str | None = None
    expected_version: int | None = None

    @property
    def accepted(self) -> bool:
        return self.status == SubmitStatus.ACCEPTED

    @classmethod
    def from_reply(cls, reply: Reply) -> SubmitOutcome:
        if isinstance(reply, Acceptance):
            return cls(
                status=SubmitStatus.ACCEPTED,
                intent_id=reply.intent_id,
                version=reply.version,
            )
        return cls(
            status=SubmitStatus.REJECTED,
            intent_id=reply.intent_id,
            reason=reply.reason,
            message=reply.message,
            expected_version=reply.expected_version,
        )

    @classmethod
    def rejected(
        cls,
        reason: RejectReason,
        message: str,
        expected_version: int | None = None,
        intent_id: str | None = None,
    ) -> SubmitOutcome:
        return cls(
            status=SubmitStatus.REJECTED,
            intent_id=intent_id,
            reason=reason,
            message=message,
            expected_version=expected_version,
        )

    def raise_for_status(self):
        """Raise the matching SyncError unless the intent was accepted."""
        if self.accepted:
            return
        if self.status == SubmitStatus.UNRESOLVED:
            raise ChannelFailure(self.message or "No reply from host")
        if self.reason == RejectReason.STALE:
            raise StaleVersion(self.expected_version or 0, self.message)
        if self.reason == RejectReason.NOT_SEATED:
            raise NotSeated(self.message)
        if self.reason == RejectReason.STORE_UNAVAILABLE:
            raise StoreUnavailable(self.message)
        raise IllegalMove(self.message)


def _rejection(intent: Intent, reason: RejectReason, message: str, expected_version: int | None = None) -> Rejection:
    return Rejection(
        intent_id=intent.intent_id,
        actor_id=intent.actor_id,
        reason=reason,
        message=message,
        expected_version=expected_version,
    )


class Coordinator(ABC):
    """
    Shared plumbing for both roles: connection lifecycle, record adoption,
    and the public intent entry points used by input layers and bots.
    """

    is_host = False

    def __init__(
        self,
        record_id: str,
        record_store: RecordStore,
        channel: MessageChannel,
        session_store: SessionStore | None = None,
    ):
        self.record_id = record_id
        self.records = record_store
        self.channel = channel
        self.session_store = session_store or SessionStore()
        self.sync_state = SyncState.DISCONNECTED
        self.record: Record | None = None
        self.ref = f"ref_{uuid.uuid4().hex[:8]}"
        self._version = 0
        self._state_lock = threading.Lock()
        self._unsubscribers: list = []

    @property
    def version(self) -> int:
        """Last authoritative version this process knows about."""
        return self._version

    @property
    def state(self) -> GameState | None:
        return self.session_store.state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def connect(self):
        """Subscribe to updates and fetch the record."""
        self.sync_state = SyncState.JOINING
        self._subscribe()
        try:
            record = self.records.read(self.record_id)
        except StoreUnavailable:
            self.sync_state = SyncState.STALE
            raise
        if record is None:
            self.close()
            raise RecordNotFound(f"Record {self.record_id} not found")
        self._adopt_record(record, force=True)
        self.sync_state = SyncState.SYNCED
        logger.info("%s joined %s at version %d", self.role, self.record_id, self._version)

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.sync_state = SyncState.DISCONNECTED

    @property
    def role(self) -> str:
        return "host" if self.is_host else "peer"

    @abstractmethod
    def _subscribe(self):
        """Register the role-specific subscriptions."""

    def _adopt_record(self, record: Record, force: bool = False) -> bool:
        """
        Bring the session store in line with a record.

        Without `force`, only records ahead of the known version are taken.
        """
        with self._state_lock:
            self.record = record
            if record.game_state is None:
                return False
            if not force and record.version <= self._version:
                return False
            try:
                state = state_from_dict(record.game_state)
            except (KeyError, ValueError, TypeError):
                logger.warning("Record %s holds an unreadable game state", record.record_id)
                return False
            state.version = record.version
            self._version = record.version

        if force:
            self.session_store.set_state(state)
        else:
            self.session_store.replace_if_newer(state)
        return True

    # =========================================================================
    # Intent entry points
    # =========================================================================

    @abstractmethod
    def submit(
        self,
        action: ActionType | str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> SubmitOutcome:
        """Submit an intent formed against the currently known version."""

    def draw(self, actor_id: str) -> SubmitOutcome:
        return self.submit(ActionType.DRAW, actor_id)

    def play(self, actor_id: str, card_id: str, declared_color: str | None = None) -> SubmitOutcome:
        payload = {"card_id": card_id}
        if declared_color:
            payload["declared_color"] = declared_color
        return self.submit(ActionType.PLAY, actor_id, payload)

    def pass_turn(self, actor_id: str, reason: str = "pass") -> SubmitOutcome:
        return self.submit(ActionType.PASS, actor_id, {"reason": reason})

    def declare_last_card(self, actor_id: str) -> SubmitOutcome:
        return self.submit(ActionType.DECLARE_LAST_CARD, actor_id)

    def _make_intent(self, action: ActionType | str, actor_id: str, payload: dict[str, Any] | None) -> Intent:
        return Intent(
            session_id=self.record_id,
            action=ActionType(action),
            actor_id=actor_id,
            payload=payload or {},
            observed_version=self._version,
            ref=self.ref,
        )


class HostCoordinator(Coordinator):
    """
    The authoritative side.

    Intents are applied strictly one at a time under a re-entrant lock:
    validate -> rules engine -> compare-and-swap -> publish locally.
    The in-memory version only advances once the store confirms the write.
    """

    is_host = True

    def __init__(
        self,
        record_id: str,
        record_store: RecordStore,
        channel: MessageChannel,
        reducer: Reducer | None = None,
        session_store: SessionStore | None = None,
    ):
        super().__init__(record_id, record_store, channel, session_store)
        self.reducer = reducer or Reducer()
        self._apply_lock = threading.RLock()

    def _subscribe(self):
        self._unsubscribers.append(
            self.channel.subscribe(intents_topic(self.record_id), self._on_intent_message)
        )

    # =========================================================================
    # Session start
    # =========================================================================

    def start_session(self, players: Sequence[PlayerState], mode: str = "online") -> GameState:
        """
        Deal a new game and write it as the next version of the record.

        Raises ValueError if a game is already running, StoreUnavailable or
        VersionConflict if the write does not land.
        """
        with self._apply_lock:
            current = self.session_store.state
            if current is not None and not current.is_finished:
                raise ValueError(f"Room {self.record_id} already has a game in progress")

            state = self.reducer.create_session(
                players,
                mode=mode,
                session_id=self.record_id,
                room_code=self.record.code if self.record else None,
                host_user_id=self.record.host_user_id if self.record else None,
            )
            try:
                self._commit(state)
            except VersionConflict as conflict:
                self._recover_from_conflict(conflict)
                raise
            logger.info("Started game in %s with %d players", self.record_id, len(players))
            return state

    # =========================================================================
    # Intent application
    # =========================================================================

    def submit(
        self,
        action: ActionType | str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> SubmitOutcome:
        """Local submission (host's own seats and automated players)."""
        try:
            intent = self._make_intent(action, actor_id, payload)
        except (ValueError, ValidationError) as e:
            return SubmitOutcome.rejected(RejectReason.MALFORMED, str(e), self._version)
        return SubmitOutcome.from_reply(self.handle_intent(intent))

    def handle_intent(self, intent: Intent) -> Reply:
        """Validate and apply one intent. Never raises for a bad intent."""
        with self._apply_lock:
            self.sync_state = SyncState.APPLYING
            try:
                reply = self._apply_intent(intent)
            finally:
                self.sync_state = SyncState.SYNCED

        if isinstance(reply, Rejection):
            logger.info(
                "Rejected %s from %s: %s (%s)",
                intent.action.value, intent.actor_id, reply.reason.value, reply.message,
            )
        return reply

    def _apply_intent(self, intent: Intent) -> Reply:
        if intent.session_id != self.record_id:
            return _rejection(intent, RejectReason.NO_SESSION, f"Unknown session {intent.session_id}")

        state = self.session_store.state
        if state is None:
            return _rejection(intent, RejectReason.NO_SESSION, "No game in progress")
        if state.is_finished:
            return _rejection(
                intent, RejectReason.SESSION_FINISHED, "Game is over", self._version,
            )

        if intent.observed_version < self._version:
            return _rejection(
                intent,
                RejectReason.STALE,
                f"Intent formed at version {intent.observed_version}; current version is {self._version}",
                self._version,
            )

        seat = state.resolve_seat(intent.actor_id)
        if seat is None:
            return _rejection(intent, RejectReason.NOT_SEATED, f"{intent.actor_id} is not seated")

        if intent.action not in PLAYER_ACTIONS:
            return _rejection(intent, RejectReason.INVALID_MOVE, f"{intent.action.value} is not a player action")

        action = self._to_action(intent, seat.player_id)
        result = self.reducer.apply(state, action)
        if not result.success:
            return _rejection(intent, RejectReason.INVALID_MOVE, result.error or "Invalid move", self._version)

        try:
            self._commit(result.new_state)
        except VersionConflict as conflict:
            expected = self._recover_from_conflict(conflict)
            return _rejection(
                intent, RejectReason.STALE, "Record advanced concurrently", expected,
            )
        except StoreUnavailable as e:
            logger.warning("Write for %s failed: %s", self.record_id, e)
            return _rejection(intent, RejectReason.STORE_UNAVAILABLE, str(e) or "Record store unavailable")
        except RecordNotFound as e:
            logger.warning("Record %s is gone: %s", self.record_id, e)
            return _rejection(intent, RejectReason.NO_SESSION, str(e) or "Room no longer exists")

        return Acceptance(
            intent_id=intent.intent_id,
            actor_id=intent.actor_id,
            version=self._version,
        )

    def _to_action(self, intent: Intent, player_id: str) -> Action:
        payload = intent.payload
        return Action(
            action_type=intent.action,
            payload=ActionPayload(
                player_id=player_id,
                card_id=_optional_str(payload.get("card_id")),
                declared_color=_optional_str(payload.get("declared_color")),
                reason=_optional_str(payload.get("reason")),
            ),
            timestamp=intent.sent_at,
            action_id=intent.intent_id,
        )

    def _commit(self, new_state: GameState):
        """Compare-and-swap the record from the known version to the next one."""
        expected = self._version
        new_state.version = expected + 1
        record = self.records.compare_and_set(
            self.record_id, expected, state_to_dict(new_state), new_state.status,
        )
        with self._state_lock:
            self._version = record.version
            self.record = record
        self.session_store.set_state(new_state)

    def _recover_from_conflict(self, conflict: VersionConflict) -> int:
        """Correct the in-memory copy from the store after a lost CAS."""
        logger.warning("Version conflict on %s: %s", self.record_id, conflict)
        try:
            record = self.records.read(self.record_id)
        except StoreUnavailable:
            return conflict.current_version
        if record is not None:
            self._adopt_record(record, force=True)
            return self._version
        return conflict.current_version

    def tick(self) -> bool:
        """
        Proactively penalise an expired last-card declaration.

        Optional: the same check also runs lazily on the next
        draw/play/pass. Returns True when a new version was written.
        """
        with self._apply_lock:
            state = self.session_store.state
            if state is None or state.is_finished or state.pending_declaration is None:
                return False
            result = self.reducer.resolve_expired_declaration(state)
            if not result.success:
                return False
            try:
                self._commit(result.new_state)
            except VersionConflict as conflict:
                self._recover_from_conflict(conflict)
                return False
            except (StoreUnavailable, RecordNotFound) as e:
                logger.warning("Declaration timeout write failed: %s", e)
                return False
            return True

    # =========================================================================
    # Channel side
    # =========================================================================

    def _on_intent_message(self, message: dict[str, Any]):
        if message.get("ref") == self.ref:
            return

        try:
            intent = Intent.model_validate(message)
        except ValidationError as e:
            actor_id = message.get("actor_id")
            logger.warning("Malformed intent for %s: %s", self.record_id, e.error_count())
            if isinstance(actor_id, str) and actor_id:
                intent_id = message.get("intent_id")
                self._publish_reply(Rejection(
                    intent_id=intent_id if isinstance(intent_id, str) else None,
                    actor_id=actor_id,
                    reason=RejectReason.MALFORMED,
                    message="Malformed intent",
                    expected_version=self._version,
                ))
            return

        self._publish_reply(self.handle_intent(intent))

    def _publish_reply(self, reply: Reply):
        try:
            self.channel.publish(replies_topic(self.record_id), reply.model_dump(mode="json"))
        except ChannelFailure as e:
            # The submitter times out and resyncs.
            logger.warning("Could not deliver reply for %s: %s", reply.intent_id, e)


@dataclass
class _Waiter:
    event: threading.Event
    reply: Reply | None = None


class PeerCoordinator(Coordinator):
    """
    A non-host participant.

    Submissions block until the host replies or `intent_timeout` passes.
    """

    def __init__(
        self,
        record_id: str,
        record_store: RecordStore,
        channel: MessageChannel,
        session_store: SessionStore | None = None,
        intent_timeout: float = 5.0,
    ):
        super().__init__(record_id, record_store, channel, session_store)
        self.intent_timeout = intent_timeout
        self.unseated_actors: set[str] = set()
        # Version the host reported in its last stale rejection. Nothing below
        # it counts as caught up, but it only becomes _version once fetched.
        self._min_version = 0
        self._waiters: dict[str, _Waiter] = {}
        self._waiters_lock = threading.Lock()

    def _subscribe(self):
        self._unsubscribers.append(
            self.records.subscribe(self.record_id, self._on_record_changed)
        )
        self._unsubscribers.append(
            self.channel.subscribe(replies_topic(self.record_id), self._on_reply)
        )

    def submit(
        self,
        action: ActionType | str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> SubmitOutcome:
        if self.sync_state == SyncState.DISCONNECTED:
            return SubmitOutcome.rejected(RejectReason.NO_SESSION, "Not connected")
        if actor_id in self.unseated_actors:
            return SubmitOutcome.rejected(RejectReason.NOT_SEATED, f"{actor_id} is not seated; re-join first")
        if self.sync_state == SyncState.STALE and not self.resync():
            return SubmitOutcome.rejected(
                RejectReason.STALE, "Local copy is stale and could not be refreshed", self._target_version,
            )

        try:
            intent = self._make_intent(action, actor_id, payload)
        except (ValueError, ValidationError) as e:
            return SubmitOutcome.rejected(RejectReason.MALFORMED, str(e), self._version)

        waiter = _Waiter(event=threading.Event())
        with self._waiters_lock:
            self._waiters[intent.intent_id] = waiter

        try:
            self.channel.publish(intents_topic(self.record_id), intent.model_dump(mode="json"))
        except ChannelFailure as e:
            with self._waiters_lock:
                self._waiters.pop(intent.intent_id, None)
            logger.warning("Could not send %s: %s", intent.action.value, e)
            self.sync_state = SyncState.STALE
            return SubmitOutcome(
                status=SubmitStatus.UNRESOLVED,
                intent_id=intent.intent_id,
                message=str(e),
            )

        replied = waiter.event.wait(self.intent_timeout)
        with self._waiters_lock:
            self._waiters.pop(intent.intent_id, None)

        if not replied or waiter.reply is None:
            logger.warning("No reply for %s within %.1fs", intent.intent_id, self.intent_timeout)
            self.sync_state = SyncState.STALE
            self.resync()
            return SubmitOutcome(
                status=SubmitStatus.UNRESOLVED,
                intent_id=intent.intent_id,
                message="No reply from host",
            )

        outcome = SubmitOutcome.from_reply(waiter.reply)
        if outcome.accepted and outcome.version is not None and self._version < outcome.version:
            # The change notification has not arrived yet.
            self.resync()
        return outcome

    def _on_reply(self, message: dict[str, Any]):
        reply = parse_reply(message)
        if reply is None or reply.intent_id is None:
            return
        with self._waiters_lock:
            waiter = self._waiters.get(reply.intent_id)
        if waiter is None or waiter.event.is_set():
            # First reply wins; a duplicate delivery draws a second one.
            return

        if isinstance(reply, Rejection):
            if reply.reason == RejectReason.STALE:
                self._handle_stale(reply.expected_version)
            elif reply.reason == RejectReason.NOT_SEATED:
                self.unseated_actors.add(reply.actor_id)

        waiter.reply = reply
        waiter.event.set()

    @property
    def _target_version(self) -> int:
        return max(self._version, self._min_version)

    def _handle_stale(self, expected_version: int | None):
        """Remember the host's version, then force a re-fetch."""
        self.sync_state = SyncState.STALE
        with self._state_lock:
            if expected_version is not None and expected_version > self._min_version:
                self._min_version = expected_version
        self.resync()

    def _on_record_changed(self, record: Record):
        self._adopt_record(record)

    def mark_rejoined(self, actor_id: str):
        self.unseated_actors.discard(actor_id)

    def resync(self) -> bool:
        """Forced re-fetch of the full state. Returns True once synced."""
        try:
            record = self.records.read(self.record_id)
        except StoreUnavailable as e:
            logger.warning("Resync of %s failed: %s", self.record_id, e)
            self.sync_state = SyncState.STALE
            return False
        return self._catch_up(record)

    def _catch_up(self, record: Record | None) -> bool:
        if record is None or record.version < self._target_version:
            # The store has not caught up with the version we were told about.
            self.sync_state = SyncState.STALE
            return False

        self._adopt_record(record, force=True)
        self.sync_state = SyncState.SYNCED
        return True

    def poll(self) -> bool:
        """Pull fallback for missed notifications. True when a newer state was adopted."""
        try:
            record = self.records.read(self.record_id)
        except StoreUnavailable as e:
            logger.warning("Poll of %s failed: %s", self.record_id, e)
            return False
        if record is None:
            return False
        if self.sync_state == SyncState.STALE:
            return self._catch_up(record)
        return self._adopt_record(record)


class Poller:
    """Background thread calling coordinator.poll() on an interval."""

    def __init__(self, coordinator: PeerCoordinator, interval: float = 2.0):
        self.coordinator = coordinator
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"poller-{self.coordinator.record_id}", daemon=True,
        )
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.coordinator.poll()
            except SyncError:
                logger.exception("Poll failed")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
