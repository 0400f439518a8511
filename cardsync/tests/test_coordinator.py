"""
Tests for host-authoritative synchronization.

Tests:
- Accepted intents advance the record by exactly one version
- Stale, conflicting and duplicated intents never double-apply
- Store and channel failures leave the version untouched
- Peers follow the record by push and by poll
"""

import threading

import pytest

from ..engine_core.action import ActionType
from ..engine_core.codec import state_to_dict
from ..engine_core.state import GameStatus, PlayerState
from ..session.store import SessionStore, TURN_CHANGED
from ..sync.coordinator import (
    HostCoordinator, PeerCoordinator, SubmitStatus, SyncState,
)
from ..sync.envelope import Intent, RejectReason, intents_topic, replies_topic
from ..sync.errors import ChannelFailure, IllegalMove, RecordNotFound, StaleVersion
from ..sync.record_store import Record, Seat


def _card(state, seat, name):
    return next(c.card_id for c in state.players[seat].hand if c.card_id.startswith(name + "#"))


@pytest.fixture
def three_hands(make_state):
    return make_state([
        ["red_1", "red_2", "red_3"],
        ["yellow_3", "red_7", "green_8"],
        ["blue_3", "red_9", "green_9"],
    ])


class TestAcceptedIntents:
    """The happy path."""

    def test_host_and_peers_advance_together(self, table, three_hands):
        t = table(three_hands)
        bob, carol = t.peers["bob"], t.peers["carol"]
        assert t.host.sync_state == SyncState.SYNCED
        assert bob.version == carol.version == 1

        played = t.host.play("alice", _card(t.host.state, 0, "red_1"))

        assert played.accepted
        assert played.version == 2
        assert t.record.version == 2
        assert bob.version == carol.version == 2
        assert bob.state.current_turn_index == 1

        outcome = bob.play("bob", _card(bob.state, 1, "red_7"))

        assert outcome.accepted
        assert outcome.version == 3
        assert t.host.version == carol.version == 3
        assert carol.state.current_turn_index == 2

    def test_peer_store_emits_turn_changes(self, table, three_hands):
        t = table(three_hands)
        store = t.peers["bob"].session_store
        turns = []
        store.events.on(TURN_CHANGED, lambda notice: turns.append(notice.player_id))

        t.host.draw("alice")
        t.host.pass_turn("alice")

        assert turns == ["p_1", "p_2"]

    def test_seat_id_is_accepted_as_actor(self, table, three_hands):
        """Automated players act under their seat id."""
        t = table(three_hands)
        assert t.host.draw("p_1").accepted


class TestStaleIntents:
    """Version guard on intents."""

    def test_same_version_only_one_applies(self, table, three_hands):
        t = table(three_hands)
        first = Intent(session_id="room_test", action=ActionType.DRAW, actor_id="alice", observed_version=1)
        second = Intent(session_id="room_test", action=ActionType.DRAW, actor_id="alice", observed_version=1)

        a = t.host.handle_intent(first)
        b = t.host.handle_intent(second)

        assert a.kind == "accepted"
        assert b.kind == "rejected"
        assert b.reason == RejectReason.STALE
        assert b.expected_version == 2
        assert t.host.state.players[0].hand_count == 4

    def test_concurrent_intents_at_one_version(self, table, three_hands):
        """Racing threads: exactly one intent formed at version 1 lands."""
        t = table(three_hands)
        replies = []
        barrier = threading.Barrier(6)

        def send():
            barrier.wait()
            replies.append(t.host.handle_intent(Intent(
                session_id="room_test", action=ActionType.DRAW, actor_id="alice", observed_version=1,
            )))

        threads = [threading.Thread(target=send) for _ in range(6)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert [r.kind for r in replies].count("accepted") == 1
        assert all(r.reason == RejectReason.STALE for r in replies if r.kind == "rejected")
        assert t.record.version == 2

    def test_lagging_peer_is_told_the_version_and_resyncs(self, table, three_hands):
        """A peer that missed two updates gets a stale rejection, then catches up."""
        t = table(three_hands)
        bob = t.peers["bob"]
        t.records.notifying = False
        t.host.draw("alice")
        t.host.pass_turn("alice")
        assert bob.version == 1

        outcome = bob.draw("bob")

        assert outcome.status == SubmitStatus.REJECTED
        assert outcome.reason == RejectReason.STALE
        assert outcome.expected_version == 3
        assert t.host.version == 3
        assert bob.version == 3
        assert bob.sync_state == SyncState.SYNCED
        assert bob.state.current_turn_index == 1
        with pytest.raises(StaleVersion):
            outcome.raise_for_status()

        # Not retried automatically; the caller decides.
        assert t.record.version == 3
        assert bob.draw("bob").accepted

    def test_external_write_conflict(self, table, three_hands):
        """A write the host did not make is adopted; the intent is rejected as stale."""
        t = table(three_hands)
        external = three_hands.clone()
        external.current_turn_index = 1
        external.version = 2
        t.records.compare_and_set("room_test", 1, state_to_dict(external), GameStatus.ACTIVE)

        outcome = t.host.draw("alice")

        assert outcome.reason == RejectReason.STALE
        assert outcome.expected_version == 2
        assert t.host.version == 2
        assert t.host.state.current_turn_index == 1
        assert t.record.version == 2
        assert t.peers["bob"].draw("bob").accepted

    def test_failed_resync_does_not_count_as_caught_up(self, table, three_hands):
        """A stale peer stays behind until it has actually fetched the newer record."""
        t = table(three_hands)
        bob = t.peers["bob"]
        t.records.notifying = False
        t.host.draw("alice")
        t.host.pass_turn("alice")

        t.records.available = False
        outcome = bob.draw("bob")
        t.records.available = True

        assert outcome.reason == RejectReason.STALE
        assert outcome.expected_version == 3
        assert bob.version == 1
        assert bob.sync_state == SyncState.STALE

        assert bob.poll()
        assert bob.version == 3
        assert bob.sync_state == SyncState.SYNCED
        assert bob.state.current_turn_index == 1
        assert bob.state.version == 3

        assert bob.draw("bob").accepted
        assert t.record.version == 4

    def test_stale_peer_refuses_while_store_is_down(self, table, three_hands):
        t = table(three_hands)
        bob = t.peers["bob"]
        t.records.notifying = False
        t.host.draw("alice")
        t.records.available = False
        bob.draw("bob")

        outcome = bob.draw("bob")

        assert outcome.reason == RejectReason.STALE
        assert outcome.expected_version == 2
        assert bob.version == 1
        assert t.record.version == 2


class TestDeliveryFailures:
    """Duplicates, drops and outages."""

    def test_duplicate_delivery_applies_once(self, table, make_state):
        state = make_state([["red_1", "red_2"], ["yellow_3", "yellow_4"]], current=1)
        t = table(state)
        bob = t.peers["bob"]
        t.channel.duplicate_delivery = True

        outcome = bob.draw("bob")

        assert outcome.accepted
        assert outcome.version == 2
        assert t.record.version == 2
        assert bob.state.players[1].hand_count == 3
        assert bob.sync_state == SyncState.SYNCED

    def test_store_unavailable_keeps_version(self, table, three_hands):
        t = table(three_hands)
        t.records.available = False

        outcome = t.host.draw("alice")

        assert outcome.reason == RejectReason.STORE_UNAVAILABLE
        assert t.host.version == 1
        assert not t.host.state.turn_state.has_drawn

        t.records.available = True
        retry = t.host.draw("alice")
        assert retry.accepted
        assert retry.version == 2

    def test_dropped_intent_is_unresolved(self, table, three_hands):
        t = table(three_hands)
        bob = t.peers["bob"]
        t.channel.dropping = True

        outcome = bob.draw("bob")

        assert outcome.status == SubmitStatus.UNRESOLVED
        assert t.host.version == 1
        assert bob.sync_state == SyncState.SYNCED
        with pytest.raises(ChannelFailure):
            outcome.raise_for_status()

    def test_disconnected_channel_marks_stale(self, table, make_state):
        state = make_state([["red_1", "red_2"], ["yellow_3", "yellow_4"]], current=1)
        t = table(state)
        bob = t.peers["bob"]
        t.channel.connected = False

        outcome = bob.draw("bob")

        assert outcome.status == SubmitStatus.UNRESOLVED
        assert bob.sync_state == SyncState.STALE

        t.channel.connected = True
        assert bob.draw("bob").accepted
        assert bob.sync_state == SyncState.SYNCED

    def test_deleted_record_is_answered(self, table, make_state):
        """A write against a room that no longer exists is rejected, not raised."""
        state = make_state([["red_1", "red_2"], ["yellow_3", "yellow_4"]], current=1)
        t = table(state)
        bob = t.peers["bob"]
        del t.records._records["room_test"]

        direct = t.host.handle_intent(Intent(
            session_id="room_test", action=ActionType.DRAW, actor_id="bob", observed_version=1,
        ))
        relayed = bob.draw("bob")

        assert direct.kind == "rejected"
        assert direct.reason == RejectReason.NO_SESSION
        assert relayed.status == SubmitStatus.REJECTED
        assert relayed.reason == RejectReason.NO_SESSION
        assert t.host.version == 1
        assert t.host.state.players[1].hand_count == 2
        assert not t.host.tick()


class TestRejections:
    """Intents the host refuses."""

    def test_out_of_turn_is_invalid(self, table, three_hands):
        t = table(three_hands)
        outcome = t.peers["bob"].draw("bob")

        assert outcome.reason == RejectReason.INVALID_MOVE
        assert outcome.expected_version == 1
        assert t.host.version == 1
        with pytest.raises(IllegalMove):
            outcome.raise_for_status()

    def test_unknown_actor_not_seated(self, table, three_hands):
        t = table(three_hands)
        bob = t.peers["bob"]

        first = bob.draw("mallory")
        sent = len(t.channel.published)
        second = bob.draw("mallory")

        assert first.reason == RejectReason.NOT_SEATED
        assert second.reason == RejectReason.NOT_SEATED
        assert len(t.channel.published) == sent
        bob.mark_rejoined("mallory")
        assert "mallory" not in bob.unseated_actors

    def test_finished_session(self, table, make_state):
        t = table(make_state([["red_1"], ["yellow_3", "yellow_4"]]))
        t.host.play("alice", _card(t.host.state, 0, "red_1"))
        assert t.record.status == GameStatus.FINISHED

        outcome = t.peers["bob"].draw("bob")

        assert outcome.reason == RejectReason.SESSION_FINISHED
        assert t.host.version == 2

    def test_unknown_action_is_malformed_locally(self, table, three_hands):
        t = table(three_hands)
        outcome = t.host.submit("shuffle", "alice")
        assert outcome.reason == RejectReason.MALFORMED

    def test_system_action_from_participant(self, table, three_hands):
        t = table(three_hands)
        outcome = t.host.submit(ActionType.RESOLVE_DECLARATION, "alice")
        assert outcome.reason == RejectReason.INVALID_MOVE

    def test_malformed_message_answered(self, table, three_hands):
        t = table(three_hands)
        t.channel.publish(intents_topic("room_test"), {
            "kind": "intent", "intent_id": "x1", "session_id": "room_test", "actor_id": "bob",
        })

        topic, reply = t.channel.published[-1]
        assert topic == replies_topic("room_test")
        assert reply["reason"] == "malformed"
        assert reply["intent_id"] == "x1"
        assert t.host.version == 1

    def test_malformed_message_without_actor_is_dropped(self, table, three_hands):
        t = table(three_hands)
        t.channel.publish(intents_topic("room_test"), {"kind": "intent"})
        assert len(t.channel.published) == 1

    def test_host_ignores_its_own_echo(self, table, three_hands):
        t = table(three_hands)
        intent = Intent(
            session_id="room_test", action=ActionType.DRAW, actor_id="alice",
            observed_version=1, ref=t.host.ref,
        )
        t.channel.publish(intents_topic("room_test"), intent.model_dump(mode="json"))

        assert len(t.channel.published) == 1
        assert t.host.version == 1


class TestHostLifecycle:
    """Session start and timers."""

    def _lobby(self, records):
        records.create(Record(
            record_id="room_new", code="NEWNEW", host_user_id="alice", expected_players=2,
            seats=[Seat("alice", "Alice", 0), Seat("bob", "Bob", 1)],
        ))

    def test_no_game_yet(self, records, channel, reducer):
        self._lobby(records)
        host = HostCoordinator("room_new", records, channel, reducer)
        host.connect()

        assert host.state is None
        assert host.draw("alice").reason == RejectReason.NO_SESSION

    def test_start_session_commits_version_one(self, records, channel, reducer):
        self._lobby(records)
        host = HostCoordinator("room_new", records, channel, reducer)
        host.connect()
        peer = PeerCoordinator("room_new", records, channel, SessionStore())
        peer.connect()
        players = [
            PlayerState("p_1", "Alice", user_id="alice"),
            PlayerState("p_2", "Bob", user_id="bob"),
        ]

        state = host.start_session(players)

        assert state.version == 1
        assert state.room_code == "NEWNEW"
        assert records.read("room_new").status == GameStatus.ACTIVE
        assert peer.version == 1
        assert peer.state.players[1].user_id == "bob"
        with pytest.raises(ValueError):
            host.start_session(players)

    def test_connect_to_missing_record(self, records, channel):
        peer = PeerCoordinator("nope", records, channel)
        with pytest.raises(RecordNotFound):
            peer.connect()
        assert peer.sync_state == SyncState.DISCONNECTED

    def test_tick_penalises_expired_declaration(self, table, make_state, clock):
        t = table(make_state([["red_1", "red_2"], ["yellow_3", "yellow_4"]]))
        t.host.play("alice", _card(t.host.state, 0, "red_1"))

        assert not t.host.tick()
        clock.advance(6)
        assert t.host.tick()

        assert t.host.version == 3
        assert t.peers["bob"].state.players[0].hand_count == 3
        assert not t.host.tick()


class TestPeerFollowing:
    """Pull fallback."""

    def test_poll_catches_missed_notifications(self, table, three_hands):
        t = table(three_hands)
        bob = t.peers["bob"]
        t.records.notifying = False
        t.host.draw("alice")

        assert bob.version == 1
        assert bob.poll()
        assert bob.version == 2
        assert not bob.poll()

    def test_disconnected_peer_refuses(self, table, three_hands):
        t = table(three_hands)
        bob = t.peers["bob"]
        bob.close()
        assert bob.draw("bob").reason == RejectReason.NO_SESSION
