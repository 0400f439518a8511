"""
Pytest fixtures for Cardsync tests.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import itertools
import random

import pytest

from ..engine_core.cards import Card, CardIdFactory, CardKind, Color, NUMBER_VALUES, WILD_VALUES
from ..engine_core.codec import state_to_dict
from ..engine_core.reducer import Reducer
from ..engine_core.state import GameState, GameStatus, PlayerState
from ..session.store import SessionStore
from ..sync.channel import InMemoryChannel
from ..sync.coordinator import HostCoordinator, PeerCoordinator
from ..sync.record_store import InMemoryRecordStore, Record, Seat

USERS = ["alice", "bob", "carol", "dave"]


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class StarterRng(random.Random):
    """
    Shuffle that keeps the deck in build order, except that it moves a
    card with the next requested value to where the starter is flipped.
    """

    def __init__(self, values: list[str], players: int, hand_size: int = 7):
        super().__init__(0)
        self.values = list(values)
        self.dealt = players * hand_size

    def shuffle(self, deck):
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        idx = next(i for i, c in enumerate(deck) if c.value == value)
        card = deck.pop(idx)
        # Only the first shuffle happens before the deal.
        deck.insert(len(deck) - self.dealt, card)
        self.dealt = 0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reducer(clock) -> Reducer:
    """Deterministic reducer: seeded shuffles, sequential ids, fake clock."""
    return Reducer(rng=random.Random(42), next_card_id=CardIdFactory(), clock=clock)


@pytest.fixture
def make_card():
    """Build cards from short names: "red_5", "blue_skip", "wild", "wild_draw_four"."""
    counter = itertools.count(1)

    def make(name: str, card_id: str | None = None) -> Card:
        if name in WILD_VALUES:
            kind, color, value = CardKind.WILD, None, name
        else:
            color_name, value = name.split("_", 1)
            color = Color(color_name)
            kind = CardKind.NUMBER if value in NUMBER_VALUES else CardKind.ACTION
        return Card(card_id or f"{name}#{next(counter)}", kind, color, value)

    return make


@pytest.fixture
def make_state(make_card):
    """
    Build a GameState from explicit hands.

    Seats are p_1, p_2, ... owned by alice, bob, carol, dave.
    The draw pile's last element is drawn first.
    """

    def make(
        hands: list[list[str]],
        top: str = "red_5",
        draw: list[str] | None = None,
        discard_below: list[str] | None = None,
        current: int = 0,
        direction: int = 1,
        active_color: Color | None = None,
    ) -> GameState:
        players = [
            PlayerState(
                player_id=f"p_{i + 1}",
                name=USERS[i].title(),
                user_id=USERS[i],
                hand=[make_card(c) for c in hand],
            )
            for i, hand in enumerate(hands)
        ]
        top_card = make_card(top)
        if draw is None:
            draw = ["blue_1", "blue_2", "blue_3", "blue_4", "blue_6", "blue_7"]
        return GameState(
            session_id="room_test",
            players=players,
            draw_pile=[make_card(c) for c in draw],
            discard_pile=[make_card(c) for c in (discard_below or [])] + [top_card],
            current_turn_index=current,
            direction=direction,
            active_color=active_color or top_card.color,
            status=GameStatus.ACTIVE,
        )

    return make


@pytest.fixture
def records(clock) -> InMemoryRecordStore:
    return InMemoryRecordStore(clock=clock)


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@dataclass
class Table:
    """One hosted room: alice's process is the host, the others are peers."""
    records: InMemoryRecordStore
    channel: InMemoryChannel
    host: HostCoordinator
    peers: dict[str, PeerCoordinator] = field(default_factory=dict)
    record_id: str = "room_test"

    @property
    def record(self) -> Record:
        return self.records.read(self.record_id)


@pytest.fixture
def table(records, channel, reducer):
    """
    Host a given GameState: write it as version 1 of a fresh record,
    connect the host and one peer per other seat.
    """
    tables = []

    def build(state: GameState, intent_timeout: float = 0.2) -> Table:
        seats = [
            Seat(user_id=p.user_id, display_name=p.name, player_index=i)
            for i, p in enumerate(state.players)
        ]
        records.create(Record(
            record_id="room_test",
            code="TESTAB",
            host_user_id=state.players[0].user_id,
            expected_players=len(state.players),
            seats=seats,
        ))
        state.session_id = "room_test"
        records.compare_and_set("room_test", 0, state_to_dict(state), GameStatus.ACTIVE)

        host = HostCoordinator("room_test", records, channel, reducer)
        host.connect()
        built = Table(records=records, channel=channel, host=host)
        for p in state.players[1:]:
            peer = PeerCoordinator(
                "room_test", records, channel, SessionStore(), intent_timeout=intent_timeout,
            )
            peer.connect()
            built.peers[p.user_id] = peer
        tables.append(built)
        return built

    yield build

    for built in tables:
        for peer in built.peers.values():
            peer.close()
        built.host.close()
