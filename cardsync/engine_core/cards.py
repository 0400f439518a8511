"""
Cards - The 108-card deck and everything derived from a card's face.

Cards are immutable values. They move between piles and hands by reference;
the only place a card is copied is the serialization boundary (codec.py).
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable
import itertools


class Color(str, Enum):
    """The four real colours. Wild cards have no colour."""
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"


class CardKind(str, Enum):
    """Card categories."""
    NUMBER = "number"
    ACTION = "action"
    WILD = "wild"


# Face values for action and wild cards
SKIP = "skip"
REVERSE = "reverse"
DRAW_TWO = "draw_two"
WILD = "wild"
WILD_DRAW_FOUR = "wild_draw_four"

ACTION_VALUES = (SKIP, REVERSE, DRAW_TWO)
WILD_VALUES = (WILD, WILD_DRAW_FOUR)
NUMBER_VALUES = tuple(str(n) for n in range(10))

DECK_SIZE = 108

ACTION_POINTS = 20
WILD_POINTS = 50


@dataclass(frozen=True)
class Card:
    """
    A physical card.

    card_id is unique within a session; two "red 7" cards have different ids.
    value is "0"-"9" for number cards, otherwise one of the action/wild names.
    """
    card_id: str
    kind: CardKind
    color: Color | None
    value: str

    def __post_init__(self):
        if self.kind == CardKind.WILD:
            if self.color is not None or self.value not in WILD_VALUES:
                raise ValueError(f"Invalid wild card: {self.value}/{self.color}")
        elif self.kind == CardKind.ACTION:
            if self.color is None or self.value not in ACTION_VALUES:
                raise ValueError(f"Invalid action card: {self.value}/{self.color}")
        elif self.color is None or self.value not in NUMBER_VALUES:
            raise ValueError(f"Invalid number card: {self.value}/{self.color}")

    @property
    def is_wild(self) -> bool:
        return self.kind == CardKind.WILD

    @property
    def number(self) -> int | None:
        """Face value for number cards."""
        return int(self.value) if self.kind == CardKind.NUMBER else None

    def __str__(self) -> str:
        if self.color is None:
            return self.value
        return f"{self.color.value}_{self.value}"


class CardIdFactory:
    """
    Sequential card id generator.

    Injected into the reducer so that decks built in tests get
    predictable ids (card_1, card_2, ...).
    """

    def __init__(self, prefix: str = "card", start: int = 1):
        self.prefix = prefix
        self._counter = itertools.count(start)

    def __call__(self) -> str:
        return f"{self.prefix}_{next(self._counter)}"


def build_deck(next_card_id: Callable[[], str]) -> list[Card]:
    """Build an unshuffled standard deck."""
    deck: list[Card] = []

    for color in Color:
        deck.append(Card(next_card_id(), CardKind.NUMBER, color, "0"))
        for n in range(1, 10):
            deck.append(Card(next_card_id(), CardKind.NUMBER, color, str(n)))
            deck.append(Card(next_card_id(), CardKind.NUMBER, color, str(n)))
        for value in ACTION_VALUES:
            deck.append(Card(next_card_id(), CardKind.ACTION, color, value))
            deck.append(Card(next_card_id(), CardKind.ACTION, color, value))

    for _ in range(4):
        deck.append(Card(next_card_id(), CardKind.WILD, None, WILD))
        deck.append(Card(next_card_id(), CardKind.WILD, None, WILD_DRAW_FOUR))

    return deck


def card_points(card: Card) -> int:
    """Points a card left in hand is worth to the round winner."""
    if card.kind == CardKind.NUMBER:
        return card.number
    if card.kind == CardKind.ACTION:
        return ACTION_POINTS
    return WILD_POINTS


def card_label(card: Card) -> str:
    """Short label for history entries and notifications."""
    if card.value == DRAW_TWO:
        return "+2"
    if card.value == WILD_DRAW_FOUR:
        return "+4"
    return card.value.upper()


def parse_color(value: str | Color | None) -> Color | None:
    """Parse a declared colour, returning None for anything not a real colour."""
    if value is None:
        return None
    if isinstance(value, Color):
        return value
    try:
        return Color(str(value).lower())
    except ValueError:
        return None
