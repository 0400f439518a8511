"""
Tests for cards and the deck.

Tests:
- Deck composition
- Scoring and labels
- Card validation
"""

from collections import Counter

import pytest

from ..engine_core.cards import (
    Card, CardIdFactory, CardKind, Color, DECK_SIZE, build_deck, card_label, card_points, parse_color,
)


class TestDeck:
    """Tests for build_deck."""

    def test_deck_has_108_unique_cards(self):
        """The standard deck has 108 cards with distinct ids."""
        deck = build_deck(CardIdFactory())
        assert len(deck) == DECK_SIZE == 108
        assert len({c.card_id for c in deck}) == 108

    def test_deck_composition_per_colour(self):
        """Each colour has one 0, two of 1-9 and two of each action."""
        deck = build_deck(CardIdFactory())
        for color in Color:
            values = Counter(c.value for c in deck if c.color == color)
            assert values["0"] == 1
            for n in range(1, 10):
                assert values[str(n)] == 2
            assert values["skip"] == values["reverse"] == values["draw_two"] == 2
            assert sum(values.values()) == 25

    def test_deck_has_four_of_each_wild(self):
        """Four wilds and four wild draw fours, all without colour."""
        deck = build_deck(CardIdFactory())
        wilds = [c for c in deck if c.is_wild]
        assert Counter(c.value for c in wilds) == {"wild": 4, "wild_draw_four": 4}
        assert all(c.color is None for c in wilds)

    def test_card_ids_come_from_factory(self):
        """Injected id generator is used in build order."""
        deck = build_deck(CardIdFactory(prefix="x", start=10))
        assert deck[0].card_id == "x_10"
        assert deck[-1].card_id == "x_117"


class TestCardValues:
    """Tests for scoring, labels and validation."""

    def test_points(self, make_card):
        """Numbers score face value, actions 20, wilds 50."""
        assert card_points(make_card("red_7")) == 7
        assert card_points(make_card("green_0")) == 0
        assert card_points(make_card("blue_skip")) == 20
        assert card_points(make_card("yellow_draw_two")) == 20
        assert card_points(make_card("wild")) == 50
        assert card_points(make_card("wild_draw_four")) == 50

    def test_labels(self, make_card):
        """Draw cards get +N labels, everything else upper case."""
        assert card_label(make_card("red_draw_two")) == "+2"
        assert card_label(make_card("wild_draw_four")) == "+4"
        assert card_label(make_card("blue_skip")) == "SKIP"
        assert card_label(make_card("green_3")) == "3"

    def test_wild_with_colour_is_invalid(self):
        """Wild cards cannot carry a colour."""
        with pytest.raises(ValueError):
            Card("c1", CardKind.WILD, Color.RED, "wild")

    def test_number_card_needs_colour(self):
        with pytest.raises(ValueError):
            Card("c1", CardKind.NUMBER, None, "5")

    def test_parse_color(self):
        """Only the four real colours parse."""
        assert parse_color("RED") == Color.RED
        assert parse_color(Color.BLUE) == Color.BLUE
        assert parse_color("purple") is None
        assert parse_color(None) is None
