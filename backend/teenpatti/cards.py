"""Card and Deck representation."""

from __future__ import annotations

import random
from enum import IntEnum, Enum
from typing import Optional

from teenpatti.exceptions import EmptyDeckError


class Suit(str, Enum):
    HEARTS = "h"
    DIAMONDS = "d"
    CLUBS = "c"
    SPADES = "s"


class Rank(IntEnum):
    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8
    NINE = 9
    TEN = 10
    JACK = 11
    QUEEN = 12
    KING = 13
    ACE = 14


RANK_SYMBOLS = {
    Rank.TWO: "2",
    Rank.THREE: "3",
    Rank.FOUR: "4",
    Rank.FIVE: "5",
    Rank.SIX: "6",
    Rank.SEVEN: "7",
    Rank.EIGHT: "8",
    Rank.NINE: "9",
    Rank.TEN: "T",
    Rank.JACK: "J",
    Rank.QUEEN: "Q",
    Rank.KING: "K",
    Rank.ACE: "A",
}

SUIT_SYMBOLS = {
    Suit.HEARTS: "♥",
    Suit.DIAMONDS: "♦",
    Suit.CLUBS: "♣",
    Suit.SPADES: "♠",
}

# Generation order of a fresh deck: suit-major, rank-minor
SUIT_ORDER = (Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS, Suit.SPADES)


class Card:
    __slots__ = ("rank", "suit")

    def __init__(self, rank: Rank, suit: Suit) -> None:
        self.rank = rank
        self.suit = suit

    @property
    def value(self) -> int:
        """Ordinal of the rank: 0 for a two up to 12 for an ace."""
        return self.rank - Rank.TWO

    def __repr__(self) -> str:
        return f"{RANK_SYMBOLS[self.rank]}{self.suit.value}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.rank == other.rank and self.suit == other.suit

    def __hash__(self) -> int:
        return hash((self.rank, self.suit))

    def to_dict(self) -> dict:
        return {"rank": self.rank.value, "suit": self.suit.value}

    @classmethod
    def from_dict(cls, data: dict) -> Card:
        return cls(Rank(data["rank"]), Suit(data["suit"]))

    @classmethod
    def from_str(cls, s: str) -> Card:
        """Parse 'Ah', 'Ts', '2c' etc."""
        rank_char = s[0].upper()
        suit_char = s[1].lower()
        rank_map = {v: k for k, v in RANK_SYMBOLS.items()}
        return cls(rank_map[rank_char], Suit(suit_char))


def rank_value(card: Card) -> int:
    return card.value


class Deck:
    """Standard 52-card deck. Cards are dealt from the end of the list."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._cards: list[Card] = []
        self.reset()

    def reset(self) -> None:
        """Rebuild all 52 cards and shuffle."""
        self._cards = [Card(rank, suit) for suit in SUIT_ORDER for rank in Rank]
        self.shuffle()

    def shuffle(self) -> None:
        # Fisher-Yates, walking down from the last index
        cards = self._cards
        for i in range(len(cards) - 1, 0, -1):
            j = self._rng.randint(0, i)
            cards[i], cards[j] = cards[j], cards[i]

    def deal(self) -> Card:
        if not self._cards:
            raise EmptyDeckError()
        return self._cards.pop()

    @property
    def remaining(self) -> int:
        return len(self._cards)

    def to_dict(self) -> dict:
        return {"cards": [c.to_dict() for c in self._cards]}

    @classmethod
    def from_dict(cls, data: dict, rng: Optional[random.Random] = None) -> Deck:
        """Restore a deck in its serialized order (no reshuffle)."""
        deck = cls.__new__(cls)
        deck._rng = rng or random.Random()
        deck._cards = [Card.from_dict(c) for c in data["cards"]]
        return deck
