"""Teen Patti hand evaluator.

Ranks a 3-card hand.  Returns a HandRank that can be compared directly
(higher is better); two hands with the same category and the same sorted
rank values are a tie, suits never break ties.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Sequence

from teenpatti.cards import Card


class HandCategory(IntEnum):
    HIGH_CARD = 0
    PAIR = 1
    COLOR = 2
    SEQUENCE = 3
    PURE_SEQUENCE = 4
    TRIO = 5


HAND_NAMES = {
    HandCategory.HIGH_CARD: "High Card",
    HandCategory.PAIR: "Pair",
    HandCategory.COLOR: "Color",
    HandCategory.SEQUENCE: "Sequence",
    HandCategory.PURE_SEQUENCE: "Pure Sequence",
    HandCategory.TRIO: "Trio",
}

# A-2-3 as sorted descending ordinals
LOW_ACE_SEQUENCE = (12, 1, 0)


class HandRank:
    """Comparable hand ranking: (category, values sorted descending)."""

    __slots__ = ("category", "values", "cards")

    def __init__(
        self,
        category: HandCategory,
        values: tuple[int, ...],
        cards: list[Card],
    ) -> None:
        self.category = category
        self.values = values
        self.cards = cards

    @property
    def key(self) -> tuple[int, tuple[int, ...]]:
        return (int(self.category), self.values)

    def __lt__(self, other: HandRank) -> bool:
        return self.key < other.key

    def __gt__(self, other: HandRank) -> bool:
        return self.key > other.key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HandRank):
            return NotImplemented
        return self.key == other.key

    def __le__(self, other: HandRank) -> bool:
        return self.key <= other.key

    def __ge__(self, other: HandRank) -> bool:
        return self.key >= other.key

    def __hash__(self) -> int:
        return hash(self.key)

    @property
    def name(self) -> str:
        return HAND_NAMES[self.category]

    def __repr__(self) -> str:
        return f"HandRank({self.name}, {self.values})"


def is_sequence(values: Sequence[int]) -> bool:
    """True for three consecutive ordinals (sorted descending) or A-2-3."""
    if tuple(values) == LOW_ACE_SEQUENCE:
        return True
    return values[0] == values[1] + 1 and values[1] == values[2] + 1


def evaluate(cards: Sequence[Card]) -> HandRank:
    if len(cards) != 3:
        raise ValueError(f"Need exactly 3 cards, got {len(cards)}")

    ordered = sorted(cards, key=lambda c: c.value, reverse=True)
    values = tuple(c.value for c in ordered)

    if values[0] == values[1] == values[2]:
        return HandRank(HandCategory.TRIO, values, ordered)

    sequence = is_sequence(values)
    flush = len({c.suit for c in ordered}) == 1

    if sequence and flush:
        category = HandCategory.PURE_SEQUENCE
    elif sequence:
        category = HandCategory.SEQUENCE
    elif flush:
        category = HandCategory.COLOR
    elif values[0] == values[1] or values[1] == values[2]:
        # sorted, so a pair is always adjacent
        category = HandCategory.PAIR
    else:
        category = HandCategory.HIGH_CARD

    return HandRank(category, values, ordered)


def determine_winners(
    player_hands: dict[str, HandRank],
) -> list[str]:
    """Given {player_id: HandRank}, return list of winner player_ids (ties possible)."""
    if not player_hands:
        return []

    best_rank = max(player_hands.values())
    return [pid for pid, rank in player_hands.items() if rank == best_rank]

