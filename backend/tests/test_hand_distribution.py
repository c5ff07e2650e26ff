"""Statistical validation of deal + hand evaluation.

Deals many 3-card Teen Patti hands from freshly shuffled decks and checks
the observed hand-category distribution against the exact probabilities
over all C(52,3) = 22 100 hands:

    Trio              52 / 22100   0.24 %
    Pure Sequence     48 / 22100   0.22 %
    Sequence         720 / 22100   3.26 %
    Color           1096 / 22100   4.96 %
    Pair            3744 / 22100  16.94 %
    High Card      16440 / 22100  74.39 %
"""

import itertools
import random
from collections import Counter

import pytest

from teenpatti.cards import Card, Deck, Rank, Suit
from teenpatti.evaluator import HandCategory, evaluate

TOTAL_HANDS = 22_100

EXACT_COUNTS: dict[HandCategory, int] = {
    HandCategory.TRIO: 52,
    HandCategory.PURE_SEQUENCE: 48,
    HandCategory.SEQUENCE: 720,
    HandCategory.COLOR: 1096,
    HandCategory.PAIR: 3744,
    HandCategory.HIGH_CARD: 16440,
}

NUM_TRIALS = 100_000

# Absolute tolerance per category; several standard errors at this sample size
TOLERANCE: dict[HandCategory, float] = {
    HandCategory.TRIO: 0.0015,
    HandCategory.PURE_SEQUENCE: 0.0015,
    HandCategory.SEQUENCE: 0.004,
    HandCategory.COLOR: 0.005,
    HandCategory.HIGH_CARD: 0.01,
    HandCategory.PAIR: 0.008,
}


class TestExhaustiveCounts:
    def test_every_three_card_hand(self):
        deck = [Card(r, s) for s in Suit for r in Rank]
        counts = Counter(evaluate(list(combo)).category for combo in itertools.combinations(deck, 3))
        assert sum(counts.values()) == TOTAL_HANDS
        assert dict(counts) == EXACT_COUNTS


@pytest.mark.slow
class TestDealtDistribution:
    @pytest.fixture(scope="class")
    def observed(self) -> dict[HandCategory, float]:
        rng = random.Random(20240101)
        counts: Counter = Counter()
        deck = Deck(rng)
        for _ in range(NUM_TRIALS):
            deck.reset()
            counts[evaluate([deck.deal() for _ in range(3)]).category] += 1
        return {cat: counts[cat] / NUM_TRIALS for cat in HandCategory}

    @pytest.mark.parametrize("category", list(HandCategory))
    def test_frequency(self, observed, category):
        expected = EXACT_COUNTS[category] / TOTAL_HANDS
        assert abs(observed[category] - expected) < TOLERANCE[category], (
            f"{category.name}: observed {observed[category]:.4%}, expected {expected:.4%}"
        )


@pytest.mark.slow
class TestShuffleUniformity:
    def test_top_card_position_is_uniform(self):
        """Each of the 52 cards ends up on top about equally often."""
        rng = random.Random(99)
        deck = Deck(rng)
        trials = 52_000
        counts: Counter = Counter()
        for _ in range(trials):
            deck.reset()
            counts[repr(deck.deal())] += 1

        assert len(counts) == 52
        expected = trials / 52
        # Chi-square with 51 degrees of freedom; 99.9th percentile is ~88
        chi2 = sum((n - expected) ** 2 / expected for n in counts.values())
        assert chi2 < 90.0
