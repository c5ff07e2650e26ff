"""Tests for the 3-card hand evaluator."""

import pytest

from teenpatti.cards import Card
from teenpatti.evaluator import (
    HAND_NAMES,
    HandCategory,
    HandRank,
    determine_winners,
    evaluate,
    is_sequence,
)


def _hand(s: str) -> list[Card]:
    """Parse 'As 2s 3s' into Cards."""
    return [Card.from_str(c) for c in s.split()]


def _cat(s: str) -> HandCategory:
    return evaluate(_hand(s)).category


class TestCategories:
    def test_low_ace_pure_sequence(self):
        assert _cat("As 2s 3s") == HandCategory.PURE_SEQUENCE

    def test_trio(self):
        assert _cat("Kc Kd Kh") == HandCategory.TRIO

    def test_color(self):
        assert _cat("9s 5s 2s") == HandCategory.COLOR

    def test_sequence(self):
        assert _cat("7c 8d 9h") == HandCategory.SEQUENCE

    def test_pair(self):
        assert _cat("4s 4d 9h") == HandCategory.PAIR

    def test_high_card(self):
        assert _cat("As 7d 2h") == HandCategory.HIGH_CARD

    def test_high_ace_sequence(self):
        assert _cat("Qh Kd Ac") == HandCategory.SEQUENCE

    def test_no_wrap_through_ace(self):
        # K-A-2 is not a run
        assert _cat("Kh Ad 2c") == HandCategory.HIGH_CARD

    def test_pair_at_top(self):
        assert _cat("9s 9d 4h") == HandCategory.PAIR

    def test_pair_ranks_below_color(self):
        assert HandCategory.PAIR < HandCategory.COLOR

    def test_card_order_irrelevant(self):
        assert evaluate(_hand("3s As 2s")) == evaluate(_hand("As 2s 3s"))


class TestIsSequence:
    def test_contiguous(self):
        assert is_sequence((9, 8, 7))

    def test_low_ace(self):
        assert is_sequence((12, 1, 0))

    def test_gap(self):
        assert not is_sequence((9, 7, 6))


class TestValidation:
    @pytest.mark.parametrize("cards", ["As 2s", "As 2s 3s 4s", ""])
    def test_needs_exactly_three(self, cards):
        with pytest.raises(ValueError, match="exactly 3"):
            evaluate(_hand(cards) if cards else [])


class TestCategoryOrder:
    """Every category beats every hand of a lower category, whatever the ranks."""

    LOWEST = {
        HandCategory.TRIO: "2c 2d 2h",
        HandCategory.PURE_SEQUENCE: "As 2s 3s",
        HandCategory.SEQUENCE: "Ac 2d 3h",
        HandCategory.COLOR: "2h 3h 5h",
        HandCategory.PAIR: "2c 2d 3h",
    }
    HIGHEST = {
        HandCategory.PURE_SEQUENCE: "Qs Ks As",
        HandCategory.SEQUENCE: "Qc Kd Ah",
        HandCategory.COLOR: "Jh Kh Ah",
        HandCategory.PAIR: "Ac Ad Kh",
        HandCategory.HIGH_CARD: "Jc Kd Ah",
    }

    @pytest.mark.parametrize("better", list(LOWEST))
    def test_lowest_of_category_beats_highest_below(self, better):
        worst_of_better = evaluate(_hand(self.LOWEST[better]))
        for lower, text in self.HIGHEST.items():
            if lower < better:
                assert worst_of_better > evaluate(_hand(text))


class TestComparison:
    def test_higher_trio_wins(self):
        assert evaluate(_hand("Ac Ad Ah")) > evaluate(_hand("Kc Kd Kh"))

    def test_low_ace_sequence_compares_on_sorted_values(self):
        # A-2-3 sorts as (12, 1, 0) and so ranks above 2-3-4
        assert evaluate(_hand("Ac 2d 3h")) > evaluate(_hand("2c 3d 4h"))
        assert evaluate(_hand("Qc Kd Ah")) > evaluate(_hand("Ac 2d 3h"))

    def test_pair_kicker(self):
        assert evaluate(_hand("Ac Ad Kh")) > evaluate(_hand("Ac Ad Qh"))

    def test_suits_never_break_ties(self):
        a = evaluate(_hand("As 7d 2h"))
        b = evaluate(_hand("Ah 7c 2s"))
        assert a == b
        assert not a > b
        assert not a < b

    def test_hand_rank_hashable(self):
        assert len({evaluate(_hand("As 7d 2h")), evaluate(_hand("Ah 7c 2s"))}) == 1

    def test_names(self):
        assert evaluate(_hand("Kc Kd Kh")).name == "Trio"
        assert set(HAND_NAMES) == set(HandCategory)

    def test_key(self):
        hr = evaluate(_hand("4s 4d 9h"))
        assert isinstance(hr, HandRank)
        assert hr.key == (HandCategory.PAIR, (7, 2, 2))


class TestDetermineWinners:
    def test_single_winner(self):
        hands = {
            "p1": evaluate(_hand("Kc Kd Kh")),
            "p2": evaluate(_hand("As 2s 3s")),
        }
        assert determine_winners(hands) == ["p1"]

    def test_tie(self):
        hands = {
            "p1": evaluate(_hand("As 7d 2h")),
            "p2": evaluate(_hand("Ah 7c 2s")),
            "p3": evaluate(_hand("Kh 7c 2s")),
        }
        assert determine_winners(hands) == ["p1", "p2"]

    def test_empty(self):
        assert determine_winners({}) == []
