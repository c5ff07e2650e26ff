"""Tests for the GameEngine — seating, round lifecycle, dealing, settlement, views."""

import random
from unittest.mock import patch

import pytest

from teenpatti.cards import Card, Deck
from teenpatti.engine import (
    CARDS_PER_HAND,
    DEFAULT_MIN_BET,
    DEFAULT_STARTING_CHIPS,
    Action,
    GameEngine,
    Player,
    RoomState,
    parse_action,
)
from teenpatti.exceptions import (
    AlreadyJoinedError,
    EmptyDeckError,
    InvalidActionError,
    NoActiveRoundError,
    PlayerNotFoundError,
    RoomFullError,
    RoundInProgressError,
    SeatIndexError,
)


# ── Helpers ──────────────────────────────────────────────────────────

class _Unshuffled(random.Random):
    """Leaves a fresh deck in generation order (spades, ace high, at the tail)."""

    def randint(self, a, b):
        return b


def _make_engine(n_players: int = 2, chips: int = 1000, **kwargs) -> GameEngine:
    engine = GameEngine("room1", **kwargs)
    for i in range(n_players):
        engine.add_player(Player(f"p{i}", f"Player{i}", chips))
    return engine


def _hand(s: str) -> list[Card]:
    return [Card.from_str(c) for c in s.split()]


# ── Player ───────────────────────────────────────────────────────────

class TestPlayer:
    def test_initial_state(self):
        p = Player("id1", "Alice")
        assert p.chips == DEFAULT_STARTING_CHIPS
        assert p.is_active
        assert p.is_blind
        assert not p.is_folded
        assert not p.has_seen_cards
        assert p.cards == []

    def test_see_cards_idempotent(self):
        p = Player("id1", "Alice", 100)
        p.see_cards()
        once = p.to_dict()
        p.see_cards()
        assert p.to_dict() == once
        assert p.has_seen_cards and not p.is_blind

    def test_fold_idempotent(self):
        p = Player("id1", "Alice", 100)
        p.fold()
        p.fold()
        assert p.is_folded and not p.is_active
        assert p.chips == 100

    def test_bet_commits(self):
        p = Player("id1", "Alice", 100)
        assert p.bet(30) == 30
        assert p.chips == 70
        assert p.current_bet == 30
        assert p.total_bet == 30

    def test_bet_caps_at_balance(self):
        p = Player("id1", "Alice", 5)
        assert p.bet(10) == 5
        assert p.chips == 0
        assert p.total_bet == 5

    def test_reset(self):
        p = Player("id1", "Alice", 100)
        p.add_card(Card.from_str("As"))
        p.bet(10)
        p.see_cards()
        p.fold()
        p.reset()
        assert p.cards == []
        assert p.current_bet == 0 and p.total_bet == 0
        assert p.is_active and p.is_blind
        assert not p.is_folded and not p.has_seen_cards

    def test_public_dict_has_no_cards(self):
        p = Player("id1", "Alice", 100)
        for c in _hand("As Ks Qs"):
            p.add_card(c)
        d = p.to_dict()
        assert "cards" not in d
        assert d["card_count"] == 3


class TestParseAction:
    @pytest.mark.parametrize(
        "token,expected",
        [
            ("fold", Action.FOLD),
            ("pack", Action.FOLD),
            ("see", Action.SEE),
            ("bet", Action.CHAAL),
            ("chaal", Action.CHAAL),
            (" CHAAL ", Action.CHAAL),
            (Action.SEE, Action.SEE),
        ],
    )
    def test_aliases(self, token, expected):
        assert parse_action(token) is expected

    def test_unknown(self):
        with pytest.raises(InvalidActionError, match="Invalid action: raise"):
            parse_action("raise")


# ── Seating ──────────────────────────────────────────────────────────

class TestSeating:
    def test_add_players(self):
        e = _make_engine(3)
        assert [p.player_id for p in e.players] == ["p0", "p1", "p2"]

    def test_room_full(self):
        e = _make_engine(6)
        with pytest.raises(RoomFullError):
            e.add_player(Player("p6", "Extra"))

    def test_room_full_respects_setting(self):
        e = _make_engine(3, max_players=3)
        with pytest.raises(RoomFullError):
            e.add_player(Player("p3", "Extra"))

    def test_max_players_clamped(self):
        assert GameEngine("r", max_players=10).max_players == 6
        assert GameEngine("r", max_players=1).max_players == 2

    def test_already_joined(self):
        e = _make_engine(2)
        with pytest.raises(AlreadyJoinedError):
            e.add_player(Player("p0", "Again"))

    def test_no_seating_mid_round(self):
        e = _make_engine(2)
        e.start_round()
        with pytest.raises(RoundInProgressError):
            e.add_player(Player("p9", "Late"))

    def test_remove_in_lobby(self):
        e = _make_engine(3)
        assert e.remove_player("p1")
        assert [p.player_id for p in e.players] == ["p0", "p2"]

    def test_remove_unknown(self):
        e = _make_engine(2)
        assert not e.remove_player("nobody")

    def test_remove_rebases_dealer(self):
        e = _make_engine(3)
        e.dealer_idx = 2
        e.remove_player("p0")
        assert e.players[e.dealer_idx].player_id == "p2"


class TestLeaveMidRound:
    def test_current_player_leaving_is_packed_and_turn_moves(self):
        e = _make_engine(3)
        e.start_round()
        leaver = e.current_player.player_id
        assert e.remove_player(leaver)

        p = e.get_player(leaver)
        assert p.is_folded and p.left_room
        assert e.current_player.player_id != leaver
        assert len(e.players) == 3

    def test_other_player_leaving_keeps_turn(self):
        e = _make_engine(3)
        e.start_round()
        current = e.current_player.player_id
        other = next(p.player_id for p in e.players if p.player_id != current)
        e.remove_player(other)
        assert e.current_player.player_id == current

    def test_seat_dropped_when_round_ends(self):
        e = _make_engine(3)
        e.start_round()
        e.remove_player("p1")
        e.end_round(None)
        assert [p.player_id for p in e.players] == ["p0", "p2"]

    def test_pot_kept_for_winner(self):
        e = _make_engine(2)
        e.start_round()
        e.remove_player("p1")
        winner = e.check_winner()
        assert winner.player_id == "p0"
        summary = e.end_round(winner.player_id)
        assert summary["pot"] == 20
        assert e.get_player("p0").chips == 1010
        assert e.get_player("p1") is None


# ── Round lifecycle ──────────────────────────────────────────────────

class TestStartRound:
    def test_needs_two_players(self):
        e = _make_engine(1)
        assert not e.can_start()
        assert not e.start_round()
        assert e.state == RoomState.LOBBY

    def test_cannot_start_twice(self):
        e = _make_engine(2)
        assert e.start_round()
        assert not e.can_start()
        assert not e.start_round()

    def test_deal_and_ante(self):
        e = _make_engine(3)
        e.start_round()
        assert e.state == RoomState.IN_ROUND
        assert e.game_started
        assert all(len(p.cards) == CARDS_PER_HAND for p in e.players)
        assert e.deck.remaining == 52 - 9
        assert e.pot == 3 * DEFAULT_MIN_BET
        assert e.current_bet == DEFAULT_MIN_BET
        assert all(p.chips == 1000 - DEFAULT_MIN_BET for p in e.players)
        assert e.round_number == 0
        assert e.hand_number == 1

    def test_turn_starts_after_dealer(self):
        e = _make_engine(3)
        e.dealer_idx = 2
        e.start_round()
        assert e.current_player_idx == 0

    def test_round_robin_deal(self):
        e = _make_engine(2, rng=_Unshuffled())
        e.start_round()
        assert e.players[0].cards == _hand("As Qs Ts")
        assert e.players[1].cards == _hand("Ks Js 9s")

    def test_custom_min_bet(self):
        e = _make_engine(2, min_bet=25)
        e.start_round()
        assert e.pot == 50
        assert e.current_bet == 25

    def test_every_card_unique(self):
        e = _make_engine(6)
        e.start_round()
        dealt = [c for p in e.players for c in p.cards]
        assert len(set(dealt)) == 18

    def test_empty_deck_restores_lobby(self):
        e = _make_engine(3)
        with patch.object(Deck, "deal", side_effect=EmptyDeckError()):
            with pytest.raises(EmptyDeckError):
                e.start_round()
        assert e.state == RoomState.LOBBY
        assert e.hand_number == 0
        assert e.pot == 0
        assert all(p.chips == 1000 and p.cards == [] for p in e.players)


class TestEndRound:
    def test_requires_active_round(self):
        e = _make_engine(2)
        with pytest.raises(NoActiveRoundError):
            e.end_round("p0")

    def test_unknown_winner(self):
        e = _make_engine(2)
        e.start_round()
        with pytest.raises(PlayerNotFoundError):
            e.end_round("ghost")
        assert e.game_started

    def test_packed_player_cannot_win(self):
        e = _make_engine(3)
        e.start_round()
        e.process_action(e.current_player.player_id, "pack")
        folded = next(p for p in e.players if p.is_folded)
        with pytest.raises(InvalidActionError):
            e.end_round(folded.player_id)
        assert e.game_started

    def test_winner_takes_pot(self):
        e = _make_engine(3)
        e.start_round()
        summary = e.end_round("p2")
        assert e.get_player("p2").chips == 1000 - 10 + 30
        assert e.pot == 0
        assert e.state == RoomState.LOBBY
        assert summary["winner"] == "p2"
        assert summary["pot"] == 30
        assert summary["reason"] == "declared"
        assert {"id": "p2", "chips": 1020} in summary["player_chips"]

    def test_no_winner_refunds(self):
        e = _make_engine(2)
        e.start_round()
        summary = e.end_round(None)
        assert summary["winner"] is None
        assert summary["refunds"] == {"p0": 10, "p1": 10}
        assert all(p.chips == 1000 for p in e.players)
        assert e.pot == 0

    def test_dealer_advances(self):
        e = _make_engine(3)
        e.start_round()
        e.end_round("p0")
        assert e.dealer_idx == 1
        e.start_round()
        assert e.current_player_idx == 2

    def test_deadline_cleared(self):
        e = _make_engine(2, turn_timeout=30)
        e.start_round()
        assert e.action_deadline is not None
        e.end_round("p0")
        assert e.action_deadline is None

    def test_last_round_result(self):
        e = _make_engine(2)
        e.start_round()
        e.end_round("p0")
        assert e.last_round_result["winner"] == "p0"
        assert e.last_round_result["hand_number"] == 1


class TestShowdown:
    def _ready(self, n=2) -> GameEngine:
        e = _make_engine(n)
        e.start_round()
        return e

    def test_best_hand_wins(self):
        e = self._ready()
        e.players[0].cards = _hand("Kc Kd Kh")
        e.players[1].cards = _hand("As 2s 3s")
        summary = e.showdown()
        assert summary["winner"] == "p0"
        assert summary["reason"] == "showdown"
        assert e.get_player("p0").chips == 1010
        assert e.get_player("p1").chips == 990

    def test_hands_revealed(self):
        e = self._ready()
        e.players[0].cards = _hand("Kc Kd Kh")
        e.players[1].cards = _hand("As 2s 3s")
        e.showdown()
        hands = e.last_round_result["hands"]
        assert hands["p0"]["hand_name"] == "Trio"
        assert hands["p1"]["hand_name"] == "Pure Sequence"
        assert len(hands["p1"]["cards"]) == 3

    def test_packed_hands_not_compared(self):
        e = self._ready(3)
        e.players[0].cards = _hand("Kc Kd Kh")
        e.players[1].cards = _hand("2c 3d 5h")
        e.players[2].cards = _hand("4c 6d 8h")
        e.players[0].fold()
        summary = e.showdown()
        assert summary["winner"] == "p2"
        assert "p0" not in e.last_round_result["hands"]

    def test_tie_splits_pot(self):
        e = self._ready()
        e.players[0].cards = _hand("As 7d 2h")
        e.players[1].cards = _hand("Ah 7c 2s")
        summary = e.showdown()
        assert summary["winner"] is None
        assert summary["winners"] == ["p0", "p1"]
        assert summary["payouts"] == {"p0": 10, "p1": 10}

    def test_odd_chip_to_earliest_seat(self):
        e = self._ready()
        e.players[0].cards = _hand("As 7d 2h")
        e.players[1].cards = _hand("Ah 7c 2s")
        e.pot = 21
        summary = e.showdown()
        assert summary["payouts"] == {"p0": 11, "p1": 10}

    def test_requires_active_round(self):
        with pytest.raises(NoActiveRoundError):
            _make_engine(2).showdown()

    def test_compare_hands(self):
        e = self._ready()
        e.players[0].cards = _hand("9s 5s 2s")
        e.players[1].cards = _hand("4s 4d 9h")
        assert e.compare_hands(e.players[0], e.players[1]) is e.players[0]
        e.players[1].cards = _hand("9h 5h 2h")
        assert e.compare_hands(e.players[0], e.players[1]) is None


class TestAbortRound:
    def test_refunds_and_returns_to_lobby(self):
        e = _make_engine(3)
        e.start_round()
        summary = e.abort_round("test")
        assert summary["reason"] == "aborted: test"
        assert e.state == RoomState.LOBBY
        assert e.pot == 0
        assert all(p.chips == 1000 for p in e.players)

    def test_bad_turn_index_aborts(self):
        e = _make_engine(2)
        e.start_round()
        e.current_player_idx = 7
        with pytest.raises(SeatIndexError):
            e.process_action("p0", "fold")
        assert e.state == RoomState.LOBBY
        assert all(p.chips == 1000 for p in e.players)

    def test_current_player_out_of_range(self):
        e = _make_engine(2)
        e.current_player_idx = 5
        with pytest.raises(SeatIndexError):
            e.current_player


# ── Views ────────────────────────────────────────────────────────────

class TestViews:
    def test_public_state_hides_cards(self):
        e = _make_engine(2)
        e.start_round()
        state = e.get_public_state()
        assert state["game_started"]
        assert state["pot"] == 20
        assert state["current_player_id"] == "p1"
        assert all("cards" not in p for p in state["players"])
        assert all(p["card_count"] == 3 for p in state["players"])

    def test_blind_player_sees_nothing(self):
        e = _make_engine(2)
        e.start_round()
        view = e.get_player_view("p1")
        assert view["my_cards"] == []
        assert view["my_hand"] is None

    def test_seen_player_gets_own_cards(self):
        e = _make_engine(2)
        e.start_round()
        e.process_action("p1", "see")
        view = e.get_player_view("p1")
        assert len(view["my_cards"]) == 3
        assert view["my_hand"] is not None
        assert e.get_player_view("p0")["my_cards"] == []

    def test_valid_actions_only_for_turn_holder(self):
        e = _make_engine(2)
        e.start_round()
        assert e.get_player_view("p0")["valid_actions"] == []
        names = [a["action"] for a in e.get_player_view("p1")["valid_actions"]]
        assert names == ["fold", "see", "chaal"]

    def test_lobby_view(self):
        e = _make_engine(2)
        view = e.get_player_view("p0")
        assert not view["game_started"]
        assert view["current_player_id"] is None
        assert view["valid_actions"] == []

    def test_get_player_cards(self):
        e = _make_engine(2)
        e.start_round()
        assert len(e.get_player_cards("p0")) == 3
        assert e.get_player_cards("ghost") == []
