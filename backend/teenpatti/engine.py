"""Core round engine for Teen Patti.

Manages the authoritative room state: seating, the deal, turn rotation,
blind/seen betting, showdown and pot settlement.  Nothing here talks to the
network; every operation returns plain values that the caller broadcasts.
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import Any, Optional

from teenpatti.cards import Card, Deck
from teenpatti.evaluator import determine_winners, evaluate
from teenpatti.exceptions import (
    AlreadyJoinedError,
    EmptyDeckError,
    InvalidActionError,
    InvalidBetError,
    NoActiveRoundError,
    NotYourTurnError,
    PlayerNotFoundError,
    RoomFullError,
    RoundInProgressError,
    SeatIndexError,
)

logger = logging.getLogger(__name__)

CARDS_PER_HAND = 3
DEFAULT_MIN_BET = 10
DEFAULT_STARTING_CHIPS = 1_000_000


class RoomState(str, Enum):
    LOBBY = "lobby"
    IN_ROUND = "in_round"


class Action(str, Enum):
    FOLD = "fold"
    SEE = "see"
    CHAAL = "chaal"


# Wire tokens accepted from clients
ACTION_ALIASES: dict[str, Action] = {
    "fold": Action.FOLD,
    "pack": Action.FOLD,
    "see": Action.SEE,
    "bet": Action.CHAAL,
    "chaal": Action.CHAAL,
}


def parse_action(token: str | Action) -> Action:
    """Resolve a client action token to an Action."""
    if isinstance(token, Action):
        return token
    action = ACTION_ALIASES.get(str(token).strip().lower())
    if action is None:
        raise InvalidActionError(f"Invalid action: {token}")
    return action


class Player:
    """One seated participant."""

    def __init__(
        self,
        player_id: str,
        name: str,
        chips: int = DEFAULT_STARTING_CHIPS,
        session_id: Optional[str] = None,
    ) -> None:
        self.player_id = player_id
        self.name = name
        self.session_id = session_id
        self.chips = chips
        self.cards: list[Card] = []
        self.current_bet: int = 0
        self.total_bet: int = 0
        self.is_active: bool = True
        self.is_folded: bool = False
        self.is_blind: bool = True
        self.has_seen_cards: bool = False
        # Left mid-round; dropped from the table once the round ends
        self.left_room: bool = False

    def add_card(self, card: Card) -> None:
        self.cards.append(card)

    def see_cards(self) -> None:
        self.has_seen_cards = True
        self.is_blind = False

    def fold(self) -> None:
        self.is_folded = True
        self.is_active = False

    def bet(self, amount: int) -> int:
        """Move up to *amount* chips into the pot. Returns the amount committed."""
        committed = max(0, min(amount, self.chips))
        self.chips -= committed
        self.current_bet = committed
        self.total_bet += committed
        return committed

    def reset(self) -> None:
        self.cards = []
        self.current_bet = 0
        self.total_bet = 0
        self.is_active = True
        self.is_folded = False
        self.is_blind = True
        self.has_seen_cards = False

    def to_dict(self) -> dict[str, Any]:
        """Public seat info. Never includes the cards themselves."""
        return {
            "id": self.player_id,
            "name": self.name,
            "chips": self.chips,
            "current_bet": self.current_bet,
            "total_bet": self.total_bet,
            "is_active": self.is_active,
            "is_folded": self.is_folded,
            "is_blind": self.is_blind,
            "has_seen_cards": self.has_seen_cards,
            "card_count": len(self.cards),
            "left_room": self.left_room,
        }


class GameEngine:
    """Manages a single Teen Patti room."""

    MIN_PLAYERS = 2
    MAX_PLAYERS = 6

    def __init__(
        self,
        room_id: str,
        min_bet: int = DEFAULT_MIN_BET,
        max_players: int = MAX_PLAYERS,
        turn_timeout: int = 0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.room_id = room_id
        self.min_bet = min_bet
        self.min_players = self.MIN_PLAYERS
        self.max_players = max(self.MIN_PLAYERS, min(max_players, self.MAX_PLAYERS))
        self.turn_timeout = turn_timeout  # 0 = no timer

        self._rng = rng or random.Random()
        self.players: list[Player] = []
        self.deck = Deck(self._rng)

        self.state: RoomState = RoomState.LOBBY
        self.pot: int = 0
        self.current_bet: int = 0
        self.current_player_idx: int = 0
        self.dealer_idx: int = 0
        # Turns taken this round, not a hand counter
        self.round_number: int = 0
        self.hand_number: int = 0
        self.action_deadline: Optional[float] = None
        self.last_round_result: Optional[dict[str, Any]] = None

    @property
    def game_started(self) -> bool:
        return self.state == RoomState.IN_ROUND

    # ------------------------------------------------------------------
    # Seating
    # ------------------------------------------------------------------

    def add_player(self, player: Player) -> None:
        if self._find_player_idx(player.player_id) is not None:
            raise AlreadyJoinedError()
        if len(self.players) >= self.max_players:
            raise RoomFullError()
        if self.game_started:
            raise RoundInProgressError("Cannot take a seat while a round is in progress")
        self.players.append(player)

    def remove_player(self, player_id: str) -> bool:
        """Unseat a player. Returns False if they are not seated.

        Between rounds the seat is dropped immediately.  During a round the
        player is packed (the turn moves on if it was theirs) and the seat is
        dropped when the round ends, so the pot still matches the seats.
        """
        idx = self._find_player_idx(player_id)
        if idx is None:
            return False

        if not self.game_started:
            self._drop_seat(idx)
            return True

        p = self.players[idx]
        p.left_room = True
        if not p.is_folded:
            was_current = idx == self.current_player_idx
            p.fold()
            if was_current:
                self._next_player()
        return True

    def _drop_seat(self, idx: int) -> None:
        """Remove a seat and re-base the dealer and turn indices."""
        del self.players[idx]
        n = len(self.players)
        if n == 0:
            self.dealer_idx = 0
            self.current_player_idx = 0
            return
        if idx < self.dealer_idx:
            self.dealer_idx -= 1
        if idx < self.current_player_idx:
            self.current_player_idx -= 1
        self.dealer_idx %= n
        self.current_player_idx %= n

    def _drop_departed(self) -> None:
        for i in range(len(self.players) - 1, -1, -1):
            if self.players[i].left_room:
                self._drop_seat(i)

    # ------------------------------------------------------------------
    # Round lifecycle
    # ------------------------------------------------------------------

    def can_start(self) -> bool:
        return len(self.players) >= self.min_players and not self.game_started

    def start_round(self) -> bool:
        """Deal a new round. Returns False if the room cannot start."""
        if not self.can_start():
            return False

        snapshot = self.to_dict()
        try:
            self._deal_round()
        except EmptyDeckError:
            logger.error(
                "Deck exhausted dealing room %s with %d seats; round aborted",
                self.room_id,
                len(self.players),
            )
            self._restore(snapshot)
            raise
        logger.info(
            "Round %d started in room %s (%d players, pot=%d)",
            self.hand_number,
            self.room_id,
            len(self.players),
            self.pot,
        )
        return True

    def _deal_round(self) -> None:
        self.state = RoomState.IN_ROUND
        self.deck.reset()
        self.pot = 0
        self.current_bet = self.min_bet
        self.round_number = 0
        self.hand_number += 1
        self.last_round_result = None

        for p in self.players:
            p.reset()

        # One card per player per pass
        for _ in range(CARDS_PER_HAND):
            for p in self.players:
                p.add_card(self.deck.deal())

        # Ante (boot)
        for p in self.players:
            self.pot += p.bet(self.min_bet)

        self.current_player_idx = (self.dealer_idx + 1) % len(self.players)
        self._set_action_deadline()

    def _restore(self, snapshot: dict[str, Any]) -> None:
        restored = GameEngine.from_dict(snapshot, rng=self._rng)
        self.__dict__.update(restored.__dict__)

    def end_round(self, winner_id: Optional[str] = None) -> dict[str, Any]:
        """Finish the round, crediting the whole pot to *winner_id*.

        With no winner every player gets their contribution back.
        Returns the settlement summary.
        """
        if not self.game_started:
            raise NoActiveRoundError()

        pot = self.pot
        payouts: dict[str, int] = {}
        refunds: dict[str, int] = {}

        if winner_id is not None:
            winner = self._find_player(winner_id)
            if winner is None:
                raise PlayerNotFoundError()
            if winner.is_folded:
                raise InvalidActionError("A packed player cannot win the pot")
            winner.chips += pot
            payouts[winner.player_id] = pot
            reason = "last_player_standing" if self.check_winner() is winner else "declared"
        else:
            for p in self.players:
                if p.total_bet:
                    p.chips += p.total_bet
                    refunds[p.player_id] = p.total_bet
            reason = "no_winner"

        return self._finish_round(pot, payouts, refunds, reason, hands={})

    def showdown(self) -> dict[str, Any]:
        """Compare every unpacked hand and award the pot.

        Tied best hands split the pot; the odd chips go to the earliest seats.
        """
        if not self.game_started:
            raise NoActiveRoundError()

        contenders = self.active_players()
        if not contenders:
            return self.end_round(None)

        hands = {p.player_id: evaluate(p.cards) for p in contenders}
        winner_ids = determine_winners(hands)

        pot = self.pot
        share, remainder = divmod(pot, len(winner_ids))
        payouts: dict[str, int] = {}
        for j, pid in enumerate(winner_ids):
            amount = share + (1 if j < remainder else 0)
            self._find_player(pid).chips += amount
            payouts[pid] = amount

        revealed = {
            p.player_id: {
                "cards": [c.to_dict() for c in p.cards],
                "hand_name": hands[p.player_id].name,
            }
            for p in contenders
        }
        return self._finish_round(pot, payouts, {}, "showdown", hands=revealed)

    def abort_round(self, reason: str) -> dict[str, Any]:
        """Refund every contribution and return to the lobby."""
        refunds = {p.player_id: p.total_bet for p in self.players if p.total_bet}
        for p in self.players:
            p.chips += p.total_bet
        logger.error("Round aborted in room %s: %s", self.room_id, reason)

        summary = self._summary(self.pot, {}, refunds, f"aborted: {reason}")
        self.last_round_result = {**summary, "hands": {}}
        self.pot = 0
        self.state = RoomState.LOBBY
        self.action_deadline = None
        self._drop_departed()
        return summary

    def _finish_round(
        self,
        pot: int,
        payouts: dict[str, int],
        refunds: dict[str, int],
        reason: str,
        hands: dict[str, Any],
    ) -> dict[str, Any]:
        summary = self._summary(pot, payouts, refunds, reason)
        self.last_round_result = {**summary, "hands": hands}

        self.pot = 0
        self.state = RoomState.LOBBY
        self.action_deadline = None
        self.dealer_idx = (self.dealer_idx + 1) % len(self.players)
        self._drop_departed()

        logger.info(
            "Round %d ended in room %s: winners=%s pot=%d (%s)",
            self.hand_number,
            self.room_id,
            list(payouts),
            pot,
            reason,
        )
        return summary

    def _summary(
        self,
        pot: int,
        payouts: dict[str, int],
        refunds: dict[str, int],
        reason: str,
    ) -> dict[str, Any]:
        winners = list(payouts)
        return {
            "room_id": self.room_id,
            "hand_number": self.hand_number,
            "winner": winners[0] if len(winners) == 1 else None,
            "winners": winners,
            "pot": pot,
            "payouts": payouts,
            "refunds": refunds,
            "reason": reason,
            "player_chips": [
                {"id": p.player_id, "chips": p.chips} for p in self.players
            ],
        }

    # ------------------------------------------------------------------
    # Action Processing
    # ------------------------------------------------------------------

    @property
    def current_player(self) -> Player:
        if not 0 <= self.current_player_idx < len(self.players):
            raise SeatIndexError(
                f"Turn index {self.current_player_idx} outside {len(self.players)} seats"
            )
        return self.players[self.current_player_idx]

    def chaal_range(self, player: Player) -> tuple[int, int]:
        """Legal (min, max) chaal for *player* at the current stake."""
        if player.is_blind:
            return self.current_bet, self.current_bet * 2
        return self.current_bet * 2, self.current_bet * 4

    def get_valid_actions(self, player_id: str) -> list[dict[str, Any]]:
        """Return list of valid actions for the given player."""
        if not self.game_started:
            return []
        p = self._find_player(player_id)
        if p is None or p.is_folded:
            return []
        if self._current_player_id() != player_id:
            return []

        actions: list[dict[str, Any]] = [{"action": Action.FOLD.value}]
        if not p.has_seen_cards:
            actions.append({"action": Action.SEE.value})
        low, high = self.chaal_range(p)
        actions.append(
            {"action": Action.CHAAL.value, "min_amount": low, "max_amount": high}
        )
        return actions

    def process_action(
        self, player_id: str, action: str | Action, amount: int = 0
    ) -> dict[str, Any]:
        """Apply one player action. Raises without mutating on any rejection."""
        if not self.game_started:
            raise NoActiveRoundError()

        player = self._find_player(player_id)
        if player is None:
            raise PlayerNotFoundError()

        try:
            current = self.current_player
        except SeatIndexError:
            self.abort_round("turn index out of range")
            raise

        if current.player_id != player.player_id:
            raise NotYourTurnError()

        action = parse_action(action)
        committed = 0
        if action is Action.FOLD:
            player.fold()
            self._next_player()
        elif action is Action.SEE:
            # Free action; the turn stays with this player
            player.see_cards()
        elif action is Action.CHAAL:
            committed = self._do_chaal(player, amount)
        else:
            raise InvalidActionError(f"Invalid action: {action}")

        return {
            "player_id": player.player_id,
            "action": action.value,
            "amount": committed,
        }

    def _do_chaal(self, player: Player, amount: int) -> int:
        low, high = self.chaal_range(player)
        if amount < low or amount > high:
            raise InvalidBetError(f"Bet must be between {low} and {high}")

        committed = player.bet(amount)
        self.pot += committed
        self.current_bet = max(self.current_bet, amount)
        self._next_player()
        return committed

    def _next_player(self) -> None:
        """Pass the turn to the next unpacked seat, at most one lap."""
        n = len(self.players)
        if n == 0:
            return
        for _ in range(n):
            self.current_player_idx = (self.current_player_idx + 1) % n
            if not self.players[self.current_player_idx].is_folded:
                break
        self.round_number += 1
        self._set_action_deadline()

    def _set_action_deadline(self) -> None:
        """Set the action deadline for the current player based on turn_timeout."""
        if self.turn_timeout > 0 and self.game_started:
            self.action_deadline = time.time() + self.turn_timeout
        else:
            self.action_deadline = None

    # ------------------------------------------------------------------
    # Winner detection
    # ------------------------------------------------------------------

    def active_players(self) -> list[Player]:
        return [p for p in self.players if p.is_active and not p.is_folded]

    def check_winner(self) -> Optional[Player]:
        """The last unpacked player, if only one remains."""
        active = self.active_players()
        if len(active) == 1:
            return active[0]
        return None

    def compare_hands(self, player1: Player, player2: Player) -> Optional[Player]:
        """Return the player holding the better hand, or None on a tie."""
        hand1 = evaluate(player1.cards)
        hand2 = evaluate(player2.cards)
        if hand1 > hand2:
            return player1
        if hand2 > hand1:
            return player2
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_player_idx(self, player_id: str) -> Optional[int]:
        for i, p in enumerate(self.players):
            if p.player_id == player_id:
                return i
        return None

    def _find_player(self, player_id: str) -> Optional[Player]:
        idx = self._find_player_idx(player_id)
        return self.players[idx] if idx is not None else None

    def get_player(self, player_id: str) -> Optional[Player]:
        return self._find_player(player_id)

    def _current_player_id(self) -> Optional[str]:
        if self.game_started and 0 <= self.current_player_idx < len(self.players):
            return self.players[self.current_player_idx].player_id
        return None

    def get_player_cards(self, player_id: str) -> list[Card]:
        p = self._find_player(player_id)
        return list(p.cards) if p else []

    def get_public_state(self) -> dict[str, Any]:
        """Room snapshot safe to broadcast to every seat."""
        return {
            "room_id": self.room_id,
            "state": self.state.value,
            "game_started": self.game_started,
            "players": [p.to_dict() for p in self.players],
            "pot": self.pot,
            "current_bet": self.current_bet,
            "min_bet": self.min_bet,
            "current_player_idx": self.current_player_idx,
            "current_player_id": self._current_player_id(),
            "dealer_idx": self.dealer_idx,
            "round_number": self.round_number,
            "hand_number": self.hand_number,
            "max_players": self.max_players,
            "turn_timeout": self.turn_timeout,
            "action_deadline": self.action_deadline,
            "last_round_result": self.last_round_result,
        }

    def get_player_view(self, player_id: str) -> dict[str, Any]:
        """Public state plus this player's own hand once they have seen it."""
        state = self.get_public_state()

        player = self._find_player(player_id)
        if player and player.has_seen_cards and player.cards:
            state["my_cards"] = [c.to_dict() for c in player.cards]
            state["my_hand"] = (
                evaluate(player.cards).name if len(player.cards) == CARDS_PER_HAND else None
            )
        else:
            state["my_cards"] = []
            state["my_hand"] = None

        state["valid_actions"] = self.get_valid_actions(player_id)
        return state

    # ------------------------------------------------------------------
    # Serialization (for Redis persistence)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize full engine state for Redis storage."""
        return {
            "room_id": self.room_id,
            "min_bet": self.min_bet,
            "max_players": self.max_players,
            "turn_timeout": self.turn_timeout,
            "state": self.state.value,
            "pot": self.pot,
            "current_bet": self.current_bet,
            "current_player_idx": self.current_player_idx,
            "dealer_idx": self.dealer_idx,
            "round_number": self.round_number,
            "hand_number": self.hand_number,
            "action_deadline": self.action_deadline,
            "last_round_result": self.last_round_result,
            "deck": self.deck.to_dict(),
            "players": [
                {
                    "player_id": p.player_id,
                    "name": p.name,
                    "session_id": p.session_id,
                    "chips": p.chips,
                    "cards": [c.to_dict() for c in p.cards],
                    "current_bet": p.current_bet,
                    "total_bet": p.total_bet,
                    "is_active": p.is_active,
                    "is_folded": p.is_folded,
                    "is_blind": p.is_blind,
                    "has_seen_cards": p.has_seen_cards,
                    "left_room": p.left_room,
                }
                for p in self.players
            ],
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], rng: Optional[random.Random] = None
    ) -> GameEngine:
        """Restore engine state from Redis."""
        engine = cls.__new__(cls)
        engine.room_id = data["room_id"]
        engine.min_bet = data["min_bet"]
        engine.min_players = cls.MIN_PLAYERS
        engine.max_players = data.get("max_players", cls.MAX_PLAYERS)
        engine.turn_timeout = data.get("turn_timeout", 0)
        engine._rng = rng or random.Random()
        engine.state = RoomState(data["state"])
        engine.pot = data["pot"]
        engine.current_bet = data["current_bet"]
        engine.current_player_idx = data["current_player_idx"]
        engine.dealer_idx = data["dealer_idx"]
        engine.round_number = data["round_number"]
        engine.hand_number = data.get("hand_number", 0)
        engine.action_deadline = data.get("action_deadline")
        engine.last_round_result = data.get("last_round_result")
        engine.deck = Deck.from_dict(data["deck"], rng=engine._rng)

        engine.players = []
        for s in data["players"]:
            p = Player(s["player_id"], s["name"], s["chips"], s.get("session_id"))
            p.cards = [Card.from_dict(c) for c in s["cards"]]
            p.current_bet = s["current_bet"]
            p.total_bet = s["total_bet"]
            p.is_active = s["is_active"]
            p.is_folded = s["is_folded"]
            p.is_blind = s["is_blind"]
            p.has_seen_cards = s["has_seen_cards"]
            p.left_room = s.get("left_room", False)
            engine.players.append(p)

        return engine
