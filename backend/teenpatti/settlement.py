"""Arithmetic handed off to the external escrow ledger.

The engine pays the whole pot to the winner in table chips.  The ledger
takes its rake in basis points before crediting tokens, and charges a
symmetric fee on the token exchange.  These helpers mirror that arithmetic
so the instruction we hand over is already priced.
"""

from __future__ import annotations

import os
from typing import Any

BPS_DENOMINATOR = 10_000

RAKE_BPS = int(os.getenv("RAKE_BPS", "500"))  # 5 %
MAX_RAKE_BPS = 1_000
EXCHANGE_FEE_BPS = 100  # 1 % on buy and on sell


def _check_bps(bps: int, limit: int = BPS_DENOMINATOR) -> None:
    if bps < 0 or bps > limit:
        raise ValueError(f"Fee must be between 0 and {limit} basis points")


def apply_rake(pot: int, rake_bps: int = RAKE_BPS) -> tuple[int, int]:
    """Split *pot* into (payout, rake)."""
    _check_bps(rake_bps, MAX_RAKE_BPS)
    rake = pot * rake_bps // BPS_DENOMINATOR
    return pot - rake, rake


def tokens_for_wei(
    wei: int, tokens_per_wei: int, buy_fee_bps: int = EXCHANGE_FEE_BPS
) -> int:
    """Tokens received for *wei*, after the buy fee."""
    _check_bps(buy_fee_bps)
    raw = wei * tokens_per_wei
    return raw * (BPS_DENOMINATOR - buy_fee_bps) // BPS_DENOMINATOR


def wei_for_tokens(
    tokens: int, tokens_per_wei: int, sell_fee_bps: int = EXCHANGE_FEE_BPS
) -> int:
    """Wei received for selling *tokens*, after the sell fee."""
    _check_bps(sell_fee_bps)
    if tokens_per_wei <= 0:
        raise ValueError("tokens_per_wei must be positive")
    raw = tokens // tokens_per_wei
    return raw * (BPS_DENOMINATOR - sell_fee_bps) // BPS_DENOMINATOR


def build_payout_instruction(
    summary: dict[str, Any], rake_bps: int = RAKE_BPS
) -> dict[str, Any]:
    """Turn an end-of-round summary into a ledger payout instruction.

    Split pots produce one line per winner; the rake is taken per line.
    A round with no winner produces no payout lines.
    """
    lines = []
    total_rake = 0
    for pid, amount in summary.get("payouts", {}).items():
        payout, rake = apply_rake(amount, rake_bps)
        total_rake += rake
        lines.append({"winner": pid, "amount": amount, "payout": payout, "rake": rake})

    return {
        "room_id": summary["room_id"],
        "hand_number": summary["hand_number"],
        "winner": summary.get("winner"),
        "pot": summary["pot"],
        "rake_bps": rake_bps,
        "rake": total_rake,
        "payout": sum(line["payout"] for line in lines),
        "payouts": lines,
    }
